"""Control of a single iOS simulator through simctl and the files it keeps on disk."""

from __future__ import annotations

import logging
import tempfile
import time
import zipfile
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from mobilectl import simctl
from mobilectl.models import DeviceError, DeviceInfo, InstalledAppInfo
from mobilectl.simctl import SimctlError, Simulator

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

WEBDRIVER_AGENT_BUNDLE_ID = "com.facebook.WebDriverAgentRunner.xctrunner"


class SimulatorDevice:
    """An iOS simulator that can be booted, shut down and have apps managed."""

    platform = "ios"
    type = "simulator"

    def __init__(self, simulator: Simulator, devices_path: Optional[PathLike] = None):
        self.simulator = simulator
        self.devices_path = devices_path

    @property
    def id(self) -> str:
        return self.simulator.udid

    @property
    def name(self) -> str:
        return self.simulator.name

    @property
    def version(self) -> str:
        return simctl.parse_simulator_version(self.simulator.runtime)

    @property
    def state(self) -> str:
        return "online" if self.simulator.state == "Booted" else "offline"

    @property
    def model(self) -> str:
        return self.simulator.device_type

    def to_device_info(self) -> DeviceInfo:
        return DeviceInfo(
            id=self.id,
            name=self.name,
            platform=self.platform,
            type=self.type,
            version=self.version,
            state=self.state,
            model=self.model,
        )

    def _current_state(self) -> str:
        try:
            simulators = simctl.get_simulators(self.devices_path)
        except SimctlError as exc:
            raise DeviceError(f"failed to get simulator state: {exc}") from exc
        for simulator in simulators:
            if simulator.udid == self.id:
                return simulator.state
        raise DeviceError(f"failed to get simulator state: simulator {self.id} not found")

    @staticmethod
    def _output(exc: SimctlError) -> str:
        return exc.output.decode("utf-8", errors="replace")

    def _wait_for_boot(self) -> None:
        try:
            simctl.run_simctl("bootstatus", self.id)
        except SimctlError as exc:
            raise DeviceError(
                f"failed to wait for boot status {self.id}: {exc}\n{self._output(exc)}"
            ) from exc
        logger.debug("Simulator booted successfully")
        self.simulator.state = "Booted"

    def reboot(self) -> None:
        """Shut the simulator down, ignoring failures, then boot it again."""
        logger.debug("Attempting to reboot simulator: %s (%s)", self.name, self.id)
        try:
            simctl.run_simctl("shutdown", self.id)
        except SimctlError as exc:
            logger.debug("Shutdown of %s may have failed (could be already off): %s", self.id, exc)
        try:
            simctl.run_simctl("boot", self.id)
        except SimctlError as exc:
            raise DeviceError(
                f"failed to boot simulator {self.id}: {exc}\nOutput: {self._output(exc)}"
            ) from exc

    def boot(self) -> None:
        """Boot the simulator and wait until it has finished booting."""
        state = self._current_state()
        if state == "Booted":
            raise DeviceError("simulator is already running")
        if state == "Booting":
            logger.debug("Simulator is already booting, waiting for boot to complete...")
            self._wait_for_boot()
            return

        logger.debug("Booting simulator %s...", self.id)
        try:
            simctl.run_simctl("boot", self.id)
        except SimctlError as exc:
            raise DeviceError(
                f"failed to boot simulator {self.id}: {exc}\n{self._output(exc)}"
            ) from exc
        self._wait_for_boot()

    def shutdown(self) -> None:
        """Shut the simulator down."""
        if self._current_state() == "Shutdown":
            raise DeviceError("simulator is already offline")
        logger.debug("Shutting down simulator %s...", self.id)
        try:
            simctl.run_simctl("shutdown", self.id)
        except SimctlError as exc:
            raise DeviceError(
                f"failed to shutdown simulator {self.id}: {exc}\n{self._output(exc)}"
            ) from exc
        self.simulator.state = "Shutdown"

    def launch_app(self, bundle_id: str) -> None:
        simctl.run_simctl("launch", self.id, bundle_id)

    def launch_app_with_env(self, bundle_id: str, env: Mapping[str, str]) -> None:
        """Launch an app, passing the variables into the app's environment."""
        child_env = {f"SIMCTL_CHILD_{key}": value for key, value in env.items()}
        try:
            simctl.run_simctl("launch", self.id, bundle_id, env=child_env)
        except SimctlError as exc:
            raise DeviceError(f"failed to launch app with env: {exc}") from exc

    def terminate_app(self, bundle_id: str) -> None:
        simctl.run_simctl("terminate", self.id, bundle_id)

    def open_url(self, url: str) -> None:
        simctl.run_simctl("openurl", self.id, url)

    def list_installed_apps(self) -> dict[str, Any]:
        """Return simctl's description of installed apps, keyed by bundle id."""
        try:
            output = simctl.run_simctl("listapps", self.id)
        except SimctlError as exc:
            raise DeviceError(
                f"failed to list installed apps: {exc}\n{self._output(exc)}"
            ) from exc
        apps = simctl.convert_plist_to_json(output)
        if not isinstance(apps, dict):
            raise DeviceError("failed to list installed apps: unexpected listapps output")
        return apps

    def list_apps(self) -> list[InstalledAppInfo]:
        return [
            InstalledAppInfo(
                package_name=str(app.get("CFBundleIdentifier", "")),
                app_name=str(app.get("CFBundleDisplayName", "")),
                version=str(app.get("CFBundleVersion", "")),
            )
            for app in self.list_installed_apps().values()
            if isinstance(app, dict)
        ]

    def wait_until_app_exists(self, bundle_id: str, timeout: float = 10.0) -> None:
        """Poll the installed apps until the bundle appears or the timeout passes."""
        start = time.monotonic()
        while True:
            if bundle_id in self.list_installed_apps():
                return
            if time.monotonic() - start >= timeout:
                raise DeviceError(f"app {bundle_id} not found after {timeout:g} seconds")
            time.sleep(0.1)

    def is_webdriver_agent_installed(self) -> bool:
        return WEBDRIVER_AGENT_BUNDLE_ID in self.list_installed_apps()

    def install_app(self, path: PathLike) -> None:
        """Install an .app directory, or the first .app bundle found in a .zip."""
        app_path = Path(path)
        try:
            is_dir = app_path.stat() and app_path.is_dir()
        except OSError as exc:
            raise DeviceError(f"failed to stat path: {exc}") from exc

        if is_dir or not str(path).endswith(".zip"):
            simctl.install_app(self.id, str(path))
            return

        with tempfile.TemporaryDirectory() as tmp:
            try:
                with zipfile.ZipFile(app_path) as archive:
                    archive.extractall(tmp)
            except (OSError, zipfile.BadZipFile) as exc:
                raise DeviceError(f"failed to unzip: {exc}") from exc
            for entry in sorted(Path(tmp).iterdir(), key=lambda item: item.name):
                if entry.name.endswith(".app"):
                    simctl.install_app(self.id, str(entry))
                    return
        raise DeviceError("no .app bundle found in zip file")

    def uninstall_app(self, package_name: str) -> InstalledAppInfo:
        if package_name not in self.list_installed_apps():
            raise DeviceError(f"package {package_name} is not installed")
        simctl.uninstall_app(self.id, package_name)
        return InstalledAppInfo(package_name=package_name)

    def _wda_env_port(self, env_var: str) -> int:
        process = simctl.find_wda_process_for_device(self.id)
        logger.debug("Found WDA process PID=%d", process.pid)
        try:
            value = simctl.extract_env_value(process.command, env_var)
        except KeyError as exc:
            raise DeviceError(f"{env_var} not found in environment") from exc
        try:
            return int(value)
        except ValueError as exc:
            raise DeviceError(f"invalid {env_var} value: {value}") from exc

    def wda_port(self) -> int:
        """Port the running agent listens on, read from its environment."""
        return self._wda_env_port("USE_PORT")

    def wda_mjpeg_port(self) -> int:
        """Port of the running agent's MJPEG server, read from its environment."""
        return self._wda_env_port("MJPEG_SERVER_PORT")