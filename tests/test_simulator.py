import plistlib
import subprocess
import zipfile
from pathlib import Path

import pytest

from mobilectl.models import DeviceError, InstalledAppInfo
from mobilectl.simctl import SimctlError, Simulator
from mobilectl.simulator import SimulatorDevice

UDID = "AAAA-BBBB"
RUNTIME = "com.apple.CoreSimulator.SimRuntime.iOS-18-6"
WDA = "com.facebook.WebDriverAgentRunner.xctrunner"


class FakeRun:
    def __init__(self, responses=None):
        self.calls = []
        self.envs = []
        self.responses = responses or {}

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        self.envs.append(kwargs.get("env"))
        key = cmd[2] if cmd[:2] == ["xcrun", "simctl"] else cmd[0]
        code, out = self.responses.get(key, (0, b""))
        return subprocess.CompletedProcess(cmd, code, stdout=out, stderr=b"")


@pytest.fixture
def fake_run(monkeypatch):
    def install(responses=None):
        fake = FakeRun(responses)
        monkeypatch.setattr(subprocess, "run", fake)
        return fake

    return install


def make_device(tmp_path, state=1):
    devices = tmp_path / "Devices"
    (devices / UDID).mkdir(parents=True)
    (devices / UDID / "device.plist").write_bytes(
        plistlib.dumps(
            {"UDID": UDID, "name": "iPhone 16", "runtime": RUNTIME, "state": state, "deviceType": "iPhone17,3"}
        )
    )
    simulator = Simulator(
        name="iPhone 16",
        udid=UDID,
        state="Booted" if state == 3 else "Shutdown",
        runtime=RUNTIME,
        device_type="iPhone17,3",
    )
    return SimulatorDevice(simulator, devices)


def apps_plist(*bundle_ids):
    return plistlib.dumps(
        {
            bundle: {"CFBundleIdentifier": bundle, "CFBundleDisplayName": f"{bundle} app", "CFBundleVersion": "1"}
            for bundle in bundle_ids
        }
    )


def test_device_info_reflects_simulator(tmp_path):
    device = make_device(tmp_path, state=3)
    info = device.to_device_info()
    assert info.id == UDID
    assert info.platform == "ios"
    assert info.type == "simulator"
    assert info.version == "18.6"
    assert info.state == "online"
    assert info.model == "iPhone17,3"


def test_shutdown_simulator_reports_offline(tmp_path):
    assert make_device(tmp_path, state=1).state == "offline"


def test_boot_already_running(tmp_path, fake_run):
    fake = fake_run()
    device = make_device(tmp_path, state=3)
    with pytest.raises(DeviceError, match="simulator is already running"):
        device.boot()
    assert fake.calls == []


def test_boot_runs_boot_and_bootstatus(tmp_path, fake_run):
    fake = fake_run()
    device = make_device(tmp_path, state=1)
    device.boot()
    assert fake.calls == [["xcrun", "simctl", "boot", UDID], ["xcrun", "simctl", "bootstatus", UDID]]
    assert device.state == "online"


def test_boot_failure_raises(tmp_path, fake_run):
    fake_run({"boot": (1, b"boom")})
    with pytest.raises(DeviceError, match="failed to boot simulator"):
        make_device(tmp_path, state=1).boot()


def test_shutdown_already_offline(tmp_path, fake_run):
    fake_run()
    with pytest.raises(DeviceError, match="simulator is already offline"):
        make_device(tmp_path, state=1).shutdown()


def test_shutdown_booted(tmp_path, fake_run):
    fake = fake_run()
    device = make_device(tmp_path, state=3)
    device.shutdown()
    assert fake.calls == [["xcrun", "simctl", "shutdown", UDID]]
    assert device.state == "offline"


def test_unknown_simulator_not_found(tmp_path, fake_run):
    fake_run()
    device = make_device(tmp_path)
    device.simulator.udid = "missing"
    with pytest.raises(DeviceError, match="not found"):
        device.boot()


def test_reboot_ignores_shutdown_failure(tmp_path, fake_run):
    fake = fake_run({"shutdown": (1, b"")})
    result = make_device(tmp_path, state=3).reboot()
    assert result is None
    assert fake.calls == [
        ["xcrun", "simctl", "shutdown", UDID],
        ["xcrun", "simctl", "boot", UDID],
    ]


def test_reboot_boot_failure(tmp_path, fake_run):
    fake_run({"boot": (1, b"")})
    with pytest.raises(DeviceError):
        make_device(tmp_path, state=3).reboot()


def test_launch_app_with_env_prefixes_variables(tmp_path, fake_run):
    fake = fake_run()
    make_device(tmp_path).launch_app_with_env(WDA, {"USE_PORT": "13001"})
    assert fake.calls == [["xcrun", "simctl", "launch", UDID, WDA]]
    assert fake.envs[0]["SIMCTL_CHILD_USE_PORT"] == "13001"


def test_launch_app_failure_propagates(tmp_path, fake_run):
    fake_run({"launch": (1, b"")})
    with pytest.raises(SimctlError):
        make_device(tmp_path).launch_app("com.example.app")


def test_list_apps(tmp_path, fake_run):
    fake_run({"listapps": (0, apps_plist("com.example.one", "com.example.two"))})
    apps = make_device(tmp_path).list_apps()
    assert sorted(app.package_name for app in apps) == ["com.example.one", "com.example.two"]
    assert all(app.app_name == f"{app.package_name} app" for app in apps)


def test_webdriver_agent_installed(tmp_path, fake_run):
    fake_run({"listapps": (0, apps_plist(WDA))})
    assert make_device(tmp_path).is_webdriver_agent_installed() is True


def test_webdriver_agent_missing(tmp_path, fake_run):
    fake_run({"listapps": (0, apps_plist("com.example.one"))})
    assert make_device(tmp_path).is_webdriver_agent_installed() is False


def test_wait_until_app_exists(tmp_path, fake_run):
    fake = fake_run({"listapps": (0, apps_plist("com.example.one"))})
    result = make_device(tmp_path).wait_until_app_exists("com.example.one", timeout=0)
    assert result is None
    assert fake.calls == [["xcrun", "simctl", "listapps", UDID]]


def test_wait_until_app_exists_times_out(tmp_path, fake_run):
    fake_run({"listapps": (0, apps_plist())})
    with pytest.raises(DeviceError, match="not found after"):
        make_device(tmp_path).wait_until_app_exists("com.example.one", timeout=0)


def test_uninstall_missing_package(tmp_path, fake_run):
    fake_run({"listapps": (0, apps_plist())})
    with pytest.raises(DeviceError, match="is not installed"):
        make_device(tmp_path).uninstall_app("com.example.one")


def test_uninstall_installed_package(tmp_path, fake_run):
    fake = fake_run({"listapps": (0, apps_plist("com.example.one"))})
    result = make_device(tmp_path).uninstall_app("com.example.one")
    assert result == InstalledAppInfo(package_name="com.example.one")
    assert fake.calls[-1] == ["xcrun", "simctl", "uninstall", UDID, "com.example.one"]


def test_install_app_directory(tmp_path, fake_run):
    fake = fake_run()
    app_dir = tmp_path / "Demo.app"
    app_dir.mkdir()
    make_device(tmp_path).install_app(app_dir)
    assert fake.calls == [["xcrun", "simctl", "install", UDID, str(app_dir)]]


def test_install_app_from_zip(tmp_path, fake_run):
    fake = fake_run()
    archive = tmp_path / "bundle.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("Demo.app/Info.plist", b"x")
    result = make_device(tmp_path).install_app(archive)
    assert result is None
    assert len(fake.calls) == 1
    assert fake.calls[0][:4] == ["xcrun", "simctl", "install", UDID]
    installed = Path(fake.calls[0][4])
    assert installed.name == "Demo.app"
    # the unpacked archive is removed once the install has run
    assert not installed.exists()


def test_install_app_zip_without_bundle(tmp_path, fake_run):
    fake = fake_run()
    archive = tmp_path / "bundle.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("readme.txt", b"x")
    with pytest.raises(DeviceError, match="no .app bundle found in zip file"):
        make_device(tmp_path).install_app(archive)
    assert fake.calls == []


def test_install_app_missing_path(tmp_path, fake_run):
    fake_run()
    with pytest.raises(DeviceError, match="failed to stat path"):
        make_device(tmp_path).install_app(tmp_path / "nope.app")


def ps_output(env):
    line = (
        f"4242 /Users/someone/Library/Developer/CoreSimulator/Devices/{UDID}/data/"
        f"WebDriverAgentRunner-Runner.app/WebDriverAgentRunner-Runner {env}"
    )
    return (line + "\n").encode()


def test_wda_ports_from_process_environment(tmp_path, fake_run):
    fake_run({"/bin/ps": (0, ps_output("USE_PORT=13001 MJPEG_SERVER_PORT=13201"))})
    device = make_device(tmp_path)
    assert device.wda_port() == 13001
    assert device.wda_mjpeg_port() == 13201


def test_wda_port_invalid_value(tmp_path, fake_run):
    fake_run({"/bin/ps": (0, ps_output("USE_PORT=abc"))})
    with pytest.raises(DeviceError, match="invalid USE_PORT value: abc"):
        make_device(tmp_path).wda_port()


def test_wda_port_missing_variable(tmp_path, fake_run):
    fake_run({"/bin/ps": (0, ps_output("OTHER=1"))})
    with pytest.raises(DeviceError, match="USE_PORT not found"):
        make_device(tmp_path).wda_port()


def test_wda_port_without_process(tmp_path, fake_run):
    fake_run({"/bin/ps": (0, b"1 /sbin/launchd\n")})
    with pytest.raises(SimctlError, match="WebDriverAgent process not found"):
        make_device(tmp_path).wda_port()