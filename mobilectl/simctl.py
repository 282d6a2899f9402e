"""Helpers around `xcrun simctl`, simulator metadata on disk and running processes."""

from __future__ import annotations

import base64
import os
import plistlib
import re
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union
from xml.parsers.expat import ExpatError

PathLike = Union[str, Path]

WDA_RELEASE_URL = "https://github.com/appium/WebDriverAgent/releases/download/v10.2.5/"

_RUNTIME_VERSION = re.compile(r"iOS-(\d+)-(\d+)")


class SimctlError(Exception):
    """Raised when a simctl or process-listing command fails."""

    def __init__(self, message: str, output: bytes = b""):
        super().__init__(message)
        self.output = output


@dataclass
class Simulator:
    """An iOS simulator as described by its device.plist."""

    name: str
    udid: str
    state: str
    runtime: str
    device_type: str


@dataclass
class ProcessInfo:
    """A running process and its command line, environment included."""

    pid: int
    command: str


def parse_simulator_version(runtime: str) -> str:
    """Turn a runtime identifier such as '...SimRuntime.iOS-18-6' into '18.6'."""
    match = _RUNTIME_VERSION.search(runtime)
    if match:
        return f"{match.group(1)}.{match.group(2)}"
    return runtime


def run_simctl(*args: str, env: Optional[Mapping[str, str]] = None) -> bytes:
    """Run `xcrun simctl` with the arguments and return its combined output."""
    command = ["xcrun", "simctl", *args]
    environment = None if env is None else {**os.environ, **env}
    try:
        completed = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=environment,
            check=False,
        )
    except OSError as exc:
        raise SimctlError(f"failed to execute xcrun simctl command: {exc}") from exc
    if completed.returncode != 0:
        raise SimctlError(
            f"failed to execute xcrun simctl command: exit status {completed.returncode}",
            output=completed.stdout or b"",
        )
    return completed.stdout or b""


class _OpenStepParser:
    """Parser for the old-style ASCII property list format printed by simctl."""

    _BARE = re.compile(r"[A-Za-z0-9_$+/:.\-]+")

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def parse(self) -> Any:
        value = self._value()
        self._skip()
        if self.pos != len(self.text):
            raise ValueError(f"unexpected content at offset {self.pos}")
        return value

    def _skip(self) -> None:
        text = self.text
        while self.pos < len(text):
            if text[self.pos].isspace():
                self.pos += 1
            elif text.startswith("//", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end < 0 else end + 1
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end < 0:
                    raise ValueError("unterminated comment")
                self.pos = end + 2
            else:
                break

    def _peek(self) -> str:
        self._skip()
        if self.pos >= len(self.text):
            raise ValueError("unexpected end of property list")
        return self.text[self.pos]

    def _expect(self, char: str) -> None:
        if self._peek() != char:
            raise ValueError(f"expected {char!r} at offset {self.pos}")
        self.pos += 1

    def _value(self) -> Any:
        char = self._peek()
        if char == "{":
            return self._dict()
        if char == "(":
            return self._array()
        if char in "\"'":
            return self._quoted()
        if char == "<":
            return self._data()
        match = self._BARE.match(self.text, self.pos)
        if not match:
            raise ValueError(f"unexpected character {char!r} at offset {self.pos}")
        self.pos = match.end()
        return match.group()

    def _dict(self) -> dict[str, Any]:
        self.pos += 1
        result: dict[str, Any] = {}
        while self._peek() != "}":
            key = self._value()
            if not isinstance(key, str):
                raise ValueError("dictionary keys must be strings")
            self._expect("=")
            result[key] = self._value()
            if self._peek() == ";":
                self.pos += 1
            elif self._peek() != "}":
                raise ValueError(f"expected ';' at offset {self.pos}")
        self.pos += 1
        return result

    def _array(self) -> list[Any]:
        self.pos += 1
        result: list[Any] = []
        while self._peek() != ")":
            result.append(self._value())
            if self._peek() == ",":
                self.pos += 1
            elif self._peek() != ")":
                raise ValueError(f"expected ',' at offset {self.pos}")
        self.pos += 1
        return result

    def _quoted(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        parts: list[str] = []
        escapes = {"n": "\n", "t": "\t", "r": "\r", "a": "\a", "b": "\b", "f": "\f", "v": "\v"}
        text = self.text
        while True:
            if self.pos >= len(text):
                raise ValueError("unterminated string")
            char = text[self.pos]
            self.pos += 1
            if char == quote:
                return "".join(parts)
            if char != "\\":
                parts.append(char)
                continue
            if self.pos >= len(text):
                raise ValueError("unterminated escape")
            esc = text[self.pos]
            self.pos += 1
            if esc in escapes:
                parts.append(escapes[esc])
            elif esc == "U":
                digits = text[self.pos:self.pos + 4]
                parts.append(chr(int(digits, 16)))
                self.pos += 4
            elif esc in "01234567":
                end = self.pos
                while end < len(text) and end - self.pos < 2 and text[end] in "01234567":
                    end += 1
                parts.append(chr(int(esc + text[self.pos:end], 8)))
                self.pos = end
            else:
                parts.append(esc)

    def _data(self) -> bytes:
        end = self.text.find(">", self.pos)
        if end < 0:
            raise ValueError("unterminated data block")
        hex_digits = "".join(self.text[self.pos + 1:end].split())
        self.pos = end + 1
        return bytes.fromhex(hex_digits)


def _load_plist(data: Union[bytes, str]) -> Any:
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    try:
        return plistlib.loads(raw)
    except (plistlib.InvalidFileException, ValueError, ExpatError):
        pass
    return _OpenStepParser(raw.decode("utf-8", errors="replace")).parse()


def _json_ready(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _json_ready(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_ready(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def convert_plist_to_json(data: Union[bytes, str]) -> Any:
    """Parse an XML, binary or ASCII property list into JSON-compatible values."""
    return _json_ready(_load_plist(data))


def parse_device_plist(data: Union[bytes, str]) -> Simulator:
    """Build a Simulator from the contents of a device.plist file."""
    content = _load_plist(data)
    if not isinstance(content, dict):
        raise ValueError("device.plist does not hold a dictionary")
    try:
        state = int(content.get("state", 0))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid state in device.plist: {content.get('state')!r}") from exc
    return Simulator(
        name=str(content.get("name", "")),
        udid=str(content.get("UDID", "")),
        state="Booted" if state == 3 else "Shutdown",
        runtime=str(content.get("runtime", "")),
        device_type=str(content.get("deviceType", "")),
    )


def _default_devices_path() -> Path:
    return Path.home() / "Library" / "Developer" / "CoreSimulator" / "Devices"


def get_simulators(devices_path: Optional[PathLike] = None) -> list[Simulator]:
    """Read every simulator found under the CoreSimulator devices directory."""
    if devices_path is None:
        if sys.platform != "darwin":
            return []
        devices_path = _default_devices_path()

    directory = Path(devices_path)
    try:
        entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    except OSError as exc:
        raise SimctlError(f"failed to read devices directory: {exc}") from exc

    simulators = []
    for entry in entries:
        if not entry.is_dir():
            continue
        try:
            data = (entry / "device.plist").read_bytes()
            simulators.append(parse_device_plist(data))
        except (OSError, ValueError):
            continue
    return simulators


def filter_simulators_by_downloads_directory(
    simulators: Iterable[Simulator], devices_path: Optional[PathLike] = None
) -> list[Simulator]:
    """Keep the simulators that have been booted at least once."""
    directory = Path(devices_path) if devices_path is not None else _default_devices_path()
    return [
        simulator
        for simulator in simulators
        if (directory / simulator.udid / "data" / "Downloads").exists()
    ]


def install_app(udid: str, app_path: str) -> None:
    """Install an app bundle on the simulator."""
    try:
        run_simctl("install", udid, str(app_path))
    except SimctlError as exc:
        output = exc.output.decode("utf-8", errors="replace")
        raise SimctlError(f"failed to install app from {app_path}: {exc}\n{output}", exc.output) from exc


def uninstall_app(udid: str, bundle_id: str) -> None:
    """Remove an app from the simulator."""
    try:
        run_simctl("uninstall", udid, bundle_id)
    except SimctlError as exc:
        output = exc.output.decode("utf-8", errors="replace")
        raise SimctlError(f"failed to uninstall app {bundle_id}: {exc}\n{output}", exc.output) from exc


def get_webdriver_agent_filename(arch: str) -> str:
    """Name of the prebuilt agent archive for the host architecture."""
    if arch == "amd64":
        return "WebDriverAgentRunner-Build-Sim-x86_64.zip"
    return "WebDriverAgentRunner-Build-Sim-arm64.zip"


def get_webdriver_agent_download_url(arch: str) -> str:
    """Download location of the prebuilt agent archive."""
    return WDA_RELEASE_URL + get_webdriver_agent_filename(arch)


def parse_process_list(output: str) -> list[ProcessInfo]:
    """Parse `ps -o pid,command` output into process records."""
    processes = []
    for line in output.split("\n"):
        if not line:
            continue
        space = line.find(" ")
        if space == -1:
            continue
        try:
            pid = int(line[:space].strip())
        except ValueError:
            continue
        processes.append(ProcessInfo(pid=pid, command=line[space + 1:]))
    return processes


def list_all_processes() -> list[ProcessInfo]:
    """List every running process with its command line and environment."""
    try:
        completed = subprocess.run(
            ["/bin/ps", "-o", "pid,command", "-E", "-ww", "-e"],
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        raise SimctlError(f"failed to run ps command: {exc}") from exc
    if completed.returncode != 0:
        raise SimctlError(f"failed to run ps command: exit status {completed.returncode}")
    return parse_process_list(completed.stdout.decode("utf-8", errors="replace"))


def find_wda_process_for_device(
    udid: str, processes: Optional[Iterable[ProcessInfo]] = None
) -> ProcessInfo:
    """Find the agent process running inside the given simulator."""
    if processes is None:
        processes = list_all_processes()
    device_path = f"/Library/Developer/CoreSimulator/Devices/{udid}"
    for process in processes:
        if device_path in process.command and "WebDriverAgentRunner-Runner" in process.command:
            return process
    raise SimctlError(f"WebDriverAgent process not found for device {udid}")


def extract_env_value(output: str, env_var: str) -> str:
    """Return the value of an environment variable from a ps command line."""
    pattern = f" {env_var}="
    pos = output.find(pattern)
    if pos == -1:
        if output.startswith(f"{env_var}="):
            pos = 0
        else:
            raise KeyError(f"{env_var} not found in environment")
    else:
        pos += 1

    value_start = pos + len(env_var) + 1
    value_end = output.find(" ", value_start)
    if value_end == -1:
        value_end = len(output)
    return output[value_start:value_end]