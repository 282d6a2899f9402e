"""Devices reached through a remote JSON-RPC service."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import time
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, NoReturn, Optional, Union

from mobilectl.models import (
    DeviceError,
    DeviceInfo,
    ForegroundAppInfo,
    FullDeviceInfo,
    InstalledAppInfo,
    ScreenCaptureConfig,
    ScreenElement,
    StartAgentConfig,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
RpcCaller = Callable[[str, str, Mapping[str, Any]], Any]

UPLOAD_HOST = "mobilenexthq-artifacts.s3.us-west-2.amazonaws.com"
UPLOAD_TIMEOUT = 5 * 60

_UNSAFE_FILENAME_CHARS = re.compile(r"[^0-9a-zA-Z_.]")


class UploadError(DeviceError):
    """Raised when an app file cannot be uploaded."""


def sanitize_filename(name: str) -> str:
    """Replace every character other than letters, digits, '_' and '.' with '_'."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def validate_upload_url(upload_url: str) -> urllib.parse.ParseResult:
    """Check that the URL points at the artifact store over https."""
    try:
        parsed = urllib.parse.urlparse(upload_url)
    except ValueError as exc:
        raise UploadError(f"invalid upload URL: {exc}") from exc
    if parsed.scheme != "https" or parsed.netloc != UPLOAD_HOST:
        raise UploadError(
            f"upload URL must be https://{UPLOAD_HOST}/..., got: {upload_url}"
        )
    return parsed


def upload_file_to_url(file_path: PathLike, upload_url: str) -> None:
    """PUT the file's contents to a validated upload URL."""
    parsed = validate_upload_url(upload_url)
    try:
        handle = open(file_path, "rb")
    except OSError as exc:
        raise UploadError(f"failed to open file: {exc}") from exc

    with handle:
        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError as exc:
            raise UploadError(f"failed to stat file: {exc}") from exc

        size_mb = size / (1024 * 1024)
        logger.debug("upload started, file size: %.2f MB", size_mb)
        start = time.monotonic()

        request = urllib.request.Request(
            parsed.geturl(),
            data=handle,
            method="PUT",
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(size),
            },
        )
        try:
            with urllib.request.urlopen(request, timeout=UPLOAD_TIMEOUT) as response:
                status = response.status
        except urllib.error.HTTPError as exc:
            raise UploadError(f"upload failed with status {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise UploadError(f"failed to upload file: {exc}") from exc

    if not 200 <= status < 300:
        raise UploadError(f"upload failed with status {status}")

    elapsed = max(time.monotonic() - start, 1e-9)
    logger.debug(
        "upload completed in %.1f seconds, speed: %.3f MB/sec", elapsed, size_mb / elapsed
    )


def _as_mapping(result: Any) -> Mapping[str, Any]:
    if result is None:
        return {}
    if not isinstance(result, Mapping):
        raise DeviceError(f"unexpected RPC result: {result!r}")
    return result


def _action_payload(action: Any) -> Any:
    to_dict = getattr(action, "to_dict", None)
    return to_dict() if callable(to_dict) else action


def _unsupported(operation: str) -> NoReturn:
    raise DeviceError(f"{operation} is not supported on remote devices")


class RemoteDevice:
    """A device controlled through remote procedure calls made with a token."""

    def __init__(self, info: DeviceInfo, token: str, caller: RpcCaller):
        self.id = info.id
        self.name = info.name
        self.platform = info.platform
        self.type = info.type or "remote"
        self.version = info.version
        self.state = info.state
        self.model = info.model
        self._token = token
        self._caller = caller

    def _call(self, method: str, params: Mapping[str, Any]) -> Any:
        return self._caller(self._token, method, dict(params))

    def _device_call(self, method: str, **extra: Any) -> Any:
        return self._call(method, {"deviceId": self.id, **extra})

    def start_agent(self, config: Optional[StartAgentConfig] = None) -> None:
        """Remote devices run their own agent, so starting one succeeds at once."""
        logger.debug("remote device %s manages its own agent", self.id)
        return None

    def take_screenshot(self) -> bytes:
        data = str(_as_mapping(self._device_call("device.screenshot")).get("data") or "")
        if data.startswith("data:"):
            comma = data.find(",")
            if comma != -1:
                data = data[comma + 1:]
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DeviceError(f"invalid screenshot data: {exc}") from exc

    def tap(self, x: int, y: int) -> None:
        self._device_call("device.io.tap", x=x, y=y)

    def long_press(self, x: int, y: int, duration: int) -> None:
        self._device_call("device.io.longpress", x=x, y=y, duration=duration)

    def swipe(self, x1: int, y1: int, x2: int, y2: int) -> None:
        self._device_call("device.io.swipe", x1=x1, y1=y1, x2=x2, y2=y2)

    def gesture(self, actions: Iterable[Any]) -> None:
        self._device_call("device.io.gesture", actions=[_action_payload(a) for a in actions])

    def send_keys(self, text: str) -> None:
        self._device_call("device.io.text", text=text)

    def press_button(self, key: str) -> None:
        self._device_call("device.io.button", button=key)

    def open_url(self, url: str) -> None:
        self._device_call("device.url", url=url)

    def launch_app(self, bundle_id: str) -> None:
        self._device_call("device.apps.launch", bundleId=bundle_id)

    def terminate_app(self, bundle_id: str) -> None:
        self._device_call("device.apps.terminate", bundleId=bundle_id)

    def boot(self) -> None:
        self._device_call("device.boot")

    def shutdown(self) -> None:
        self._device_call("device.shutdown")

    def reboot(self) -> None:
        self._device_call("device.reboot")

    def get_orientation(self) -> str:
        result = _as_mapping(self._device_call("device.io.orientation.get"))
        return str(result.get("orientation") or "")

    def set_orientation(self, orientation: str) -> None:
        self._device_call("device.io.orientation.set", orientation=orientation)

    def info(self) -> Optional[FullDeviceInfo]:
        result = self._device_call("device.info")
        if result is None:
            return None
        return FullDeviceInfo.from_dict(_as_mapping(result))

    def list_apps(self) -> list[InstalledAppInfo]:
        result = self._device_call("device.apps.list")
        if result is None:
            return []
        if not isinstance(result, list):
            raise DeviceError(f"unexpected RPC result: {result!r}")
        return [InstalledAppInfo.from_dict(_as_mapping(app)) for app in result]

    def get_foreground_app(self) -> Optional[ForegroundAppInfo]:
        result = self._device_call("device.apps.foreground")
        if result is None:
            return None
        return ForegroundAppInfo.from_dict(_as_mapping(result))

    def dump_source(self) -> list[ScreenElement]:
        elements = _as_mapping(self._device_call("device.dump.ui")).get("elements") or []
        return [ScreenElement.from_dict(_as_mapping(item)) for item in elements]

    def dump_source_raw(self) -> Any:
        return _as_mapping(self._device_call("device.dump.ui", format="raw")).get("rawData")

    def install_app(self, path: PathLike) -> None:
        """Upload the app file, then ask the device to install the upload."""
        try:
            size = os.stat(path).st_size
        except OSError as exc:
            raise DeviceError(f"failed to stat file: {exc}") from exc

        filename = sanitize_filename(Path(path).name)
        try:
            result = self._call("uploads.create", {"filename": filename, "filesize": size})
        except DeviceError as exc:
            raise DeviceError(f"failed to request upload url: {exc}") from exc
        upload = _as_mapping(result)

        upload_file_to_url(path, str(upload.get("uploadUrl") or ""))
        self._device_call("device.apps.install", uploadId=str(upload.get("uploadId") or ""))

    def uninstall_app(self, package_name: str) -> InstalledAppInfo:
        """Always fails: remote devices cannot uninstall apps."""
        _unsupported("uninstall app")

    def start_screen_capture(self, config: ScreenCaptureConfig) -> None:
        """Always fails: remote devices cannot stream their screen."""
        _unsupported("screen capture")