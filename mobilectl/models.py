"""Device descriptions, option records and the filtering rules for device lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

DEFAULT_QUALITY = 80
DEFAULT_SCALE = 1.0
DEFAULT_FRAMERATE = 30


class DeviceError(Exception):
    """Raised when a device operation fails."""


@dataclass
class ScreenElementRect:
    """Position and size of an element on screen."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def center(self) -> tuple[int, int]:
        """Return the integer centre point of the rectangle."""
        return self.x + int(self.width / 2), self.y + int(self.height / 2)


_ELEMENT_TEXT_FIELDS = ("text", "label", "name", "value")


@dataclass
class ScreenElement:
    """A single element of a device's UI hierarchy."""

    type: str = ""
    rect: ScreenElementRect = field(default_factory=ScreenElementRect)
    text: Optional[str] = None
    label: Optional[str] = None
    name: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScreenElement":
        rect = data.get("rect") or {}
        return cls(
            type=data.get("type", ""),
            rect=ScreenElementRect(
                x=int(rect.get("x", 0)),
                y=int(rect.get("y", 0)),
                width=int(rect.get("width", 0)),
                height=int(rect.get("height", 0)),
            ),
            **{key: data.get(key) for key in _ELEMENT_TEXT_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        for key in _ELEMENT_TEXT_FIELDS:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result["rect"] = {
            "x": self.rect.x,
            "y": self.rect.y,
            "width": self.rect.width,
            "height": self.rect.height,
        }
        return result


@dataclass
class ScreenCaptureConfig:
    """Settings for a screen capture session."""

    format: str = "mjpeg"
    quality: int = DEFAULT_QUALITY
    scale: float = DEFAULT_SCALE
    fps: int = 0
    on_progress: Optional[Callable[[str], None]] = None
    on_data: Optional[Callable[[bytes], bool]] = None


@dataclass
class StartAgentConfig:
    """Settings for starting an on-device agent."""

    on_progress: Optional[Callable[[str], None]] = None
    hook: Any = None


@dataclass
class DeviceListOptions:
    """Controls which devices a listing returns."""

    include_offline: bool = False
    platform: str = ""
    device_type: str = ""


@dataclass
class DeviceInfo:
    """JSON-friendly description of a device."""

    id: str = ""
    name: str = ""
    platform: str = ""
    type: str = ""
    version: str = ""
    state: str = ""
    model: str = ""
    provider: str = ""

    @classmethod
    def _fields_from(cls, data: Mapping[str, Any]) -> dict[str, str]:
        return {
            key: str(data.get(key) or "")
            for key in ("id", "name", "platform", "type", "version", "state", "model", "provider")
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeviceInfo":
        return cls(**cls._fields_from(data))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "platform": self.platform,
            "type": self.type,
            "version": self.version,
            "state": self.state,
            "model": self.model,
        }
        if self.provider:
            result["provider"] = self.provider
        return result


@dataclass
class ScreenSize:
    """Screen dimensions in points and the pixel scale."""

    width: int = 0
    height: int = 0
    scale: int = 0


@dataclass
class FullDeviceInfo(DeviceInfo):
    """Device description together with its screen size."""

    screen_size: Optional[ScreenSize] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FullDeviceInfo":
        size = data.get("screenSize")
        screen_size = None
        if size is not None:
            screen_size = ScreenSize(
                width=int(size.get("width", 0)),
                height=int(size.get("height", 0)),
                scale=int(size.get("scale", 0)),
            )
        return cls(**cls._fields_from(data), screen_size=screen_size)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["screenSize"] = (
            None
            if self.screen_size is None
            else {
                "width": self.screen_size.width,
                "height": self.screen_size.height,
                "scale": self.screen_size.scale,
            }
        )
        return result


@dataclass
class InstalledAppInfo:
    """An application installed on a device."""

    package_name: str
    app_name: str = ""
    version: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InstalledAppInfo":
        return cls(
            package_name=data.get("packageName", ""),
            app_name=data.get("appName", "") or "",
            version=data.get("version", "") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"packageName": self.package_name}
        if self.app_name:
            result["appName"] = self.app_name
        if self.version:
            result["version"] = self.version
        return result


@dataclass
class ForegroundAppInfo:
    """The application currently in the foreground."""

    package_name: str
    app_name: str = ""
    version: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForegroundAppInfo":
        return cls(
            package_name=data.get("packageName", ""),
            app_name=data.get("appName", "") or "",
            version=data.get("version", "") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "packageName": self.package_name,
            "appName": self.app_name,
            "version": self.version,
        }


def filter_device_infos(
    devices: Iterable[DeviceInfo], options: DeviceListOptions
) -> list[DeviceInfo]:
    """Keep the devices that match the listing options, in their original order."""
    result = []
    for device in devices:
        if not options.include_offline and device.state == "offline":
            continue
        if options.platform and device.platform != options.platform:
            continue
        if options.device_type and device.type != options.device_type:
            continue
        result.append(device)
    return result