"""Discovery of Android virtual devices from their configuration files."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Container, Optional, Union

from mobilectl.models import DeviceInfo

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

API_LEVEL_TO_VERSION = {
    "36": "16.0",
    "35": "15.0",
    "34": "14.0",
    "33": "13.0",
    "32": "12.1",
    "31": "12.0",
    "30": "11.0",
    "29": "10.0",
    "28": "9.0",
    "27": "8.1",
    "26": "8.0",
    "25": "7.1",
    "24": "7.0",
    "23": "6.0",
    "22": "5.1",
    "21": "5.0",
}


@dataclass
class AVDInfo:
    """What an AVD's configuration says about it."""

    name: str
    device: str
    api_level: str
    avd_id: str


@dataclass
class AndroidEmulator:
    """An Android emulator known from its AVD configuration."""

    id: str
    name: str
    version: str
    state: str = "offline"
    platform: str = "android"
    type: str = "emulator"

    def to_device_info(self) -> DeviceInfo:
        return DeviceInfo(
            id=self.id,
            name=self.name,
            platform=self.platform,
            type=self.type,
            version=self.version,
            state=self.state,
        )


def convert_api_level_to_version(api_level: str) -> str:
    """Map an API level to its Android version, or return it unchanged."""
    return API_LEVEL_TO_VERSION.get(api_level, api_level)


def read_ini(path: PathLike) -> dict[str, str]:
    """Return the keys of an ini file that precede any section header."""
    values: dict[str, str] = {}
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line[0] in "#;":
            continue
        if line.startswith("["):
            break
        separators = [i for i in (line.find("="), line.find(":")) if i >= 0]
        if not separators:
            raise ValueError(f"{path}: line {number}: key-value delimiter not found")
        index = min(separators)
        key = line[:index].strip()
        value = line[index + 1:].strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key] = value
    return values


def _default_avd_dir() -> Path:
    return Path.home() / ".android" / "avd"


def get_avd_details(avd_dir: Optional[PathLike] = None) -> dict[str, AVDInfo]:
    """Read every AVD described in the directory, keyed by AVD name."""
    directory = Path(avd_dir) if avd_dir is not None else _default_avd_dir()
    details: dict[str, AVDInfo] = {}

    for ini_file in sorted(directory.glob("*.ini")):
        avd_name = ini_file.name[: -len(".ini")]
        try:
            top = read_ini(ini_file)
        except (OSError, ValueError) as exc:
            logger.debug("Failed to read %s: %s", ini_file, exc)
            continue

        avd_path = top.get("path", "")
        if not avd_path:
            continue

        config_path = Path(avd_path) / "config.ini"
        try:
            config = read_ini(config_path)
        except (OSError, ValueError) as exc:
            logger.debug("Failed to read %s: %s", config_path, exc)
            continue

        display_name = config.get("avd.ini.displayname", "")
        if not display_name:
            continue

        details[avd_name] = AVDInfo(
            name=display_name,
            device=display_name,
            api_level=config.get("target", "").removeprefix("android-"),
            avd_id=config.get("AvdId", ""),
        )

    return details


def get_offline_android_emulators(
    online_ids: Container[str], avd_dir: Optional[PathLike] = None
) -> list[AndroidEmulator]:
    """Return the AVDs whose id is not among the running devices."""
    emulators = []
    for avd_name, info in get_avd_details(avd_dir).items():
        if info.avd_id in online_ids:
            continue

        display_name = avd_name.replace("_", " ")
        if info.device:
            display_name = info.device
            paren = display_name.find("(")
            if paren > 0:
                display_name = display_name[:paren].strip()
            display_name = display_name.replace("_", " ")

        emulators.append(
            AndroidEmulator(
                id=avd_name,
                name=display_name,
                version=convert_api_level_to_version(info.api_level),
            )
        )
    return emulators