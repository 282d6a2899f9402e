"""Gathering every known device into one list."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional, Union

from mobilectl.avd import AndroidEmulator, get_offline_android_emulators
from mobilectl.models import DeviceInfo, DeviceListOptions, filter_device_infos
from mobilectl.simctl import SimctlError, filter_simulators_by_downloads_directory, get_simulators
from mobilectl.simulator import SimulatorDevice

logger = logging.getLogger(__name__)

Device = Union[AndroidEmulator, SimulatorDevice]


def get_all_controllable_devices(
    include_offline: bool = False, online_ids: Iterable[str] = ()
) -> list[Device]:
    """Collect offline emulators (when asked) and simulators booted at least once."""
    devices: list[Device] = []

    if include_offline:
        try:
            devices.extend(get_offline_android_emulators(set(online_ids)))
        except OSError as exc:
            logger.debug("Warning: Failed to get offline Android emulators: %s", exc)

    try:
        simulators = get_simulators()
    except SimctlError as exc:
        logger.debug("Warning: Failed to get iOS simulators: %s", exc)
    else:
        devices.extend(
            SimulatorDevice(simulator)
            for simulator in filter_simulators_by_downloads_directory(simulators)
        )

    return devices


def get_device_info_list(options: Optional[DeviceListOptions] = None) -> list[DeviceInfo]:
    """Describe the known devices that match the listing options."""
    options = options or DeviceListOptions()
    start = time.monotonic()
    devices = get_all_controllable_devices(options.include_offline)
    infos = filter_device_infos((device.to_device_info() for device in devices), options)
    logger.debug("GetDeviceInfoList took %.3fs", time.monotonic() - start)
    return infos