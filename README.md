# mobilectl

A library for finding and managing mobile devices used in testing:

- **iOS simulators**: read from the CoreSimulator devices directory and driven through `xcrun simctl`
- **offline Android emulators**: read from the AVD `.ini` files under `~/.android/avd`
- **remote devices**: reached through an RPC caller function that you supply

The package uses only the Python standard library. Simulator control also needs macOS with the Xcode command-line tools.

## Listing devices

```python
from mobilectl.listing import get_device_info_list
from mobilectl.models import DeviceListOptions

for info in get_device_info_list(DeviceListOptions(include_offline=True, platform="ios")):
    print(info.to_dict())
```

`get_device_info_list` gathers devices with `get_all_controllable_devices` and filters them with `filter_device_infos`. The list holds:

- offline Android emulators, but only when `include_offline` is set
- iOS simulators that have been booted at least once, which are the ones that have a `data/Downloads` directory

On platforms other than macOS, `get_simulators()` returns an empty list. You can pass a `devices_path` to read a different directory.

`DeviceListOptions` has three fields:

- `include_offline`: keep devices whose state is `"offline"`
- `platform`: keep only this platform, for example `"ios"` or `"android"`
- `device_type`: keep only this type, for example `"simulator"` or `"emulator"`

## Android virtual devices

```python
from mobilectl.avd import get_avd_details, get_offline_android_emulators

details = get_avd_details()                        # {avd_name: AVDInfo}
emulators = get_offline_android_emulators({"Pixel_6_API_34"})
```

An emulator counts as online when its `AvdId` is among the ids you pass in. Online emulators are left out of the result. The other emulators come back as `AndroidEmulator` entries with `state="offline"`. Their version is mapped from the API level by `convert_api_level_to_version`, so API level 34 becomes `"14.0"`.

## Controlling a simulator

```python
from mobilectl.simctl import get_simulators
from mobilectl.simulator import SimulatorDevice

sim = SimulatorDevice(get_simulators()[0])
sim.boot()
sim.launch_app("com.apple.Preferences")
print(sim.list_apps())
sim.shutdown()
```

`SimulatorDevice` provides these methods:

- `reboot`, `boot` and `shutdown`
- `launch_app` and `launch_app_with_env`, which passes the variables to the app as `SIMCTL_CHILD_*`
- `terminate_app` and `open_url`
- `list_installed_apps`, `list_apps` and `wait_until_app_exists`
- `install_app`, which accepts an `.app` directory or a `.zip` that contains one
- `uninstall_app`
- `is_webdriver_agent_installed`
- `wda_port` and `wda_mjpeg_port`, which read the ports of a running agent process from its environment

Errors are reported as follows:

- A failed `simctl` command raises `SimctlError`. The command's output is kept in `.output`.
- An invalid state change raises `DeviceError`, for example booting a simulator that is already running.

`mobilectl.simctl` also contains the lower-level helpers:

- `run_simctl`
- `convert_plist_to_json`, which accepts XML, binary or ASCII plists
- `parse_device_plist`
- `parse_process_list` and `extract_env_value`

## Remote devices

```python
from mobilectl.models import DeviceInfo
from mobilectl.remote import RemoteDevice

def caller(token, method, params):
    ...  # send the JSON-RPC request and return its result

device = RemoteDevice(DeviceInfo(id="device-1", name="Phone", platform="ios"), "token", caller)
device.tap(100, 200)
png = device.take_screenshot()
```

Each method sends a call such as `device.io.tap` with the device id and its parameters.

`install_app` first requests an upload slot through `uploads.create`. It then PUTs the file to the returned URL and finally calls `device.apps.install`. Only `https` URLs on the host `mobilectl.remote.UPLOAD_HOST` are accepted. Any other URL raises `UploadError`.

Two methods always raise `DeviceError`:

- `uninstall_app`
- `start_screen_capture`

## Cleanup on exit

```python
from mobilectl.shutdown import ShutdownHook, ShutdownError

hooks = ShutdownHook()
hooks.register("temp-files", cleanup_temp_files)
try:
    hooks.shutdown()
except ShutdownError as exc:
    print(exc.failures)
```

Hooks run in the order they were registered. Every hook runs even if an earlier one fails. After a run the registry is empty, and `len(hooks)` gives the number of hooks still registered. When any hook fails, `shutdown()` raises a single `ShutdownError` that lists all the failures.

## What this package does not do

- It does not detect running Android devices or physical iOS devices.
- It has no on-device agent client, so it cannot tap, swipe, type, take screenshots, read the UI tree or stream the screen of simulators and emulators.
- Remote devices are the exception: these operations go through your RPC caller.
- It provides no command-line tool or server; it is a library only.