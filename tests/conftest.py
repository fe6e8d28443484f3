import logging
import threading
from typing import Optional

import pytest

from ios_agent import models, utils
from ios_agent.bridge import AppNotInstalledError, Bridge, BridgeError, UnknownDeviceError


def _device(udid, name="iPhone 15", state="Shutdown", os_version="17.4"):
    return models.Device(id=udid, udid=udid, name=name, state=state, os_version=os_version, location="local")


class FakeBridge(Bridge):
    """
    In-memory bridge. `after_boot` / `after_shutdown` map a udid to the states
    reported by successive state queries once the command was issued; the last
    entry sticks. Without an entry the transition completes immediately.
    """

    def __init__(self, devices):
        self.devices = {device.udid: device for device in devices}
        self.after_boot = {}
        self.after_shutdown = {}
        self.pending = {}
        self.installed = {}
        self.foreground = {}
        self.fail = set()
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name, *args))
        if name in self.fail:
            raise BridgeError(f"{name} exploded")

    def _set_state(self, udid, state):
        self.devices[udid] = self.devices[udid].model_copy(update={"state": models.DeviceState(state)})

    def calls_named(self, name):
        return [call for call in self.calls if call[0] == name]

    def list_devices(self):
        self._record("list_devices")
        with self._lock:
            return list(self.devices.values())

    def boot(self, udid):
        self._record("boot", udid)
        self._start(udid, self.after_boot.get(udid, ["Booted"]))

    def shutdown(self, udid):
        self._record("shutdown", udid)
        self._start(udid, self.after_shutdown.get(udid, ["Shutdown"]))

    def _start(self, udid, states):
        if udid not in self.devices:
            raise BridgeError(f"unknown device {udid}")
        self.pending[udid] = list(states)
        self._set_state(udid, states[0])

    def get_device_state(self, udid):
        self._record("get_device_state", udid)
        if udid not in self.devices:
            raise UnknownDeviceError(udid)
        queue = self.pending.get(udid)
        if queue:
            state = queue.pop(0) if len(queue) > 1 else queue[0]
            self._set_state(udid, state)
        return self.devices[udid].state

    def capture_screenshot(self, udid, output_path, image_format="png"):
        self._record("capture_screenshot", udid, output_path, image_format)
        return models.ScreenshotResult(
            path=output_path, format=image_format, size_bytes=1024, device_id=udid, timestamp=utils.utc_timestamp()
        )

    def tap(self, udid, x, y):
        self._record("tap", udid, x, y)
        return models.TapResult(device_id=udid, x=x, y=y, timestamp=utils.utc_timestamp())

    def type_text(self, udid, text):
        self._record("type_text", udid, text)
        return models.TextInputResult(device_id=udid, text=text, length=len(text), timestamp=utils.utc_timestamp())

    def swipe(self, udid, start_x, start_y, end_x, end_y, duration_ms):
        self._record("swipe", udid, start_x, start_y, end_x, end_y, duration_ms)
        return models.SwipeResult(
            device_id=udid,
            start_x=start_x,
            start_y=start_y,
            end_x=end_x,
            end_y=end_y,
            duration_ms=duration_ms,
            timestamp=utils.utc_timestamp(),
        )

    def press_button(self, udid, button):
        self._record("press_button", udid, button)
        return models.ButtonResult(device_id=udid, button=button, timestamp=utils.utc_timestamp())

    def launch_app(self, udid, bundle_id) -> Optional[str]:
        self._record("launch_app", udid, bundle_id)
        if bundle_id not in self.installed.get(udid, set()):
            raise AppNotInstalledError(udid, bundle_id)
        return "4242"

    def terminate_app(self, udid, bundle_id):
        self._record("terminate_app", udid, bundle_id)

    def install_app(self, udid, app_path):
        self._record("install_app", udid, app_path)
        self.installed.setdefault(udid, set()).add("com.example.demo")
        return "com.example.demo"

    def get_foreground_app(self, udid):
        self._record("get_foreground_app", udid)
        return self.foreground.get(udid)


class FakeClock:
    """Monotonic clock that only moves when `sleep` is called."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def _quiet_logging():
    # configure_logging keeps existing handlers, so CLI runs stay off the captured streams.
    logger = logging.getLogger("ios_agent")
    saved = list(logger.handlers)
    logger.handlers = [logging.NullHandler()]
    yield
    logger.handlers = saved


@pytest.fixture
def make_device():
    return _device


@pytest.fixture
def make_bridge():
    return FakeBridge


@pytest.fixture
def fake_bridge():
    return FakeBridge(
        [
            _device("A1", state="Shutdown"),
            _device("B2", state="Booted"),
            _device("C3", state="Shutdown", os_version="18.0"),
            _device("D4", name="iPad Air", state="Booted"),
        ]
    )


@pytest.fixture
def fake_clock():
    return FakeClock()
