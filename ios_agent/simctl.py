from __future__ import annotations

import plistlib
import re
from pathlib import Path
from typing import List, Optional

from . import discovery, models, utils
from .bridge import AppNotInstalledError, Bridge, BridgeError, CommandResult, UnknownDeviceError, run_command

log = utils.get_logger(__name__)

# idb has no volume buttons; POWER maps to the lock button.
_IDB_BUTTONS = {
    "HOME": "HOME",
    "POWER": "LOCK",
    "SIDE_BUTTON": "SIDE_BUTTON",
    "SIRI": "SIRI",
}

# "com.example.app: 12345"
_LAUNCH_PID = re.compile(r":\s*(\d+)\s*$")
# "1234\t0\tUIKitApplication:com.apple.mobilesafari[0x7f1a][rb-legacy]"
_LAUNCHCTL_APP = re.compile(r"^(?P<pid>\S+)\s+\S+\s+UIKitApplication:(?P<bundle>[^\[\s]+)")


def image_format_for(path: str) -> models.ImageFormat:
    return "jpeg" if path.lower().endswith((".jpg", ".jpeg")) else "png"


def parse_foreground_app(launchctl_output: str) -> Optional[models.ForegroundApp]:
    """Pick the first running UIKit application from `launchctl list` output."""
    for raw_line in launchctl_output.splitlines():
        match = _LAUNCHCTL_APP.match(raw_line.strip())
        if not match:
            continue
        pid = match.group("pid")
        if not pid.isdigit():
            continue
        return models.ForegroundApp(bundle_id=match.group("bundle"), pid=int(pid))
    return None


def read_bundle_id(app_path: str | Path) -> str:
    info_plist = Path(app_path) / "Info.plist"
    try:
        with info_plist.open("rb") as fp:
            data = plistlib.load(fp)
    except (OSError, plistlib.InvalidFileException) as exc:
        raise BridgeError(f"cannot read {info_plist}: {exc}") from exc
    bundle_id = data.get("CFBundleIdentifier") if isinstance(data, dict) else None
    if not bundle_id:
        raise BridgeError(f"CFBundleIdentifier missing in {info_plist}")
    return str(bundle_id)


class SimctlBridge(Bridge):
    """Local bridge: one `xcrun simctl` (or `idb`) process per primitive."""

    def __init__(self, *, xcrun: str = "xcrun", idb: str = "idb", timeout: int = 120) -> None:
        self.xcrun = xcrun
        self.idb = idb
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: models.Settings) -> "SimctlBridge":
        return cls(xcrun=settings.xcrun_path, idb=settings.idb_path, timeout=settings.command_timeout)

    def _simctl(self, *args: str) -> CommandResult:
        cmd = [self.xcrun, "simctl", *args]
        log.debug("Running %s", " ".join(cmd))
        return run_command(cmd, timeout=self.timeout)

    def _idb(self, *args: str) -> CommandResult:
        cmd = [self.idb, *args]
        log.debug("Running %s", " ".join(cmd))
        return run_command(cmd, timeout=self.timeout)

    def list_devices(self) -> list[models.Device]:
        result = self._simctl("list", "devices", "--json")
        if not result.ok:
            raise BridgeError(f"xcrun simctl failed: {result.output}")
        try:
            devices = discovery.parse_simctl_devices(result.stdout)
        except discovery.DiscoveryError as exc:
            raise BridgeError(str(exc)) from exc
        return [device.model_copy(update={"location": "local"}) for device in devices]

    def boot(self, udid: str) -> None:
        result = self._simctl("boot", udid)
        if not result.ok:
            raise BridgeError(result.output)

    def shutdown(self, udid: str) -> None:
        result = self._simctl("shutdown", udid)
        if not result.ok:
            raise BridgeError(result.output)

    def get_device_state(self, udid: str) -> models.DeviceState:
        for device in self.list_devices():
            if device.udid == udid:
                return device.state
        raise UnknownDeviceError(udid)

    def capture_screenshot(
        self, udid: str, output_path: str, image_format: models.ImageFormat = "png"
    ) -> models.ScreenshotResult:
        result = self._simctl("io", udid, "screenshot", f"--type={image_format}", output_path)
        if not result.ok:
            raise BridgeError(result.output)
        path = Path(output_path)
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise BridgeError(f"screenshot file not found after capture: {exc}") from exc
        return models.ScreenshotResult(
            path=str(path),
            format=image_format,
            size_bytes=size,
            device_id=udid,
            timestamp=utils.utc_timestamp(),
        )

    def tap(self, udid: str, x: int, y: int) -> models.TapResult:
        result = self._idb("ui", "tap", str(x), str(y), "--udid", udid)
        if not result.ok:
            raise BridgeError(result.output)
        return models.TapResult(device_id=udid, x=x, y=y, timestamp=utils.utc_timestamp())

    def type_text(self, udid: str, text: str) -> models.TextInputResult:
        result = self._idb("ui", "text", text, "--udid", udid)
        if not result.ok:
            raise BridgeError(result.output)
        return models.TextInputResult(device_id=udid, text=text, length=len(text), timestamp=utils.utc_timestamp())

    def swipe(
        self, udid: str, start_x: int, start_y: int, end_x: int, end_y: int, duration_ms: int
    ) -> models.SwipeResult:
        args: List[str] = [
            "ui", "swipe", str(start_x), str(start_y), str(end_x), str(end_y),
            "--duration", f"{duration_ms / 1000:g}", "--udid", udid,
        ]
        result = self._idb(*args)
        if not result.ok:
            raise BridgeError(result.output)
        return models.SwipeResult(
            device_id=udid,
            start_x=start_x,
            start_y=start_y,
            end_x=end_x,
            end_y=end_y,
            duration_ms=duration_ms,
            timestamp=utils.utc_timestamp(),
        )

    def press_button(self, udid: str, button: str) -> models.ButtonResult:
        idb_button = _IDB_BUTTONS.get(button)
        if idb_button is None:
            raise BridgeError(f"button {button} is not supported by idb")
        result = self._idb("ui", "button", idb_button, "--udid", udid)
        if not result.ok:
            raise BridgeError(result.output)
        return models.ButtonResult(device_id=udid, button=button, timestamp=utils.utc_timestamp())

    def launch_app(self, udid: str, bundle_id: str) -> Optional[str]:
        if not self.is_app_installed(udid, bundle_id):
            raise AppNotInstalledError(udid, bundle_id)
        result = self._simctl("launch", udid, bundle_id)
        if not result.ok:
            raise BridgeError(result.output)
        match = _LAUNCH_PID.search(result.stdout.strip())
        return match.group(1) if match else None

    def terminate_app(self, udid: str, bundle_id: str) -> None:
        result = self._simctl("terminate", udid, bundle_id)
        if not result.ok:
            raise BridgeError(result.output)

    def install_app(self, udid: str, app_path: str) -> str:
        bundle_id = read_bundle_id(app_path)
        result = self._simctl("install", udid, app_path)
        if not result.ok:
            raise BridgeError(result.output)
        return bundle_id

    def is_app_installed(self, udid: str, bundle_id: str) -> bool:
        return self._simctl("get_app_container", udid, bundle_id).ok

    def get_foreground_app(self, udid: str) -> Optional[models.ForegroundApp]:
        result = self._simctl("spawn", udid, "launchctl", "list")
        if not result.ok:
            raise BridgeError(result.output)
        return parse_foreground_app(result.stdout)
