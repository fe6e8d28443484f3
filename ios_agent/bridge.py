"""Control interface between orchestration code and the device-control mechanism."""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from . import models

BUTTONS = ("HOME", "POWER", "VOLUME_UP", "VOLUME_DOWN", "SIDE_BUTTON", "SIRI")


class BridgeError(Exception):
    """Opaque failure of a bridge primitive."""


class UnknownDeviceError(BridgeError):
    """Raised by state queries for an identifier that is not in the roster."""

    def __init__(self, udid: str) -> None:
        super().__init__(f"device not found: {udid}")
        self.udid = udid


class AppNotInstalledError(BridgeError):
    """Raised by app primitives when the bundle is not installed on the device."""

    def __init__(self, udid: str, bundle_id: str) -> None:
        super().__init__(f"app not installed: {bundle_id}")
        self.udid = udid
        self.bundle_id = bundle_id


@dataclass
class CommandResult:
    code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.code == 0

    @property
    def output(self) -> str:
        return (self.stderr or self.stdout or "").strip() or f"exit code {self.code}"


def run_command(cmd: Sequence[str], timeout: Optional[float] = 120) -> CommandResult:
    """Run an external tool, never raising; failures are reported through the result code."""
    try:
        completed = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
        return CommandResult(completed.returncode, completed.stdout, completed.stderr)
    except FileNotFoundError:
        return CommandResult(127, "", f"{cmd[0]} not found")
    except subprocess.TimeoutExpired as exc:
        stdout = exc.stdout if isinstance(exc.stdout, str) else ""
        return CommandResult(-1, stdout, f"{cmd[0]} timed out after {timeout}s")
    except OSError as exc:
        return CommandResult(-1, "", str(exc))


class DeviceBridge(ABC):
    """
    Primitive operations the lifecycle manager depends on.

    Implementations raise BridgeError for any failure; callers never inspect
    the message. State changes started by boot/shutdown may complete after the
    call returns.
    """

    @abstractmethod
    def list_devices(self) -> list[models.Device]:
        ...

    @abstractmethod
    def boot(self, udid: str) -> None:
        ...

    @abstractmethod
    def shutdown(self, udid: str) -> None:
        ...

    @abstractmethod
    def get_device_state(self, udid: str) -> models.DeviceState:
        """Current state; raises UnknownDeviceError for ids absent from the roster."""

    @abstractmethod
    def capture_screenshot(self, udid: str, output_path: str, image_format: models.ImageFormat = "png") -> models.ScreenshotResult:
        ...

    @abstractmethod
    def tap(self, udid: str, x: int, y: int) -> models.TapResult:
        ...

    @abstractmethod
    def type_text(self, udid: str, text: str) -> models.TextInputResult:
        ...

    @abstractmethod
    def swipe(
        self, udid: str, start_x: int, start_y: int, end_x: int, end_y: int, duration_ms: int
    ) -> models.SwipeResult:
        ...

    @abstractmethod
    def press_button(self, udid: str, button: str) -> models.ButtonResult:
        ...


class AppBridge(ABC):
    """App management primitives used by the app and state commands."""

    @abstractmethod
    def launch_app(self, udid: str, bundle_id: str) -> Optional[str]:
        """
        Launch and return the process id when the tool reports one.
        Raises AppNotInstalledError when the bundle is missing.
        """

    @abstractmethod
    def terminate_app(self, udid: str, bundle_id: str) -> None:
        ...

    @abstractmethod
    def install_app(self, udid: str, app_path: str) -> str:
        """Install an .app bundle and return its bundle identifier."""

    @abstractmethod
    def get_foreground_app(self, udid: str) -> Optional[models.ForegroundApp]:
        ...


class Bridge(DeviceBridge, AppBridge):
    """Full control surface implemented by the production bridges."""
