from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    # device
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    DEVICE_UNREACHABLE = "DEVICE_UNREACHABLE"
    DEVICE_NOT_BOOTED = "DEVICE_NOT_BOOTED"
    DEVICE_REQUIRED = "DEVICE_REQUIRED"
    # apps
    APP_NOT_FOUND = "APP_NOT_FOUND"
    APP_LAUNCH_FAILED = "APP_LAUNCH_FAILED"
    APP_TERMINATE_FAILED = "APP_TERMINATE_FAILED"
    APP_INSTALL_FAILED = "APP_INSTALL_FAILED"
    # ui
    UI_ACTION_FAILED = "UI_ACTION_FAILED"
    INVALID_COORDINATES = "INVALID_COORDINATES"
    TEXT_REQUIRED = "TEXT_REQUIRED"
    # simulator lifecycle
    SIMULATOR_TIMEOUT = "SIMULATOR_TIMEOUT"
    BOOT_FAILED = "BOOT_FAILED"
    SHUTDOWN_FAILED = "SHUTDOWN_FAILED"
    # screenshots
    SCREENSHOT_FAILED = "SCREENSHOT_FAILED"
    INVALID_FORMAT = "INVALID_FORMAT"
    PATH_ERROR = "PATH_ERROR"
    # discovery
    DEVICE_DISCOVERY_FAILED = "DEVICE_DISCOVERY_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AgentError(Exception):
    """A failure that is reported to the caller as an error envelope."""

    exit_code = 1

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.details = dict(details or {})

    def __str__(self) -> str:
        if self.details:
            return f"{self.code.value}: {self.message} (details: {self.details})"
        return f"{self.code.value}: {self.message}"


def device_not_found(device_id: str) -> AgentError:
    return AgentError(ErrorCode.DEVICE_NOT_FOUND, f"device not found: {device_id}", {"device_id": device_id})


def device_not_found_by_name(name: str, os_version: str = "") -> AgentError:
    if os_version:
        message = f"no device found with name '{name}' and OS version '{os_version}'"
    else:
        message = f"no device found with name '{name}'"
    return AgentError(ErrorCode.DEVICE_NOT_FOUND, message, {"name": name, "os_version": os_version})


def device_not_booted(device_id: str, state: str) -> AgentError:
    return AgentError(
        ErrorCode.DEVICE_NOT_BOOTED,
        f"device is not booted (state: {state})",
        {"device_id": device_id, "state": state},
    )


def device_required() -> AgentError:
    return AgentError(ErrorCode.DEVICE_REQUIRED, "device ID is required (use --device flag)")


def device_unreachable(device_id: str, reason: str) -> AgentError:
    return AgentError(
        ErrorCode.DEVICE_UNREACHABLE,
        f"device unreachable: {reason}",
        {"device_id": device_id},
    )


def discovery_failed(reason: str) -> AgentError:
    return AgentError(ErrorCode.DEVICE_DISCOVERY_FAILED, f"failed to list devices: {reason}")


def boot_failed(device_id: str, reason: str) -> AgentError:
    return AgentError(ErrorCode.BOOT_FAILED, f"failed to boot simulator: {reason}", {"device_id": device_id})


def shutdown_failed(device_id: str, reason: str) -> AgentError:
    return AgentError(
        ErrorCode.SHUTDOWN_FAILED, f"failed to shutdown simulator: {reason}", {"device_id": device_id}
    )


def simulator_timeout(device_id: str, timeout_sec: int, elapsed_sec: float) -> AgentError:
    return AgentError(
        ErrorCode.SIMULATOR_TIMEOUT,
        f"simulator operation timed out after {timeout_sec} seconds",
        {"device_id": device_id, "timeout_sec": timeout_sec, "elapsed_sec": round(elapsed_sec, 1)},
    )


def app_not_found(device_id: str, bundle_id: str) -> AgentError:
    return AgentError(
        ErrorCode.APP_NOT_FOUND,
        f"app not found: {bundle_id}",
        {"device_id": device_id, "bundle_id": bundle_id},
    )


def app_launch_failed(device_id: str, bundle_id: str, reason: str) -> AgentError:
    return AgentError(
        ErrorCode.APP_LAUNCH_FAILED,
        f"failed to launch app: {reason}",
        {"device_id": device_id, "bundle_id": bundle_id},
    )


def app_terminate_failed(device_id: str, bundle_id: str, reason: str) -> AgentError:
    return AgentError(
        ErrorCode.APP_TERMINATE_FAILED,
        f"failed to terminate app: {reason}",
        {"device_id": device_id, "bundle_id": bundle_id},
    )


def app_install_failed(device_id: str, reason: str, **details: Any) -> AgentError:
    return AgentError(ErrorCode.APP_INSTALL_FAILED, reason, {"device_id": device_id, **details})


def invalid_coordinates(**coords: int) -> AgentError:
    rendered = ", ".join(f"{key}={value}" for key, value in coords.items())
    return AgentError(
        ErrorCode.INVALID_COORDINATES, f"coordinates must be non-negative: {rendered}", dict(coords)
    )


def text_required() -> AgentError:
    return AgentError(ErrorCode.TEXT_REQUIRED, "text input cannot be empty")


def ui_action_failed(device_id: str, reason: str, **details: Any) -> AgentError:
    return AgentError(ErrorCode.UI_ACTION_FAILED, reason, {"device_id": device_id, **details})


def screenshot_failed(reason: str, **details: Any) -> AgentError:
    return AgentError(ErrorCode.SCREENSHOT_FAILED, f"screenshot capture failed: {reason}", dict(details))


def invalid_format(option: str, value: str, allowed: str) -> AgentError:
    return AgentError(
        ErrorCode.INVALID_FORMAT,
        f"invalid {option}: {value} (must be {allowed})",
        {"option": option, "value": value},
    )


def path_error(path: str, reason: str) -> AgentError:
    return AgentError(ErrorCode.PATH_ERROR, f"path error: {reason}", {"path": path})


def internal_error(exc: BaseException) -> AgentError:
    return AgentError(ErrorCode.INTERNAL_ERROR, str(exc) or exc.__class__.__name__)
