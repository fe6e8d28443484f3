from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator

DeviceType = Literal["simulator", "physical"]
Location = Literal["local", "remote"]
ImageFormat = Literal["png", "jpeg"]
OutputFormat = Literal["json", "table"]


class DeviceState(str, Enum):
    CREATING = "Creating"
    BOOTING = "Booting"
    BOOTED = "Booted"
    SHUTTING_DOWN = "ShuttingDown"
    SHUTDOWN = "Shutdown"

    @property
    def is_terminal(self) -> bool:
        return self in (DeviceState.BOOTED, DeviceState.SHUTDOWN)


class Device(BaseModel):
    id: str = Field(..., description="Stable device identifier (same value as udid)")
    name: str = Field(..., description="Model name, e.g. iPhone 15 Pro; not unique")
    state: DeviceState = Field(..., description="Lifecycle state reported by the control mechanism")
    type: DeviceType = Field("simulator", description="simulator | physical")
    os_version: str = Field("unknown", description="Dotted OS version, e.g. 17.4")
    udid: str = Field(..., description="Unique Device Identifier")
    available: bool = Field(True, description="Always true once a device passed discovery")
    location: Optional[Location] = Field(None, description="local | remote, omitted when unknown")
    remote_host: Optional[str] = Field(None, description="host[:port] of the remote agent")

    @model_validator(mode="before")
    @classmethod
    def _mirror_identifiers(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("udid") and data.get("id"):
                data["udid"] = data["id"]
            if not data.get("id") and data.get("udid"):
                data["id"] = data["udid"]
        return data


class Machine(BaseModel):
    name: str
    ip: str
    online: bool = False
    os: Optional[str] = None
    hostname: Optional[str] = None
    dns_name: Optional[str] = None
    tailscale_ip: str


class DeviceList(BaseModel):
    devices: list[Device] = Field(default_factory=list)
    machines: Optional[list[Machine]] = None


class BootResult(BaseModel):
    device: Device
    boot_time_ms: int = 0


class ShutdownResult(BaseModel):
    device: Device
    message: str
    shutdown_time_ms: int = 0


class ScreenshotResult(BaseModel):
    path: str
    format: ImageFormat
    size_bytes: int
    device_id: str
    timestamp: str


class TapResult(BaseModel):
    device_id: str
    x: int
    y: int
    timestamp: str


class TextInputResult(BaseModel):
    device_id: str
    text: str
    length: int
    timestamp: str


class SwipeResult(BaseModel):
    device_id: str
    start_x: int
    start_y: int
    end_x: int
    end_y: int
    duration_ms: int
    timestamp: str


class ButtonResult(BaseModel):
    device_id: str
    button: str
    timestamp: str


class ForegroundApp(BaseModel):
    bundle_id: Optional[str] = None
    pid: Optional[int] = None


class LaunchResult(BaseModel):
    device: Device
    bundle_id: str
    pid: Optional[str] = None
    state: str = "launched"
    message: str


class TerminateResult(BaseModel):
    device: Device
    bundle_id: str
    message: str


class InstallResult(BaseModel):
    device: Device
    app_path: str
    bundle_id: str
    install_time_ms: int
    message: str


class DeviceInfo(BaseModel):
    id: str
    name: str
    state: DeviceState
    os_version: str
    runtime: str


class StateResult(BaseModel):
    device: DeviceInfo
    foreground_app: Optional[ForegroundApp] = None
    screenshot: Optional[str] = None


class Settings(BaseModel):
    """Per-invocation configuration, built once by the CLI callback."""

    device_id: Optional[str] = None
    remote_host: Optional[str] = None
    verbose: bool = False
    log_dir: Optional[Path] = None
    output_format: OutputFormat = "json"
    poll_interval: float = Field(0.5, gt=0, description="Seconds between state samples while waiting")
    command_timeout: int = Field(120, gt=0, description="Seconds allowed per external command")
    xcrun_path: str = "xcrun"
    idb_path: str = "idb"
    ssh_path: str = "ssh"
    remote_command: str = "ios-agent"


class ErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class Envelope(BaseModel):
    success: bool
    action: str
    result: Optional[Any] = None
    error: Optional[ErrorInfo] = None
    timestamp: str

    @model_validator(mode="after")
    def _one_payload(self) -> "Envelope":
        if self.success and (self.result is None or self.error is not None):
            raise ValueError("successful envelope must carry a result and no error")
        if not self.success and (self.error is None or self.result is not None):
            raise ValueError("error envelope must carry an error and no result")
        return self
