"""Bridge that drives an `ios-agent` installation on another machine over ssh."""

from __future__ import annotations

import shlex
from typing import Any, Optional

from pydantic import ValidationError

from . import envelope, models, utils
from .bridge import AppNotInstalledError, Bridge, BridgeError, UnknownDeviceError, run_command

log = utils.get_logger(__name__)

DEFAULT_SSH_PORT = 22


class RemoteCommandError(BridgeError):
    """An error envelope returned by the remote agent."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"remote error [{code}]: {message}")
        self.code = code


class RemoteClient:
    """Runs ios-agent commands on a remote host and unwraps their envelopes."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_SSH_PORT,
        *,
        ssh: str = "ssh",
        command: str = "ios-agent",
        timeout: int = 120,
    ) -> None:
        self.host = host
        self.port = port
        self.ssh = ssh
        self.command = command
        self.timeout = timeout

    @classmethod
    def from_host_port(cls, host_port: str, **kwargs: Any) -> "RemoteClient":
        """Parse `host[:port]`; raises ValueError for malformed input."""
        if not host_port or not host_port.strip():
            raise ValueError("remote host cannot be empty")
        host, sep, port_text = host_port.strip().rpartition(":")
        if not sep:
            host, port_text = port_text, ""
        if not host:
            raise ValueError("invalid remote host")
        port = DEFAULT_SSH_PORT
        if port_text:
            if not port_text.isdigit() or not 0 < int(port_text) < 65536:
                raise ValueError(f"invalid port number: {port_text}")
            port = int(port_text)
        return cls(host, port, **kwargs)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def build_command(self, *args: str) -> list[str]:
        remote_cmd = " ".join(shlex.quote(part) for part in (self.command, *args))
        return [self.ssh, "-p", str(self.port), self.host, remote_cmd]

    def execute(self, *args: str) -> models.Envelope:
        cmd = self.build_command(*args)
        log.debug("Remote call on %s: %s", self.address, " ".join(args))
        result = run_command(cmd, timeout=self.timeout)
        # The remote CLI exits 1 for error envelopes, so parse stdout before looking at the code.
        if not result.stdout.strip():
            raise BridgeError(f"ssh command failed: {result.output}")
        try:
            return envelope.parse(result.stdout)
        except ValueError as exc:
            raise BridgeError(f"failed to parse remote response: {exc}") from exc

    def call(self, *args: str) -> dict:
        """Execute and return the result payload; error envelopes raise BridgeError."""
        response = self.execute(*args)
        if not response.success:
            error = response.error
            raise RemoteCommandError(error.code, error.message)
        return response.result or {}


class RemoteBridge(Bridge):
    """Same primitive contract as the local bridge, executed on `client.host`."""

    def __init__(self, client: RemoteClient) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: models.Settings) -> "RemoteBridge":
        client = RemoteClient.from_host_port(
            settings.remote_host or "",
            ssh=settings.ssh_path,
            command=settings.remote_command,
            timeout=settings.command_timeout,
        )
        return cls(client)

    def _parse(self, model: type, payload: Any):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise BridgeError(f"unexpected remote payload for {model.__name__}: {exc}") from exc

    def list_devices(self) -> list[models.Device]:
        payload = self.client.call("devices")
        listing = self._parse(models.DeviceList, payload)
        return [
            device.model_copy(update={"location": "remote", "remote_host": self.client.address})
            for device in listing.devices
        ]

    def boot(self, udid: str) -> None:
        self.client.call("simulator", "boot", "--device", udid, "--wait", "false")

    def shutdown(self, udid: str) -> None:
        self.client.call("simulator", "shutdown", "--device", udid, "--wait", "false")

    def get_device_state(self, udid: str) -> models.DeviceState:
        for device in self.list_devices():
            if device.udid == udid:
                return device.state
        raise UnknownDeviceError(udid)

    def capture_screenshot(
        self, udid: str, output_path: str, image_format: models.ImageFormat = "png"
    ) -> models.ScreenshotResult:
        payload = self.client.call(
            "screenshot", "--device", udid, "--output", output_path, "--format", image_format
        )
        return self._parse(models.ScreenshotResult, payload)

    def tap(self, udid: str, x: int, y: int) -> models.TapResult:
        payload = self.client.call("io", "tap", "--device", udid, "--x", str(x), "--y", str(y))
        return self._parse(models.TapResult, payload)

    def type_text(self, udid: str, text: str) -> models.TextInputResult:
        payload = self.client.call("io", "text", "--device", udid, "--text", text)
        return self._parse(models.TextInputResult, payload)

    def swipe(
        self, udid: str, start_x: int, start_y: int, end_x: int, end_y: int, duration_ms: int
    ) -> models.SwipeResult:
        payload = self.client.call(
            "io", "swipe", "--device", udid,
            "--start-x", str(start_x), "--start-y", str(start_y),
            "--end-x", str(end_x), "--end-y", str(end_y),
            "--duration", str(duration_ms),
        )
        return self._parse(models.SwipeResult, payload)

    def press_button(self, udid: str, button: str) -> models.ButtonResult:
        payload = self.client.call("io", "button", "--device", udid, "--button", button)
        return self._parse(models.ButtonResult, payload)

    def launch_app(self, udid: str, bundle_id: str) -> Optional[str]:
        try:
            payload = self.client.call("app", "launch", "--device", udid, "--bundle", bundle_id)
        except RemoteCommandError as exc:
            if exc.code == "APP_NOT_FOUND":
                raise AppNotInstalledError(udid, bundle_id) from exc
            raise
        pid = payload.get("pid")
        return str(pid) if pid else None

    def terminate_app(self, udid: str, bundle_id: str) -> None:
        self.client.call("app", "terminate", "--device", udid, "--bundle", bundle_id)

    def install_app(self, udid: str, app_path: str) -> str:
        payload = self.client.call("app", "install", "--device", udid, "--app", app_path)
        bundle_id = payload.get("bundle_id")
        if not bundle_id:
            raise BridgeError("remote install did not report a bundle id")
        return str(bundle_id)

    def get_foreground_app(self, udid: str) -> Optional[models.ForegroundApp]:
        payload = self.client.call("state", "--device", udid)
        state = self._parse(models.StateResult, payload)
        return state.foreground_app
