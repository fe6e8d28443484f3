from __future__ import annotations

import time
from typing import Callable, Optional

from . import errors, models, poller, utils
from .bridge import BridgeError, DeviceBridge, UnknownDeviceError

log = utils.get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 60


class DeviceManager:
    """
    Device lookup and idempotent boot/shutdown on top of a DeviceBridge.

    Nothing is cached: every lookup runs discovery again, so a Device returned
    here is a snapshot taken during the call.
    """

    def __init__(
        self,
        bridge: DeviceBridge,
        *,
        poll_interval: float = poller.POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bridge = bridge
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, bridge: DeviceBridge, settings: models.Settings) -> "DeviceManager":
        return cls(bridge, poll_interval=settings.poll_interval)

    def list_devices(self) -> list[models.Device]:
        try:
            return self.bridge.list_devices()
        except BridgeError as exc:
            log.error("Device discovery failed: %s", exc)
            raise errors.discovery_failed(str(exc)) from exc

    def get_device(self, identifier: str) -> models.Device:
        for device in self.list_devices():
            if device.id == identifier or device.udid == identifier:
                return device
        raise errors.device_not_found(identifier)

    def find_device_by_name_and_os_version(self, name: str, os_version: Optional[str] = "") -> models.Device:
        """
        Resolve a device by name and optional OS version.

        A booted candidate wins because reusing a running simulator is cheaper
        than booting another; otherwise the first candidate in discovery order.
        """
        os_version = os_version or ""
        candidates = [
            device
            for device in self.list_devices()
            if device.name == name and (not os_version or device.os_version == os_version)
        ]
        if not candidates:
            raise errors.device_not_found_by_name(name, os_version)
        for device in candidates:
            if device.state is models.DeviceState.BOOTED:
                return device
        return candidates[0]

    def get_device_state(self, identifier: str) -> models.DeviceState:
        try:
            return self.bridge.get_device_state(identifier)
        except UnknownDeviceError as exc:
            raise errors.device_not_found(identifier) from exc
        except BridgeError as exc:
            raise errors.device_unreachable(identifier, str(exc)) from exc

    def require_booted(self, identifier: str) -> models.Device:
        device = self.get_device(identifier)
        if device.state is not models.DeviceState.BOOTED:
            raise errors.device_not_booted(device.id, device.state.value)
        return device

    def boot_simulator(
        self, identifier: str, *, wait: bool = True, timeout_sec: int = DEFAULT_TIMEOUT_SEC
    ) -> models.BootResult:
        if self.get_device_state(identifier) is models.DeviceState.BOOTED:
            log.info("Device %s already booted", identifier)
            return models.BootResult(device=self.get_device(identifier), boot_time_ms=0)

        started = self._clock()
        try:
            self.bridge.boot(identifier)
        except BridgeError as exc:
            log.error("Boot of %s failed: %s", identifier, exc)
            raise errors.boot_failed(identifier, str(exc)) from exc

        if not wait:
            device = self.get_device(identifier).model_copy(update={"state": models.DeviceState.BOOTING})
            return models.BootResult(device=device, boot_time_ms=utils.elapsed_ms(self._clock() - started))

        outcome = poller.poll_for_boot_completion(
            self, identifier, timeout_sec, interval=self.poll_interval, clock=self._clock, sleep=self._sleep
        )
        return models.BootResult(device=outcome.device, boot_time_ms=utils.elapsed_ms(self._clock() - started))

    def shutdown_simulator(
        self, identifier: str, *, wait: bool = True, timeout_sec: int = DEFAULT_TIMEOUT_SEC
    ) -> models.ShutdownResult:
        if self.get_device_state(identifier) is models.DeviceState.SHUTDOWN:
            log.info("Device %s already shut down", identifier)
            return models.ShutdownResult(
                device=self.get_device(identifier),
                message="Simulator already shut down",
                shutdown_time_ms=0,
            )

        started = self._clock()
        try:
            self.bridge.shutdown(identifier)
        except BridgeError as exc:
            log.error("Shutdown of %s failed: %s", identifier, exc)
            raise errors.shutdown_failed(identifier, str(exc)) from exc

        if not wait:
            device = self.get_device(identifier).model_copy(update={"state": models.DeviceState.SHUTTING_DOWN})
            return models.ShutdownResult(
                device=device,
                message="Simulator shutdown requested",
                shutdown_time_ms=utils.elapsed_ms(self._clock() - started),
            )

        outcome = poller.poll_for_shutdown_completion(
            self, identifier, timeout_sec, interval=self.poll_interval, clock=self._clock, sleep=self._sleep
        )
        return models.ShutdownResult(
            device=outcome.device,
            message="Simulator shutdown successfully",
            shutdown_time_ms=utils.elapsed_ms(self._clock() - started),
        )
