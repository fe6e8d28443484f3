"""
Bounded synchronous wait on top of the asynchronous boot/shutdown commands.

The wait loop only stops waiting: a timed out boot or shutdown keeps running
on the device and may still reach its target state afterwards.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol

from . import errors, models, utils

log = utils.get_logger(__name__)

POLL_INTERVAL = 0.5


class StateSource(Protocol):
    def get_device_state(self, identifier: str) -> models.DeviceState:
        ...

    def get_device(self, identifier: str) -> models.Device:
        ...


@dataclass
class PollOutcome:
    device: models.Device
    elapsed: float

    @property
    def elapsed_ms(self) -> int:
        return utils.elapsed_ms(self.elapsed)


def poll_for_state(
    source: StateSource,
    device_id: str,
    target: models.DeviceState,
    timeout_sec: int,
    *,
    interval: float = POLL_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome:
    """
    Sample the device state every `interval` seconds until `target` is observed.

    State is sampled at least once. On success the device is re-fetched so the
    caller gets a full snapshot. Raises SIMULATOR_TIMEOUT once `timeout_sec`
    has elapsed; errors from the state query propagate unchanged.
    """
    started = clock()
    deadline = started + max(0, timeout_sec)
    samples = 0
    while True:
        state = source.get_device_state(device_id)
        samples += 1
        if state == target:
            device = source.get_device(device_id)
            elapsed = clock() - started
            log.info("Device %s reached %s after %.2fs (%d samples)", device_id, target.value, elapsed, samples)
            return PollOutcome(device=device, elapsed=elapsed)

        remaining = deadline - clock()
        if remaining <= 0:
            break
        log.debug("Device %s is %s, waiting for %s", device_id, state.value, target.value)
        sleep(min(interval, remaining))

    elapsed = clock() - started
    log.warning("Timed out waiting for %s to reach %s after %.1fs", device_id, target.value, elapsed)
    raise errors.simulator_timeout(device_id, timeout_sec, elapsed)


def poll_for_boot_completion(source: StateSource, device_id: str, timeout_sec: int, **kwargs) -> PollOutcome:
    return poll_for_state(source, device_id, models.DeviceState.BOOTED, timeout_sec, **kwargs)


def poll_for_shutdown_completion(source: StateSource, device_id: str, timeout_sec: int, **kwargs) -> PollOutcome:
    return poll_for_state(source, device_id, models.DeviceState.SHUTDOWN, timeout_sec, **kwargs)
