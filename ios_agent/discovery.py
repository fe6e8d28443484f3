from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError

from . import models, utils

log = utils.get_logger(__name__)

# com.apple.CoreSimulator.SimRuntime.iOS-17-4 -> ("iOS", "17-4")
_RUNTIME_PATTERN = re.compile(r"(?:^|\.)(iOS|watchOS|tvOS|xrOS|visionOS)-(\d+(?:-\d+)*)$")
_STATES = {state.value.lower(): state for state in models.DeviceState}


class DiscoveryError(Exception):
    """Raised when the simulator roster cannot be read or parsed."""


def normalize_state(raw: Any) -> Optional[models.DeviceState]:
    """
    Map a simctl state string onto DeviceState, tolerating spelling variants
    such as "Shutting Down". Returns None for states we do not know.
    """
    if isinstance(raw, models.DeviceState):
        return raw
    if not isinstance(raw, str):
        return None
    return _STATES.get(re.sub(r"[\s_-]+", "", raw).lower())


def extract_os_version(runtime: str) -> str:
    """
    Normalize a runtime identifier into a dotted version.
    Returns "unknown" when the identifier carries no recognizable OS version.
    """
    match = _RUNTIME_PATTERN.search(runtime.strip())
    if not match:
        return "unknown"
    return match.group(2).replace("-", ".")


def _iter_runtime_entries(devices: Mapping[str, Any]) -> Iterable[tuple[str, dict]]:
    for runtime, entries in devices.items():
        if not isinstance(entries, list):
            raise DiscoveryError(f"unexpected device list for runtime {runtime!r}")
        for entry in entries:
            if not isinstance(entry, dict):
                raise DiscoveryError(f"unexpected device entry for runtime {runtime!r}")
            yield runtime, entry


def parse_simctl_devices(payload: str | bytes | Mapping[str, Any]) -> list[models.Device]:
    """
    Convert `xcrun simctl list devices --json` output into Device records.

    Order follows the document: runtimes as listed, devices as listed per runtime.
    Entries marked unavailable are dropped here so downstream code never sees them.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise DiscoveryError(f"failed to parse simctl output: {exc}") from exc

    if not isinstance(payload, Mapping) or not isinstance(payload.get("devices"), Mapping):
        raise DiscoveryError("simctl output has no 'devices' mapping")

    devices: list[models.Device] = []
    skipped = 0
    for runtime, entry in _iter_runtime_entries(payload["devices"]):
        if not entry.get("isAvailable", False):
            skipped += 1
            continue
        udid = entry.get("udid")
        state = normalize_state(entry.get("state"))
        if state is None:
            log.warning("Skipping simulator %s with unknown state %r", udid, entry.get("state"))
            continue
        try:
            devices.append(
                models.Device(
                    id=udid,
                    udid=udid,
                    name=entry.get("name"),
                    state=state,
                    type="simulator",
                    os_version=extract_os_version(runtime),
                    available=True,
                )
            )
        except ValidationError as exc:
            log.warning("Skipping invalid simulator entry %r: %s", udid, exc.errors()[0]["msg"])

    log.debug("Discovered %d available simulators (%d unavailable skipped)", len(devices), skipped)
    return devices
