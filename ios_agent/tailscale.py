from __future__ import annotations

import json
import shutil
from typing import Any, Optional

from . import models, utils
from .bridge import run_command

log = utils.get_logger(__name__)


class TailscaleError(Exception):
    """Raised when the tailnet cannot be queried."""


def _have(cmd: str) -> bool:
    return shutil.which(cmd) is not None


def _machine_from_peer(peer: dict, *, online: Optional[bool] = None) -> Optional[models.Machine]:
    ips = peer.get("TailscaleIPs") or []
    if not ips:
        return None
    hostname = peer.get("HostName") or ""
    return models.Machine(
        name=hostname,
        ip=ips[0],
        online=bool(peer.get("Online")) if online is None else online,
        os=peer.get("OS") or None,
        hostname=hostname or None,
        dns_name=peer.get("DNSName") or None,
        tailscale_ip=ips[0],
    )


def parse_status(payload: str | dict[str, Any]) -> list[models.Machine]:
    """
    Convert `tailscale status --json` into machines, self first.
    Peers without a tailnet address are skipped.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise TailscaleError(f"failed to parse tailscale status: {exc}") from exc
    if not isinstance(payload, dict):
        raise TailscaleError("tailscale status is not a JSON object")

    machines: list[models.Machine] = []
    own = _machine_from_peer(payload.get("Self") or {}, online=True)
    if own:
        machines.append(own)
    for peer in (payload.get("Peer") or {}).values():
        machine = _machine_from_peer(peer)
        if machine:
            machines.append(machine)
    return machines


def discover_machines(executable: str = "tailscale") -> list[models.Machine]:
    if not _have(executable):
        raise TailscaleError("tailscale is not installed or not in PATH")
    result = run_command([executable, "status", "--json"], timeout=15)
    if not result.ok:
        raise TailscaleError(f"failed to run tailscale status: {result.output}")
    machines = parse_status(result.stdout)
    log.debug("Tailscale reported %d machines", len(machines))
    return machines
