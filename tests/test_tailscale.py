import json

import pytest

from ios_agent import tailscale
from ios_agent.bridge import CommandResult

STATUS = {
    "Self": {"HostName": "workstation", "TailscaleIPs": ["100.64.0.1"], "OS": "linux", "DNSName": "workstation.tail.ts.net."},
    "Peer": {
        "nodekey:a": {"HostName": "mac-mini", "TailscaleIPs": ["100.64.0.7", "fd7a::7"], "OS": "macOS", "Online": True},
        "nodekey:b": {"HostName": "orphan", "TailscaleIPs": [], "Online": True},
        "nodekey:c": {"HostName": "laptop", "TailscaleIPs": ["100.64.0.9"], "OS": "macOS", "Online": False},
    },
}


def test_parse_status_self_first_and_skips_peers_without_ip():
    machines = tailscale.parse_status(json.dumps(STATUS))
    assert [m.name for m in machines] == ["workstation", "mac-mini", "laptop"]
    assert machines[0].online is True
    assert machines[1].ip == "100.64.0.7"
    assert machines[1].tailscale_ip == "100.64.0.7"
    assert machines[2].online is False


def test_parse_status_rejects_garbage():
    with pytest.raises(tailscale.TailscaleError):
        tailscale.parse_status("not json")


def test_discover_machines_missing_binary(monkeypatch):
    monkeypatch.setattr(tailscale, "_have", lambda cmd: False)
    with pytest.raises(tailscale.TailscaleError, match="not installed"):
        tailscale.discover_machines()


def test_discover_machines(monkeypatch):
    monkeypatch.setattr(tailscale, "_have", lambda cmd: True)
    monkeypatch.setattr(tailscale, "run_command", lambda cmd, timeout=None: CommandResult(0, json.dumps(STATUS), ""))
    assert len(tailscale.discover_machines()) == 3


def test_discover_machines_command_failure(monkeypatch):
    monkeypatch.setattr(tailscale, "_have", lambda cmd: True)
    monkeypatch.setattr(tailscale, "run_command", lambda cmd, timeout=None: CommandResult(1, "", "not logged in"))
    with pytest.raises(tailscale.TailscaleError, match="not logged in"):
        tailscale.discover_machines()
