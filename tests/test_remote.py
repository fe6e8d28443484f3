import json

import pytest

from ios_agent import envelope, errors, models, remote
from ios_agent.bridge import AppNotInstalledError, BridgeError, CommandResult, UnknownDeviceError

DEVICE = {"id": "R1", "name": "iPhone 15", "state": "Booted", "type": "simulator", "os_version": "17.4", "udid": "R1", "available": True}


def _ok(action, result):
    return CommandResult(0, envelope.dumps(envelope.build_success(action, result)), "")


def _err(action, exc):
    return CommandResult(1, envelope.dumps(envelope.build_error(action, exc)), "")


class FakeSsh:
    def __init__(self, *results):
        self.results = list(results)
        self.commands = []

    def __call__(self, cmd, timeout=None):
        self.commands.append(list(cmd))
        return self.results.pop(0)


@pytest.fixture
def ssh(monkeypatch):
    fake = FakeSsh()
    monkeypatch.setattr(remote, "run_command", fake)
    return fake


@pytest.mark.parametrize(
    "value, host, port",
    [("mac-mini", "mac-mini", 22), ("mac-mini:2222", "mac-mini", 2222), ("100.64.0.7:22", "100.64.0.7", 22)],
)
def test_from_host_port(value, host, port):
    client = remote.RemoteClient.from_host_port(value)
    assert (client.host, client.port) == (host, port)
    assert client.address == f"{host}:{port}"


@pytest.mark.parametrize("value", ["", "  ", ":22", "mac:abc", "mac:0", "mac:70000"])
def test_from_host_port_rejects(value):
    with pytest.raises(ValueError):
        remote.RemoteClient.from_host_port(value)


def test_build_command_quotes_arguments():
    client = remote.RemoteClient("mac", 2200)
    cmd = client.build_command("io", "text", "--text", "hello world; rm -rf /")
    assert cmd[:4] == ["ssh", "-p", "2200", "mac"]
    assert cmd[4] == "ios-agent io text --text 'hello world; rm -rf /'"


def test_list_devices_tags_remote_location(ssh):
    ssh.results = [_ok("devices.list", {"devices": [DEVICE]})]
    devices = remote.RemoteBridge(remote.RemoteClient("mac", 22)).list_devices()
    assert devices[0].location == "remote"
    assert devices[0].remote_host == "mac:22"
    assert ssh.commands[0][-1] == "ios-agent devices"


def test_get_device_state_unknown(ssh):
    ssh.results = [_ok("devices.list", {"devices": [DEVICE]})]
    with pytest.raises(UnknownDeviceError):
        remote.RemoteBridge(remote.RemoteClient("mac")).get_device_state("nope")


def test_boot_does_not_wait_remotely(ssh):
    ssh.results = [_ok("simulator.boot", {"device": DEVICE, "boot_time_ms": 0})]
    remote.RemoteBridge(remote.RemoteClient("mac")).boot("R1")
    assert ssh.commands[0][-1] == "ios-agent simulator boot --device R1 --wait false"


def test_remote_error_envelope_raises(ssh):
    ssh.results = [_err("simulator.boot", errors.boot_failed("R1", "no runtime"))]
    with pytest.raises(remote.RemoteCommandError) as excinfo:
        remote.RemoteBridge(remote.RemoteClient("mac")).boot("R1")
    assert excinfo.value.code == "BOOT_FAILED"
    assert isinstance(excinfo.value, BridgeError)


def test_ssh_failure_without_output(ssh):
    ssh.results = [CommandResult(255, "", "ssh: connect to host mac port 22: Connection refused")]
    with pytest.raises(BridgeError, match="Connection refused"):
        remote.RemoteBridge(remote.RemoteClient("mac")).list_devices()


def test_unparseable_remote_output(ssh):
    ssh.results = [CommandResult(0, "command not found: ios-agent", "")]
    with pytest.raises(BridgeError, match="parse"):
        remote.RemoteBridge(remote.RemoteClient("mac")).list_devices()


def test_launch_maps_missing_app(ssh):
    ssh.results = [_err("app.launch", errors.app_not_found("R1", "com.example.x"))]
    with pytest.raises(AppNotInstalledError):
        remote.RemoteBridge(remote.RemoteClient("mac")).launch_app("R1", "com.example.x")


def test_launch_returns_pid(ssh):
    ssh.results = [_ok("app.launch", {"device": DEVICE, "bundle_id": "com.example.x", "pid": "77", "state": "launched", "message": "ok"})]
    assert remote.RemoteBridge(remote.RemoteClient("mac")).launch_app("R1", "com.example.x") == "77"


def test_tap_payload_is_validated(ssh):
    ssh.results = [_ok("io.tap", {"device_id": "R1", "x": 1, "y": 2, "timestamp": "2026-01-01T00:00:00Z"})]
    result = remote.RemoteBridge(remote.RemoteClient("mac")).tap("R1", 1, 2)
    assert isinstance(result, models.TapResult)


def test_unexpected_payload_shape(ssh):
    ssh.results = [_ok("io.tap", {"unexpected": True})]
    with pytest.raises(BridgeError):
        remote.RemoteBridge(remote.RemoteClient("mac")).tap("R1", 1, 2)


def test_foreground_app_from_remote_state(ssh):
    state = {
        "device": {"id": "R1", "name": "iPhone 15", "state": "Booted", "os_version": "17.4", "runtime": "iOS 17.4"},
        "foreground_app": {"bundle_id": "com.apple.mobilesafari", "pid": 812},
    }
    ssh.results = [CommandResult(0, json.dumps({"success": True, "action": "state", "result": state, "timestamp": "2026-01-01T00:00:00Z"}), "")]
    app = remote.RemoteBridge(remote.RemoteClient("mac")).get_foreground_app("R1")
    assert app.bundle_id == "com.apple.mobilesafari"


def test_from_settings_uses_configured_ssh():
    settings = models.Settings(remote_host="mac:2022", ssh_path="/usr/bin/ssh")
    bridge = remote.RemoteBridge.from_settings(settings)
    assert bridge.client.build_command("devices")[:3] == ["/usr/bin/ssh", "-p", "2022"]
