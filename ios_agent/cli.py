from __future__ import annotations

import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from ios_agent import __version__, envelope, errors, models, remote, simctl, tailscale, utils
from ios_agent.bridge import BUTTONS, AppNotInstalledError, Bridge, BridgeError
from ios_agent.manager import DEFAULT_TIMEOUT_SEC, DeviceManager

app = typer.Typer(
    help="iOS simulator automation for scripts and agents. Every command prints one JSON envelope.",
    no_args_is_help=True,
)
simulator_app = typer.Typer(help="Boot and shut down simulators")
app_app = typer.Typer(help="Launch, terminate and install apps")
io_app = typer.Typer(help="UI input: tap, text, swipe, hardware buttons")
app.add_typer(simulator_app, name="simulator")
app.add_typer(app_app, name="app")
app.add_typer(io_app, name="io")
console = Console()
log = utils.get_logger(__name__)

_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}


@app.callback()
def _main_callback(
    ctx: typer.Context,
    device: Optional[str] = typer.Option(
        None, "--device", "-d", envvar="IOS_AGENT_DEVICE", help="Default device ID for commands that need one"
    ),
    remote_host: Optional[str] = typer.Option(
        None, "--remote-host", envvar="IOS_AGENT_REMOTE_HOST", help="Run against a remote agent (host[:port])"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging on stderr"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Also write a session log into this directory"),
    output_format: str = typer.Option("json", "--format", help="Output format: json or table"),
) -> None:
    utils.configure_logging(log_dir=log_dir, verbose=verbose)
    output_format = output_format.lower()
    if output_format not in ("json", "table"):
        _fail("cli", errors.invalid_format("--format", output_format, "json or table"))
    ctx.obj = models.Settings(
        device_id=device,
        remote_host=remote_host,
        verbose=verbose,
        log_dir=log_dir,
        output_format=output_format,
    )


def echo_json(data: dict) -> None:
    typer.echo(envelope.dumps(data))


def _fail(action: str, exc: errors.AgentError) -> None:
    echo_json(envelope.build_error(action, exc))
    raise typer.Exit(exc.exit_code)


def _settings(ctx: typer.Context) -> models.Settings:
    if isinstance(ctx.obj, models.Settings):
        return ctx.obj
    return models.Settings()


def _run(
    action: str,
    handler: Callable[[], Any],
    *,
    settings: Optional[models.Settings] = None,
    render: Optional[Callable[[Any], None]] = None,
) -> None:
    """Run one command handler and print exactly one envelope for it."""
    try:
        result = handler()
    except errors.AgentError as exc:
        log.debug("%s failed: %s", action, exc)
        _fail(action, exc)
    except Exception as exc:
        log.exception("Unexpected failure in %s", action)
        _fail(action, errors.internal_error(exc))

    if render is not None and settings is not None and settings.output_format == "table":
        render(result)
    else:
        echo_json(envelope.build_success(action, result))
    raise typer.Exit(0)


def _build_bridge(settings: models.Settings) -> Bridge:
    if settings.remote_host:
        try:
            return remote.RemoteBridge.from_settings(settings)
        except ValueError as exc:
            raise errors.AgentError(
                errors.ErrorCode.DEVICE_UNREACHABLE,
                f"invalid remote host: {exc}",
                {"remote_host": settings.remote_host},
            ) from exc
    return simctl.SimctlBridge.from_settings(settings)


def _require_device(device: Optional[str], settings: models.Settings) -> str:
    device_id = device or settings.device_id
    if not device_id:
        raise errors.device_required()
    return device_id


def _parse_bool(value: str, option: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise errors.invalid_format(option, value, "true or false")


def _parse_timeout(value: str) -> int:
    try:
        seconds = int(value.strip())
    except ValueError:
        seconds = 0
    if seconds < 1:
        raise errors.invalid_format("--timeout", value, "a positive number of seconds")
    return seconds


def _check_coordinates(**coords: int) -> None:
    if any(value < 0 for value in coords.values()):
        raise errors.invalid_coordinates(**coords)


def _default_screenshot_path(prefix: str, image_format: str) -> Path:
    extension = "jpg" if image_format == "jpeg" else "png"
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return Path(tempfile.gettempdir()) / f"{prefix}-{stamp}.{extension}"


def _render_devices(listing: models.DeviceList) -> None:
    if not listing.devices:
        typer.echo("No devices found.")
    else:
        table = Table(title="iOS devices")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("State")
        table.add_column("OS")
        table.add_column("Type")
        table.add_column("Location")
        for d in listing.devices:
            location = d.location or "?"
            if d.remote_host:
                location = f"{location} ({d.remote_host})"
            table.add_row(d.id, d.name, d.state.value, d.os_version, d.type, location)
        console.print(table)

    if listing.machines:
        machines = Table(title="Tailscale machines")
        machines.add_column("Name")
        machines.add_column("IP")
        machines.add_column("Online")
        machines.add_column("OS")
        for m in listing.machines:
            machines.add_row(m.name or "?", m.ip, "yes" if m.online else "no", m.os or "?")
        console.print(machines)


@app.command()
def version() -> None:
    _run("version", lambda: {"version": __version__})


@app.command(name="devices")
def devices_cmd(
    ctx: typer.Context,
    include_remote: bool = typer.Option(
        False, "--include-remote", help="Also list machines reachable over Tailscale"
    ),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.DeviceList:
        manager = DeviceManager.from_settings(_build_bridge(settings), settings)
        listing = models.DeviceList(devices=manager.list_devices())
        if include_remote:
            try:
                listing.machines = tailscale.discover_machines()
            except tailscale.TailscaleError as exc:
                log.warning("Skipping remote discovery: %s", exc)
        return listing

    _run("devices.list", handler, settings=settings, render=_render_devices)


@simulator_app.command("boot")
def simulator_boot_cmd(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", help="Simulator name, e.g. 'iPhone 15 Pro'"),
    os_version: str = typer.Option("", "--os-version", help="OS version filter used with --name, e.g. 17.4"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
    wait: str = typer.Option("true", "--wait", help="Wait until the simulator is booted (true/false)"),
    timeout: str = typer.Option(str(DEFAULT_TIMEOUT_SEC), "--timeout", help="Seconds to wait for the boot"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.BootResult:
        should_wait = _parse_bool(wait, "--wait")
        timeout_sec = _parse_timeout(timeout)
        manager = DeviceManager.from_settings(_build_bridge(settings), settings)
        if name:
            target = manager.find_device_by_name_and_os_version(name, os_version)
        else:
            device_id = device or settings.device_id
            if not device_id:
                raise errors.AgentError(
                    errors.ErrorCode.DEVICE_REQUIRED,
                    "simulator name or device ID is required (use --name or --device)",
                )
            target = manager.get_device(device_id)
        log.info("Booting %s (%s, iOS %s)", target.id, target.name, target.os_version)
        return manager.boot_simulator(target.id, wait=should_wait, timeout_sec=timeout_sec)

    _run("simulator.boot", handler)


@simulator_app.command("shutdown")
def simulator_shutdown_cmd(
    ctx: typer.Context,
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
    wait: str = typer.Option("true", "--wait", help="Wait until the simulator is shut down (true/false)"),
    timeout: str = typer.Option(str(DEFAULT_TIMEOUT_SEC), "--timeout", help="Seconds to wait for the shutdown"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.ShutdownResult:
        device_id = _require_device(device, settings)
        should_wait = _parse_bool(wait, "--wait")
        timeout_sec = _parse_timeout(timeout)
        manager = DeviceManager.from_settings(_build_bridge(settings), settings)
        return manager.shutdown_simulator(device_id, wait=should_wait, timeout_sec=timeout_sec)

    _run("simulator.shutdown", handler)


@app_app.command("launch")
def app_launch_cmd(
    ctx: typer.Context,
    bundle: str = typer.Option(..., "--bundle", "-b", help="Bundle identifier, e.g. com.apple.mobilesafari"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.LaunchResult:
        device_id = _require_device(device, settings)
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).require_booted(device_id)
        started = datetime.now()
        try:
            pid = bridge.launch_app(target.udid, bundle)
        except AppNotInstalledError as exc:
            raise errors.app_not_found(target.id, bundle) from exc
        except BridgeError as exc:
            raise errors.app_launch_failed(target.id, bundle, str(exc)) from exc
        launch_ms = utils.elapsed_ms((datetime.now() - started).total_seconds())
        return models.LaunchResult(
            device=target,
            bundle_id=bundle,
            pid=pid,
            message=f"App launched successfully in {launch_ms}ms",
        )

    _run("app.launch", handler)


@app_app.command("terminate")
def app_terminate_cmd(
    ctx: typer.Context,
    bundle: str = typer.Option(..., "--bundle", "-b", help="Bundle identifier"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.TerminateResult:
        device_id = _require_device(device, settings)
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).get_device(device_id)
        try:
            bridge.terminate_app(target.udid, bundle)
        except BridgeError as exc:
            raise errors.app_terminate_failed(target.id, bundle, str(exc)) from exc
        return models.TerminateResult(device=target, bundle_id=bundle, message="App terminated successfully")

    _run("app.terminate", handler)


@app_app.command("install")
def app_install_cmd(
    ctx: typer.Context,
    app_path: str = typer.Option(..., "--app", "-a", help="Path to the .app bundle"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.InstallResult:
        device_id = _require_device(device, settings)
        # Remote installs resolve the path on the remote machine.
        if not settings.remote_host and not Path(app_path).exists():
            raise errors.path_error(app_path, "app bundle does not exist")
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).get_device(device_id)
        started = datetime.now()
        try:
            bundle_id = bridge.install_app(target.udid, app_path)
        except BridgeError as exc:
            raise errors.app_install_failed(target.id, f"failed to install app: {exc}", app_path=app_path) from exc
        install_ms = utils.elapsed_ms((datetime.now() - started).total_seconds())
        return models.InstallResult(
            device=target,
            app_path=app_path,
            bundle_id=bundle_id,
            install_time_ms=install_ms,
            message=f"App installed successfully in {install_ms}ms",
        )

    _run("app.install", handler)


@app.command(name="screenshot")
def screenshot_cmd(
    ctx: typer.Context,
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file (default: temp directory)"),
    image_format: str = typer.Option("png", "--format", "-f", help="Image format: png or jpeg"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.ScreenshotResult:
        device_id = _require_device(device, settings)
        fmt = image_format.lower()
        if fmt == "jpg":
            fmt = "jpeg"
        if fmt not in ("png", "jpeg"):
            raise errors.invalid_format("--format", image_format, "png or jpeg")
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).require_booted(device_id)

        path = Path(output) if output else _default_screenshot_path("screenshot", fmt)
        if not settings.remote_host:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise errors.path_error(str(path), f"cannot create output directory: {exc}") from exc
        try:
            return bridge.capture_screenshot(target.udid, str(path), fmt)
        except BridgeError as exc:
            raise errors.screenshot_failed(str(exc), device_id=target.id, path=str(path)) from exc

    _run("screenshot.capture", handler)


@io_app.command("tap")
def io_tap_cmd(
    ctx: typer.Context,
    x: int = typer.Option(..., "--x", "-x", help="X coordinate"),
    y: int = typer.Option(..., "--y", "-y", help="Y coordinate"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.TapResult:
        device_id = _require_device(device, settings)
        _check_coordinates(x=x, y=y)
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).require_booted(device_id)
        try:
            return bridge.tap(target.udid, x, y)
        except BridgeError as exc:
            raise errors.ui_action_failed(target.id, f"tap failed: {exc}", x=x, y=y) from exc

    _run("io.tap", handler)


@io_app.command("text")
def io_text_cmd(
    ctx: typer.Context,
    text: Optional[str] = typer.Option(None, "--text", "-t", help="Text to type"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.TextInputResult:
        device_id = _require_device(device, settings)
        if not text:
            raise errors.text_required()
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).require_booted(device_id)
        try:
            return bridge.type_text(target.udid, text)
        except BridgeError as exc:
            raise errors.ui_action_failed(target.id, f"text input failed: {exc}") from exc

    _run("io.text", handler)


@io_app.command("swipe")
def io_swipe_cmd(
    ctx: typer.Context,
    start_x: int = typer.Option(..., "--start-x", help="Start X coordinate"),
    start_y: int = typer.Option(..., "--start-y", help="Start Y coordinate"),
    end_x: int = typer.Option(..., "--end-x", help="End X coordinate"),
    end_y: int = typer.Option(..., "--end-y", help="End Y coordinate"),
    duration: int = typer.Option(300, "--duration", help="Swipe duration in milliseconds"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.SwipeResult:
        device_id = _require_device(device, settings)
        _check_coordinates(start_x=start_x, start_y=start_y, end_x=end_x, end_y=end_y)
        if duration <= 0:
            raise errors.ui_action_failed(device_id, "swipe duration must be positive", duration_ms=duration)
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).require_booted(device_id)
        try:
            return bridge.swipe(target.udid, start_x, start_y, end_x, end_y, duration)
        except BridgeError as exc:
            raise errors.ui_action_failed(target.id, f"swipe failed: {exc}") from exc

    _run("io.swipe", handler)


@io_app.command("button")
def io_button_cmd(
    ctx: typer.Context,
    button: Optional[str] = typer.Option(None, "--button", "-b", help=f"One of: {', '.join(BUTTONS)}"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.ButtonResult:
        device_id = _require_device(device, settings)
        if not button:
            raise errors.ui_action_failed(device_id, "button type is required (use --button flag)")
        name = button.strip().upper()
        if name not in BUTTONS:
            raise errors.ui_action_failed(
                device_id, f"invalid button type: {button} (must be one of: {', '.join(BUTTONS)})", button=button
            )
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).require_booted(device_id)
        try:
            return bridge.press_button(target.udid, name)
        except BridgeError as exc:
            raise errors.ui_action_failed(target.id, f"button press failed: {exc}", button=name) from exc

    _run("io.button", handler)


@app.command(name="state")
def state_cmd(
    ctx: typer.Context,
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Simulator UDID"),
    include_screenshot: bool = typer.Option(
        False, "--include-screenshot", help="Capture a screenshot alongside the state"
    ),
) -> None:
    settings = _settings(ctx)

    def handler() -> models.StateResult:
        device_id = _require_device(device, settings)
        bridge = _build_bridge(settings)
        target = DeviceManager.from_settings(bridge, settings).get_device(device_id)
        result = models.StateResult(
            device=models.DeviceInfo(
                id=target.id,
                name=target.name,
                state=target.state,
                os_version=target.os_version,
                runtime=f"iOS {target.os_version}",
            )
        )
        if target.state is not models.DeviceState.BOOTED:
            if include_screenshot:
                raise errors.device_not_booted(target.id, target.state.value)
            return result

        try:
            result.foreground_app = bridge.get_foreground_app(target.udid)
        except BridgeError as exc:
            log.warning("Could not determine foreground app on %s: %s", target.id, exc)

        if include_screenshot:
            path = _default_screenshot_path("state-screenshot", "png")
            try:
                result.screenshot = bridge.capture_screenshot(target.udid, str(path), "png").path
            except BridgeError as exc:
                log.warning("State screenshot on %s failed: %s", target.id, exc)
        return result

    _run("state", handler)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
