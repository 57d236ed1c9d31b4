import asyncio
import contextlib
import getpass
from importlib.metadata import PackageNotFoundError, version as package_version
import json
import logging
from pathlib import Path
import signal
import socket
from dataclasses import dataclass
from typing import Any
import uuid

import httpx
import typer

from neonbridge.config import ConfigStore, generate_device_token
from neonbridge.connection import ConnectionManager, NotConfiguredError
from neonbridge.executor import DEFAULT_AGENT_COMMAND
from neonbridge.system_info import UNKNOWN_VERSION, SystemInfoProvider, probe_agent_version

app = typer.Typer(help="NeonBridge agent: run Claude Code on behalf of a remote controller.")

HEALTH_TIMEOUT_SECONDS = 5.0
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _CLIOptions:
    config_path: Path | None = None
    stable_json: bool = True


_CLI_OPTIONS = _CLIOptions()


def _resolve_cli_version() -> str:
    try:
        return package_version("neonbridge")
    except PackageNotFoundError:
        from neonbridge import __version__ as local_version

        return local_version


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(_resolve_cli_version(), color=False)
    raise typer.Exit()


@app.callback()
def app_options(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show NeonBridge version and exit.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Config file path (defaults to $NEONBRIDGE_CONFIG_PATH or ~/.config/neonbridge/config.json).",
    ),
    stable_json: bool = typer.Option(
        True,
        "--stable-json/--pretty-json",
        help="Emit stable compact JSON (or pretty JSON).",
    ),
) -> None:
    """Global options for all CLI commands."""
    _CLI_OPTIONS.config_path = config
    _CLI_OPTIONS.stable_json = stable_json


def _echo(message: str, *, err: bool = False) -> None:
    typer.echo(message, err=err)


def _echo_json(payload: dict[str, Any], *, err: bool = False) -> None:
    if _CLI_OPTIONS.stable_json:
        rendered = json.dumps(payload, ensure_ascii=True, sort_keys=True, separators=(",", ":"))
    else:
        rendered = json.dumps(payload, ensure_ascii=True, sort_keys=True, indent=2)
    typer.echo(rendered, err=err)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def _load_store() -> ConfigStore:
    store = ConfigStore(_CLI_OPTIONS.config_path)
    store.load()
    return store


def probe_server_health(
    server_url: str,
    *,
    timeout: float = HEALTH_TIMEOUT_SECONDS,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    """GET ``<server>/api/health`` and summarize reachability."""
    url = server_url.rstrip("/") + "/api/health"
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(url)
    except httpx.HTTPError as error:
        return {"url": url, "reachable": False, "status_code": None, "error": str(error) or type(error).__name__}
    return {
        "url": url,
        "reachable": response.is_success,
        "status_code": response.status_code,
        "error": None,
    }


@app.command("setup")
def setup_command(
    name: str | None = typer.Option(None, "--name", help="Friendly name for this device."),
    server: str | None = typer.Option(None, "--server", help="Controller server URL."),
    working_dir: Path | None = typer.Option(
        None,
        "--working-dir",
        help="Default working directory for commands (defaults to the current directory).",
    ),
    skip_agent_check: bool = typer.Option(
        False,
        "--skip-agent-check",
        help="Register even when the claude CLI cannot be found.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit machine-readable JSON output."),
) -> None:
    """Register this machine locally with a fresh agent id and device token."""
    agent_version = asyncio.run(probe_agent_version(DEFAULT_AGENT_COMMAND))
    if agent_version == UNKNOWN_VERSION and not skip_agent_check:
        _echo("setup failed: Claude Code is not installed or not in PATH", err=True)
        _echo("Install it with: npm install -g @anthropic-ai/claude-code", err=True)
        raise typer.Exit(code=1)

    store = _load_store()
    updates: dict[str, Any] = {
        "agent_id": uuid.uuid4().hex[:15],
        "device_token": generate_device_token(),
        "device_name": name or f"{getpass.getuser()}@{socket.gethostname()}",
        "default_working_dir": str((working_dir or Path.cwd()).expanduser().resolve()),
        "is_configured": True,
    }
    if server:
        updates["server_url"] = server
    store.set(**updates)
    try:
        store.save()
    except OSError as error:
        _echo(f"setup failed: could not write {store.path}: {error}", err=True)
        raise typer.Exit(code=1) from error

    config = store.config
    if json_output:
        _echo_json(
            {
                "status": "configured",
                "agent_id": config.agent_id,
                "device_name": config.device_name,
                "server_url": config.server_url,
                "config_path": str(store.path),
                "claude_code_version": agent_version,
            }
        )
        return

    _echo(f"registered locally: agent_id={config.agent_id}")
    _echo(f"name: {config.device_name}")
    _echo(f"server: {config.server_url}")
    _echo(f"config: {store.path}")
    _echo("start the bridge with: neonbridge start")


@app.command("status")
def status_command(
    json_output: bool = typer.Option(False, "--json", help="Emit machine-readable JSON output."),
) -> None:
    """Show configuration, agent availability and server reachability."""
    store = _load_store()
    config = store.config
    if not config.is_configured:
        if json_output:
            _echo_json({"configured": False, "config_path": str(store.path)})
        else:
            _echo("agent not configured")
            _echo("run: neonbridge setup")
        return

    agent_version = asyncio.run(probe_agent_version(DEFAULT_AGENT_COMMAND))
    health = probe_server_health(config.server_url)
    payload = {
        "configured": True,
        "agent_id": config.agent_id,
        "device_name": config.device_name,
        "server_url": config.server_url,
        "default_working_dir": config.default_working_dir,
        "allowed_tools": list(config.allowed_tools),
        "config_path": str(store.path),
        "claude_code_version": agent_version,
        "server": health,
    }
    if json_output:
        _echo_json(payload)
        return

    _echo(f"agent id: {config.agent_id}")
    _echo(f"name: {config.device_name}")
    _echo(f"server: {config.server_url}")
    _echo(f"working dir: {config.default_working_dir}")
    _echo(f"claude code: {agent_version}")
    _echo(f"config: {store.path}")
    _echo(f"tools: {', '.join(config.allowed_tools)}")
    if health["reachable"]:
        _echo("server reachable")
    elif health["status_code"] is not None:
        _echo(f"server responded with {health['status_code']}")
    else:
        _echo(f"cannot reach server at {config.server_url}")
    if agent_version == UNKNOWN_VERSION:
        _echo("claude code not found in PATH")


@app.command("start")
def start_command(
    server: str | None = typer.Option(None, "--server", help="Controller server URL override."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=1.0,
        help="Wall-clock limit per command in seconds.",
    ),
) -> None:
    """Connect to the controller and serve commands until interrupted."""
    _configure_logging(verbose)
    store = _load_store()
    config = store.config
    if not config.is_configured:
        _echo("agent not configured yet", err=True)
        _echo("run: neonbridge setup", err=True)
        raise typer.Exit(code=1)

    _echo(f"agent: {config.device_name} ({config.agent_id[:8]}...)")
    _echo(f"server: {server or config.server_url}")
    _echo(f"working dir: {config.default_working_dir}")
    _echo(f"config: {store.path}")

    try:
        manager = ConnectionManager(
            store,
            server_url=server,
            system_info_provider=SystemInfoProvider(default_working_dir=config.default_working_dir),
            command_timeout=timeout,
        )
    except ValueError as error:
        _echo(f"start failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    try:
        asyncio.run(_serve_until_stopped(manager))
    except NotConfiguredError as error:
        _echo(f"start failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    except KeyboardInterrupt:
        pass
    _echo("bridge stopped")


async def _serve_until_stopped(manager: ConnectionManager) -> None:
    loop = asyncio.get_running_loop()
    shutdown_tasks: set[asyncio.Task[None]] = set()

    def _request_shutdown(signame: str) -> None:
        logger.info("%s received, shutting down...", signame)
        task = loop.create_task(manager.shutdown())
        shutdown_tasks.add(task)
        task.add_done_callback(shutdown_tasks.discard)

    for signum in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, _request_shutdown, signal.Signals(signum).name)

    try:
        await manager.run()
    finally:
        if shutdown_tasks:
            await asyncio.gather(*shutdown_tasks)
        await manager.shutdown()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signum)


def main() -> None:
    app()
