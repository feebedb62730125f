"""realmrelay CLI - command line interface for the relay."""

import json
import os
import sys
from pathlib import Path
from typing import Optional

import click

from realmrelay import __version__


# --- PID File ---


def get_pid_file() -> Path:
    """Get path to PID file."""
    return Path.home() / ".realmrelay" / "relay.pid"


def read_pid() -> Optional[int]:
    """Read PID from file, return None if not found or stale."""
    pid_file = get_pid_file()
    if not pid_file.exists():
        return None

    try:
        pid = int(pid_file.read_text().strip())
        # Check if process exists
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        return None


def write_pid(pid: int) -> None:
    """Write PID to file."""
    pid_file = get_pid_file()
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(pid))


def remove_pid() -> None:
    """Remove PID file."""
    pid_file = get_pid_file()
    if pid_file.exists():
        pid_file.unlink()


def _load(config_path: Optional[str]):
    from realmrelay.config import load_config
    from realmrelay.interfaces import ConfigError

    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


# --- CLI Groups ---


@click.group()
@click.version_option(version=__version__, prog_name="realmrelay")
def cli():
    """realmrelay - chat relay and moderation bot for game realms."""
    pass


# --- Core Commands ---


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--console", is_flag=True, help="Run against stdin/stdout instead of Telegram")
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging")
@click.option("--no-connect", is_flag=True, help="Do not connect to the realm on start")
def run(config_path: Optional[str], console: bool, debug: bool, no_connect: bool):
    """Start the relay."""
    existing_pid = read_pid()
    if existing_pid:
        click.echo(f"Relay already running (PID {existing_pid})", err=True)
        sys.exit(1)

    cfg = _load(config_path)
    if debug:
        cfg.log_level = "debug"

    from realmrelay.logger import RelayLogger
    from realmrelay.relay import RealmRelay
    from realmrelay.storage import RelayStore

    logger = RelayLogger(cfg.log_level)
    store = RelayStore(cfg.state_path, cfg.history_path)

    if console:
        from realmrelay.console import ConsoleFeed, ConsoleSink

        gateway = ConsoleFeed()
        sink = ConsoleSink()
        factory = gateway.create_session
        poll_interval = 0.0
    else:
        from realmrelay.telegram import TelegramGateway

        gateway = TelegramGateway(cfg.get_section("telegram"))
        if not gateway.configured:
            click.echo("Error: TELEGRAM_BOT_TOKEN not set", err=True)
            sys.exit(1)
        sink = gateway
        factory = _session_factory(cfg)
        poll_interval = 1.0

    relay = RealmRelay(cfg, sink, factory, store=store, logger=logger)
    if console:
        # Console replies and notifications share one channel
        sink.bind("console")

    write_pid(os.getpid())
    try:
        import asyncio

        asyncio.run(
            relay.run(gateway, connect=not no_connect, poll_interval=poll_interval)
        )
    except KeyboardInterrupt:
        pass
    finally:
        remove_pid()


def _session_factory(cfg):
    """Resolve the realm client factory from `realm.client: module:callable`."""
    import importlib

    spec = cfg.get_section("realm").get("client")
    if not spec or ":" not in spec:
        click.echo(
            "Error: realm.client must name a session factory (module:callable). "
            "Use --console to run without one.",
            err=True,
        )
        sys.exit(1)

    module_name, attr = spec.split(":", 1)
    try:
        return getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        click.echo(f"Error: cannot load realm client {spec}: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status(as_json: bool):
    """Show relay status."""
    pid = read_pid()
    status_data = {"running": pid is not None, "pid": pid}

    if as_json:
        click.echo(json.dumps(status_data, indent=2))
        return

    click.echo("Relay Status")
    click.echo("──────────────")
    if status_data["running"]:
        click.echo(f"State:    Running (PID {pid})")
    else:
        click.echo("State:    Not running")


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--limit", "-n", default=20, show_default=True, help="Entries to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def history(config_path: Optional[str], limit: int, as_json: bool):
    """Show recent join/leave history."""
    from dataclasses import asdict

    from realmrelay.storage import RelayStore

    cfg = _load(config_path)
    entries = RelayStore(cfg.state_path, cfg.history_path).read_history()
    entries = entries[-limit:] if limit > 0 else entries

    if as_json:
        click.echo(json.dumps([asdict(e) for e in entries], indent=2))
        return

    if not entries:
        click.echo("No history.")
        return

    for entry in entries:
        device = f" ({entry.device})" if entry.device else ""
        click.echo(f"{entry.timestamp}  {entry.event:<5}  {entry.username}{device}")


@cli.command()
@click.option("--table", "-t", default="protocol", show_default=True, help="Device table name")
def devices(table: str):
    """Show a platform code table."""
    from realmrelay.devices import DeviceTable
    from realmrelay.interfaces import ConfigError

    try:
        device_table = DeviceTable(table)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    for code, device in device_table.items():
        click.echo(f"{code:>3}  {device}")
    click.echo(f"  *  {device_table.default}")


# --- Config Commands ---


@cli.group()
def config():
    """Configuration commands."""
    pass


def _mask_secrets(data: dict) -> dict:
    """Mask sensitive values in config dict."""
    secret_keys = {"api_key", "secret", "password", "token", "bot_token"}
    result = {}
    for k, v in data.items():
        if isinstance(v, dict):
            result[k] = _mask_secrets(v)
        elif k in secret_keys and isinstance(v, str) and len(v) > 4:
            result[k] = f"***{v[-4:]}"
        else:
            result[k] = v
    return result


@config.command("show")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--reveal", is_flag=True, help="Show secrets unmasked")
def config_show(config_path: Optional[str], reveal: bool):
    """Show current configuration.

    Secrets are masked by default (use --reveal to show).
    """
    import yaml

    cfg = _load(config_path)
    data = dict(cfg._raw) if cfg._raw else {}

    if not reveal:
        data = _mask_secrets(data)

    if data:
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        click.echo("# No configuration loaded")
        click.echo("# Create ~/.realmrelay/relay.yml or ./relay.yml")


@config.command("path")
def config_path_cmd():
    """Show which config file would be used."""
    from realmrelay.config import find_config_path

    path = find_config_path()
    suffix = "" if path.exists() else " (not found)"
    click.echo(f"{path}{suffix}")


@config.command("validate")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
def config_validate(config_path: Optional[str]):
    """Check the configuration for errors."""
    cfg = _load(config_path)
    click.echo(
        f"OK: {cfg.reconnect_attempts} reconnect attempts every "
        f"{cfg.reconnect_interval:g}s, device table '{cfg.device_table}'"
    )


def main():
    cli()


if __name__ == "__main__":
    main()
