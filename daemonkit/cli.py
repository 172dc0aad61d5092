"""daemonkit CLI — run single-instance daemons, inspect and stop pidfile owners."""

from __future__ import annotations

import contextlib
import json
import logging
from datetime import datetime
from typing import Any, NoReturn

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from daemonkit.config import DaemonKitConfig, loadConfig
from daemonkit.control import pidStatus, stopDaemon
from daemonkit.daemon import DaemonizeOptions
from daemonkit.errors import DaemonKitError, PidFileFormatError
from daemonkit.pidfile import defaultPidPath, pidMtime, readPid
from daemonkit.runner import AlreadyRunning, runDaemon
from daemonkit.version import __version__

_cli = typer.Typer(
    name="daemonkit",
    help="Run commands as single-instance Unix daemons guarded by locked pidfiles.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
_config_cli = typer.Typer(help="Read/write [bold]~/.daemonkit/config.json[/bold].")
_cli.add_typer(_config_cli, name="config")

_console = Console()

_FORMAT_HELP = "Output format: human|json"


def _checkFormat(format: str) -> None:
    if format not in ("human", "json"):
        raise typer.BadParameter(f"Invalid format {format!r}; choose human or json")


def _fail(format: str, message: str, code: int = 1, **extra: Any) -> NoReturn:
    if format == "json":
        print(json.dumps({"ok": False, "error": message, **extra}))
    else:
        _console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code)


def _fmtTime(ts: float) -> str:
    if ts < 0:
        return "[dim](missing)[/dim]"
    return datetime.fromtimestamp(ts).isoformat(timespec="seconds")


@_cli.callback()
def _default(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    cfg = loadConfig()
    level = logging.DEBUG if verbose else cfg.log_level.upper()
    logging.basicConfig(level=level, format="%(name)s | %(message)s")


@_cli.command()
def version() -> None:
    """Print the daemonkit version."""
    print(__version__)


@_cli.command()
def run(
    command: list[str] = typer.Argument(help="Command to run, after --"),
    pidfile: str | None = typer.Option(
        None, "--pidfile", "-p", help="Pidfile path (default <run_dir>/<program>.pid)"
    ),
    foreground: bool = typer.Option(False, "--foreground", help="Do not daemonize"),
    no_close: bool = typer.Option(
        False, "--no-close", help="Keep open standard streams, fill in only missing ones"
    ),
    no_chdir: bool = typer.Option(False, "--no-chdir", help="Stay in the current directory"),
    user: str | None = typer.Option(None, "--user", "-u", help="Required user (name or uid)"),
    group: str | None = typer.Option(None, "--group", "-g", help="Required group (name or gid)"),
) -> None:
    """Daemonize, claim the pidfile and run COMMAND until it exits."""
    cfg = loadConfig()
    options = DaemonizeOptions(skip_close=no_close, skip_chdir=no_chdir)
    try:
        rc = runDaemon(
            command,
            pidfile,
            foreground=foreground,
            options=options,
            user=user,
            group=group,
            permissions=cfg.pid_permissions,
        )
    except AlreadyRunning as e:
        _console.print(f"[yellow]Already running:[/yellow] {escape(str(e))}")
        raise typer.Exit(1) from e
    except FileNotFoundError as e:
        _console.print(f"[red]Cannot run:[/red] {escape(str(e))}")
        raise typer.Exit(127) from e
    except DaemonKitError as e:
        _console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    raise typer.Exit(rc)


@_cli.command()
def status(
    pidfile: str | None = typer.Argument(None, help="Pidfile path"),
    format: str = typer.Option("human", "--format", "-f", help=_FORMAT_HELP),
) -> None:
    """Show whether the pidfile has a live owner."""
    _checkFormat(format)
    st = pidStatus(pidfile or defaultPidPath())
    if format == "json":
        print(st.model_dump_json())
        return

    t = Table(show_header=False, box=box.SIMPLE, padding=(0, 1))
    t.add_column("key", style="dim")
    t.add_column("val")
    t.add_row("pidfile", st.path)
    if st.running:
        t.add_row("state", "[green]running[/green]")
    elif st.stale:
        t.add_row("state", "[yellow]stale[/yellow] (no lock holder)")
    else:
        t.add_row("state", "[dim]not running[/dim]")
    t.add_row("pid", str(st.pid) if st.pid is not None else "[dim](none)[/dim]")
    t.add_row("modified", _fmtTime(st.mtime))
    _console.print(t)


@_cli.command()
def stop(
    pidfile: str | None = typer.Argument(None, help="Pidfile path"),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Seconds to wait"),
    format: str = typer.Option("human", "--format", "-f", help=_FORMAT_HELP),
) -> None:
    """Send SIGTERM to the pidfile owner and wait for it to exit."""
    _checkFormat(format)
    path = pidfile or defaultPidPath()
    wait = timeout if timeout is not None else loadConfig().stop_timeout
    try:
        stopped = stopDaemon(path, timeout=wait)
    except DaemonKitError as e:
        _fail(format, str(e))
    if format == "json":
        print(json.dumps({"ok": True, "stopped": stopped, "pidfile": path}))
    elif stopped:
        _console.print(f"[green]Stopped[/green] owner of {path}")
    else:
        _console.print(f"[dim]Not running:[/dim] {path}")


@_cli.command("read")
def read_cmd(
    pidfile: str = typer.Argument(help="Pidfile path"),
    format: str = typer.Option("human", "--format", "-f", help=_FORMAT_HELP),
) -> None:
    """Print the pid recorded in PIDFILE without touching its lock."""
    _checkFormat(format)
    try:
        pid = readPid(pidfile)
    except (OSError, PidFileFormatError) as e:
        _fail(format, str(e), pidfile=pidfile)
    mtime = pidMtime(pidfile)
    if format == "json":
        print(json.dumps({"ok": True, "pidfile": pidfile, "pid": pid, "mtime": mtime}))
    else:
        _console.print(f"[bold]{pid}[/bold]  [dim]{_fmtTime(mtime)}[/dim]")


# ============================================================
# config
# ============================================================


def _coerce(key: str, value: str) -> Any:
    field = DaemonKitConfig.model_fields[key]
    if field.annotation is int:
        # permissions are octal, like chmod
        return int(value, 8) if key == "pid_permissions" else int(value)
    if field.annotation is float:
        return float(value)
    if key == "log_level":
        return value.upper()
    return value


@_config_cli.command("list")
def config_list(
    format: str = typer.Option("human", "--format", "-f", help=_FORMAT_HELP),
) -> None:
    """Print the current config, highlighting non-default values."""
    _checkFormat(format)
    cfg = loadConfig()
    if format == "json":
        print(cfg.model_dump_json())
        raise typer.Exit()

    defaults = DaemonKitConfig()
    t = Table(show_header=False, box=box.SIMPLE, padding=(0, 1))
    t.add_column("key", style="dim")
    t.add_column("val")
    for key in DaemonKitConfig.model_fields:
        val = getattr(cfg, key)
        fmt = oct(val) if key == "pid_permissions" else str(val)
        if val != getattr(defaults, key):
            fmt = f"[yellow]{fmt}[/yellow]"
        t.add_row(key, fmt)
    _console.print(t)


@_config_cli.command("get")
def config_get(
    key: str = typer.Argument(help="Config key, e.g. run_dir"),
    format: str = typer.Option("human", "--format", "-f", help=_FORMAT_HELP),
) -> None:
    """Get a single config value."""
    _checkFormat(format)
    if key not in DaemonKitConfig.model_fields:
        _fail(format, f"Key not found: {key}")
    value = getattr(loadConfig(), key)
    if format == "json":
        print(json.dumps({"key": key, "value": value}))
    else:
        fmt = oct(value) if key == "pid_permissions" else str(value)
        _console.print(f"[bold]{key}[/bold] = {fmt}")


@_config_cli.command("set")
def config_set(
    key: str = typer.Argument(help="Config key"),
    value: str = typer.Argument(help="Value (pid_permissions in octal)"),
    format: str = typer.Option("human", "--format", "-f", help=_FORMAT_HELP),
) -> None:
    """Set a config value."""
    _checkFormat(format)
    from daemonkit.config import CONFIG_PATH

    if key not in DaemonKitConfig.model_fields:
        _fail(format, f"Key not found: {key}")
    try:
        coerced = _coerce(key, value)
    except ValueError as e:
        _fail(format, f"Invalid value for {key}: {e}")

    raw: dict = {}
    if CONFIG_PATH.exists():
        with contextlib.suppress(json.JSONDecodeError):
            raw = json.loads(CONFIG_PATH.read_text())
    raw[key] = coerced

    try:
        DaemonKitConfig(**raw)
    except ValidationError as e:
        _fail(format, f"Invalid value for {key}: {e.errors()[0]['msg']}")

    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_PATH.write_text(json.dumps(raw, indent=2) + "\n")
    if format == "json":
        print(json.dumps({"ok": True, "key": key, "value": coerced}))
    else:
        _console.print(f"[green]Set[/green] {key} = {coerced!r}")


def main() -> None:
    _cli()


if __name__ == "__main__":
    main()
