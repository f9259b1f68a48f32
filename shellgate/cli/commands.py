"""CLI commands for shellgate."""

import os
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from shellgate import __version__, __logo__

app = typer.Typer(
    name="shellgate",
    help=f"{__logo__} shellgate - restricted remote command server",
    no_args_is_help=True,
)

console = Console()

DEFAULT_PID_FILE = Path("shellgate.pid")


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} shellgate v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """shellgate - restricted remote command server."""
    pass


def _fail(message: str) -> None:
    from loguru import logger

    logger.error(message)
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


# ============================================================================
# Server
# ============================================================================


@app.command()
def serve(
    config: Path = typer.Option(None, "--config", "-c", help="Config file (default /etc/shellgate.conf)"),
    host: str = typer.Option(None, "--host", help="Address to listen on"),
    port: int = typer.Option(None, "--port", "-p", help="Port to listen on (>= 1024)"),
    queue: int = typer.Option(None, "--queue", help="Size of the pending connections queue"),
    timeout: float = typer.Option(None, "--timeout", help="Connection timeout in seconds"),
    cmdtimeout: float = typer.Option(None, "--cmdtimeout", help="Command timeout in seconds"),
    drain_timeout: float = typer.Option(None, "--drain-timeout", help="Seconds to wait for in-flight connections on shutdown"),
    logfile: Path = typer.Option(None, "--logfile", help="Log file location"),
    pidfile: Path = typer.Option(None, "--pidfile", help="PID file to use when running as a daemon"),
    daemon: bool = typer.Option(False, "--daemon", "-d", help="Run as a daemon process"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the server."""
    from shellgate.config import ConfigError, get_config_path, load_config
    from shellgate.control import AlreadyRunningError, ControlPlane, DaemonError
    from shellgate.log import setup_logging

    config_path = config or get_config_path()
    overrides = {
        "host": host,
        "port": port,
        "queue": queue,
        "timeout": timeout,
        "cmdtimeout": cmdtimeout,
        "drain_timeout": drain_timeout,
        "logfile": logfile,
        "pidfile": pidfile,
        "daemon": daemon or None,
    }

    try:
        server_config = load_config(config_path, overrides)
    except ConfigError as e:
        setup_logging(None, verbose)
        _fail(str(e))

    setup_logging(server_config.log_file, verbose)

    from loguru import logger

    logger.info(f" --- shellgate v{__version__} started")
    logger.info(f"Allowed commands: {', '.join(sorted(server_config.allowed_commands)) or '(none)'}")

    plane = ControlPlane(server_config, config_path=config_path)
    try:
        plane.run_forever()
    except AlreadyRunningError as e:
        _fail(str(e))
    except DaemonError as e:
        _fail(f"Cannot run as a daemon! Reason: {e}")
    except OSError as e:
        _fail(f"Cannot create a listen socket! Reason: {e}")


@app.command()
def check(
    config: Path = typer.Option(None, "--config", "-c", help="Config file (default /etc/shellgate.conf)"),
):
    """Validate a config file and show the resolved settings."""
    from shellgate.config import ConfigError, get_config_path, load_config

    config_path = config or get_config_path()
    try:
        server_config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {config_path} is valid")

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in server_config.model_dump(exclude={"allowed_commands"}).items():
        table.add_row(name, str(value))
    console.print(table)

    commands = Table(title="Allowed commands")
    commands.add_column("Command", style="green")
    for name in sorted(server_config.allowed_commands):
        commands.add_row(name)
    console.print(commands)


# ============================================================================
# Daemon control
# ============================================================================


def _signal_daemon(pidfile: Path, sig: signal.Signals) -> int:
    from shellgate.control import PidFile

    marker = PidFile(pidfile)
    pid = marker.read_pid()
    if pid is None:
        console.print(f"[red]No running daemon found (PID file {pidfile} missing or unreadable)[/red]")
        raise typer.Exit(1)
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        console.print(f"[yellow]Process {pid} is not running; stale PID file {pidfile}[/yellow]")
        raise typer.Exit(1)
    except PermissionError:
        console.print(f"[red]Not permitted to signal process {pid}[/red]")
        raise typer.Exit(1)
    return pid


@app.command()
def reload(
    pidfile: Path = typer.Option(DEFAULT_PID_FILE, "--pidfile", help="PID file of the running daemon"),
):
    """Ask the running daemon to reload its allowed commands list."""
    pid = _signal_daemon(pidfile, signal.SIGHUP)
    console.print(f"[green]✓[/green] Reload requested (PID {pid})")


@app.command()
def stop(
    pidfile: Path = typer.Option(DEFAULT_PID_FILE, "--pidfile", help="PID file of the running daemon"),
):
    """Stop the running daemon."""
    pid = _signal_daemon(pidfile, signal.SIGTERM)
    console.print(f"[green]✓[/green] Shutdown requested (PID {pid})")


@app.command()
def status(
    pidfile: Path = typer.Option(DEFAULT_PID_FILE, "--pidfile", help="PID file of the running daemon"),
):
    """Show whether the daemon is running."""
    from shellgate.control import PidFile

    marker = PidFile(pidfile)
    pid = marker.read_pid()
    if pid is None:
        console.print("[dim]Not running[/dim]")
        raise typer.Exit(1)
    if marker.is_alive():
        console.print(f"[green]●[/green] Running (PID {pid})")
    else:
        console.print(f"[yellow]●[/yellow] Not running, stale PID file {pidfile} (PID {pid})")
        raise typer.Exit(1)
