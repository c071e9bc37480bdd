"""Main CLI entry point - one subcommand per daemon query."""

import logging
from pathlib import Path
from typing import List, Optional

import typer

from nixlink.core.configs import ConnectionSettings, get_connection_settings, open_connection
from nixlink.daemon import protocol
from nixlink.daemon.client import StoreConnection
from nixlink.daemon.errors import StoreError
from nixlink.ui.output import ConsoleStderrHandler, UIManager

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="nixlink - query a Nix daemon over its worker protocol.",
)

EXIT_STORE_ERROR = 2


# ============================================================================
# Shared Setup
# ============================================================================

def _resolve_settings(
    store: Optional[str], socket_path: Optional[Path], verbose: bool
) -> ConnectionSettings:
    """Merge config file/environment settings with command-line overrides. Exits on error."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    try:
        settings = get_connection_settings()
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(EXIT_STORE_ERROR)

    if store:
        settings.transport = "spawn"
        settings.store_uri = store
    elif socket_path:
        settings.transport = "socket"
        settings.socket_path = socket_path
    if verbose:
        settings.show_activities = True
    return settings


def _connect(settings: ConnectionSettings, ui: UIManager) -> StoreConnection:
    handler = ConsoleStderrHandler(ui, show_activities=settings.show_activities)
    try:
        return open_connection(settings, handler)
    except StoreError as e:
        ui.error(f"Cannot connect to daemon: {e}")
        raise typer.Exit(EXIT_STORE_ERROR)


# ============================================================================
# Commands
# ============================================================================

@app.command("is-valid")
def is_valid(
    path: str = typer.Argument(..., help="Store path to check"),
    store: Optional[str] = typer.Option(
        None, "--store", help="Spawn 'nix-daemon --store URI --stdio' instead of the socket"
    ),
    socket_path: Optional[Path] = typer.Option(None, "--socket", help="Path of the daemon socket"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and daemon activities"),
) -> None:
    """
    Check whether a store path is valid. Exit code 0 if valid, 1 if not.

    Example: nixlink is-valid /nix/store/...-hello-2.12.1
    """
    ui = UIManager()
    settings = _resolve_settings(store, socket_path, verbose)

    try:
        with _connect(settings, ui) as conn:
            valid = conn.is_valid_path(path)
    except StoreError as e:
        ui.error(f"Error: {e}")
        raise typer.Exit(EXIT_STORE_ERROR)

    typer.echo(f"{path} is {'' if valid else 'in'}valid")
    raise typer.Exit(0 if valid else 1)


@app.command("query-valid")
def query_valid(
    paths: List[str] = typer.Argument(..., help="Store paths to check"),
    store: Optional[str] = typer.Option(
        None, "--store", help="Spawn 'nix-daemon --store URI --stdio' instead of the socket"
    ),
    socket_path: Optional[Path] = typer.Option(None, "--socket", help="Path of the daemon socket"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and daemon activities"),
) -> None:
    """
    Print which of the given store paths are valid, one per line.

    Example: nixlink query-valid /nix/store/...-a /nix/store/...-b
    """
    ui = UIManager()
    settings = _resolve_settings(store, socket_path, verbose)

    try:
        with _connect(settings, ui) as conn:
            valid = conn.query_valid_paths(paths)
    except StoreError as e:
        ui.error(f"Error: {e}")
        raise typer.Exit(EXIT_STORE_ERROR)

    for path in sorted(valid):
        typer.echo(path)


@app.command()
def info(
    store: Optional[str] = typer.Option(
        None, "--store", help="Spawn 'nix-daemon --store URI --stdio' instead of the socket"
    ),
    socket_path: Optional[Path] = typer.Option(None, "--socket", help="Path of the daemon socket"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and daemon activities"),
) -> None:
    """Show how the daemon was reached and which versions it reports."""
    from rich.console import Console
    from rich.table import Table

    ui = UIManager()
    settings = _resolve_settings(store, socket_path, verbose)

    try:
        with _connect(settings, ui) as conn:
            nix_version = conn.daemon_nix_version
            daemon_version = conn.daemon_version
    except StoreError as e:
        ui.error(f"Error: {e}")
        raise typer.Exit(EXIT_STORE_ERROR)

    if settings.transport == "spawn":
        target = f"{settings.daemon_program} --store {settings.store_uri} --stdio"
    else:
        target = str(settings.socket_path)

    table = Table(title="Nix daemon", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Transport", settings.transport)
    table.add_row("Target", target)
    table.add_row("Nix version", nix_version)
    table.add_row("Protocol", protocol.protocol_version_string(daemon_version))
    Console().print(table)


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()
