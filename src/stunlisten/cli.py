"""Typer-powered command line for ``stunlisten``.

The CLI loads the service configuration, resolves every configured listener
exactly as the relay engine would receive it, and reports the result. It never
opens sockets; it is meant for checking a deployment before it goes live.
"""
from __future__ import annotations

import logging
import textwrap
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import get_version
from .collaborators import Collaborators
from .config import AppConfig, ConfigError, load_config
from .engine import EngineUnavailableError, load_engine
from .exit_codes import ExitCode
from .options import LISTEN_DEFAULTS, ListenerOptionError
from .pki import PKIStore
from .resolver import resolve_listener

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to stunlisten's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)
LISTENER_INDEX_OPTION = typer.Option(
    None,
    "--listener",
    "-l",
    min=0,
    help="Only resolve the listener at this index (0-based).",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        STUN/TURN listener configuration tool.

        Loads the service configuration and shows each listener's options as
        they will be handed to the relay engine.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the service configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Loaded configuration and lookups shared by every command."""

    config: AppConfig
    _collaborators: Collaborators | None = field(default=None, repr=False)

    @property
    def collaborators(self) -> Collaborators:
        """Return the lookups built from the configuration, loading them once."""
        if self._collaborators is None:
            self._collaborators = Collaborators.from_config(self.config)
        return self._collaborators


def _configure_logging(level: str) -> None:
    """Route package logs through a Rich handler on stderr."""
    logger = logging.getLogger("stunlisten")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(console=err_console, show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level.upper())


def _command_error(message: str, *, rc: ExitCode = ExitCode.VALIDATION) -> NoReturn:
    """Print *message* and terminate the command with *rc*."""
    err_console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=int(rc))


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    try:
        config = load_config(config_file)
    except ConfigError as exc:
        _command_error(f"Configuration error: {exc}")
    _configure_logging(config.log_level)
    runtime = RuntimeContext(config=config)
    ctx.obj = runtime
    return runtime


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the stunlisten version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Load configuration before any subcommand runs."""
    if version:
        console.print(f"stunlisten {get_version()}")
        raise typer.Exit(code=0)

    # The defaults table does not depend on the service configuration.
    if ctx.invoked_subcommand != "options":
        _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


@app.command("options")
def options_list(json_output: bool = JSON_OPTION) -> None:
    """Show the listener option defaults."""
    rendered = {key: _render(value) for key, value in LISTEN_DEFAULTS.items()}
    if json_output:
        console.print_json(data={"defaults": rendered})
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Option", style="bold")
    table.add_column("Default")
    for key, value in rendered.items():
        table.add_row(key, "(undefined)" if value is None else str(value))
    console.print(table)


@app.command("resolve")
def resolve(
    ctx: typer.Context,
    listener: int | None = LISTENER_INDEX_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Resolve configured listeners into engine-ready options."""
    runtime = _get_runtime(ctx)
    entries = list(enumerate(runtime.config.listeners))
    if listener is not None:
        if listener >= len(entries):
            _command_error(
                f"Listener index {listener} is out of range "
                f"({len(entries)} listener(s) configured)."
            )
        entries = [entries[listener]]

    results: list[dict[str, object]] = []
    for index, entry in entries:
        try:
            resolved = resolve_listener(entry.options, runtime.collaborators)
        except ListenerOptionError as exc:
            _command_error(f"listeners[{index}]: {exc}")
        results.append(
            {
                "index": index,
                "port": entry.port,
                "ip": entry.ip,
                "transport": entry.transport,
                "resolved": resolved.to_dict(),
            }
        )

    if json_output:
        console.print_json(data={"listeners": results})
        return

    if not results:
        console.print("No listeners configured.")
        return

    for result in results:
        console.print(
            f"[bold]listeners[{result['index']}][/bold] "
            f"{result['transport']}://{result['ip']}:{result['port']}"
        )
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Option", style="bold")
        table.add_column("Value")
        resolved_map = result["resolved"]
        assert isinstance(resolved_map, Mapping)
        for key, value in resolved_map.items():
            table.add_row(str(key), "(undefined)" if value is None else str(value))
        console.print(table)


@app.command("certs")
def certs(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List certificates known to the PKI store and domain settings."""
    runtime = _get_runtime(ctx)
    pki = PKIStore(runtime.config.certfiles)
    entries = [entry.to_dict() for entry in pki.entries]
    domain_certfile = {
        domain: str(path) for domain, path in runtime.config.domain_certfile.items()
    }

    if json_output:
        console.print_json(data={"pki": entries, "domain_certfile": domain_certfile})
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source", style="bold")
    table.add_column("Domains")
    table.add_column("Path")
    table.add_column("Expires")
    for entry in pki.entries:
        table.add_row(
            "pki",
            ", ".join(entry.domains),
            str(entry.path),
            entry.not_valid_after.isoformat(),
        )
    for domain, path in domain_certfile.items():
        table.add_row("domain_certfile", domain, path, "")
    if not pki.entries and not domain_certfile:
        table.add_row("(none)", "", "", "")
    console.print(table)


@app.command("engine")
def engine_check(ctx: typer.Context) -> None:
    """Check that the configured relay engine can be imported."""
    runtime = _get_runtime(ctx)
    try:
        engine = load_engine(runtime.config.engine)
    except EngineUnavailableError as exc:
        _command_error(str(exc), rc=ExitCode.ENVIRONMENT)
    console.print(
        f"Relay engine [bold]{runtime.config.engine}[/bold] is available "
        f"({type(engine).__qualname__})."
    )


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the loaded service configuration."""
    runtime = _get_runtime(ctx)
    payload = runtime.config.to_dict()
    if json_output:
        console.print_json(data=payload)
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        table.add_row(key, str(value))
    console.print(table)


def _render(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


__all__ = ["app"]
