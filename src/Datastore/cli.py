# === NAVMAP v1 ===
# {
#   "module": "Datastore.cli",
#   "purpose": "Typer CLI for publishing, resolving, and listing datastore artifacts",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "commands", "name": "Commands", "anchor": "CMD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the datastore.

Example:
    $ datastore --store public publish ./model.bin org.example model.bin 3
    $ datastore --store public path org.example model.bin 3
    $ datastore cat datastore://public/org.example/model-v3.bin > model.bin
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .api import Datastore
from .errors import DatastoreError
from .locator import Locator
from .logging_utils import setup_logging
from .settings import DatastoreSettings, load_settings
from .urls import DatastoreResolver

_console = Console()
_err_console = Console(stderr=True)


class CliContext:
    """Shared state for one CLI invocation."""

    def __init__(self, settings: DatastoreSettings, store_name: Optional[str]) -> None:
        self.settings = settings
        self.store_name = store_name or settings.default_store
        self.console = _console
        self._datastore: Optional[Datastore] = None

    @property
    def datastore(self) -> Datastore:
        if self._datastore is None:
            self._datastore = Datastore(self.store_name, settings=self.settings)
        return self._datastore

    def resolver(self) -> DatastoreResolver:
        datastore = self.datastore
        resolver = DatastoreResolver(
            lambda name: Datastore(
                name, settings=self.settings, coordinator=datastore.coordinator
            ),
            coordinator=datastore.coordinator,
        )
        resolver.register(datastore)
        return resolver


app = typer.Typer(
    name="datastore",
    help="Publish and fetch versioned artifacts",
    no_args_is_help=True,
)


def _fail(exc: Exception) -> None:
    _err_console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(1)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"datastore {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    store: Optional[str] = typer.Option(
        None, "--store", "-s", help="Datastore name (defaults to DATASTORE_DEFAULT_STORE)"
    ),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Local cache root"),
    remote_url: Optional[str] = typer.Option(
        None,
        "--remote-url",
        help="Remote URL template, e.g. 's3://{name}.datastore' or '/mnt/shared/{name}'",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Datastore CLI - publish immutable artifacts and resolve them to local paths."""

    try:
        settings = load_settings(
            cache_dir=cache_dir, remote_url_template=remote_url, log_level=log_level
        )
    except DatastoreError as exc:
        _fail(exc)
    setup_logging(
        level=settings.log_level,
        log_dir=settings.log_dir,
        retention_days=settings.log_retention_days,
    )
    ctx.obj = CliContext(settings, store)


@app.command()
def publish(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, help="File or directory to publish"),
    group: str = typer.Argument(...),
    name: str = typer.Argument(...),
    version: int = typer.Argument(..., min=0),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing version"),
) -> None:
    """Publish a file or directory as GROUP/NAME VERSION."""

    state: CliContext = ctx.obj
    try:
        if path.is_dir():
            locator = state.datastore.publish_directory(path, group, name, version, overwrite)
        else:
            locator = state.datastore.publish_file(path, group, name, version, overwrite)
    except (DatastoreError, OSError) as exc:
        _fail(exc)
    state.console.print(f"[green]Published[/green] {state.datastore.url(locator)}")


@app.command("path")
def path_cmd(
    ctx: typer.Context,
    group: str = typer.Argument(...),
    name: str = typer.Argument(...),
    version: int = typer.Argument(..., min=0),
    directory: bool = typer.Option(False, "--directory", "-d", help="Resolve a directory"),
) -> None:
    """Print the local path of GROUP/NAME VERSION, downloading it when needed."""

    state: CliContext = ctx.obj
    try:
        resolved = state.datastore.path(Locator(group, name, version, directory))
    except DatastoreError as exc:
        _fail(exc)
    typer.echo(str(resolved))


@app.command("url")
def url_cmd(
    ctx: typer.Context,
    group: str = typer.Argument(...),
    name: str = typer.Argument(...),
    version: int = typer.Argument(..., min=0),
    directory: bool = typer.Option(False, "--directory", "-d"),
    relative: Optional[str] = typer.Option(None, "--relative", help="Path inside a directory"),
) -> None:
    """Print the datastore:// URL of GROUP/NAME VERSION."""

    state: CliContext = ctx.obj
    try:
        typer.echo(state.datastore.url(Locator(group, name, version, directory), relative))
    except (DatastoreError, ValueError) as exc:
        _fail(exc)


@app.command()
def cat(ctx: typer.Context, url: str = typer.Argument(..., help="datastore:// URL")) -> None:
    """Write the bytes behind URL to standard output."""

    state: CliContext = ctx.obj
    try:
        with state.resolver().open(url) as stream:
            for chunk in iter(lambda: stream.read(state.settings.chunk_size_bytes), b""):
                typer.echo(chunk, nl=False)
    except (DatastoreError, OSError) as exc:
        _fail(exc)


@app.command("ls")
def list_cmd(
    ctx: typer.Context,
    group: Optional[str] = typer.Argument(None, help="Group to list; omit to list groups"),
) -> None:
    """List groups, or the files and directories published in GROUP."""

    state: CliContext = ctx.obj
    datastore = state.datastore
    try:
        if group is None:
            for name in datastore.list_groups():
                typer.echo(name)
            return
        locators = datastore.list_files(group) + datastore.list_directories(group)
    except (DatastoreError, OSError) as exc:
        _fail(exc)
    table = Table(title=f"{datastore.name}/{group}")
    table.add_column("Name")
    table.add_column("Version", justify="right")
    table.add_column("Kind")
    for locator in locators:
        kind = "directory" if locator.directory else "file"
        table.add_row(locator.name, str(locator.version), kind)
    state.console.print(table)


@app.command("wipe-cache")
def wipe_cache(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete the local cache of the selected store."""

    state: CliContext = ctx.obj
    datastore = state.datastore
    if not yes:
        typer.confirm(f"Delete local cache at {datastore.cache_root}?", abort=True)
    datastore.wipe_cache()
    state.console.print(f"[green]Wiped[/green] {datastore.cache_root}")


@app.command("version")
def version_cmd() -> None:
    """Show version information."""

    _console.print(f"[bold]datastore[/bold] version {__version__}")


__all__ = ["app", "CliContext", "main"]
