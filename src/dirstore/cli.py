"""dirstore CLI — inspect and follow a storage root from the shell.

Commands:
    dirstore init                 write dirstore.toml
    dirstore stores               table of stores and entry counts
    dirstore ids STORE            list entry ids
    dirstore show STORE ID        print an entry file
    dirstore watch [STORE...]     print create/update/delete events as they happen
"""

from __future__ import annotations

import dataclasses
import time
from pathlib import Path

import click

from dirstore.codec import EXTENSIONS
from dirstore.config import WATCH_BACKENDS, StoreConfig, init_config, load_config
from dirstore.engine import DirStore
from dirstore.errors import DirStoreError, InvalidIdError
from dirstore.store import validate_id

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> StoreConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _extension(cfg: StoreConfig) -> str:
    try:
        return EXTENSIONS[cfg.format]
    except KeyError:
        raise click.ClickException(f"invalid format in config: {cfg.format}") from None


def _store_dirs(cfg: StoreConfig) -> list[Path]:
    if not cfg.storage_dir.is_dir():
        return []
    return sorted(d for d in cfg.storage_dir.iterdir() if d.is_dir())


def _entry_ids(directory: Path, extension: str) -> list[str]:
    return sorted(p.stem for p in directory.glob(f"*.{extension}") if p.is_file())


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="dirstore")
def cli() -> None:
    """dirstore: typed values as files, synced both ways."""


@cli.command()
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
@click.option("--format", "storage_format", type=click.Choice(sorted(EXTENSIONS)), default="json", show_default=True)
def init(root: str, storage_format: str) -> None:
    """Write a default dirstore.toml."""
    try:
        path = init_config(Path(root), storage_format)
    except FileExistsError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"wrote {path}")


@cli.command()
def stores() -> None:
    """List stores under the storage root."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    extension = _extension(cfg)
    dirs = _store_dirs(cfg)
    if not dirs:
        click.echo(f"no stores under {cfg.storage_dir}")
        return

    table = Table(title=f"dirstore: {cfg.storage_dir}", show_header=True, header_style="bold")
    table.add_column("Store", no_wrap=True)
    table.add_column("Entries", justify="right")
    table.add_column("Path", style="dim")
    for directory in dirs:
        table.add_row(directory.name, str(len(_entry_ids(directory, extension))), str(directory))
    Console().print(table)


@cli.command()
@click.argument("store")
def ids(store: str) -> None:
    """List entry ids of STORE."""
    cfg = _load_cfg()
    directory = cfg.storage_dir / store
    if not directory.is_dir():
        raise click.ClickException(f"data store {store} not found under {cfg.storage_dir}")
    for entry_id in _entry_ids(directory, _extension(cfg)):
        click.echo(entry_id)


@cli.command()
@click.argument("store")
@click.argument("entry_id", metavar="ID")
def show(store: str, entry_id: str) -> None:
    """Print the file of entry ID in STORE."""
    cfg = _load_cfg()
    try:
        validate_id(entry_id)
    except InvalidIdError as exc:
        raise click.ClickException(str(exc)) from exc
    path = cfg.storage_dir / store / f"{entry_id}.{_extension(cfg)}"
    if not path.is_file():
        raise click.ClickException(f"no value found for id: {entry_id} in {store}")
    click.echo(path.read_text(), nl=False)


@cli.command()
@click.argument("names", nargs=-1)
@click.option("--backend", type=click.Choice(WATCH_BACKENDS), default=None, help="Override watch_backend")
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to stdout")
def watch(names: tuple[str, ...], backend: str | None, verbose: bool) -> None:
    """Print events for STOREs (default: all) until interrupted."""
    cfg = _load_cfg()
    _extension(cfg)
    if cfg.format == "xml":
        raise click.ClickException("watch needs a json or yaml storage root: untyped entries cannot be read from xml")

    selected = list(names) or [d.name for d in _store_dirs(cfg)]
    if not selected:
        raise click.ClickException(f"no stores under {cfg.storage_dir}")

    cfg = dataclasses.replace(cfg, watch=True, verbose=verbose or cfg.verbose)
    if backend:
        cfg = dataclasses.replace(cfg, watch_backend=backend)

    engine = DirStore(cfg)
    try:
        for name in selected:
            engine.register(name, dict)
        with engine:
            engine.run()
            engine.set_event_func(lambda event, store, entry_id: click.echo(f"{event} {store} {entry_id}"))
            click.echo(f"watching {', '.join(selected)} in {cfg.storage_dir} (Ctrl-C to stop)", err=True)
            while engine.watching:
                time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    except DirStoreError as exc:
        raise click.ClickException(str(exc)) from exc
