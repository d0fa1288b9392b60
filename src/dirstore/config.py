"""StoreConfig: engine configuration, optionally loaded from dirstore.toml.

Default layout (relative to the directory holding dirstore.toml, or the cwd):

    dirstore.toml         # optional config
    storage/              # storage root
        <store>/          # one directory per registered store
            <id>.json     # one file per entry (.yaml / .xml for other formats)

dirstore.toml example:

    [dirstore]
    storage_dir = "./storage"
    format = "json"          # json | yaml | xml
    verbose = false
    watch = true             # reconcile out-of-process edits
    watch_backend = "auto"   # auto | inotify | poll
    poll_interval = 1.0      # seconds, poll backend only
    suppress_ttl = 10.0      # seconds a self-write token waits for its event
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "dirstore.toml"
_DEFAULT_STORAGE_DIR = "./storage"

WATCH_BACKENDS = ("auto", "inotify", "poll")


@dataclass(frozen=True)
class StoreConfig:
    """Resolved engine configuration."""

    storage_dir: Path = field(default_factory=lambda: Path(_DEFAULT_STORAGE_DIR))
    format: str = "json"            # json | yaml | xml, shared by every store
    verbose: bool = False
    watch: bool = True
    watch_backend: str = "auto"
    poll_interval: float = 1.0
    suppress_ttl: float = 10.0

    def __post_init__(self) -> None:
        # configure(storage_dir="./data") passes a plain string
        if not isinstance(self.storage_dir, Path):
            object.__setattr__(self, "storage_dir", Path(self.storage_dir))

    @classmethod
    def option_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]


def load_config(root: Path | str | None = None) -> StoreConfig:
    """Load dirstore.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    section = raw.get("dirstore", {})
    storage_dir = Path(section.get("storage_dir", _DEFAULT_STORAGE_DIR))
    if not storage_dir.is_absolute():
        storage_dir = root_path / storage_dir

    return StoreConfig(
        storage_dir=storage_dir,
        format=str(section.get("format", "json")).lower(),
        verbose=bool(section.get("verbose", False)),
        watch=bool(section.get("watch", True)),
        watch_backend=str(section.get("watch_backend", "auto")),
        poll_interval=float(section.get("poll_interval", 1.0)),
        suppress_ttl=float(section.get("suppress_ttl", 10.0)),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for dirstore.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, storage_format: str = "json") -> Path:
    """Write a default dirstore.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"dirstore.toml already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[dirstore]
storage_dir = "{_DEFAULT_STORAGE_DIR}"
format = "{storage_format}"   # json | yaml | xml
# verbose = false
# watch = true             # reload entries edited by other processes
# watch_backend = "auto"   # auto | inotify | poll
# poll_interval = 1.0      # seconds between scans (poll backend)
# suppress_ttl = 10.0      # seconds before an unmatched self-write token expires
"""
    root.mkdir(parents=True, exist_ok=True)
    config_path.write_text(content)
    return config_path
