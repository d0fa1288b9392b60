"""Embedded object store: typed values as individual files, kept in sync both ways.

Layout:
    <storage_dir>/
        <store>/          # one directory per registered store
            <id>.json     # one file per entry (.yaml / .xml when so configured)

Local mutations (set/new/delete/purge) update memory, then the file, then
notify the event callback. Edits made to the files by other processes are
picked up by the watcher and applied to memory with the same notification.
The engine's own writes are recorded in a suppression ledger so the watcher
does not apply them a second time.
"""

from dirstore.codec import Codec
from dirstore.config import StoreConfig, init_config, load_config
from dirstore.engine import DirStore
from dirstore.errors import (
    CodecError,
    ConfigError,
    DirStoreError,
    EmptyStoreError,
    EntryNotFoundError,
    FilesystemError,
    InvalidIdError,
    MalformedChangeError,
    StoreNotFoundError,
    UnsupportedFormatError,
    WatcherSetupError,
)
from dirstore.events import CREATE, DELETE, UPDATE
from dirstore.registry import Shape, TypeRegistry
from dirstore.store import Store, new_id, validate_id

__all__ = [
    "CREATE",
    "DELETE",
    "UPDATE",
    "Codec",
    "CodecError",
    "ConfigError",
    "DirStore",
    "DirStoreError",
    "EmptyStoreError",
    "EntryNotFoundError",
    "FilesystemError",
    "InvalidIdError",
    "MalformedChangeError",
    "Shape",
    "Store",
    "StoreConfig",
    "StoreNotFoundError",
    "TypeRegistry",
    "UnsupportedFormatError",
    "WatcherSetupError",
    "init_config",
    "load_config",
    "new_id",
    "validate_id",
]
