"""dirstore exception hierarchy.

Every failure the engine surfaces to a caller derives from DirStoreError.
Lookup failures also derive from KeyError, id validation from ValueError and
filesystem failures from OSError, so callers can catch either family.
"""

from __future__ import annotations


class DirStoreError(Exception):
    """Base exception for all dirstore failures."""


class _LookupMessage:
    """KeyError renders its argument with repr(); keep the plain message."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class InvalidIdError(DirStoreError, ValueError):
    """Raised for an empty id or one containing characters outside [A-Za-z0-9-]."""


class StoreNotFoundError(_LookupMessage, DirStoreError, KeyError):
    """Raised when an unregistered store name is referenced."""


class EntryNotFoundError(_LookupMessage, DirStoreError, KeyError):
    """Raised by get/delete on an id the store does not hold."""


class EmptyStoreError(DirStoreError):
    """Raised by get_all on a store with zero entries."""


class CodecError(DirStoreError):
    """Raised when a value cannot be encoded or file bytes cannot be decoded."""


class UnsupportedFormatError(CodecError):
    """Raised when the configured format is not json, yaml or xml."""


class FilesystemError(DirStoreError, OSError):
    """Raised for directory creation, read, write or removal failures."""


class WatcherSetupError(DirStoreError):
    """Raised when the watch handle cannot be opened or a directory cannot be watched."""


class MalformedChangeError(DirStoreError):
    """Raised for a watcher path that does not map to <store>/<id>.<ext>."""


class ConfigError(DirStoreError):
    """Raised for unknown options or configuration changes after run()."""
