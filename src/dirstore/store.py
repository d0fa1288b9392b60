"""Store: id → value map for one registered name, mirrored to one file per entry.

Layout:
    <storage_dir>/<store>/<id>.<ext>

Locking:
    - each entry owns a reader/writer lock: concurrent gets on one id proceed
      together, a set/delete on that id excludes everything else on it;
    - a store-level lock covers only inserting/removing entries in the map, so
      two first-writes to a new id resolve to one entry (the second is an
      update);
    - different ids never contend.

Writes go to ``<id>.<ext>.tmp`` and are renamed into place, so the entry file
is always either the old or the new complete document.
"""

from __future__ import annotations

import contextlib
import logging
import re
import threading
import uuid
from typing import TYPE_CHECKING, Any

from dirstore import ledger as _ledger
from dirstore.errors import EmptyStoreError, EntryNotFoundError, FilesystemError, InvalidIdError
from dirstore.events import CREATE, DELETE, UPDATE

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from dirstore.codec import Codec
    from dirstore.events import EventEmitter
    from dirstore.ledger import SuppressionLedger
    from dirstore.registry import Shape, TypeRegistry

_ID_RE = re.compile(r"[A-Za-z0-9-]+")

_MISSING: Any = object()


def validate_id(entry_id: object) -> str:
    """Return entry_id if it is non-empty letters, digits and dashes; else raise InvalidIdError."""
    if not isinstance(entry_id, str) or not _ID_RE.fullmatch(entry_id):
        msg = f"invalid id {entry_id!r}: use letters, digits and dashes only"
        raise InvalidIdError(msg)
    return entry_id


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------

class RWLock:
    """Writer-preferring reader/writer lock (not reentrant)."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _Entry:
    __slots__ = ("lock", "removed", "value")

    def __init__(self) -> None:
        self.lock = RWLock()
        self.value: Any = _MISSING
        self.removed = False


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class Store:
    """One registered store. Created by DirStore.register."""

    def __init__(
        self,
        name: str,
        *,
        directory: Path,
        registry: TypeRegistry,
        codec: Codec,
        ledger: SuppressionLedger,
        emitter: EventEmitter,
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.directory = directory
        self._registry = registry
        self._codec = codec
        self._ledger = ledger
        self._emitter = emitter
        self._log = logger or logging.getLogger(f"dirstore.store.{name}")
        self._entries: dict[str, _Entry] = {}
        self._entries_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Store({self.name!r}, entries={len(self.get_ids())})"

    @property
    def shape(self) -> Shape:
        return self._registry.shape(self.name)

    def path_for(self, entry_id: str) -> Path:
        return self.directory / f"{entry_id}.{self._codec.extension}"

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def set(self, entry_id: str, value: Any) -> None:
        """Create or replace an entry and write its file.

        A failed write leaves the new value in memory; the next full reload
        restores agreement with disk.
        """
        validate_id(entry_id)
        shape = self.shape
        shape.check(value)
        value = shape.copy(value)
        with self._locked(entry_id, create=True) as entry:
            event = CREATE if entry.value is _MISSING else UPDATE
            entry.value = value
            self._write_file(entry_id, value)
        self._emitter.emit(event, self.name, entry_id)

    def new(self, value: Any) -> str:
        """Store value under a generated id and return the id."""
        entry_id = new_id()
        self.set(entry_id, value)
        return entry_id

    def get(self, entry_id: str) -> Any:
        """Return a copy of the entry's value."""
        validate_id(entry_id)
        with self._locked(entry_id, write=False) as entry:
            return self.shape.copy(entry.value)

    def delete(self, entry_id: str) -> None:
        """Remove the entry and its file. A file that is already gone is fine."""
        validate_id(entry_id)
        self._remove(entry_id, unlink=True)

    def discard(self, entry_id: str) -> None:
        """Drop an entry whose file was removed by another process."""
        validate_id(entry_id)
        self._remove(entry_id, unlink=False)

    def get_ids(self) -> list[str]:
        with self._entries_lock:
            return [
                entry_id for entry_id, entry in self._entries.items()
                if entry.value is not _MISSING and not entry.removed
            ]

    def get_all(self) -> dict[str, Any]:
        """Copy of every entry. Raises EmptyStoreError when the store holds none."""
        values: dict[str, Any] = {}
        for entry_id in self.get_ids():
            with contextlib.suppress(EntryNotFoundError):
                values[entry_id] = self.get(entry_id)
        if not values:
            msg = f"store {self.name} has no entries"
            raise EmptyStoreError(msg)
        return values

    def purge(self) -> None:
        """Delete every entry; stops at the first failure."""
        for entry_id in self.get_ids():
            self.delete(entry_id)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self.get_ids()

    def __len__(self) -> int:
        return len(self.get_ids())

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def load_from_file(self, entry_id: str) -> str:
        """Decode <id>.<ext> into the entry (creating it) and emit the event. Returns the event."""
        validate_id(entry_id)
        path = self.path_for(entry_id)
        # Read under the write lock so a concurrent set() cannot land between
        # reading the file and installing its value.
        with self._locked(entry_id, create=True) as entry:
            try:
                value = self._read_file(path)
            except Exception:
                if entry.value is _MISSING:
                    with self._entries_lock:
                        entry.removed = True
                        self._entries.pop(entry_id, None)
                raise
            event = CREATE if entry.value is _MISSING else UPDATE
            entry.value = value
        self._log.debug("loaded %s from %s", entry_id, path)
        self._emitter.emit(event, self.name, entry_id)
        return event

    def save_to_file(self, entry_id: str) -> None:
        """Rewrite the entry's file from its in-memory value."""
        validate_id(entry_id)
        with self._locked(entry_id) as entry:
            self._write_file(entry_id, entry.value)

    def _read_file(self, path: Path) -> Any:
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise FilesystemError(f"cannot read {path}: {exc}") from exc
        return self._codec.decode(raw, self.shape)

    def _write_file(self, entry_id: str, value: Any) -> None:
        path = self.path_for(entry_id)
        data = self._codec.encode(value, self.shape)
        # Recorded before the file changes so the watcher cannot see the write first.
        self._ledger.record(_ledger.SET, self.name, entry_id)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise FilesystemError(f"cannot write {path}: {exc}") from exc
        self._log.debug("wrote %s (%d bytes)", path, len(data))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _remove(self, entry_id: str, *, unlink: bool) -> None:
        with self._locked(entry_id) as entry:
            if unlink:
                path = self.path_for(entry_id)
                token = self._ledger.record(_ledger.DELETE, self.name, entry_id)
                try:
                    path.unlink()
                except FileNotFoundError:
                    # No filesystem event will follow.
                    self._ledger.check_and_consume(*token)
                    self._log.debug("file for %s already gone", entry_id)
                except OSError as exc:
                    raise FilesystemError(f"cannot remove {path}: {exc}") from exc
            with self._entries_lock:
                entry.removed = True
                self._entries.pop(entry_id, None)
        self._emitter.emit(DELETE, self.name, entry_id)

    @contextlib.contextmanager
    def _locked(self, entry_id: str, *, create: bool = False, write: bool = True) -> Iterator[_Entry]:
        """Hold the entry's lock. Missing entries raise unless create is set."""
        while True:
            with self._entries_lock:
                entry = self._entries.get(entry_id)
                if entry is None:
                    if not create:
                        raise EntryNotFoundError(f"no value found for id: {entry_id}")
                    entry = _Entry()
                    self._entries[entry_id] = entry
            with entry.lock.write() if write else entry.lock.read():
                if entry.removed:
                    # Deleted while we waited; retry against the current map.
                    continue
                if not create and entry.value is _MISSING:
                    raise EntryNotFoundError(f"no value found for id: {entry_id}")
                yield entry
                return
