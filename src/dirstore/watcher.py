"""Filesystem watcher: turns out-of-process edits into store mutations.

Each raw change on ``<root>/<store>/<id>.<ext>`` becomes a ChangeEvent and goes
through the Reconciler:

    1. normalize separators, strip the root prefix and the format extension
    2. split into exactly (store, id); anything else is logged and dropped
    3. classify: create/write → "set", remove/rename → "delete", else drop
    4. a matching ledger token means the engine caused it: drop
    5. unknown store: log and drop
    6. set → Store.load_from_file(id); delete → Store.discard(id)

Backends:
    inotify   inotify_simple on the store directories (Linux)
    poll      mtime/size snapshots every ``poll_interval`` seconds

Watch setup runs in the caller's thread and raises WatcherSetupError; the
event loop then runs on a daemon thread until stop(). Errors inside the loop
are logged and never propagate.
"""

from __future__ import annotations

import abc
import logging
import posixpath
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dirstore import ledger as _ledger
from dirstore.errors import DirStoreError, MalformedChangeError, StoreNotFoundError, WatcherSetupError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from dirstore.config import StoreConfig
    from dirstore.ledger import SuppressionLedger
    from dirstore.store import Store

WRITE_KINDS = frozenset({"create", "write"})
DELETE_KINDS = frozenset({"remove", "rename"})

# Reconciler outcomes
IGNORED = "ignored"
SUPPRESSED = "suppressed"
LOADED = "loaded"
DISCARDED = "discarded"

_INOTIFY_TIMEOUT_MS = 200


@dataclass(frozen=True)
class ChangeEvent:
    kind: str   # create | write | remove | rename | anything else is ignored
    path: str


def _normalize(path: str) -> str:
    return path.replace("\\\\", "/").replace("\\", "/")


def parse_change(path: str, root: str, extension: str) -> tuple[str, str]:
    """Map ``<root>/<store>/<id>.<ext>`` to (store, id)."""
    file = posixpath.normpath(_normalize(path))
    base = posixpath.normpath(_normalize(root))
    if base == ".":
        # cwd-relative root: pathlib drops the leading "./" from watched paths
        if file.startswith("/") or file == ".." or file.startswith("../"):
            msg = f"path outside storage root: {path}"
            raise MalformedChangeError(msg)
        name_and_id = file
    else:
        prefix = base.rstrip("/") + "/"
        if not file.startswith(prefix):
            msg = f"path outside storage root: {path}"
            raise MalformedChangeError(msg)
        name_and_id = file[len(prefix):]
    suffix = "." + extension
    if name_and_id.endswith(suffix):
        name_and_id = name_and_id[: -len(suffix)]
    parts = name_and_id.split("/")
    if len(parts) != 2 or not all(parts):
        msg = f"expected <store>/<id>.{extension}, got {name_and_id}"
        raise MalformedChangeError(msg)
    return parts[0], parts[1]


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class Reconciler:
    """Applies ChangeEvents to stores unless the ledger marks them self-caused."""

    def __init__(
        self,
        root: Path | str,
        extension: str,
        resolve_store: Callable[[str], Store],
        ledger: SuppressionLedger,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.root = str(root)
        self.extension = extension
        self._resolve_store = resolve_store
        self._ledger = ledger
        self._log = logger or logging.getLogger("dirstore.watcher")

    def handle(self, event: ChangeEvent) -> str:
        """apply() that logs failures instead of raising. Returns the outcome."""
        try:
            return self.apply(event)
        except MalformedChangeError as exc:
            self._log.warning("invalid file change event %s: %s", event.kind, exc)
        except DirStoreError as exc:
            self._log.warning("failed to reconcile %s %s: %s", event.kind, event.path, exc)
        except Exception:
            self._log.exception("failed to reconcile %s %s", event.kind, event.path)
        return IGNORED

    def apply(self, event: ChangeEvent) -> str:
        if not _normalize(event.path).endswith("." + self.extension):
            # temp files, editor swap files, other formats
            self._log.debug("ignored file change event: %s %s", event.kind, event.path)
            return IGNORED
        store_name, entry_id = parse_change(event.path, self.root, self.extension)

        if event.kind in WRITE_KINDS:
            method = _ledger.SET
        elif event.kind in DELETE_KINDS:
            method = _ledger.DELETE
        else:
            self._log.debug("ignored file change event: %s %s", event.kind, event.path)
            return IGNORED

        if self._ledger.check_and_consume(method, store_name, entry_id):
            return SUPPRESSED

        try:
            store = self._resolve_store(store_name)
        except StoreNotFoundError as exc:
            self._log.warning("change for unknown store: %s", exc)
            return IGNORED

        if method == _ledger.SET:
            event_name = store.load_from_file(entry_id)
            self._log.info("file modified: %s/%s (%s)", store_name, entry_id, event_name)
            return LOADED
        store.discard(entry_id)
        self._log.info("file deleted: %s/%s", store_name, entry_id)
        return DISCARDED


# ---------------------------------------------------------------------------
# Watch loops
# ---------------------------------------------------------------------------

class _WatcherThread(abc.ABC):
    """Base for the watch backends: setup in start(), then _poll_once() on a daemon thread."""

    backend = ""

    def __init__(self, directories: Iterable[Path], reconciler: Reconciler, *, logger: logging.Logger | None = None) -> None:
        self.directories = list(directories)
        self.reconciler = reconciler
        self._log = logger or logging.getLogger("dirstore.watcher")
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._setup()
        self._thread = threading.Thread(target=self._run, name=f"dirstore-{self.backend}", daemon=True)
        self._thread.start()
        self._log.info("%s watching %d store directories", self.backend, len(self.directories))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._teardown()
        self._log.info("%s watcher stopped", self.backend)

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                self._poll_once()
        except Exception:
            self._log.exception("%s watcher failed; filesystem changes are no longer reconciled", self.backend)

    @abc.abstractmethod
    def _setup(self) -> None:
        """Open watches; raise WatcherSetupError on failure."""

    @abc.abstractmethod
    def _poll_once(self) -> None:
        """Wait briefly for changes and hand them to the reconciler."""

    def _teardown(self) -> None:
        pass


class InotifyWatcher(_WatcherThread):
    """inotify_simple on every store directory. Blocks in read() with a short timeout."""

    backend = "inotify"

    def _setup(self) -> None:
        try:
            import inotify_simple  # type: ignore[import]  # Linux only
        except ImportError as exc:
            msg = 'inotify_simple is not available; set watch_backend = "poll"'
            raise WatcherSetupError(msg) from exc

        self._flags = inotify_simple.flags  # type: ignore[attr-defined]
        try:
            self._inotify = inotify_simple.INotify()
        except OSError as exc:
            raise WatcherSetupError(f"cannot open inotify handle: {exc}") from exc

        # IN_CREATE is left out: an editor's create+write would arrive twice and
        # the first read would see an empty file.
        mask = self._flags.CLOSE_WRITE | self._flags.MOVED_TO | self._flags.DELETE | self._flags.MOVED_FROM
        self._watched: dict[int, Path] = {}
        for directory in self.directories:
            try:
                wd = self._inotify.add_watch(str(directory), mask)
            except OSError as exc:
                self._inotify.close()
                raise WatcherSetupError(f"cannot watch {directory}: {exc}") from exc
            self._watched[wd] = directory

    def _poll_once(self) -> None:
        flags = self._flags
        for event in self._inotify.read(timeout=_INOTIFY_TIMEOUT_MS):
            if event.mask & flags.Q_OVERFLOW:
                self._log.warning("inotify queue overflowed; some external changes were missed")
                continue
            directory = self._watched.get(event.wd)
            if directory is None or not event.name:
                continue
            self.reconciler.handle(ChangeEvent(_inotify_kind(event.mask, flags), str(directory / event.name)))

    def _teardown(self) -> None:
        inotify = getattr(self, "_inotify", None)
        if inotify is not None and not inotify.closed:
            inotify.close()


def _inotify_kind(mask: int, flags: Any) -> str:
    if mask & flags.CLOSE_WRITE:
        return "write"
    if mask & flags.MOVED_TO:
        return "create"
    if mask & flags.DELETE:
        return "remove"
    if mask & flags.MOVED_FROM:
        return "rename"
    return "other"


class PollWatcher(_WatcherThread):
    """Compares (mtime_ns, size) snapshots of the store directories."""

    backend = "poll"

    def __init__(
        self,
        directories: Iterable[Path],
        reconciler: Reconciler,
        *,
        interval: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(directories, reconciler, logger=logger)
        self.interval = interval
        self._seen: dict[str, tuple[int, int]] = {}

    def _setup(self) -> None:
        for directory in self.directories:
            if not directory.is_dir():
                msg = f"cannot watch {directory}: not a directory"
                raise WatcherSetupError(msg)
        self._seen = self._scan()

    def _scan(self) -> dict[str, tuple[int, int]]:
        seen: dict[str, tuple[int, int]] = {}
        for directory in self.directories:
            try:
                children = list(directory.iterdir())
            except FileNotFoundError:
                continue
            for path in children:
                try:
                    st = path.stat()
                except OSError:
                    continue
                if path.is_file():
                    seen[str(path)] = (st.st_mtime_ns, st.st_size)
        return seen

    def _poll_once(self) -> None:
        if self._stop.wait(self.interval):
            return
        current = self._scan()
        for path, stamp in current.items():
            before = self._seen.get(path)
            if before is None:
                self.reconciler.handle(ChangeEvent("create", path))
            elif before != stamp:
                self.reconciler.handle(ChangeEvent("write", path))
        for path in self._seen.keys() - current.keys():
            self.reconciler.handle(ChangeEvent("remove", path))
        self._seen = current


def start_watcher(
    config: StoreConfig,
    directories: Iterable[Path],
    reconciler: Reconciler,
    *,
    logger: logging.Logger | None = None,
) -> _WatcherThread:
    """Pick the configured backend, set it up and start its thread."""
    backend = config.watch_backend
    if backend == "auto":
        backend = "inotify" if sys.platform.startswith("linux") else "poll"

    watcher: _WatcherThread
    if backend == "inotify":
        watcher = InotifyWatcher(directories, reconciler, logger=logger)
    elif backend == "poll":
        watcher = PollWatcher(directories, reconciler, interval=config.poll_interval, logger=logger)
    else:
        msg = f"unknown watch backend: {backend}"
        raise WatcherSetupError(msg)
    watcher.start()
    return watcher
