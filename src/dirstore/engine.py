"""DirStore: registers stores, loads them from disk and keeps them in sync.

    ds = DirStore(StoreConfig(storage_dir=Path("./storage")))
    ds.set_event_func(lambda event, store, entry_id: ...)
    widgets = ds.register("widgets", Widget)
    ds.run()                          # mkdir, load files, start watcher
    entry_id = widgets.new(Widget(name="bolt", count=5))
    ...
    ds.close()

register() must happen before run(); run() must be called exactly once.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import sys
from typing import TYPE_CHECKING, Any

from dirstore.codec import Codec
from dirstore.config import StoreConfig
from dirstore.errors import ConfigError, DirStoreError, FilesystemError, InvalidIdError, StoreNotFoundError
from dirstore.events import EventEmitter
from dirstore.ledger import SuppressionLedger
from dirstore.registry import TypeRegistry
from dirstore.store import Store, validate_id
from dirstore.watcher import Reconciler, start_watcher

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from dirstore.events import EventFunc
    from dirstore.watcher import _WatcherThread

_STORE_NAME_RE = re.compile(r"[A-Za-z0-9_-]+")
_LOG_FORMAT = "%(asctime)s %(name)s %(message)s"


class DirStore:
    """Filesystem-backed object store engine."""

    def __init__(self, config: StoreConfig | None = None, *, logger: logging.Logger | None = None) -> None:
        self.config = config or StoreConfig()
        self.logger = logger or logging.getLogger("dirstore")
        self.registry = TypeRegistry()
        self.codec = Codec(self.config.format)
        self.ledger = SuppressionLedger(self.config.suppress_ttl, logger=self.logger.getChild("ledger"))
        self.events = EventEmitter(logger=self.logger.getChild("events"))
        self._stores: dict[str, Store] = {}
        self._watcher: _WatcherThread | None = None
        self._running = False
        self._verbose_handler: logging.Handler | None = None
        if self.config.verbose:
            self.verbose()

    def __repr__(self) -> str:
        return f"DirStore({str(self.config.storage_dir)!r}, stores={self.stores})"

    def __enter__(self) -> DirStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def verbose(self) -> None:
        """Log everything at DEBUG to stdout."""
        self.logger.setLevel(logging.DEBUG)
        if self._verbose_handler is None:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            self.logger.addHandler(handler)
            self._verbose_handler = handler

    def configure(self, **options: Any) -> None:
        """Change config options before run(), e.g. configure(format="yaml")."""
        if self._running:
            msg = "configure() must be called before run()"
            raise ConfigError(msg)
        unknown = sorted(set(options) - set(StoreConfig.option_names()))
        if unknown:
            msg = f"unknown config option(s): {', '.join(unknown)}"
            raise ConfigError(msg)

        self.logger.info("setting config: %s", options)
        self.config = dataclasses.replace(self.config, **options)
        self.codec.format = self.config.format
        self.ledger.ttl = self.config.suppress_ttl
        for store in self._stores.values():
            store.directory = self.config.storage_dir / store.name
        if self.config.verbose:
            self.verbose()
        self.logger.debug("config: %s", self.config)

    def set_event_func(self, func: EventFunc | None) -> None:
        self.events.set_callback(func)

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def register(self, name: str, sample: Any) -> Store:
        """Bind name to the shape of sample (a dataclass or dict type/instance)."""
        if self._running:
            msg = f"cannot register store {name} after run()"
            raise ConfigError(msg)
        if not isinstance(name, str) or not _STORE_NAME_RE.fullmatch(name):
            msg = f"invalid store name {name!r}: use letters, digits, dashes and underscores"
            raise InvalidIdError(msg)

        shape = self.registry.register(name, sample)
        if name in self._stores:
            self.logger.warning("store %s registered again; replacing its shape with %s", name, shape.name)
        self.logger.info("registering store: %s of type %s", name, shape.name)
        store = Store(
            name,
            directory=self.config.storage_dir / name,
            registry=self.registry,
            codec=self.codec,
            ledger=self.ledger,
            emitter=self.events,
            logger=self.logger.getChild(f"store.{name}"),
        )
        self._stores[name] = store
        return store

    def store(self, name: str) -> Store:
        try:
            return self._stores[name]
        except KeyError:
            msg = f"data store {name} not found"
            raise StoreNotFoundError(msg) from None

    @property
    def stores(self) -> list[str]:
        return sorted(self._stores)

    @property
    def watching(self) -> bool:
        return self._watcher is not None and self._watcher.running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Create store directories, load existing files and start the watcher."""
        if self._running:
            msg = "run() has already been called"
            raise ConfigError(msg)
        extension = self.codec.extension
        self._init_storage()
        for name in self.stores:
            self._populate(self._stores[name], extension)
        self._running = True
        self.logger.info("loaded %d stores from %s", len(self._stores), self.config.storage_dir)

        if self.config.watch:
            reconciler = Reconciler(
                self.config.storage_dir,
                extension,
                self.store,
                self.ledger,
                logger=self.logger.getChild("watcher"),
            )
            self._watcher = start_watcher(
                self.config,
                [s.directory for s in self._stores.values()],
                reconciler,
                logger=self.logger.getChild("watcher"),
            )

    def close(self) -> None:
        """Stop the watcher. Stores stay usable; external edits are no longer picked up."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def _init_storage(self) -> None:
        dirs: list[Path] = [self.config.storage_dir, *(s.directory for s in self._stores.values())]
        for directory in dirs:
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise FilesystemError(f"cannot create {directory}: {exc}") from exc

    def _populate(self, store: Store, extension: str) -> None:
        """Load every <id>.<ext> file of a store; bad files are logged and skipped."""
        try:
            paths = sorted(store.directory.iterdir())
        except OSError as exc:
            raise FilesystemError(f"cannot list {store.directory}: {exc}") from exc

        for path in paths:
            if not path.is_file() or path.suffix != "." + extension:
                continue
            entry_id = path.stem
            try:
                validate_id(entry_id)
            except InvalidIdError:
                self.logger.warning("skipping %s: file name is not a valid id", path)
                continue
            self.logger.debug("loading file: %s for store %s as id %s", path.name, store.name, entry_id)
            try:
                store.load_from_file(entry_id)
            except DirStoreError as exc:
                self.logger.warning("skipping %s: %s", path, exc)
