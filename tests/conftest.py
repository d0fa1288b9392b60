"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


class EventLog:
    """Event callback that records (event, store, id) tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, event: str, store: str, entry_id: str) -> None:
        with self._lock:
            self.events.append((event, store, entry_id))

    def for_id(self, entry_id: str) -> list[str]:
        with self._lock:
            return [e for e, _, i in self.events if i == entry_id]


@pytest.fixture
def storage_dir(tmp_path) -> Path:
    return tmp_path / "storage"


@pytest.fixture
def config(storage_dir):
    from dirstore.config import StoreConfig

    return StoreConfig(storage_dir=storage_dir, watch=False)


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def engine(config, event_log):
    from dirstore.engine import DirStore

    ds = DirStore(config)
    ds.set_event_func(event_log)
    yield ds
    ds.close()


@pytest.fixture
def wait_for():
    """Poll predicate until it is truthy or timeout expires."""

    def _wait(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return bool(predicate())

    return _wait
