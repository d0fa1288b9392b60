"""End-to-end watcher tests against real store directories."""

from __future__ import annotations

import dataclasses
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import pytest

from dirstore.config import StoreConfig
from dirstore.engine import DirStore
from dirstore.errors import EntryNotFoundError, WatcherSetupError
from dirstore.watcher import InotifyWatcher, PollWatcher

BACKENDS = [
    pytest.param(
        "inotify",
        marks=pytest.mark.skipif(not sys.platform.startswith("linux"), reason="inotify is Linux only"),
    ),
    "poll",
]


@dataclass
class Widget:
    name: str
    count: int


@pytest.fixture(params=BACKENDS)
def watched(request, config, event_log):
    cfg = dataclasses.replace(config, watch=True, watch_backend=request.param, poll_interval=0.05)
    ds = DirStore(cfg)
    ds.set_event_func(event_log)
    store = ds.register("widgets", Widget)
    ds.run()
    yield ds, store
    ds.close()


def _settle(seconds: float = 0.4) -> None:
    time.sleep(seconds)


def test_watcher_uses_selected_backend(watched) -> None:
    ds, _ = watched
    assert ds.watching
    expected = InotifyWatcher if ds.config.watch_backend == "inotify" else PollWatcher
    assert isinstance(ds._watcher, expected)


def test_external_create_fires_one_event(watched, storage_dir, event_log, wait_for) -> None:
    _, widgets = watched
    path = storage_dir / "widgets" / "ext.json"
    path.write_text('{"name": "ext", "count": 7}')

    assert wait_for(lambda: "ext" in widgets)
    assert widgets.get("ext") == Widget("ext", 7)
    _settle()
    assert event_log.for_id("ext") == ["create"]


def test_external_update_and_delete(watched, storage_dir, event_log, wait_for) -> None:
    _, widgets = watched
    widgets.set("bolt", Widget("bolt", 1))
    _settle()
    path = storage_dir / "widgets" / "bolt.json"

    tmp = path.with_name("bolt.edit")
    tmp.write_text('{"name": "bolt", "count": 2}')
    os.replace(tmp, path)
    assert wait_for(lambda: widgets.get("bolt").count == 2)

    path.unlink()
    assert wait_for(lambda: "bolt" not in widgets)
    with pytest.raises(EntryNotFoundError):
        widgets.get("bolt")
    assert event_log.for_id("bolt") == ["create", "update", "delete"]


def test_self_writes_fire_exactly_one_event_each(watched, event_log, wait_for) -> None:
    ds, widgets = watched
    widgets.set("x", Widget("x", 1))
    _settle()
    widgets.set("x", Widget("x", 2))
    _settle()
    widgets.delete("x")
    _settle()
    assert event_log.for_id("x") == ["create", "update", "delete"]
    # every token was matched by the change it predicted
    assert wait_for(lambda: ds.ledger.pending() == [])


def test_stop_closes_the_watch(watched, storage_dir) -> None:
    ds, widgets = watched
    ds.close()
    assert not ds.watching
    (storage_dir / "widgets" / "late.json").write_text('{"name": "late", "count": 1}')
    _settle()
    assert "late" not in widgets


def test_unknown_backend_is_a_setup_failure(config, storage_dir) -> None:
    cfg = dataclasses.replace(config, watch=True, watch_backend="carrier-pigeon")
    ds = DirStore(cfg)
    widgets = ds.register("widgets", Widget)
    (storage_dir / "widgets").mkdir(parents=True)
    (storage_dir / "widgets" / "a.json").write_text('{"name": "a", "count": 1}')
    with pytest.raises(WatcherSetupError):
        ds.run()
    # stores stay loaded and usable
    assert widgets.get("a") == Widget("a", 1)
    assert not ds.watching


def test_poll_watcher_with_cwd_relative_root(tmp_path, monkeypatch, wait_for) -> None:
    monkeypatch.chdir(tmp_path)
    cfg = StoreConfig(storage_dir=Path("."), watch=True, watch_backend="poll", poll_interval=0.05)
    with DirStore(cfg) as ds:
        widgets = ds.register("widgets", Widget)
        ds.run()
        (tmp_path / "widgets" / "ext.json").write_text('{"name": "ext", "count": 7}')
        assert wait_for(lambda: "ext" in widgets)
        assert widgets.get("ext") == Widget("ext", 7)


def test_watcher_base_is_abstract(tmp_path) -> None:
    from dirstore.watcher import Reconciler, _WatcherThread

    with pytest.raises(TypeError):
        _WatcherThread([tmp_path], Reconciler(tmp_path, "json", lambda name: None, None))


def test_poll_setup_fails_for_missing_directory(tmp_path) -> None:
    from dirstore.watcher import Reconciler

    watcher = PollWatcher([tmp_path / "missing"], Reconciler(tmp_path, "json", lambda name: None, None))
    with pytest.raises(WatcherSetupError):
        watcher.start()
