"""Event emitter: one callback notified of every committed mutation.

The callback receives ``(event, store, id)`` with event one of create, update
or delete, for local API calls and reconciled filesystem changes alike. It is
called synchronously on the committing thread, so it should return quickly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    EventFunc = Callable[[str, str, str], None]

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


def _noop(event: str, store: str, entry_id: str) -> None:  # noqa: ARG001
    pass


class EventEmitter:
    def __init__(self, callback: EventFunc | None = None, *, logger: logging.Logger | None = None) -> None:
        self._callback: EventFunc = callback or _noop
        self._log = logger or logging.getLogger("dirstore.events")

    def set_callback(self, callback: EventFunc | None) -> None:
        self._callback = callback or _noop

    def emit(self, event: str, store: str, entry_id: str) -> None:
        self._log.debug("%s %s/%s", event, store, entry_id)
        self._callback(event, store, entry_id)
