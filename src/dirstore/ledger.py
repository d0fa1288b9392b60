"""Suppression ledger: self-caused mutations the watcher should skip.

Every set/delete the engine performs on disk will also surface as a
filesystem event. Before touching the file the store records a token
``(method, store, id)``; the reconciler consumes the first matching token and
drops the event instead of re-applying the engine's own change.

Tokens that are never matched (the OS coalesced two writes into one event, the
event was dropped, the write failed) expire after ``ttl`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Callable

SET = "set"
DELETE = "delete"


class Token(NamedTuple):
    method: str     # set | delete
    store: str
    id: str

    def __str__(self) -> str:
        return f"{self.method}::{self.store}::{self.id}"


class SuppressionLedger:
    """FIFO of pending tokens, guarded by its own lock."""

    def __init__(
        self,
        ttl: float | None = 10.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._log = logger or logging.getLogger("dirstore.ledger")
        self._tokens: deque[tuple[Token, float]] = deque()
        self._lock = threading.Lock()

    def record(self, method: str, store: str, entry_id: str) -> Token:
        token = Token(method, store, entry_id)
        now = self._clock()
        deadline = now + self.ttl if self.ttl is not None else float("inf")
        with self._lock:
            self._prune(now)
            self._tokens.append((token, deadline))
        self._log.debug("recorded %s", token)
        return token

    def check_and_consume(self, method: str, store: str, entry_id: str) -> bool:
        """Remove the first matching token. True means the event is self-caused."""
        token = Token(method, store, entry_id)
        with self._lock:
            self._prune(self._clock())
            for i, (pending, _) in enumerate(self._tokens):
                if pending == token:
                    del self._tokens[i]
                    break
            else:
                return False
        self._log.debug("found %s, skipping filesystem change", token)
        return True

    def pending(self) -> list[Token]:
        with self._lock:
            self._prune(self._clock())
            return [token for token, _ in self._tokens]

    def __len__(self) -> int:
        return len(self.pending())

    def _prune(self, now: float) -> None:
        # Constant ttl keeps deadlines ordered, so expired tokens sit at the head.
        while self._tokens and self._tokens[0][1] <= now:
            token, _ = self._tokens.popleft()
            self._log.debug("expired %s without a matching change", token)
