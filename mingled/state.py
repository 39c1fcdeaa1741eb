"""Process-scoped chat state.

One ``ChatState`` is created by the hub at start, restored from the state
file, mutated only under the hub state lock, and flushed at shutdown.
"""

from __future__ import annotations

import time
from typing import Callable, Hashable

from .constants import HISTORY_PERSIST_LIMIT, NICK_MAX_CHARS, NICK_MIN_CHARS
from .likes import LikeEngine
from .models import Identity, Snapshot
from .registry import IdentityRegistry
from .router import MessageRouter


class ChatState:
    def __init__(
        self,
        *,
        nick_min_chars: int = NICK_MIN_CHARS,
        nick_max_chars: int = NICK_MAX_CHARS,
        max_message_chars: int = 0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        # Every open connection, joined or not, in connect order.
        self.connections: dict[Hashable, float] = {}
        self.registry = IdentityRegistry(
            nick_min_chars=nick_min_chars, nick_max_chars=nick_max_chars
        )
        self.router = MessageRouter(
            self.registry,
            max_message_chars=max_message_chars,
            on_change=self._changed,
        )
        self.likes = LikeEngine(
            nick_min_chars=nick_min_chars,
            nick_max_chars=nick_max_chars,
            on_change=self._changed,
        )
        self.on_change = on_change

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def connect(self, connection: Hashable) -> None:
        self.connections.setdefault(connection, time.monotonic())

    def disconnect(self, connection: Hashable) -> Identity | None:
        self.connections.pop(connection, None)
        return self.registry.leave(connection)

    def open_connections(self) -> list[Hashable]:
        return list(self.connections.keys())

    def snapshot(self, persist_limit: int = HISTORY_PERSIST_LIMIT) -> Snapshot:
        return Snapshot(
            messages=self.router.recent(persist_limit),
            likes=self.likes.edges(),
            rooms=self.likes.rooms(),
        )

    def restore(self, snapshot: Snapshot) -> None:
        self.router.restore(snapshot.messages)
        self.likes.restore(snapshot.likes, snapshot.rooms)

    def clear_connections(self) -> list[Hashable]:
        connections = list(self.connections.keys())
        self.connections.clear()
        self.registry.clear()
        return connections

    def get_stats(self) -> dict[str, int]:
        return {
            "connections": len(self.connections),
            **self.registry.get_stats(),
            **self.router.get_stats(),
            **self.likes.get_stats(),
        }
