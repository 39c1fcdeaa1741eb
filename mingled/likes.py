"""Directed likes between nicknames and the private rooms mutual likes open."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from .constants import NICK_MAX_CHARS, NICK_MIN_CHARS, ROOM_ID_SEPARATOR
from .errors import ValidationFailure
from .models import LikeOutcome, LikeResult, PrivateRoom
from .util import normalize_nick, utc_now_iso


def room_id_for(a: str, b: str) -> str:
    """Deterministic room id: both nicknames sorted, joined by the separator."""
    first, second = sorted((a, b))
    return f"{first}{ROOM_ID_SEPARATOR}{second}"


class LikeEngine:
    """Records like edges, detects mutual matches and allocates rooms.

    Edges are keyed by nickname, not by connection, so an edge survives its
    liker disconnecting and a later reverse like still matches. Edges are
    permanent; there is no unlike.
    """

    def __init__(
        self,
        *,
        nick_min_chars: int = NICK_MIN_CHARS,
        nick_max_chars: int = NICK_MAX_CHARS,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.log = logging.getLogger("mingled.likes")
        self.nick_min_chars = int(nick_min_chars)
        self.nick_max_chars = int(nick_max_chars)
        self.on_change = on_change
        self._edges: set[tuple[str, str]] = set()
        # Insertion-ordered so snapshots are stable.
        self._edge_order: list[tuple[str, str]] = []
        self._rooms: dict[str, PrivateRoom] = {}

    def like(self, liker: str, target: Any) -> LikeOutcome:
        """Record ``liker -> target``. The outcome carries the normalized target."""
        # Same rules as joined nicknames.
        nick = normalize_nick(
            target, min_chars=self.nick_min_chars, max_chars=self.nick_max_chars
        )
        if nick is None:
            raise ValidationFailure(
                f"target nickname must be {self.nick_min_chars}-{self.nick_max_chars} characters"
            )
        target = nick
        if liker == target:
            raise ValidationFailure("cannot like yourself")

        edge = (liker, target)
        if edge in self._edges:
            return LikeOutcome(LikeResult.ALREADY_LIKED, liker, target)

        self._add_edge(edge)
        if self.on_change is not None:
            self.on_change()

        if (target, liker) not in self._edges:
            return LikeOutcome(LikeResult.ONE_SIDED, liker, target)

        room, created = self._ensure_room(liker, target)
        return LikeOutcome(
            LikeResult.MUTUAL,
            liker,
            target,
            room_id=room.room_id,
            room_created=created,
        )

    def _add_edge(self, edge: tuple[str, str]) -> None:
        self._edges.add(edge)
        self._edge_order.append(edge)

    def _ensure_room(self, a: str, b: str) -> tuple[PrivateRoom, bool]:
        rid = room_id_for(a, b)
        existing = self._rooms.get(rid)
        if existing is not None:
            return existing, False
        room = PrivateRoom(room_id=rid, users=(a, b), created_at=utc_now_iso())
        self._rooms[rid] = room
        return room, True

    def has_like(self, liker: str, target: str) -> bool:
        return (liker, target) in self._edges

    def is_mutual(self, a: str, b: str) -> bool:
        return (a, b) in self._edges and (b, a) in self._edges

    def room(self, room_id: str) -> PrivateRoom | None:
        return self._rooms.get(room_id)

    def rooms(self) -> list[PrivateRoom]:
        return list(self._rooms.values())

    def edges(self) -> list[tuple[str, str]]:
        return list(self._edge_order)

    def restore(
        self, edges: Iterable[tuple[str, str]], rooms: Iterable[PrivateRoom]
    ) -> None:
        """Replace all edges and rooms with previously persisted ones."""
        self._edges.clear()
        self._edge_order.clear()
        self._rooms.clear()
        for liker, target in edges:
            edge = (str(liker), str(target))
            if edge[0] == edge[1] or edge in self._edges:
                continue
            self._add_edge(edge)
        for room in rooms:
            self._rooms.setdefault(room.room_id, room)

    def get_stats(self) -> dict[str, int]:
        return {"likes": len(self._edges), "rooms": len(self._rooms)}
