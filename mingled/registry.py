from __future__ import annotations

import logging
from typing import Any, Hashable

from .constants import NICK_MAX_CHARS, NICK_MIN_CHARS, STATUS_ONLINE
from .errors import AlreadyJoined, DuplicateNickname, ValidationFailure
from .models import Identity
from .util import normalize_nick, utc_now_iso


class IdentityRegistry:
    """
    Live identities keyed by connection handle.

    This class is responsible for:
    - Binding a connection to a nickname on join
    - Enforcing nickname uniqueness among live connections
    - Freeing the nickname when the connection leaves
    - Nickname indexing for efficient lookups

    It emits no events; callers decide who hears about a join or leave.
    Must be called with the hub state lock held.
    """

    def __init__(
        self,
        *,
        nick_min_chars: int = NICK_MIN_CHARS,
        nick_max_chars: int = NICK_MAX_CHARS,
    ) -> None:
        self.log = logging.getLogger("mingled.registry")
        self.nick_min_chars = int(nick_min_chars)
        self.nick_max_chars = int(nick_max_chars)
        # Insertion order is join order.
        self._identities: dict[Hashable, Identity] = {}
        self._index_by_nick: dict[str, Hashable] = {}  # exact nick -> connection

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, connection: Hashable) -> bool:
        return connection in self._identities

    def join(self, connection: Hashable, nickname: Any) -> Identity:
        nick = normalize_nick(
            nickname, min_chars=self.nick_min_chars, max_chars=self.nick_max_chars
        )
        if nick is None:
            raise ValidationFailure(
                f"nickname must be {self.nick_min_chars}-{self.nick_max_chars} characters"
            )

        existing = self._identities.get(connection)
        if existing is not None:
            raise AlreadyJoined(existing.nickname)

        if nick in self._index_by_nick:
            raise DuplicateNickname(nick)

        ident = Identity(
            connection=connection,
            nickname=nick,
            status=STATUS_ONLINE,
            joined_at=utc_now_iso(),
        )
        self._identities[connection] = ident
        self._index_by_nick[nick] = connection
        return ident

    def leave(self, connection: Hashable) -> Identity | None:
        ident = self._identities.pop(connection, None)
        if ident is None:
            return None
        if self._index_by_nick.get(ident.nickname) == connection:
            self._index_by_nick.pop(ident.nickname, None)
        return ident

    def get(self, connection: Hashable) -> Identity | None:
        return self._identities.get(connection)

    def lookup_by_nickname(self, nickname: str) -> Identity | None:
        """Look up a live identity by exact nickname (O(1))."""
        if not isinstance(nickname, str):
            return None
        connection = self._index_by_nick.get(nickname)
        if connection is None:
            return None
        return self._identities.get(connection)

    def list(self) -> list[Identity]:
        return list(self._identities.values())

    def connections(self) -> list[Hashable]:
        return list(self._identities.keys())

    def clear(self) -> list[Identity]:
        idents = list(self._identities.values())
        self._identities.clear()
        self._index_by_nick.clear()
        return idents

    def get_stats(self) -> dict[str, int]:
        return {
            "identities": len(self._identities),
            "indexed_by_nick": len(self._index_by_nick),
        }
