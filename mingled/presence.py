"""Join, leave and typing fan-out."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Hashable

from .constants import (
    F_IS_TYPING,
    F_NICKNAME,
    T_USER_JOINED,
    T_USER_LEFT,
    T_USER_LIST,
    T_USER_LIST_UPDATE,
    T_USER_TYPING,
)
from .models import Identity

if TYPE_CHECKING:
    from .service import HubService

Outgoing = list[tuple[Any, bytes]]


class PresenceBroadcaster:
    """Queues presence events; owns no state of its own.

    "Everyone" is every open connection, joined or not. The subject of a
    join/leave/typing event never receives its own userJoined/userLeft/
    userTyping. Must be called with the hub state lock held.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

    def user_list(self) -> list[dict[str, Any]]:
        return [ident.to_dict() for ident in self.hub.state.registry.list()]

    def _everyone_but(self, connection: Hashable) -> list[Hashable]:
        return [c for c in self.hub.state.open_connections() if c != connection]

    def send_user_list(self, outgoing: Outgoing, connection: Hashable) -> None:
        self.hub._queue_event(outgoing, connection, T_USER_LIST, self.user_list())

    def broadcast_user_list(self, outgoing: Outgoing) -> None:
        self.hub._broadcast(
            outgoing,
            self.hub.state.open_connections(),
            T_USER_LIST_UPDATE,
            self.user_list(),
        )

    def joined(self, outgoing: Outgoing, ident: Identity) -> None:
        self.hub._broadcast(
            outgoing,
            self._everyone_but(ident.connection),
            T_USER_JOINED,
            {F_NICKNAME: ident.nickname},
        )
        self.broadcast_user_list(outgoing)

    def left(self, outgoing: Outgoing, ident: Identity) -> None:
        # The leaver is already gone from the open connections.
        self.hub._broadcast(
            outgoing,
            self._everyone_but(ident.connection),
            T_USER_LEFT,
            {F_NICKNAME: ident.nickname},
        )
        self.broadcast_user_list(outgoing)

    def typing(self, outgoing: Outgoing, ident: Identity, is_typing: bool) -> None:
        self.hub._broadcast(
            outgoing,
            self._everyone_but(ident.connection),
            T_USER_TYPING,
            {F_NICKNAME: ident.nickname, F_IS_TYPING: bool(is_typing)},
        )
