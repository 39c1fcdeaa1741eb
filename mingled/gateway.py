from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any, Hashable

from .codec import decode
from .constants import (
    F_ADMIN_SECRET,
    F_CONTENT,
    F_ERROR,
    F_FROM,
    F_IS_TYPING,
    F_MESSAGE,
    F_MESSAGE_ID,
    F_NICKNAME,
    F_ROOM_ID,
    F_SUCCESS,
    F_TARGET,
    HISTORY_SYNC_LIMIT,
    K_BODY,
    K_T,
    T_GET_MESSAGES,
    T_GET_USERS,
    T_JOIN,
    T_JOIN_SUCCESS,
    T_LIKE_RECEIVED,
    T_LIKE_USER,
    T_LIKE_WARNING,
    T_MESSAGE_REMOVED,
    T_MUTUAL_LIKE,
    T_NEW_MESSAGE,
    T_NEW_PRIVATE_MESSAGE,
    T_NICKNAME_ERROR,
    T_RECENT_MESSAGES,
    T_REMOVE_MESSAGE,
    T_REMOVE_RESULT,
    T_SEND_MESSAGE,
    T_SEND_PRIVATE_MESSAGE,
    T_TYPING,
    T_USER_LIST,
)
from .envelope import validate_envelope
from .errors import (
    AlreadyJoined,
    DuplicateNickname,
    NotJoined,
    Unauthorized,
    UnknownRecipient,
    ValidationFailure,
)
from .models import Identity, LikeResult

if TYPE_CHECKING:
    from .service import HubService

Outgoing = list[tuple[Any, bytes]]


class EventGateway:
    """
    Translates inbound events into core operations and queues the results.

    This class is responsible for:
    - Decoding and validating incoming envelopes
    - Dispatching by event type (join, messages, likes, typing, admin)
    - Choosing recipients for every outbound event
    - Connection open/close bookkeeping

    Nothing here sends; handlers append ``(connection, payload)`` pairs to
    ``outgoing`` and the hub sends them after releasing the state lock.
    Must be called with the state lock held.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("mingled.gateway")
        self._handlers = {
            T_JOIN: self._handle_join,
            T_SEND_MESSAGE: self._handle_send_message,
            T_SEND_PRIVATE_MESSAGE: self._handle_send_private_message,
            T_LIKE_USER: self._handle_like,
            T_TYPING: self._handle_typing,
            T_GET_MESSAGES: self._handle_get_messages,
            T_GET_USERS: self._handle_get_users,
            T_REMOVE_MESSAGE: self._handle_remove_message,
        }

    @property
    def state(self):
        return self.hub.state

    def on_connect(self, connection: Hashable) -> None:
        self.state.connect(connection)

    def on_disconnect(self, connection: Hashable, outgoing: Outgoing) -> Identity | None:
        ident = self.state.disconnect(connection)
        if ident is None:
            return None

        self.hub.stats_manager.inc("leaves")
        self.hub.presence.left(outgoing, ident)
        self.log.info("%s left the chat", ident.nickname)
        return ident

    def route_packet(self, connection: Hashable, data: bytes, outgoing: Outgoing) -> None:
        """Main entry point for an inbound packet or resource payload."""
        if connection not in self.state.connections:
            return

        self.hub.stats_manager.inc("pkts_in")
        self.hub.stats_manager.inc("bytes_in", len(data))

        try:
            env = decode(data)
            validate_envelope(env)
        except Exception as e:
            self.hub.stats_manager.inc("pkts_bad")
            self.log.debug(
                "Bad packet link_id=%s bytes=%s err=%s",
                self.hub._fmt_link_id(connection),
                len(data),
                e,
            )
            self.hub._emit_error(outgoing, connection, f"bad message: {e}")
            return

        t = env.get(K_T)
        body = env.get(K_BODY)
        if not isinstance(body, dict):
            body = {}

        handler = self._handlers.get(t)
        if handler is None:
            self.log.debug(
                "Ignoring unknown event t=%s link_id=%s",
                t,
                self.hub._fmt_link_id(connection),
            )
            return

        handler(connection, body, outgoing)

    def _handle_join(self, connection: Hashable, body: dict, outgoing: Outgoing) -> None:
        try:
            ident = self.state.registry.join(connection, body.get(F_NICKNAME))
        except DuplicateNickname:
            self.hub.stats_manager.inc("nick_rejected")
            self.hub._queue_event(
                outgoing, connection, T_NICKNAME_ERROR, {F_MESSAGE: "Nickname already taken"}
            )
            return
        except (ValidationFailure, AlreadyJoined) as e:
            self.hub.stats_manager.inc("nick_rejected")
            self.hub._queue_event(outgoing, connection, T_NICKNAME_ERROR, {F_MESSAGE: str(e)})
            return

        self.hub.stats_manager.inc("joins")

        self.hub._queue_event(outgoing, connection, T_JOIN_SUCCESS, {F_NICKNAME: ident.nickname})
        self.hub._queue_event(
            outgoing, connection, T_RECENT_MESSAGES, self._recent_messages()
        )
        self.hub.presence.send_user_list(outgoing, connection)
        self.hub.presence.joined(outgoing, ident)

        self.log.info(
            "%s joined the chat link_id=%s",
            ident.nickname,
            self.hub._fmt_link_id(connection),
        )

    def _recent_messages(self) -> list[dict[str, Any]]:
        limit = min(int(self.hub.config.history_sync_limit), HISTORY_SYNC_LIMIT)
        return [m.to_dict() for m in self.state.router.recent(limit)]

    def _handle_send_message(self, connection: Hashable, body: dict, outgoing: Outgoing) -> None:
        try:
            msg = self.state.router.post_public(connection, body.get(F_CONTENT))
        except NotJoined:
            return
        except ValidationFailure as e:
            self.hub._emit_error(outgoing, connection, str(e))
            return

        self.hub.stats_manager.inc("msgs_public")
        self.hub._broadcast(
            outgoing, self.state.open_connections(), T_NEW_MESSAGE, msg.to_dict()
        )
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("%s: %s", msg.nickname, msg.content)

    def _handle_send_private_message(
        self, connection: Hashable, body: dict, outgoing: Outgoing
    ) -> None:
        try:
            delivery = self.state.router.post_private(
                connection, body.get(F_TARGET), body.get(F_CONTENT)
            )
        except NotJoined:
            return
        except UnknownRecipient as e:
            self.hub.stats_manager.inc("msgs_dropped")
            self.log.debug("Dropped private message: %s", e)
            return
        except ValidationFailure as e:
            self.hub._emit_error(outgoing, connection, str(e))
            return

        self.hub.stats_manager.inc("msgs_private")
        recipients = list(dict.fromkeys(delivery.recipients))
        self.hub._broadcast(
            outgoing, recipients, T_NEW_PRIVATE_MESSAGE, delivery.message.to_dict()
        )
        if self.log.isEnabledFor(logging.DEBUG):
            msg = delivery.message
            self.log.debug("Private: %s to %s: %s", msg.sender, msg.recipient, msg.content)

    def _handle_like(self, connection: Hashable, body: dict, outgoing: Outgoing) -> None:
        ident = self.state.registry.get(connection)
        if ident is None:
            return

        try:
            outcome = self.state.likes.like(ident.nickname, body.get(F_TARGET))
        except ValidationFailure as e:
            self.hub._emit_error(outgoing, connection, str(e))
            return
        target = outcome.target

        if outcome.result is LikeResult.ALREADY_LIKED:
            self.hub._queue_event(
                outgoing,
                connection,
                T_LIKE_WARNING,
                {F_TARGET: target, F_MESSAGE: f"You already liked {target}"},
            )
            return

        self.hub.stats_manager.inc("likes")
        target_ident = self.state.registry.lookup_by_nickname(target)

        if outcome.result is LikeResult.ONE_SIDED:
            if target_ident is not None:
                self.hub._queue_event(
                    outgoing,
                    target_ident.connection,
                    T_LIKE_RECEIVED,
                    {F_FROM: ident.nickname},
                )
            self.log.info("%s likes %s", ident.nickname, target)
            return

        self.hub.stats_manager.inc("mutual_likes")
        self.hub._queue_event(
            outgoing,
            connection,
            T_MUTUAL_LIKE,
            {F_NICKNAME: target, F_ROOM_ID: outcome.room_id},
        )
        if target_ident is not None:
            self.hub._queue_event(
                outgoing,
                target_ident.connection,
                T_MUTUAL_LIKE,
                {F_NICKNAME: ident.nickname, F_ROOM_ID: outcome.room_id},
            )
        self.log.info(
            "Mutual like: %s and %s room=%s created=%s",
            ident.nickname,
            target,
            outcome.room_id,
            outcome.room_created,
        )

    def _handle_typing(self, connection: Hashable, body: dict, outgoing: Outgoing) -> None:
        ident = self.state.registry.get(connection)
        if ident is None:
            return
        self.hub.presence.typing(outgoing, ident, bool(body.get(F_IS_TYPING)))

    def _handle_get_messages(self, connection: Hashable, body: dict, outgoing: Outgoing) -> None:
        self.hub._queue_event(
            outgoing, connection, T_RECENT_MESSAGES, self._recent_messages()
        )

    def _handle_get_users(self, connection: Hashable, body: dict, outgoing: Outgoing) -> None:
        users = [
            ident.to_dict(include_join_time=True)
            for ident in self.state.registry.list()
        ]
        self.hub._queue_event(outgoing, connection, T_USER_LIST, users)

    def _handle_remove_message(
        self, connection: Hashable, body: dict, outgoing: Outgoing
    ) -> None:
        message_id = body.get(F_MESSAGE_ID)
        try:
            self.remove_message(message_id, body.get(F_ADMIN_SECRET), outgoing)
        except Unauthorized:
            self.hub._queue_event(
                outgoing,
                connection,
                T_REMOVE_RESULT,
                {F_SUCCESS: False, F_MESSAGE_ID: message_id, F_ERROR: "Unauthorized"},
            )
            return
        except ValidationFailure as e:
            self.hub._queue_event(
                outgoing,
                connection,
                T_REMOVE_RESULT,
                {F_SUCCESS: False, F_MESSAGE_ID: message_id, F_ERROR: str(e)},
            )
            return

        self.hub._queue_event(
            outgoing,
            connection,
            T_REMOVE_RESULT,
            {F_SUCCESS: True, F_MESSAGE_ID: message_id},
        )

    def check_admin_secret(self, secret: Any) -> None:
        expected = str(self.hub.config.admin_secret or "")
        if not expected or not isinstance(secret, str):
            raise Unauthorized("admin removal is not authorized")
        if not hmac.compare_digest(secret.encode("utf-8"), expected.encode("utf-8")):
            raise Unauthorized("admin removal is not authorized")

    def remove_message(self, message_id: Any, secret: Any, outgoing: Outgoing) -> bool:
        """Remove a public message and tell everyone.

        An id that is not in the log still broadcasts ``messageRemoved`` so
        clients holding a stale copy drop it. Returns whether the log changed.
        """
        try:
            self.check_admin_secret(secret)
        except Unauthorized:
            self.hub.stats_manager.inc("admin_rejected")
            self.log.warning("Rejected message removal id=%r: bad admin secret", message_id)
            raise

        if not isinstance(message_id, str) or not message_id:
            raise ValidationFailure("message id required")

        removed = self.state.router.remove_message(message_id)
        if removed:
            self.hub.stats_manager.inc("messages_removed")

        self.hub._broadcast(
            outgoing,
            self.state.open_connections(),
            T_MESSAGE_REMOVED,
            {F_MESSAGE_ID: message_id},
        )
        self.log.info("Admin removed message id=%s found=%s", message_id, removed)
        return removed
