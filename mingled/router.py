from __future__ import annotations

import logging
import secrets
import string
import time
from typing import Any, Callable, Hashable, Iterable

from .constants import HISTORY_SYNC_LIMIT
from .errors import NotJoined, UnknownRecipient, ValidationFailure
from .models import PrivateDelivery, PrivateMessage, PublicMessage
from .registry import IdentityRegistry
from .util import normalize_nick, utc_now_iso

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_message_id() -> str:
    """Epoch millis followed by a random base36 suffix.

    Ids are unique, not ordered; two messages in the same millisecond differ
    by their suffix.
    """
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}{suffix}"


class MessageRouter:
    """
    Validates, stamps and stores chat messages.

    This class is responsible for:
    - Public messages: sender check, content check, append to the log
    - Private messages: resolving the target by nickname at send time
    - Admin removal of public messages from the log

    Fan-out is left to the caller. Must be called with the hub state lock held.
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        *,
        max_message_chars: int = 0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.registry = registry
        self.max_message_chars = int(max_message_chars)
        self.on_change = on_change
        self.log = logging.getLogger("mingled.router")
        self._messages: list[PublicMessage] = []

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _check_content(self, content: Any) -> str:
        if not isinstance(content, str) or not content.strip():
            raise ValidationFailure("message content must not be empty")
        if self.max_message_chars > 0 and len(content) > self.max_message_chars:
            raise ValidationFailure(
                f"message too long: {len(content)} > {self.max_message_chars}"
            )
        return content

    def post_public(self, connection: Hashable, content: Any) -> PublicMessage:
        sender = self.registry.get(connection)
        if sender is None:
            raise NotJoined("join before sending messages")
        text = self._check_content(content)

        msg = PublicMessage(
            id=new_message_id(),
            nickname=sender.nickname,
            content=text,
            timestamp=utc_now_iso(),
        )
        self._messages.append(msg)
        self._changed()
        return msg

    def post_private(
        self, connection: Hashable, target_nickname: Any, content: Any
    ) -> PrivateDelivery:
        sender = self.registry.get(connection)
        if sender is None:
            raise NotJoined("join before sending messages")
        text = self._check_content(content)

        nick = normalize_nick(
            target_nickname,
            min_chars=self.registry.nick_min_chars,
            max_chars=self.registry.nick_max_chars,
        )
        if nick is None:
            raise ValidationFailure(
                f"target nickname must be {self.registry.nick_min_chars}-"
                f"{self.registry.nick_max_chars} characters"
            )
        target = self.registry.lookup_by_nickname(nick)
        if target is None:
            raise UnknownRecipient(nick)

        msg = PrivateMessage(
            id=new_message_id(),
            sender=sender.nickname,
            recipient=target.nickname,
            content=text,
            timestamp=utc_now_iso(),
        )
        return PrivateDelivery(message=msg, recipients=(connection, target.connection))

    def remove_message(self, message_id: str) -> bool:
        before = len(self._messages)
        self._messages = [m for m in self._messages if m.id != message_id]
        removed = len(self._messages) != before
        if removed:
            self._changed()
        return removed

    def recent(self, limit: int = HISTORY_SYNC_LIMIT) -> list[PublicMessage]:
        if limit <= 0:
            return []
        return self._messages[-int(limit):]

    def messages(self) -> list[PublicMessage]:
        return list(self._messages)

    def restore(self, messages: Iterable[PublicMessage]) -> None:
        self._messages = list(messages)

    def get_stats(self) -> dict[str, int]:
        return {"messages": len(self._messages)}
