"""Records shared by the registry, router, like engine and store."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Hashable

from .constants import MSG_KIND_PRIVATE, MSG_KIND_PUBLIC, STATUS_ONLINE


@dataclass
class Identity:
    connection: Hashable
    nickname: str
    status: str = STATUS_ONLINE
    joined_at: str = ""

    def to_dict(self, *, include_join_time: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {"nickname": self.nickname, "status": self.status}
        if include_join_time:
            d["joinTime"] = self.joined_at
        return d


@dataclass(frozen=True)
class PublicMessage:
    id: str
    nickname: str
    content: str
    timestamp: str
    type: str = MSG_KIND_PUBLIC

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nickname": self.nickname,
            "content": self.content,
            "timestamp": self.timestamp,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PublicMessage:
        for key in ("id", "nickname", "content", "timestamp"):
            if not isinstance(d.get(key), str):
                raise ValueError(f"message field {key!r} must be a string")
        return cls(
            id=str(d["id"]),
            nickname=str(d["nickname"]),
            content=str(d["content"]),
            timestamp=str(d["timestamp"]),
        )


@dataclass(frozen=True)
class PrivateMessage:
    id: str
    sender: str
    recipient: str
    content: str
    timestamp: str
    type: str = MSG_KIND_PRIVATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "content": self.content,
            "timestamp": self.timestamp,
            "type": self.type,
        }


@dataclass(frozen=True)
class PrivateDelivery:
    message: PrivateMessage
    recipients: tuple[Hashable, Hashable]


@dataclass(frozen=True)
class PrivateRoom:
    room_id: str
    users: tuple[str, str]
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "roomId": self.room_id,
            "users": list(self.users),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PrivateRoom:
        room_id = d.get("roomId")
        users = d.get("users")
        if not isinstance(room_id, str) or not room_id:
            raise ValueError("room record missing roomId")
        if not isinstance(users, (list, tuple)) or len(users) != 2:
            raise ValueError("room record needs exactly two users")
        return cls(
            room_id=room_id,
            users=(str(users[0]), str(users[1])),
            created_at=str(d.get("createdAt") or ""),
        )


class LikeResult(enum.Enum):
    ALREADY_LIKED = "already_liked"
    ONE_SIDED = "one_sided"
    MUTUAL = "mutual"


@dataclass(frozen=True)
class LikeOutcome:
    result: LikeResult
    liker: str
    target: str
    room_id: str | None = None
    room_created: bool = False


@dataclass
class Snapshot:
    messages: list[PublicMessage] = field(default_factory=list)
    likes: list[tuple[str, str]] = field(default_factory=list)
    rooms: list[PrivateRoom] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.messages or self.likes or self.rooms)
