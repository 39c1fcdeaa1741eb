"""Error taxonomy for hub operations."""

from __future__ import annotations


class HubError(Exception):
    """Base class for errors raised by hub core operations."""


class ValidationFailure(HubError, ValueError):
    """Input rejected before any state was touched."""


class DuplicateNickname(HubError):
    def __init__(self, nickname: str) -> None:
        super().__init__(f"nickname already taken: {nickname!r}")
        self.nickname = nickname


class AlreadyJoined(HubError):
    def __init__(self, nickname: str) -> None:
        super().__init__(f"connection already joined as {nickname!r}")
        self.nickname = nickname


class NotJoined(HubError):
    """The connection has not completed a join."""


class UnknownRecipient(HubError):
    def __init__(self, nickname: str) -> None:
        super().__init__(f"no live user named {nickname!r}")
        self.nickname = nickname


class Unauthorized(HubError):
    """Admin secret missing or mismatched."""


class PersistenceFailure(HubError):
    """Reading or writing the state file failed."""
