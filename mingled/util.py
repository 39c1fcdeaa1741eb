from __future__ import annotations

import os
from datetime import datetime, timezone

from .constants import NICK_MAX_CHARS, NICK_MIN_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def normalize_nick(
    value,
    *,
    min_chars: int = NICK_MIN_CHARS,
    max_chars: int = NICK_MAX_CHARS,
) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if len(s) < int(min_chars):
        return None
    if int(max_chars) > 0 and len(s) > int(max_chars):
        return None

    # No embedded newlines or NUL.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return None

    return s
