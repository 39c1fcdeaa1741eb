"""Lifetime counters and a human-readable summary for the hub."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import HubService


class StatsManager:
    """
    Tracks counters for:
    - Packets and bytes in/out
    - Joins, leaves and rejected nicknames
    - Public, private and dropped messages
    - Likes, mutual likes and admin removals
    - Resource transfers
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "pkts_in": 0,
            "pkts_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "joins": 0,
            "leaves": 0,
            "nick_rejected": 0,
            "msgs_public": 0,
            "msgs_private": 0,
            "msgs_dropped": 0,
            "likes": 0,
            "mutual_likes": 0,
            "messages_removed": 0,
            "admin_rejected": 0,
            "errors_sent": 0,
            "resources_sent": 0,
            "resources_received": 0,
            "resources_rejected": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self.hub._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.hub._state_lock:
            return int(self._counters.get(key, 0))

    def format_stats(self) -> str:
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0

        with self.hub._state_lock:
            st = self.hub.state.get_stats()
            c = dict(self._counters)
        store = self.hub.store.get_stats()

        lines: list[str] = []
        lines.append(f"mingled {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"connections={st['connections']} users={st['identities']} "
            f"messages={st['messages']} likes={st['likes']} rooms={st['rooms']}"
        )
        lines.append(
            "io: pkts_in={} pkts_bad={} bytes_in={} bytes_out={}".format(
                c.get("pkts_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: joins={} leaves={} nick_rejected={} public={} private={} dropped={} errors_sent={}".format(
                c.get("joins", 0),
                c.get("leaves", 0),
                c.get("nick_rejected", 0),
                c.get("msgs_public", 0),
                c.get("msgs_private", 0),
                c.get("msgs_dropped", 0),
                c.get("errors_sent", 0),
            )
        )
        lines.append(
            "likes: new={} mutual={} removed={} admin_rejected={}".format(
                c.get("likes", 0),
                c.get("mutual_likes", 0),
                c.get("messages_removed", 0),
                c.get("admin_rejected", 0),
            )
        )
        lines.append(
            "store: saves={} failures={}".format(
                store.get("saves", 0), store.get("save_failures", 0)
            )
        )
        lines.append(
            "resources: sent={} received={} rejected={}".format(
                c.get("resources_sent", 0),
                c.get("resources_received", 0),
                c.get("resources_rejected", 0),
            )
        )

        return "\n".join(lines)
