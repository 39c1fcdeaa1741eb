"""Bounded state snapshot persisted to a TOML file.

The in-memory state is authoritative. The file is a best-effort copy that
lets a restarted hub resume with its recent history, likes and rooms.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable

import tomlkit

from .constants import HISTORY_PERSIST_LIMIT
from .errors import PersistenceFailure
from .models import PrivateRoom, PublicMessage, Snapshot


def snapshot_to_toml(snapshot: Snapshot, *, persist_limit: int = HISTORY_PERSIST_LIMIT) -> str:
    doc = tomlkit.document()
    doc.add(tomlkit.comment("mingled state snapshot; rewritten by the hub while it runs"))

    likes = tomlkit.array()
    for liker, target in snapshot.likes:
        likes.append([liker, target])
    doc["likes"] = likes

    messages = tomlkit.aot()
    tail = snapshot.messages[-persist_limit:] if persist_limit > 0 else []
    for msg in tail:
        t = tomlkit.table()
        for k, v in msg.to_dict().items():
            t[k] = v
        messages.append(t)
    doc["messages"] = messages

    rooms = tomlkit.aot()
    for room in snapshot.rooms:
        t = tomlkit.table()
        for k, v in room.to_dict().items():
            t[k] = v
        rooms.append(t)
    doc["privateChats"] = rooms

    return tomlkit.dumps(doc)


def snapshot_from_toml(text: str) -> Snapshot:
    doc = tomlkit.parse(text)

    messages: list[PublicMessage] = []
    for item in doc.get("messages") or []:
        if isinstance(item, dict):
            messages.append(PublicMessage.from_dict(dict(item)))

    likes: list[tuple[str, str]] = []
    for pair in doc.get("likes") or []:
        if isinstance(pair, list) and len(pair) == 2:
            likes.append((str(pair[0]), str(pair[1])))

    rooms: list[PrivateRoom] = []
    for item in doc.get("privateChats") or []:
        if isinstance(item, dict):
            rooms.append(PrivateRoom.from_dict(dict(item)))

    return Snapshot(messages=messages, likes=likes, rooms=rooms)


class StateStore:
    """
    Loads and saves the state snapshot.

    Saves happen on a background writer thread: ``request_save`` only sets a
    flag, so callers holding the hub state lock never wait on disk I/O. The
    writer also saves every ``interval_s`` seconds in case a request was
    missed, and ``stop`` flushes once more before returning.
    """

    def __init__(
        self,
        path: str | None,
        *,
        snapshot_source: Callable[[], Snapshot] | None = None,
        persist_limit: int = HISTORY_PERSIST_LIMIT,
        interval_s: float = 30.0,
    ) -> None:
        self.path = path
        self.snapshot_source = snapshot_source
        self.persist_limit = min(int(persist_limit), HISTORY_PERSIST_LIMIT)
        self.interval_s = float(interval_s)
        self.log = logging.getLogger("mingled.store")

        self._write_lock = threading.Lock()
        self._wake = threading.Event()
        self._shutdown = threading.Event()
        self._thread: threading.Thread | None = None

        self._counters: dict[str, int] = {"saves": 0, "save_failures": 0}

    def load(self) -> Snapshot:
        """Read the previous snapshot; any problem means a fresh start."""
        if not self.path:
            return Snapshot()
        p = Path(self.path)
        if not p.exists():
            self.log.info("No state file at %s; starting fresh", p)
            return Snapshot()
        try:
            snap = snapshot_from_toml(p.read_text(encoding="utf-8"))
        except Exception as e:
            self.log.warning("Failed to load state from %s (%s); starting fresh", p, e)
            return Snapshot()

        self.log.info(
            "Loaded state messages=%s likes=%s rooms=%s",
            len(snap.messages),
            len(snap.likes),
            len(snap.rooms),
        )
        return snap

    def _write(self, snapshot: Snapshot) -> None:
        if not self.path:
            return
        p = Path(self.path)
        try:
            text = snapshot_to_toml(snapshot, persist_limit=self.persist_limit)
            if p.parent:
                p.parent.mkdir(parents=True, exist_ok=True)
            tmp = p.with_name(p.name + ".tmp")
            with self._write_lock:
                with open(tmp, "w", encoding="utf-8") as f:
                    f.write(text)
                try:
                    os.chmod(tmp, 0o600)
                except Exception:
                    pass
                os.replace(tmp, p)
        except OSError as e:
            raise PersistenceFailure(f"failed to write {p}: {e}") from e

    def save(self, snapshot: Snapshot) -> bool:
        """Overwrite the state file. Failures are logged, never raised."""
        try:
            self._write(snapshot)
        except PersistenceFailure as e:
            self._counters["save_failures"] += 1
            self.log.error("%s", e)
            return False
        except Exception:
            self._counters["save_failures"] += 1
            self.log.exception("Unexpected error while saving state")
            return False
        self._counters["saves"] += 1
        return True

    def flush(self) -> bool:
        if self.snapshot_source is None:
            return False
        try:
            snapshot = self.snapshot_source()
        except Exception:
            self.log.exception("Failed to take state snapshot")
            return False
        return self.save(snapshot)

    def request_save(self) -> None:
        self._wake.set()

    def start(self) -> None:
        if self._thread is not None or not self.path:
            return
        self._shutdown.clear()
        self._thread = threading.Thread(
            target=self._writer_loop, name="mingled-store", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._shutdown.set()
        self._wake.set()
        thread = self._thread
        self._thread = None
        if thread is not None:
            thread.join(timeout=5.0)
        if self.path:
            self.flush()

    def _writer_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = self.interval_s if self.interval_s > 0 else None
            self._wake.wait(timeout=interval)
            if self._shutdown.is_set():
                break
            self._wake.clear()
            self.flush()

    def get_stats(self) -> dict[str, Any]:
        return dict(self._counters)
