from __future__ import annotations

import logging
import os
import signal
import threading
import time
from typing import Any, Hashable, Iterable

import RNS

from .codec import encode
from .config import HubRuntimeConfig
from .constants import F_MESSAGE, T_ERROR
from .envelope import make_envelope
from .errors import ValidationFailure
from .gateway import EventGateway
from .models import Snapshot
from .presence import PresenceBroadcaster
from .resources import ResourceManager
from .state import ChatState
from .stats import StatsManager
from .store import StateStore
from .util import expand_path


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("mingled.hub")

        # Chat state is touched from Reticulum callbacks and the store's
        # writer thread. Every inbound event runs to completion under this
        # lock, so handlers never interleave.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager(self)

        self.state = ChatState(
            nick_min_chars=config.nick_min_chars,
            nick_max_chars=config.nick_max_chars,
            max_message_chars=config.max_message_chars,
            on_change=self._request_save,
        )

        self.store = StateStore(
            expand_path(config.state_path) if config.state_path else None,
            snapshot_source=self._snapshot,
            persist_limit=config.history_persist_limit,
            interval_s=config.save_interval_s,
        )

        self.presence = PresenceBroadcaster(self)
        self.gateway = EventGateway(self)
        self.resource_manager = ResourceManager(self)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._announce_thread: threading.Thread | None = None
        self._state_loaded = False

    def _fmt_link_id(self, link: Any) -> str:
        lid = getattr(link, "link_id", None)
        if isinstance(lid, (bytes, bytearray)):
            return bytes(lid).hex()
        h = getattr(link, "hash", None)
        if isinstance(h, (bytes, bytearray)):
            return bytes(h).hex()
        return "-"

    def _src(self) -> bytes:
        if self.identity is None:
            return b""
        return self.identity.hash

    def _request_save(self) -> None:
        self.store.request_save()

    def _snapshot(self) -> Snapshot:
        with self._state_lock:
            return self.state.snapshot(self.config.history_persist_limit)

    def load_state(self) -> None:
        """Restore messages, likes and rooms from the state file (once)."""
        if self._state_loaded:
            return
        snapshot = self.store.load()
        with self._state_lock:
            self.state.restore(snapshot)
        self._state_loaded = True

    # Outbound queueing

    def _queue_event(
        self, outgoing: list[tuple[Any, bytes]], connection: Hashable, event_type: int, body: Any
    ) -> None:
        env = make_envelope(event_type, src=self._src(), body=body)
        outgoing.append((connection, encode(env)))

    def _broadcast(
        self,
        outgoing: list[tuple[Any, bytes]],
        connections: Iterable[Hashable],
        event_type: int,
        body: Any,
    ) -> None:
        # One envelope (and one id) shared by every recipient.
        payload = encode(make_envelope(event_type, src=self._src(), body=body))
        for connection in connections:
            outgoing.append((connection, payload))

    def _emit_error(
        self, outgoing: list[tuple[Any, bytes]], connection: Hashable, text: str
    ) -> None:
        self.stats_manager.inc("errors_sent")
        self._queue_event(outgoing, connection, T_ERROR, {F_MESSAGE: text})

    # Lifecycle

    def start(self) -> None:
        self.stats_manager.set_start_time()
        self.load_state()
        self.store.start()

        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="mingled-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info(
            "Hub running dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
        )
        self.log.info(
            "Policy nick_chars=%s-%s history_sync=%s history_persist=%s save_interval_s=%s admin_removal=%s",
            self.config.nick_min_chars,
            self.config.nick_max_chars,
            self.config.history_sync_limit,
            self.config.history_persist_limit,
            self.config.save_interval_s,
            "enabled" if self.config.admin_secret else "disabled",
        )

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "mingle", "v": 1, "hub": self.config.hub_name})
            )
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.is_set():
            period = float(self.config.announce_period_s)
            if period <= 0:
                time.sleep(1.0)
                continue

            if self._shutdown.wait(period):
                break
            self._announce_once()

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        with self._state_lock:
            links = self.state.clear_connections()
            self.resource_manager.clear_all()

        for link in links:
            try:
                link.teardown()
            except Exception:
                pass

        # Final flush happens inside stop().
        self.store.stop()
        self.log.info("Hub stopped\n%s", self.stats_manager.format_stats())

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    # Admin

    def remove_message(self, message_id: str, secret: str) -> bool:
        """Remove a public message on behalf of an administrator.

        Raises Unauthorized on a bad secret; nothing changes in that case.
        """
        outgoing: list[tuple[Any, bytes]] = []
        with self._state_lock:
            removed = self.gateway.remove_message(message_id, secret, outgoing)
        self._send_all(outgoing)
        return removed

    def format_stats(self) -> str:
        return self.stats_manager.format_stats()

    # Reticulum callbacks

    def _on_link(self, link: RNS.Link) -> None:
        with self._state_lock:
            self.gateway.on_connect(link)

        link.set_packet_callback(lambda data, pkt: self._on_packet(link, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))
        self.resource_manager.configure_link_callbacks(link)

        self.log.info("Link established link_id=%s", self._fmt_link_id(link))

    def _on_close(self, link: RNS.Link) -> None:
        outgoing: list[tuple[Any, bytes]] = []
        with self._state_lock:
            self.resource_manager.on_link_closed(link)
            ident = self.gateway.on_disconnect(link, outgoing)

        self._send_all(outgoing)
        self.log.info(
            "Link closed nick=%r link_id=%s",
            ident.nickname if ident else None,
            self._fmt_link_id(link),
        )

    def _on_packet(self, link: RNS.Link, data: bytes) -> None:
        # Keep state mutations under the shared lock, but avoid holding the
        # lock while sending packets via RNS.
        outgoing: list[tuple[Any, bytes]] = []
        with self._state_lock:
            try:
                self.gateway.route_packet(link, data, outgoing)
            except ValidationFailure as e:
                self._emit_error(outgoing, link, str(e))
            except Exception:
                self.log.exception(
                    "Unhandled error routing packet link_id=%s", self._fmt_link_id(link)
                )

        self._send_all(outgoing)

    def _packet_would_fit(self, link: RNS.Link, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if getattr(link, "MDU", None) is not None:
                return len(payload) <= link.MDU
            pkt = RNS.Packet(link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def _send_all(self, outgoing: list[tuple[Any, bytes]]) -> None:
        for out_link, payload in outgoing:
            self._send_payload(out_link, payload)

    def _send_payload(self, link: RNS.Link, payload: bytes) -> None:
        self.stats_manager.inc("bytes_out", len(payload))
        try:
            if self._packet_would_fit(link, payload):
                RNS.Packet(link, payload).send()
                return
            if not self.resource_manager.send_via_resource(link, payload):
                self.log.warning(
                    "Dropped oversized payload link_id=%s bytes=%s",
                    self._fmt_link_id(link),
                    len(payload),
                )
        except OSError as e:
            self.log.warning(
                "Send failed link_id=%s bytes=%s err=%s",
                self._fmt_link_id(link),
                len(payload),
                e,
            )
        except Exception:
            self.log.debug(
                "Send failed link_id=%s bytes=%s",
                self._fmt_link_id(link),
                len(payload),
                exc_info=True,
            )
