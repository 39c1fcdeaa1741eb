"""Large payload transfer over RNS.Resource.

Recent history and user lists easily exceed a single packet. Anything that
does not fit the link MDU is sent as a Resource carrying the same encoded
envelope, and clients may do the same for long messages.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import RNS

if TYPE_CHECKING:
    from .service import HubService


class ResourceManager:
    """Sends and accepts RNS Resources for the hub."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("mingled.resources")
        self._active_resources: dict[RNS.Link, set[RNS.Resource]] = {}

    def on_link_closed(self, link: RNS.Link) -> None:
        self._active_resources.pop(link, None)

    def clear_all(self) -> None:
        self._active_resources.clear()

    def configure_link_callbacks(self, link: RNS.Link) -> None:
        """Set up resource callbacks for a link if resource transfer is enabled."""
        if not self.hub.config.enable_resource_transfer:
            return

        try:
            link.set_resource_strategy(RNS.Link.ACCEPT_APP)
            link.set_resource_callback(self._resource_advertised)
            link.set_resource_concluded_callback(self._resource_concluded)
        except Exception as e:
            self.log.warning(
                "Failed to set resource callbacks link_id=%s: %s",
                self.hub._fmt_link_id(link),
                e,
            )

    def _resource_advertised(self, resource: RNS.Resource) -> bool:
        """Accept a Resource only from an open link and within the size limit."""
        link = resource.link

        size = resource.total_size if hasattr(resource, "total_size") else resource.size
        if size > self.hub.config.max_resource_bytes:
            self.log.warning(
                "Rejecting resource (too large: %s > %s) link_id=%s",
                size,
                self.hub.config.max_resource_bytes,
                self.hub._fmt_link_id(link),
            )
            self.hub.stats_manager.inc("resources_rejected")
            return False

        with self.hub._state_lock:
            if link not in self.hub.state.connections:
                self.hub.stats_manager.inc("resources_rejected")
                return False
            self._active_resources.setdefault(link, set()).add(resource)

        return True

    def _resource_concluded(self, resource: RNS.Resource) -> None:
        link = resource.link

        with self.hub._state_lock:
            active = self._active_resources.get(link)
            if active:
                active.discard(resource)

        if resource.status != RNS.Resource.COMPLETE:
            self.log.warning(
                "Resource transfer failed link_id=%s status=%s",
                self.hub._fmt_link_id(link),
                resource.status,
            )
            return

        try:
            payload = resource.data.read() if hasattr(resource.data, "read") else resource.data
            if isinstance(payload, bytearray):
                payload = bytes(payload)
        except Exception as e:
            self.log.error(
                "Failed to read resource data link_id=%s: %s",
                self.hub._fmt_link_id(link),
                e,
            )
            return

        self.hub.stats_manager.inc("resources_received")
        self.hub._on_packet(link, payload)

    def _sent_concluded(self, resource: RNS.Resource) -> None:
        with self.hub._state_lock:
            active = self._active_resources.get(resource.link)
            if active:
                active.discard(resource)
        if resource.status != RNS.Resource.COMPLETE:
            self.log.debug(
                "Outbound resource did not complete link_id=%s status=%s",
                self.hub._fmt_link_id(resource.link),
                resource.status,
            )

    def send_via_resource(self, link: RNS.Link, payload: bytes) -> bool:
        """Send an encoded envelope as a Resource. Returns False if not sent."""
        if not self.hub.config.enable_resource_transfer:
            return False

        size = len(payload)
        if size > self.hub.config.max_resource_bytes:
            self.log.error(
                "Payload too large for resource transfer: %s > %s",
                size,
                self.hub.config.max_resource_bytes,
            )
            return False

        try:
            resource = RNS.Resource(
                payload,
                link,
                advertise=True,
                auto_compress=False,
                callback=self._sent_concluded,
            )
        except Exception as e:
            self.log.error(
                "Failed to create resource link_id=%s: %s",
                self.hub._fmt_link_id(link),
                e,
            )
            return False

        with self.hub._state_lock:
            self._active_resources.setdefault(link, set()).add(resource)
        self.hub.stats_manager.inc("resources_sent")
        self.log.debug(
            "Sent resource link_id=%s size=%s", self.hub._fmt_link_id(link), size
        )
        return True
