"""
mDNS service discovery for advertising edge nodes
Browser callbacks only publish events; a single coordinator task turns them into registry changes
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Set, Tuple

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from .models import DiscoveryEvent, DiscoveryEventType, ScanResult, address_from_service_name
from .status_probe import StatusProbe

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_proxy-edge._tcp.local."

class EdgeServiceDiscovery:
    """Passive discovery of edges advertising SERVICE_TYPE, plus active health checks of known edges"""

    def __init__(self, config: Dict, registry, probe: StatusProbe, edge_port: int = 8080,
                 zeroconf_factory=AsyncZeroconf, browser_factory=AsyncServiceBrowser):
        self.config = config
        self.registry = registry
        self.probe = probe
        self.edge_port = edge_port
        self.service_type = config.get('service_type', SERVICE_TYPE)
        self.resolve_timeout = config.get('resolve_timeout_seconds', 3)
        self.request_timeout = config.get('request_timeout', 3)
        self._zeroconf_factory = zeroconf_factory
        self._browser_factory = browser_factory

        self._aiozc = None
        self._browser = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._resolutions: Set[asyncio.Task] = set()
        self._probes: Set[asyncio.Task] = set()
        self._probe_by_address: Dict[str, asyncio.Task] = {}

    @property
    def is_active(self) -> bool:
        return self._browser is not None

    # ================== LIFECYCLE ==================

    async def start_discovery(self):
        """Start browsing for edge services; a second call while active is a no-op"""
        if self._browser is not None:
            logger.warning("Discovery is already active.")
            return

        logger.info(f"[DISCOVERY] Starting network service discovery for '{self.service_type}'")
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume_events())

        try:
            self._aiozc = self._zeroconf_factory(ip_version=IPVersion.V4Only)
            self._browser = self._browser_factory(
                self._aiozc.zeroconf,
                [self.service_type],
                handlers=[self._on_service_state_change]
            )
            logger.debug("Discovery started successfully.")
        except Exception as e:
            logger.error(f"Start discovery failed: {e}")
            await self._teardown()

    async def stop_discovery(self):
        """Stop browsing; safe to call when discovery was never started"""
        if self._browser is None and self._consumer is None:
            return

        logger.info("[DISCOVERY] Stopping network service discovery.")
        await self._teardown()
        logger.info("Discovery stopped.")

    async def _teardown(self):
        if self._browser is not None:
            try:
                await self._browser.async_cancel()
            except Exception as e:
                logger.error(f"Stop discovery failed: {e}")
            self._browser = None

        if self._aiozc is not None:
            try:
                await self._aiozc.async_close()
            except Exception as e:
                logger.error(f"Closing zeroconf failed: {e}")
            self._aiozc = None

        pending = list(self._resolutions)
        if self._consumer is not None:
            pending.append(self._consumer)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._consumer = None
        self._resolutions.clear()

        # Probes already on the wire finish and their results still apply
        if self._probes:
            await asyncio.wait(list(self._probes), timeout=self.request_timeout + 1)
        self._probe_by_address.clear()
        self._events = None

    # ================== EVENT STREAM ==================

    def _on_service_state_change(self, zeroconf: Zeroconf, service_type: str, name: str,
                                 state_change: ServiceStateChange) -> None:
        if state_change is ServiceStateChange.Added:
            logger.debug(f"Service found: {name}")
            self.publish(DiscoveryEvent(DiscoveryEventType.FOUND, name))
        elif state_change is ServiceStateChange.Removed:
            logger.info(f"Service lost: {name}")
            self.publish(DiscoveryEvent(DiscoveryEventType.LOST, name))

    def publish(self, event: DiscoveryEvent):
        """Queue an event for the coordinator; callable from any thread"""
        if self._events is None or self._loop is None:
            logger.warning(f"Discovery not active - dropping {event.kind.value} event for {event.service_name}")
            return
        self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    async def _consume_events(self):
        while True:
            event = await self._events.get()
            if event.kind is DiscoveryEventType.LOST:
                await self.handle_event(event)
                continue

            tracked = self._resolutions if event.kind is DiscoveryEventType.FOUND else self._probes
            task = asyncio.create_task(self.handle_event(event))
            tracked.add(task)
            task.add_done_callback(tracked.discard)
            if event.kind is DiscoveryEventType.RESOLVED:
                self._probe_by_address[event.address] = task
                task.add_done_callback(lambda t, address=event.address: self._forget_probe(address, t))

    def _forget_probe(self, address: str, task: asyncio.Task):
        if self._probe_by_address.get(address) is task:
            del self._probe_by_address[address]

    async def handle_event(self, event: DiscoveryEvent):
        """Apply one discovery event; never raises"""
        try:
            if event.kind is DiscoveryEventType.FOUND:
                resolved = await self.resolve_service(event.service_name)
                if resolved:
                    address, port = resolved
                    self.publish(DiscoveryEvent(DiscoveryEventType.RESOLVED, event.service_name, address, port))

            elif event.kind is DiscoveryEventType.RESOLVED:
                await self._query_edge_status(event.address, event.port)

            elif event.kind is DiscoveryEventType.LOST:
                address = address_from_service_name(event.service_name, self.service_type)
                if address is None:
                    logger.warning(f"Lost service name '{event.service_name}' does not encode an edge address - ignoring")
                    return
                # An in-flight probe for this edge must not re-add it
                pending_probe = self._probe_by_address.pop(address, None)
                if pending_probe is not None:
                    pending_probe.cancel()
                self.registry.remove(address)

        except Exception as e:
            logger.error(f"Error handling {event.kind.value} event for {event.service_name}: {e}")

    async def resolve_service(self, name: str) -> Optional[Tuple[str, int]]:
        """Resolve a service instance name to an (IPv4 address, port) pair"""
        if self._aiozc is None:
            logger.error(f"Resolve failed for {name}: discovery not active")
            return None

        info = AsyncServiceInfo(self.service_type, name)
        if not await info.async_request(self._aiozc.zeroconf, int(self.resolve_timeout * 1000)):
            logger.error(f"Resolve failed for {name}: no response within {self.resolve_timeout}s")
            return None

        addresses = info.parsed_addresses(IPVersion.V4Only)
        if not addresses or not info.port:
            logger.error(f"Resolve failed for {name}: no IPv4 address advertised")
            return None

        logger.info(f"Service resolved: {name} at {addresses[0]}:{info.port}")
        return addresses[0], info.port

    async def _query_edge_status(self, address: str, port: int) -> bool:
        """Probe a freshly resolved edge; failures leave the registry untouched"""
        generation = self.registry.generation
        result = await self.probe.probe(address, port)
        if result is None:
            logger.warning(f"Failed to query status for {address}:{port}")
            return False

        self.registry.upsert(address, result.level, result.status, generation=generation)
        logger.debug(f"Successfully queried edge at {address}. Added to registry.")
        return True

    # ================== ACTIVE HEALTH CHECK ==================

    async def refresh_known_edges(self) -> ScanResult:
        """Re-probe every known edge on the edge port; unreachable edges are evicted"""
        start_time = time.time()
        edges = self.registry.get_all()
        generation = self.registry.generation
        refreshed = []
        evicted = 0

        async def refresh_single(address: str):
            nonlocal evicted
            result = await self.probe.probe(address, self.edge_port)
            if result:
                self.registry.upsert(address, result.level, result.status, generation=generation)
                refreshed.append(result)
            else:
                logger.warning(f"Edge {address} unreachable during refresh - removing")
                self.registry.remove(address)
                evicted += 1

        await asyncio.gather(*(refresh_single(edge.address) for edge in edges), return_exceptions=True)

        if edges:
            logger.info(f"[DISCOVERY] Refreshed {len(refreshed)}/{len(edges)} known edge(s), evicted {evicted}")
        return ScanResult(
            edges=refreshed,
            method="service_refresh",
            duration_seconds=time.time() - start_time,
            addresses_tested=len(edges),
            success_count=len(refreshed)
        )
