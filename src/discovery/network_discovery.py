"""
Subnet scanning for edge nodes that do not advertise over mDNS
"""

import socket
import asyncio
import ipaddress
import time
import logging
from typing import Dict, List, Optional

from .models import EdgeStatus, ScanResult
from .status_probe import StatusProbe

logger = logging.getLogger(__name__)

def get_local_ipv4() -> Optional[str]:
    """Determine this host's LAN IPv4 address (no packets are sent by a UDP connect)"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("8.8.8.8", 80))
        ip = sock.getsockname()[0]
    except OSError as e:
        logger.error(f"Failed to determine local IPv4 address: {e}")
        return None
    finally:
        sock.close()

    if ipaddress.IPv4Address(ip).is_unspecified:
        return None
    return ip

def subnet_hosts(local_ip: str) -> List[str]:
    """All host addresses .1-.254 on local_ip's /24, excluding local_ip itself"""
    ipaddress.IPv4Address(local_ip)
    prefix = local_ip.rsplit('.', 1)[0]
    return [f"{prefix}.{i}" for i in range(1, 255) if f"{prefix}.{i}" != local_ip]

class SubnetScanner:
    """Brute-force /24 probing plus periodic re-probing of already known edges"""

    def __init__(self, config: Dict, registry, probe: StatusProbe, edge_port: int = 8080):
        self.config = config
        self.registry = registry
        self.probe = probe
        self.edge_port = edge_port
        self.max_concurrent_probes = config.get('max_concurrent_probes', 254)
        self.local_ip_override = config.get('local_ip')
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def get_local_ip(self) -> Optional[str]:
        if self.local_ip_override:
            return self.local_ip_override
        return get_local_ipv4()

    async def scan_network(self) -> ScanResult:
        """Probe every host on the local /24 concurrently and upsert each responding edge"""
        start_time = time.time()
        local_ip = self.get_local_ip()
        if not local_ip:
            logger.warning("[SCAN] No local IPv4 address - skipping subnet scan")
            return ScanResult(method="subnet_scan")

        targets = subnet_hosts(local_ip)
        generation = self.registry.generation
        logger.info(f"[SCAN] Scanning {len(targets)} addresses around {local_ip}...")

        semaphore = asyncio.Semaphore(self.max_concurrent_probes)

        async def probe_single_ip(ip: str) -> Optional[EdgeStatus]:
            async with semaphore:
                return await self.probe.probe(ip, self.edge_port)

        # Single collection point: wait for every probe before registering anything
        results = await asyncio.gather(*(probe_single_ip(ip) for ip in targets), return_exceptions=True)

        found = []
        for result in results:
            if isinstance(result, EdgeStatus):
                found.append(result)
                self.registry.upsert(result.address, result.level, result.status, generation=generation)
                logger.debug(f"[SCAN] {result.address} responded: level={result.level}, status={result.status}")
            elif isinstance(result, Exception):
                logger.debug(f"[SCAN] Probe raised: {result}")

        duration = time.time() - start_time
        logger.info(f"[SCAN] Subnet scan complete: {len(found)} edge(s) found scanning {len(targets)} addresses in {duration:.1f}s")
        return ScanResult(
            edges=found,
            method="subnet_scan",
            duration_seconds=duration,
            addresses_tested=len(targets),
            success_count=len(found)
        )

    async def refresh_known_edges(self) -> ScanResult:
        """Re-probe edges already in the registry; failures are logged but not evicted"""
        start_time = time.time()
        edges = self.registry.get_all()
        if not edges:
            return ScanResult(method="known_refresh")

        generation = self.registry.generation
        semaphore = asyncio.Semaphore(self.max_concurrent_probes)
        refreshed = []

        async def refresh_single(address: str):
            async with semaphore:
                result = await self.probe.probe(address, self.edge_port)
            if result:
                self.registry.upsert(address, result.level, result.status, generation=generation)
                refreshed.append(result)
                logger.info(f"Refreshed edge {address} ({result.level}, {result.status})")
            else:
                logger.warning(f"Edge {address} refresh failed - not responding")

        await asyncio.gather(*(refresh_single(edge.address) for edge in edges), return_exceptions=True)

        return ScanResult(
            edges=refreshed,
            method="known_refresh",
            duration_seconds=time.time() - start_time,
            addresses_tested=len(edges),
            success_count=len(refreshed)
        )

    def start_scan_periodically(self, interval_seconds: float) -> asyncio.Task:
        """Run scan_network now and then every interval_seconds after each scan completes"""
        task = asyncio.create_task(self._run_periodically("Subnet scan", self.scan_network, interval_seconds))
        self._tasks.append(task)
        logger.info(f"Subnet scan service started (every {interval_seconds}s)")
        return task

    def start_refresh_periodically(self, interval_seconds: float) -> asyncio.Task:
        task = asyncio.create_task(self._run_periodically("Known edge refresh", self.refresh_known_edges, interval_seconds))
        self._tasks.append(task)
        logger.info(f"Known edge refresh service started (every {interval_seconds}s)")
        return task

    async def _run_periodically(self, name: str, operation, interval_seconds: float):
        while True:
            try:
                await operation()
            except Exception as e:
                logger.error(f"{name} error: {e}")
            await asyncio.sleep(interval_seconds)

    async def stop(self):
        """Cancel both periodic tasks together with any cycle in progress"""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Subnet scanner stopped")
