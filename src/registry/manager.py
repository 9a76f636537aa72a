"""
Thread-safe in-memory registry of discovered edge nodes
"""

import threading
import time
import logging
from typing import Callable, Dict, List, Optional

from .models import EdgeDevice, parse_battery_percent

logger = logging.getLogger(__name__)

class EdgeRegistry:
    """
    Single source of truth for known edges, keyed by address.

    Every read and write of the internal map happens under one lock, and
    callers only ever receive immutable EdgeDevice records, never the map.
    The lock is never held across network I/O.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._edges: Dict[str, EdgeDevice] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        """Incremented by clear(); lets in-flight probes detect that their results are obsolete"""
        with self._lock:
            return self._generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._edges)

    def upsert(self, address: str, battery_level: str, status: str,
               generation: Optional[int] = None) -> bool:
        """
        Insert or replace the edge at `address`, refreshing last_seen.
        Writes tagged with an outdated generation are dropped.
        """
        battery_percent = parse_battery_percent(battery_level)

        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(f"Dropping outdated update for {address} (generation {generation} != {self._generation})")
                return False
            # last_seen order follows write order
            device = EdgeDevice(
                address=address,
                battery_level=battery_level,
                battery_percent=battery_percent,
                status=status,
                last_seen=self._clock()
            )
            is_new = address not in self._edges
            self._edges[address] = device

        if is_new:
            logger.info(f"[REGISTRY] Added edge {address} (battery={battery_level}, status={status})")
        else:
            logger.debug(f"[REGISTRY] Updated edge {address} (battery={battery_level}, status={status})")
        return True

    def remove(self, address: str) -> bool:
        with self._lock:
            removed = self._edges.pop(address, None) is not None

        if removed:
            logger.info(f"[REGISTRY] Removed edge {address}")
        return removed

    def get(self, address: str) -> Optional[EdgeDevice]:
        with self._lock:
            return self._edges.get(address)

    def get_all(self) -> List[EdgeDevice]:
        """Snapshot of all entries; later mutations are not reflected"""
        with self._lock:
            return list(self._edges.values())

    def remove_stale(self, max_age_seconds: float) -> int:
        """Remove every edge not seen within max_age_seconds, returning how many were removed"""
        with self._lock:
            now = self._clock()
            stale = [
                address for address, edge in self._edges.items()
                if now - edge.last_seen > max_age_seconds
            ]
            for address in stale:
                del self._edges[address]

        if stale:
            logger.info(f"[REGISTRY] Removed {len(stale)} stale edge(s): {', '.join(sorted(stale))}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._edges.clear()
            self._generation += 1
        logger.info("[REGISTRY] Cleared all edges")

    def choose_highest_battery(self) -> Optional[EdgeDevice]:
        """
        Pick the edge with the highest parsed battery percentage.

        Entries whose battery string does not parse are ignored. Ties go to the
        lexicographically smallest address. Returns None when nothing is selectable.
        """
        with self._lock:
            candidates = [edge for edge in self._edges.values() if edge.is_selectable]

        best = None
        for edge in sorted(candidates, key=lambda e: e.address):
            if best is None or edge.battery_percent > best.battery_percent:
                best = edge
        return best
