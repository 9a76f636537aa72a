"""
Registry data structures and battery parsing
"""

import re
from typing import Optional
from dataclasses import dataclass

# Sentinel for battery readings that cannot be compared
INVALID_BATTERY = -1.0

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_battery_percent(level: Optional[str]) -> float:
    """Parse a reported battery string such as '85.0%' into a float, or INVALID_BATTERY"""
    if level is None or not str(level).strip():
        return INVALID_BATTERY

    cleaned = _NON_NUMERIC.sub("", str(level).strip().replace("%", ""))
    try:
        return float(cleaned)
    except ValueError:
        return INVALID_BATTERY


@dataclass(frozen=True)
class EdgeDevice:
    """Represents a known edge node as of its last successful probe"""
    address: str
    battery_level: str  # raw string as reported by the edge
    battery_percent: float
    status: str
    last_seen: float

    @property
    def is_selectable(self) -> bool:
        return self.battery_percent >= 0

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'battery_level': self.battery_level,
            'battery_percent': self.battery_percent if self.is_selectable else None,
            'status': self.status,
            'last_seen': self.last_seen
        }
