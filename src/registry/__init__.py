"""
Registry module for known edge nodes
"""

from .manager import EdgeRegistry
from .models import EdgeDevice, parse_battery_percent, INVALID_BATTERY

__all__ = ['EdgeRegistry', 'EdgeDevice', 'parse_battery_percent', 'INVALID_BATTERY']
