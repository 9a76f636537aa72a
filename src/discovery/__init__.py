"""
Discovery module for edge node discovery
"""

from .models import (
    DiscoveryEvent, DiscoveryEventType, EdgeStatus, ScanResult,
    address_from_service_name, edge_service_name
)
from .status_probe import StatusProbe
from .network_discovery import SubnetScanner, get_local_ipv4, subnet_hosts
from .service_discovery import EdgeServiceDiscovery, SERVICE_TYPE

__all__ = [
    'DiscoveryEvent', 'DiscoveryEventType', 'EdgeStatus', 'ScanResult',
    'address_from_service_name', 'edge_service_name', 'StatusProbe',
    'SubnetScanner', 'get_local_ipv4', 'subnet_hosts',
    'EdgeServiceDiscovery', 'SERVICE_TYPE'
]
