"""
Discovery data structures, events and the edge service-name codec
"""

import re
import ipaddress
from enum import Enum
from typing import List, Optional
from dataclasses import dataclass, field

SERVICE_NAME_PREFIX = "EdgeServer_"

_SERVICE_NAME_PATTERN = re.compile(r"^EdgeServer_(\d{1,3}-\d{1,3}-\d{1,3}-\d{1,3})$")

@dataclass(frozen=True)
class EdgeStatus:
    """Result of one successful GET /status probe"""
    address: str
    port: int
    level: str
    status: str

class DiscoveryEventType(Enum):
    FOUND = "found"
    RESOLVED = "resolved"
    LOST = "lost"

@dataclass(frozen=True)
class DiscoveryEvent:
    """Service discovery event published by the mDNS browser"""
    kind: DiscoveryEventType
    service_name: str
    address: Optional[str] = None
    port: Optional[int] = None

@dataclass
class ScanResult:
    """Results from a scan or refresh cycle"""
    edges: List[EdgeStatus] = field(default_factory=list)
    method: str = "subnet_scan"
    duration_seconds: float = 0.0
    addresses_tested: int = 0
    success_count: int = 0

def edge_service_name(address: str) -> str:
    """Build the advertised instance name for an IPv4 address: 192.168.1.10 -> EdgeServer_192-168-1-10"""
    ipaddress.IPv4Address(address)
    return SERVICE_NAME_PREFIX + address.replace(".", "-")

def address_from_service_name(name: str, service_type: Optional[str] = None) -> Optional[str]:
    """
    Recover the IPv4 address encoded in an edge service name.

    Accepts the bare instance name ("EdgeServer_192-168-1-10") or the fully
    qualified mDNS name ("EdgeServer_192-168-1-10._proxy-edge._tcp.local.").
    Returns None when the name does not follow the convention. Only IPv4 can
    be encoded; IPv6 addresses have no representation in this scheme.
    """
    if not name:
        return None

    instance = name
    if service_type and instance.endswith("." + service_type):
        instance = instance[:-(len(service_type) + 1)]
    elif "._" in instance:
        instance = instance.split("._", 1)[0]

    match = _SERVICE_NAME_PATTERN.match(instance)
    if not match:
        return None

    address = match.group(1).replace("-", ".")
    try:
        return str(ipaddress.IPv4Address(address))
    except ValueError:
        return None
