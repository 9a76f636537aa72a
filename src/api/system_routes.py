"""
System health and registry inspection API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# Response models
class EdgeModel(BaseModel):
    address: str
    battery_level: str
    battery_percent: Optional[float]
    status: str
    last_seen: datetime

class HealthResponse(BaseModel):
    status: str
    edge_count: int
    best_edge: Optional[str]
    service_discovery_active: bool
    subnet_scan_active: bool
    decision_log_initialized: bool
    timestamp: datetime

def _edge_model(edge) -> EdgeModel:
    return EdgeModel(
        address=edge.address,
        battery_level=edge.battery_level,
        battery_percent=edge.battery_percent if edge.is_selectable else None,
        status=edge.status,
        last_seen=datetime.fromtimestamp(edge.last_seen, tz=timezone.utc)
    )

def create_system_routes(registry, decision_log=None, log_buffer=None, discovery=None, scanner=None):
    """Create system monitoring routes"""
    router = APIRouter(prefix="/api/system", tags=["system"])

    @router.get("/health", response_model=HealthResponse)
    async def system_health():
        """Proxy health: 'healthy' when at least one edge is selectable"""
        best = registry.choose_highest_battery()
        return HealthResponse(
            status="healthy" if best else "degraded",
            edge_count=len(registry),
            best_edge=best.address if best else None,
            service_discovery_active=bool(discovery and discovery.is_active),
            subnet_scan_active=bool(scanner and scanner.is_running),
            decision_log_initialized=bool(decision_log and decision_log.is_initialized),
            timestamp=datetime.now(timezone.utc)
        )

    @router.get("/edges", response_model=List[EdgeModel])
    async def list_edges():
        """Registry snapshot sorted by address"""
        try:
            edges = sorted(registry.get_all(), key=lambda e: e.address)
            return [_edge_model(edge) for edge in edges]
        except Exception as e:
            logger.error(f"Error listing edges: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/logs")
    async def recent_logs():
        """Recent log lines, newest first"""
        if log_buffer is None:
            raise HTTPException(status_code=503, detail="Log buffer not available")
        return {
            "logs": log_buffer.get_logs(),
            "timestamp": datetime.now(timezone.utc)
        }

    return router
