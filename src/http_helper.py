# HTTP Helper for Edge Connections
# Session configuration for status probes and for forwarded client requests (plain HTTP on the LAN)

import aiohttp
import logging

logger = logging.getLogger(__name__)

def create_probe_session(timeout_seconds: float = 3, limit: int = 254) -> aiohttp.ClientSession:
    """
    Create aiohttp session for /status probes
    Shared by every concurrent probe, so the pool must fit a full subnet fan-out
    """
    connector = aiohttp.TCPConnector(
        limit=limit,                # Whole /24 can be probed at once
        limit_per_host=2,           # Max 2 connections per edge IP
        ssl=False,                  # Edges serve plain HTTP
        force_close=True,           # Probes are sparse, don't keep idle sockets
        enable_cleanup_closed=True
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds)
    )

def create_forward_session(
    connect_timeout: float = 5,
    read_timeout: float = 30
) -> aiohttp.ClientSession:
    """
    Create aiohttp session for requests forwarded to the chosen edge
    Read timeout is long to tolerate slow on-device inference
    """
    logger.info(f"Creating forward session (connect={connect_timeout}s, read={read_timeout}s)")
    connector = aiohttp.TCPConnector(
        ssl=False,
        limit=20,                   # Total connection pool limit
        limit_per_host=5,           # Max connections per edge
        force_close=False,          # Keep connections alive for efficiency
        enable_cleanup_closed=True
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(
            total=None,
            sock_connect=connect_timeout,
            sock_read=read_timeout
        )
    )
