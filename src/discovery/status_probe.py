"""
Status probe shared by service discovery and the subnet scanner
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from .models import EdgeStatus

# Import HTTP helper function
from http_helper import create_probe_session

logger = logging.getLogger(__name__)

class StatusProbe:
    """Queries an edge's GET /status endpoint over one shared aiohttp session"""

    def __init__(self, timeout_seconds: float = 3, max_connections: int = 254):
        self.timeout_seconds = timeout_seconds
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = create_probe_session(self.timeout_seconds, self.max_connections)
        return self._session

    async def probe(self, address: str, port: int) -> Optional[EdgeStatus]:
        """
        Probe http://address:port/status
        Returns None on any transport error, non-2xx response or malformed body
        """
        url = f"http://{address}:{port}/status"
        data = await self._http_get(url)
        if not isinstance(data, dict):
            return None

        return EdgeStatus(
            address=address,
            port=port,
            level=str(data.get('level', 'Unknown')),
            status=str(data.get('status', 'Unknown'))
        )

    async def _http_get(self, url: str) -> Optional[object]:
        """Make HTTP GET request and return the decoded JSON body"""
        try:
            async with self._get_session().get(url) as response:
                if 200 <= response.status < 300:
                    return await response.json(content_type=None)
                logger.debug(f"HTTP {response.status} for {url}")
                return None
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, OSError) as e:
            logger.debug(f"HTTP GET failed for {url}: {e}")
            return None

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
