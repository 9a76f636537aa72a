"""
Outbound forwarding of client requests to the chosen edge
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import aiohttp

# Import HTTP helper function
from http_helper import create_forward_session

logger = logging.getLogger(__name__)

@dataclass
class EdgeResponse:
    """What the edge answered, relayed verbatim to the client"""
    status: int
    content_type: str
    body: bytes

class EdgeForwarder:
    """
    Issues forwarded requests over one shared aiohttp session.
    Transport errors (aiohttp.ClientError, asyncio.TimeoutError) propagate to the caller.
    """

    def __init__(self, edge_port: int = 8080, connect_timeout: float = 5, read_timeout: float = 30):
        self.edge_port = edge_port
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = create_forward_session(self.connect_timeout, self.read_timeout)
        return self._session

    def edge_url(self, edge, path: str) -> str:
        return f"http://{edge.address}:{self.edge_port}{path}"

    async def get(self, edge, path: str, headers: Optional[Dict[str, str]] = None,
                  default_content_type: str = "application/json") -> EdgeResponse:
        return await self._send("GET", self.edge_url(edge, path), default_content_type, headers=headers)

    async def post_form(self, edge, path: str, fields: Dict[str, str],
                        default_content_type: str = "application/json") -> EdgeResponse:
        """POST fields as application/x-www-form-urlencoded"""
        form = aiohttp.FormData(fields)
        return await self._send(
            "POST", self.edge_url(edge, path), default_content_type,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )

    async def post_file(self, edge, path: str, field_name: str, file_path: Path, filename: str,
                        file_content_type: str, headers: Optional[Dict[str, str]] = None,
                        default_content_type: str = "application/json") -> EdgeResponse:
        """POST a single file as a new multipart/form-data body"""
        with open(file_path, 'rb') as f:
            form = aiohttp.FormData()
            form.add_field(field_name, f, filename=filename, content_type=file_content_type)
            return await self._send("POST", self.edge_url(edge, path), default_content_type, data=form, headers=headers)

    async def _send(self, method: str, url: str, default_content_type: str, **kwargs) -> EdgeResponse:
        async with self._get_session().request(method, url, **kwargs) as response:
            body = await response.read()
            content_type = response.headers.get("Content-Type") or default_content_type
            logger.debug(f"{method} {url} -> HTTP {response.status} ({len(body)} bytes)")
            return EdgeResponse(status=response.status, content_type=content_type, body=body)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
