"""
Shared fixtures: fake clock and probe, a mock edge server, logging cleanup
"""

import asyncio
import logging
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from discovery.models import EdgeStatus
from registry import EdgeRegistry


class FakeClock:
    """Manually advanced time source for the registry"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeProbe:
    """Stands in for StatusProbe; answers from a table and records every call"""

    def __init__(self, responses: Optional[Dict[str, tuple]] = None):
        self.responses = responses or {}
        self.calls: List[tuple] = []

    async def probe(self, address: str, port: int) -> Optional[EdgeStatus]:
        self.calls.append((address, port))
        answer = self.responses.get(address)
        if answer is None:
            return None
        level, status = answer
        return EdgeStatus(address=address, port=port, level=level, status=status)

    async def close(self):
        pass


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return EdgeRegistry(clock=clock)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def fake_probe_factory():
    return FakeProbe


def build_edge_app(received: list) -> web.Application:
    """Minimal edge server: the endpoints the proxy forwards to, plus /status"""

    async def index(request):
        return web.Response(text="<html><body>edge home</body></html>", content_type="text/html")

    async def login(request):
        form = await request.post()
        received.append({
            'path': '/login',
            'form': dict(form),
            'content_type': request.headers.get('Content-Type')
        })
        if form.get('username') == 'alice' and form.get('password') == 's3cret&=':
            return web.json_response({'token': 'tok-123'})
        return web.json_response({'error': 'Invalid credentials'}, status=401)

    async def recognize(request):
        form = await request.post()
        image = form.get('imageFile')
        received.append({
            'path': '/recognize',
            'authorization': request.headers.get('Authorization'),
            'filename': getattr(image, 'filename', None),
            'part_content_type': getattr(image, 'content_type', None),
            'data': image.file.read() if image is not None and hasattr(image, 'file') else None
        })
        return web.Response(body=b'[{"label":"cat","score":0.9}]', content_type='application/json')

    async def battery(request):
        received.append({'path': '/battery', 'authorization': request.headers.get('Authorization')})
        if request.headers.get('Authorization') != 'Bearer tok-123':
            return web.json_response({'error': 'Unauthorized'}, status=401)
        return web.json_response({'level': '85.0%', 'status': 'Charging'})

    async def status(request):
        return web.json_response({'level': '85.0%', 'status': 'Charging'})

    app = web.Application()
    app.router.add_get('/', index)
    app.router.add_post('/login', login)
    app.router.add_post('/recognize', recognize)
    app.router.add_get('/battery', battery)
    app.router.add_get('/status', status)
    return app


@pytest_asyncio.fixture
async def edge_server():
    """A running mock edge on 127.0.0.1; `server.received` lists the requests it saw"""
    received = []
    server = TestServer(build_edge_app(received))
    await server.start_server()
    yield SimpleNamespace(port=server.port, received=received)
    await server.close()


@pytest.fixture
def restore_root_logging():
    """Remove handlers installed by setup_logging after the test"""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if getattr(handler, '_edge_proxy_handler', False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
