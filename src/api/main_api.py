"""
Main FastAPI application setup
Reverse proxy surface plus optional system inspection routes
"""

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Dict
import logging

# Import modular route factories
from .proxy_routes import create_proxy_routes
from .system_routes import create_system_routes

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "origin, x-requested-with, content-type, accept, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS"
}

class ProxyAPI:
    """HTTP surface of the edge proxy"""

    def __init__(self, registry, forwarder, config: Dict, decision_log=None, log_buffer=None,
                 discovery=None, scanner=None):
        self.registry = registry
        self.forwarder = forwarder
        self.config = config
        self.decision_log = decision_log
        self.log_buffer = log_buffer
        self.discovery = discovery
        self.scanner = scanner
        # No generated docs: every unrouted path must answer 404
        self.app = FastAPI(
            title="Edge Proxy",
            description="Routes client requests to the healthiest discovered edge node",
            version="1.0.0",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )
        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    def _setup_middleware(self):
        @self.app.middleware("http")
        async def cors_middleware(request: Request, call_next):
            """Answer preflight requests and add CORS headers to every response"""
            logger.info(f"Incoming request: {request.method} {request.url.path}")
            if request.method == "OPTIONS":
                response = Response(status_code=200)
            else:
                response = await call_next(request)
            response.headers.update(CORS_HEADERS)
            return response

    def _setup_exception_handlers(self):
        @self.app.exception_handler(StarletteHTTPException)
        async def method_not_routed(request: Request, exc: StarletteHTTPException):
            """A path routed only for other methods answers 404 like any unrouted request"""
            if exc.status_code == 405:
                return PlainTextResponse("404 Not Found", status_code=404)
            return await http_exception_handler(request, exc)

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        if self.config.get('api', {}).get('expose_system_routes', True):
            system_router = create_system_routes(
                self.registry, self.decision_log, self.log_buffer, self.discovery, self.scanner
            )
            self.app.include_router(system_router)

        # Proxy router ends with a catch-all, so it goes last
        proxy_router = create_proxy_routes(
            self.registry,
            self.forwarder,
            self.decision_log,
            self.config.get('proxy', {}).get('upload_dir', 'tmp/uploads')
        )
        self.app.include_router(proxy_router)
