"""
ASGI entry point for uvicorn
    uvicorn asgi:app --app-dir src --host 0.0.0.0 --port 8080
"""

import logging
import os
from contextlib import asynccontextmanager

from services.proxy_server import EdgeProxyServer

server = EdgeProxyServer(config_path=os.environ.get('CONFIG_FILE', 'config/config.yaml'))

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app):
    """Background discovery and registry maintenance live as long as the app"""
    await server.start_services()
    logger.info("Background services initialized")
    try:
        yield
    finally:
        await server.stop()
        logger.info("Application shut down complete")

app = server.api.app
app.router.lifespan_context = lifespan
