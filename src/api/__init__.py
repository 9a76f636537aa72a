"""
API module for the edge reverse proxy
"""

from .main_api import ProxyAPI, CORS_HEADERS
from .forwarder import EdgeForwarder, EdgeResponse
from .proxy_routes import create_proxy_routes, relay_response
from .system_routes import create_system_routes

__all__ = ['ProxyAPI', 'CORS_HEADERS', 'EdgeForwarder', 'EdgeResponse',
           'create_proxy_routes', 'relay_response', 'create_system_routes']
