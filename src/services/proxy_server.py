"""
Edge Proxy Server - Main orchestrator for discovery, registry maintenance and the proxy API
"""

import asyncio
import logging
from typing import Dict, List, Optional
import uvicorn

# Local imports
from config_loader import load_config, normalize_config, setup_logging
from registry import EdgeRegistry
from discovery import EdgeServiceDiscovery, StatusProbe, SubnetScanner
from api.forwarder import EdgeForwarder
from api.main_api import ProxyAPI
from decision_log import DecisionLogger

logger = logging.getLogger(__name__)

class EdgeProxyServer:
    """Owns every component and the lifetime of all periodic background tasks"""

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[Dict] = None):
        self.config = normalize_config(config) if config is not None else load_config(config_path)
        self.log_buffer = setup_logging(self.config)

        proxy_config = self.config['proxy']
        edge_port = proxy_config['edge_port']

        # One registry instance, passed to every producer and consumer
        self.registry = EdgeRegistry()

        self.discovery_probe = StatusProbe(self.config['discovery']['request_timeout'], max_connections=20)
        self.scan_probe = StatusProbe(
            self.config['network']['request_timeout'],
            max_connections=self.config['network']['max_concurrent_probes']
        )

        self.discovery = EdgeServiceDiscovery(self.config['discovery'], self.registry, self.discovery_probe, edge_port)
        self.scanner = SubnetScanner(self.config['network'], self.registry, self.scan_probe, edge_port)

        self.decision_log = DecisionLogger(self.config['decision_log']['file'])
        self.forwarder = EdgeForwarder(
            edge_port=edge_port,
            connect_timeout=proxy_config['connect_timeout_seconds'],
            read_timeout=proxy_config['read_timeout_seconds']
        )

        self.api = ProxyAPI(
            self.registry,
            self.forwarder,
            self.config,
            decision_log=self.decision_log,
            log_buffer=self.log_buffer,
            discovery=self.discovery,
            scanner=self.scanner
        )

        self.running = False
        self.tasks: List[asyncio.Task] = []

    async def start(self):
        """Start background services, then serve the proxy API until shutdown"""
        logger.info("Starting Edge Proxy Server...")

        try:
            await self.start_services()
            await self._start_api_server()
        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def start_services(self):
        """Start discovery, scanning and maintenance tasks (everything except the HTTP server)"""
        if self.running:
            return
        self.running = True

        if self.config['decision_log']['enabled']:
            self.decision_log.initialize()

        if self.config['discovery']['enabled']:
            await self.discovery.start_discovery()
            self.tasks.append(asyncio.create_task(self._edge_refresh_service()))
        else:
            logger.info("Service discovery disabled")

        network = self.config['network']
        if network['enable_subnet_scan']:
            self.scanner.start_scan_periodically(network['scan_interval_seconds'])
            self.scanner.start_refresh_periodically(network['refresh_interval_seconds'])
        else:
            logger.info("Subnet scanning disabled")

        if self.config['registry']['stale_sweep_enabled']:
            self.tasks.append(asyncio.create_task(self._stale_sweep_service()))

        logger.info(f"All services started successfully ({len(self.tasks)} maintenance tasks)")

    async def stop(self):
        """Stop all server services gracefully"""
        logger.info("Stopping server...")
        self.running = False

        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        await self.discovery.stop_discovery()
        await self.scanner.stop()

        await self.forwarder.close()
        await self.discovery_probe.close()
        await self.scan_probe.close()
        self.decision_log.close()
        logger.info("Server stopped")

    # ================== PERIODIC MAINTENANCE ==================

    async def _edge_refresh_service(self):
        """Active health check of known edges; unreachable edges are evicted"""
        interval = self.config['discovery']['refresh_interval_seconds']
        logger.info(f"Edge refresh service started (every {interval}s)")

        while self.running:
            try:
                await asyncio.sleep(interval)
                if not self.running:
                    break
                await self.discovery.refresh_known_edges()
            except Exception as e:
                logger.error(f"Edge refresh service error: {e}")

    async def _stale_sweep_service(self):
        """Drop edges no source has confirmed within max_age_seconds"""
        interval = self.config['registry']['stale_sweep_interval_seconds']
        max_age = self.config['registry']['max_age_seconds']
        logger.info(f"Stale sweep service started (every {interval}s, max age {max_age}s)")

        while self.running:
            try:
                await asyncio.sleep(interval)
                if not self.running:
                    break
                removed = self.registry.remove_stale(max_age)
                if removed > 0:
                    logger.info(f"Removed {removed} stale edge server(s).")
            except Exception as e:
                logger.error(f"Stale sweep service error: {e}")

    async def _start_api_server(self):
        """Start the FastAPI server"""
        config = uvicorn.Config(
            self.api.app,
            host=self.config['proxy']['host'],
            port=self.config['proxy']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        server = uvicorn.Server(config)

        logger.info(f"Starting proxy server on {self.config['proxy']['host']}:{self.config['proxy']['port']}")
        logger.info(f"Forwarding to edges on port {self.config['proxy']['edge_port']}")

        await server.serve()
