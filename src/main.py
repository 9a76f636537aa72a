"""
Edge Proxy - Main Entry Point
"""

import asyncio
import logging
import os
import sys

import yaml

from services.proxy_server import EdgeProxyServer

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/config.yaml'

def resolve_config_path(argv) -> str:
    """First command line argument, else CONFIG_FILE, else the default path"""
    if len(argv) > 1:
        return argv[1]
    return os.environ.get('CONFIG_FILE', DEFAULT_CONFIG_PATH)

async def main(config_path: str) -> int:
    """Run the proxy until uvicorn receives SIGINT/SIGTERM"""
    try:
        server = EdgeProxyServer(config_path=config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Cannot start with configuration {config_path}: {e}")
        return 1

    logger.info(f"Using configuration file: {config_path}")
    try:
        await server.start()
    except Exception as e:
        logger.error(f"Server failed: {e}")
        return 1
    finally:
        await server.stop()

    return 0

def cli():
    try:
        sys.exit(asyncio.run(main(resolve_config_path(sys.argv))))
    except KeyboardInterrupt:
        print("\nProxy stopped by user")
        sys.exit(0)

if __name__ == "__main__":
    cli()
