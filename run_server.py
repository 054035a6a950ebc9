#!/usr/bin/env python3
"""
Fram server launcher
Loads the compiled tool registry, then runs the voice WebSocket bridge and the HTTP API concurrently
"""
import os
import sys

# Fix encoding issues on servers with ASCII locale
os.environ.setdefault('PYTHONIOENCODING', 'utf-8')
os.environ.setdefault('LANG', 'en_US.UTF-8')
os.environ.setdefault('LC_ALL', 'en_US.UTF-8')

import asyncio
import logging
import uvicorn
from fram.config import settings
from fram.main import create_app, load_registry
from fram.tools.errors import RegistryError
from fram.ws_server import start_websocket_server

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_http_server(registry):
    """Run FastAPI HTTP server for the text channel"""
    config = uvicorn.Config(
        create_app(registry),
        host=settings.http_host,
        port=settings.http_port,
        log_level="info"
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main():
    """Run both servers concurrently"""
    logger.info("Starting Fram servers...")
    logger.info(f"Python {sys.version}, encoding={sys.getdefaultencoding()}")

    try:
        registry = load_registry()
    except RegistryError as e:
        logger.error(f"Cannot start without a valid tool registry: {e}")
        logger.error("Build it first: python -m fram.tools.builder")
        return 1

    logger.info(f"HTTP server will run on http://{settings.http_host}:{settings.http_port}")
    logger.info(f"WebSocket server will run on ws://{settings.ws_host}:{settings.ws_port}")

    # return_exceptions=True: one failure won't kill the other
    results = await asyncio.gather(
        start_websocket_server(registry),
        run_http_server(registry),
        return_exceptions=True,
    )
    names = ["WebSocket", "HTTP"]
    for i, r in enumerate(results):
        if isinstance(r, Exception):
            logger.error(f"{names[i]} exited with error: {r}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
