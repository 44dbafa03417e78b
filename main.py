#!/usr/bin/env python3
"""
SyncWatch relay - entry point
Shared-key WebSocket relay for watching one video together
"""
import logging
import sys
from typing import Optional

from aiohttp import web

from relay.api import HEARTBEAT_KEY, RELAY_KEY, health, ws_sync
from relay.config import Settings, load_settings
from relay.engine import Relay

logger = logging.getLogger("syncwatch")


@web.middleware
async def access_log_middleware(request, handler):
    """Log every HTTP request, WebSocket upgrades included"""
    logger.info(f"HTTP {request.method} {request.path}")
    return await handler(request)


def create_app(settings: Optional[Settings] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    if settings is None:
        settings = load_settings()

    app = web.Application(middlewares=[access_log_middleware])
    app[RELAY_KEY] = Relay(settings.access_key)
    app[HEARTBEAT_KEY] = settings.heartbeat

    app.router.add_get("/health", health)
    # WebSocket clients connect to the server root
    app.router.add_get("/", ws_sync)

    return app


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    app = create_app(settings)

    if settings.generated_key:
        logger.info("🔑 No ACCESS_KEY set, generated one for this run")
    logger.info(f"🔑 Access key: {settings.access_key}")
    logger.info(f"🚀 Starting sync server on {settings.host}:{settings.port}")
    logger.info(f"💡 WebSocket: ws://localhost:{settings.port}  Health: http://localhost:{settings.port}/health")

    try:
        web.run_app(app, host=settings.host, port=settings.port, print=None)
    except Exception:
        logger.exception("Uncaught exception, shutting down")
        sys.exit(1)
    logger.info("Server closed")


if __name__ == "__main__":
    main()
