"""HTTP health check and static asset endpoints.

Provides the side HTTP surface of the relay: a ``/health`` check reporting
whether an admin is connected and how many viewers are watching, and the
front-end assets (admin and viewer pages) served from a static directory.
"""

import logging
import time
from pathlib import Path

from aiohttp import web

from broadcast.admin import AdminSessionRelay
from broadcast.viewers import ViewerRegistry

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay."""

    def __init__(self, relay: AdminSessionRelay, viewers: ViewerRegistry) -> None:
        """Initialize health check handler.

        Args:
            relay: Admin session relay
            viewers: Viewer registry
        """
        self.relay = relay
        self.viewers = viewers
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Response format:
        {
            "status": "ok",
            "adminConnected": bool,
            "viewerCount": int,
            "uptime_seconds": float
        }
        """
        return web.json_response(
            {
                "status": "ok",
                "adminConnected": self.relay.is_connected,
                "viewerCount": self.viewers.count(),
                "uptime_seconds": time.time() - self.start_time,
            }
        )


def setup_health_routes(
    app: web.Application,
    relay: AdminSessionRelay,
    viewers: ViewerRegistry,
    static_dir: Path | None = None,
) -> None:
    """Set up health check and static routes on application.

    Args:
        app: aiohttp Application instance
        relay: Admin session relay
        viewers: Viewer registry
        static_dir: Front-end asset directory, skipped if missing
    """
    handler = HealthCheckHandler(relay, viewers)
    app.router.add_get("/health", handler.health_check)

    if static_dir is not None and static_dir.is_dir():
        app.router.add_static("/", static_dir, show_index=False)
        logger.info("Serving static assets", extra={"static_dir": str(static_dir)})
    elif static_dir is not None:
        logger.warning(
            "Static asset directory not found, front-end disabled",
            extra={"static_dir": str(static_dir)},
        )

    logger.info("Health check endpoint configured: /health")
