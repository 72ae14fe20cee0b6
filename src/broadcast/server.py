"""Broadcast relay server.

Main server implementation that:
1. Loads configuration
2. Builds the viewer registry, admin session relay and connection router
3. Starts the WebSocket transport serving /admin and /viewer
4. Provides the HTTP health check and static front-end endpoints
5. Tears everything down on shutdown
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite
from dotenv import load_dotenv

from broadcast.admin import AdminSessionRelay, UpstreamFactory
from broadcast.config import BroadcastConfig
from broadcast.health import setup_health_routes
from broadcast.router import ADMIN_ENDPOINT, VIEWER_ENDPOINT, ConnectionRouter
from broadcast.transport.websocket_transport import WebSocketTransport
from broadcast.viewers import ViewerRegistry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "configs" / "broadcast.yaml"


def configure_logging(level: str) -> None:
    """Configure root logging for the server process."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # websockets debug output includes request headers (upstream API key)
    logging.getLogger("websockets").setLevel(logging.WARNING)


def build_services(
    config: BroadcastConfig, upstream_factory: UpstreamFactory | None = None
) -> tuple[ViewerRegistry, AdminSessionRelay, ConnectionRouter]:
    """Construct the relay components for one server process.

    Args:
        config: Loaded configuration
        upstream_factory: Optional upstream link factory (for testing)

    Returns:
        Viewer registry, admin session relay and connection router
    """
    viewers = ViewerRegistry(
        max_viewers=config.viewers.max_viewers,
        outbox_size=config.viewers.outbox_size,
    )
    relay = AdminSessionRelay(viewers, config.upstream, upstream_factory=upstream_factory)
    router = ConnectionRouter(relay, viewers)
    return viewers, relay, router


async def start_server(
    config_path: Path | None = None,
    stop_event: asyncio.Event | None = None,
    config: BroadcastConfig | None = None,
) -> None:
    """Start the relay and serve until cancelled or ``stop_event`` is set.

    Args:
        config_path: Path to YAML config file (defaults apply if missing)
        stop_event: Optional event that stops the server when set
        config: Pre-built configuration (for testing), overrides config_path

    Raises:
        OSError: If a port cannot be bound
    """
    if config is None:
        config = BroadcastConfig.from_yaml_with_defaults(config_path)

    configure_logging(config.log_level)
    logger.info(
        "Loaded configuration",
        extra={"config_path": str(config_path) if config_path else None},
    )

    viewers, relay, router = build_services(config)

    server_config = config.server
    transport = WebSocketTransport(
        router.routes,
        host=server_config.host,
        port=server_config.port,
        max_message_bytes=server_config.max_message_bytes,
    )
    await transport.start()

    http_port = server_config.resolved_http_port
    http_app = Application()
    setup_health_routes(http_app, relay, viewers, static_dir=Path(server_config.static_dir))

    runner = AppRunner(http_app)
    await runner.setup()
    site = TCPSite(runner, server_config.host, http_port)
    try:
        await site.start()
    except OSError:
        await transport.stop()
        await runner.cleanup()
        raise
    logger.info("Health check server started", extra={"port": http_port})

    logger.info(
        "Broadcast relay ready: admin ws://%s:%d%s, viewer ws://%s:%d%s, "
        "health http://%s:%d/health, max viewers %d",
        server_config.host,
        server_config.port,
        ADMIN_ENDPOINT,
        server_config.host,
        server_config.port,
        VIEWER_ENDPOINT,
        server_config.host,
        http_port,
        config.viewers.max_viewers,
    )

    try:
        if stop_event is None:
            stop_event = asyncio.Event()
        await stop_event.wait()
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        logger.info("Shutting down broadcast relay")

        await transport.stop()
        await runner.cleanup()
        logger.info("Health check server stopped")

        await relay.shutdown()
        logger.info("Broadcast relay stopped")


def main() -> None:
    """Entry point for the broadcast relay server."""
    parser = argparse.ArgumentParser(description="Realtime broadcast relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    load_dotenv()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Broadcast relay interrupted")


if __name__ == "__main__":
    main()
