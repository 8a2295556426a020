"""
Health check HTTP server for container orchestration.

Provides /health endpoint for Docker healthchecks and monitoring.
"""
from typing import Callable, List, Optional

from aiohttp import web
import structlog

from .context import ManagerContext

logger = structlog.get_logger()


class HealthCheckServer:
    """Simple HTTP server for health checks."""

    def __init__(
        self,
        context: ManagerContext,
        host: str = "0.0.0.0",
        port: int = 8080,
        in_flight: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize health check server.

        Args:
            context: Manager state to report on
            host: Host to bind to (default: 0.0.0.0)
            port: Port to bind to (default: 8080)
            in_flight: Returns the number of running operations
        """
        self.context = context
        self.host = host
        self.port = port
        self.in_flight = in_flight or (lambda: 0)
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes."""
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_get("/", self.root_handler)

    async def health_handler(self, request: web.Request) -> web.Response:
        """
        Health check endpoint.

        Returns:
            200 OK with roster, running-set and operation counts
        """
        running: List[str] = sorted(self.context.running_set.names())
        return web.json_response({
            "status": "healthy",
            "service": "game-server-manager",
            "servers": len(self.context.registry),
            "running": running,
            "in_flight_operations": self.in_flight(),
            "busy_servers": self.context.locks.busy_servers(),
        })

    async def root_handler(self, request: web.Request) -> web.Response:
        """
        Root endpoint.

        Returns:
            200 OK with service info
        """
        return web.json_response({
            "service": "game-server-manager",
            "endpoints": {
                "health": "/health"
            }
        })

    async def start(self) -> None:
        """Start the health check server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(
            self.runner,
            self.host,
            self.port
        )
        await self.site.start()

        logger.info(
            "health_server_started",
            host=self.host,
            port=self.port
        )

    async def stop(self) -> None:
        """Stop the health check server."""
        if self.site is not None:
            await self.site.stop()

        if self.runner is not None:
            await self.runner.cleanup()

        logger.info("health_server_stopped")
