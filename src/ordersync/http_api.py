"""HTTP endpoints for session creation/lookup, health and metrics.

Provides:
- POST /api/sessions: create a session and return its code
- GET /api/sessions/{sessionId}: check whether a session exists
- /health, /liveness: service status for load balancers and Docker healthchecks
- /metrics, /metrics/summary: Prometheus exposition and a JSON summary
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from ordersync.metrics import MetricsCollector, get_metrics_collector
from ordersync.registry import ConnectionRegistry
from ordersync.store import LookupStatus, SessionStore, normalize_code
from ordersync.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def cors_middleware(allow_origin: str) -> Any:
    """Build a middleware adding CORS headers and answering preflight requests.

    Args:
        allow_origin: Value for Access-Control-Allow-Origin
    """

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response(status=204)
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                e.headers["Access-Control-Allow-Origin"] = allow_origin
                raise
        response.headers["Access-Control-Allow-Origin"] = allow_origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    return middleware


class SessionApiHandler:
    """HTTP handlers backed by the session store."""

    def __init__(
        self,
        store: SessionStore,
        sweeper: ExpirySweeper,
        registry: ConnectionRegistry,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize session API handler.

        Args:
            store: Session store
            sweeper: Expiry sweeper (expired sessions found on lookup are
                evicted through it so their clients are notified)
            registry: Connection registry (for connection counts)
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self.store = store
        self.sweeper = sweeper
        self.registry = registry
        self.metrics_collector = metrics or get_metrics_collector()
        self.start_time = time.time()

    async def create_session(self, request: web.Request) -> web.Response:
        """Create a new session.

        Response format:
        {"sessionId": "ABC123"}
        """
        try:
            session = self.store.create()
        except RuntimeError as e:
            logger.error("Failed to create session", extra={"error": str(e)})
            return web.json_response({"error": "Could not allocate a session code"}, status=503)

        return web.json_response({"sessionId": session.code})

    async def get_session(self, request: web.Request) -> web.Response:
        """Check whether a session exists.

        Returns:
            200 OK: {"exists": true}
            404 Not Found: {"exists": false, "reason": "not_found" | "expired"}
        """
        code = normalize_code(request.match_info["session_id"])
        status = await self.sweeper.lookup(code)

        if status is LookupStatus.EXISTS:
            return web.json_response({"exists": True})

        return web.json_response({"exists": False, "reason": status.value}, status=404)

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        The store is in-process, so the service is healthy whenever it can
        answer. Response format:
        {
            "status": "healthy",
            "uptime_seconds": float,
            "sessions": int,
            "connections": int
        }
        """
        return web.json_response(
            {
                "status": "healthy",
                "uptime_seconds": time.time() - self.start_time,
                "sessions": len(self.store),
                "connections": len(self.registry),
            }
        )

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint."""
        return web.json_response(
            {"status": "alive", "uptime_seconds": time.time() - self.start_time}
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
        """
        try:
            metrics_text = self.metrics_collector.export_prometheus()
            return web.Response(text=metrics_text, content_type="text/plain", charset="utf-8")
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint."""
        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": self.metrics_collector.get_summary(),
            }
        )


def create_http_app(
    store: SessionStore,
    sweeper: ExpirySweeper,
    registry: ConnectionRegistry,
    metrics: MetricsCollector | None = None,
    cors_allow_origin: str = "*",
) -> web.Application:
    """Build the aiohttp application.

    Args:
        store: Session store
        sweeper: Expiry sweeper
        registry: Connection registry
        metrics: Metrics collector (defaults to the process-wide one)
        cors_allow_origin: Value for Access-Control-Allow-Origin

    Returns:
        Configured aiohttp Application
    """
    app = web.Application(middlewares=[cors_middleware(cors_allow_origin)])
    handler = SessionApiHandler(store, sweeper, registry, metrics=metrics)

    app.router.add_post("/api/sessions", handler.create_session)
    app.router.add_get("/api/sessions/{session_id}", handler.get_session)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info(
        "HTTP routes configured: /api/sessions, /health, /liveness, /metrics, /metrics/summary"
    )
    return app
