"""
Status API Endpoints.

============================================================
PURPOSE
============================================================
Small HTTP surface for liveness and manual testing.

ROUTES:
- GET  /               status summary
- GET  /status         status summary
- POST /trigger-alert  deliver a synthetic alert through the sink

============================================================
"""

import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from aiohttp import web

from .pipeline import WatchPipeline


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class StatusEncoder(json.JSONEncoder):
    """JSON encoder for status payloads."""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=StatusEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


# ============================================================
# API HANDLERS
# ============================================================

class StatusAPI:
    """HTTP handlers over a WatchPipeline."""

    def __init__(self, pipeline: WatchPipeline):
        self._pipeline = pipeline

    async def get_status(self, request: web.Request) -> web.Response:
        """
        GET / and GET /status
        """
        return json_response(self._pipeline.status())

    async def trigger_alert(self, request: web.Request) -> web.Response:
        """
        POST /trigger-alert

        Sends a test alert through the configured sink.
        """
        try:
            await self._pipeline.send_test_alert()
            return json_response({"status": "Test alert sent"})
        except Exception as e:
            logger.error(f"Error sending test alert: {e}")
            return json_response({
                "status": "error",
                "error": str(e),
            }, status=500)


def create_status_app(pipeline: WatchPipeline) -> web.Application:
    """Create the aiohttp application with all routes configured."""
    api = StatusAPI(pipeline)

    app = web.Application()
    app.router.add_get("/", api.get_status)
    app.router.add_get("/status", api.get_status)
    app.router.add_post("/trigger-alert", api.trigger_alert)
    return app


# ============================================================
# SERVER
# ============================================================

class StatusServer:
    """Runs the status application inside the current event loop."""

    def __init__(self, pipeline: WatchPipeline, host: str = "0.0.0.0", port: int = 3000):
        self._app = create_status_app(pipeline)
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info(f"Status API listening on http://{self._host}:{self._port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Status API stopped")
