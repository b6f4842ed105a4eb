"""
Health endpoint.
"""

import time

from aiohttp import web

from healthsync import __version__
from healthsync.service.api.handlers import BaseHandler


class HealthHandler(BaseHandler):
    """Handler for the liveness check."""

    def __init__(self, service):
        super().__init__(service)
        self._start_time = time.time()

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /health

        Returns liveness and slot usage. Served without credentials.
        """
        slots = self.dispatcher.slots
        data = {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(time.time() - self._start_time, 2),
            "slots": {"capacity": slots.capacity, "in_use": slots.in_use},
        }
        return await self.json_response(data, request=request)
