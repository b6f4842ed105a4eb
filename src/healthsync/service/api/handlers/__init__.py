"""
HTTP handlers, one class per resource.
"""

import datetime
import math
from enum import Enum
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from healthsync.core.dispatcher import Dispatcher
    from healthsync.service.server import SyncService


def _sanitize(obj: Any) -> Any:
    """Make ``obj`` safe for ``json.dumps``: enums by value, dates as ISO text, NaN/Inf as null."""
    if isinstance(obj, dict):
        return {key: _sanitize(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(item) for item in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()
    return obj


class BaseHandler:
    """Shared plumbing: access to the service and JSON responses tagged with the request id."""

    def __init__(self, service: "SyncService"):
        self.service = service

    @property
    def dispatcher(self) -> "Dispatcher":
        return self.service.dispatcher

    async def json_response(self, data: Any, status: int = 200, request: web.Request | None = None) -> web.Response:
        request_id = request.get("request_id") if request is not None else None
        headers = {"X-Request-ID": request_id} if request_id else None
        return web.json_response(_sanitize(data), status=status, headers=headers)
