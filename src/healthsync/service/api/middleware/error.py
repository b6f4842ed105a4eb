"""
Turns every failure into the JSON error shape and tags responses with a request id.
"""

import json
import uuid
from collections.abc import Callable

from aiohttp import web

from healthsync.exceptions import HealthSyncError
from healthsync.service.api.errors import APIError, ErrorCode, from_domain_error
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.api.middleware.error")


def _error_response(error: APIError, request_id: str) -> web.Response:
    return web.json_response(error.to_dict(request_id), status=error.status, headers={"X-Request-ID": request_id})


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.Response:
    """
    Outermost middleware.

    APIError and HealthSyncError map to their status; a body that is not
    JSON is a 400; anything unexpected is logged and answered with a 500
    that reveals nothing.
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"
    request["request_id"] = request_id

    try:
        response = await handler(request)
        response.headers["X-Request-ID"] = request_id
        return response

    except APIError as e:
        logger.warning(f"API error: {e.code.value} - {e.message} ({request.method} {request.path})")
        return _error_response(e, request_id)

    except HealthSyncError as e:
        api_error = from_domain_error(e)
        if api_error.status >= 500:
            logger.error(f"{type(e).__name__} on {request.method} {request.path}: {e.message}", exc_info=True)
        else:
            logger.info(f"{api_error.code.value} on {request.method} {request.path}: {e.message}")
        return _error_response(api_error, request_id)

    except json.JSONDecodeError as e:
        logger.warning(f"JSON decode error: {e}")
        return _error_response(
            APIError(code=ErrorCode.INVALID_REQUEST, message="Invalid JSON in request body", status=400), request_id
        )

    except web.HTTPException:
        # Let aiohttp handle its own HTTP exceptions
        raise

    except Exception as e:
        logger.error(f"Unexpected error on {request.method} {request.path}: {e}", exc_info=True)
        return _error_response(
            APIError(code=ErrorCode.INTERNAL_ERROR, message="An internal error occurred", status=500), request_id
        )
