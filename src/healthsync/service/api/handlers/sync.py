"""
Sync job lifecycle and query endpoints.
"""

from typing import Any

from aiohttp import web

from healthsync.core.types import JobStatus
from healthsync.service.api.errors import ValidationError
from healthsync.service.api.handlers import BaseHandler

MAX_PARTNER_ID_LENGTH = 128
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


def _parse_int(request: web.Request, name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"'{name}' must be an integer", details={name: raw}) from None
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValidationError(f"'{name}' must be {bounds}", details={name: value})
    return value


class SyncHandler(BaseHandler):
    """Handler for /sync endpoints."""

    async def _read_partner_id(self, request: web.Request) -> str:
        if not request.can_read_body:
            raise ValidationError("Request body with 'partner_id' is required")
        body: Any = await request.json()
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        partner_id = body.get("partner_id")
        if not isinstance(partner_id, str) or not partner_id.strip():
            raise ValidationError("'partner_id' must be a non-empty string", details={"partner_id": partner_id})
        partner_id = partner_id.strip()
        if len(partner_id) > MAX_PARTNER_ID_LENGTH:
            raise ValidationError(f"'partner_id' must be at most {MAX_PARTNER_ID_LENGTH} characters")
        return partner_id

    async def init(self, request: web.Request) -> web.Response:
        """
        POST /sync/init

        201 when a new job is created, 200 when the partner's paused job is
        resumed, 409 when the partner already has a running job.
        """
        partner_id = await self._read_partner_id(request)
        job, created = await self.dispatcher.init(partner_id)
        return await self.json_response(job.to_dict(), status=201 if created else 200, request=request)

    async def pause(self, request: web.Request) -> web.Response:
        """POST /sync/jobs/{job_id}/pause"""
        job = await self.dispatcher.pause(request.match_info["job_id"])
        return await self.json_response(job.to_dict(), request=request)

    async def resume(self, request: web.Request) -> web.Response:
        """POST /sync/jobs/{job_id}/resume"""
        job = await self.dispatcher.resume(request.match_info["job_id"])
        return await self.json_response(job.to_dict(), request=request)

    async def restart(self, request: web.Request) -> web.Response:
        """POST /sync/jobs/{job_id}/restart"""
        job = await self.dispatcher.restart(request.match_info["job_id"])
        return await self.json_response(job.to_dict(), request=request)

    async def get_job(self, request: web.Request) -> web.Response:
        """
        GET /sync/jobs/{job_id}

        Job record plus its per-entity checkpoints.
        """
        job_id = request.match_info["job_id"]
        job = self.dispatcher.get_job(job_id)
        data = job.to_dict()
        data["checkpoints"] = [cp.to_dict() for cp in self.dispatcher.get_checkpoints(job_id)]
        return await self.json_response(data, request=request)

    async def list_jobs(self, request: web.Request) -> web.Response:
        """
        GET /sync/jobs?status=&partner_id=&page=&limit=
        """
        status = request.query.get("status") or None
        if status is not None:
            try:
                status = JobStatus(status.lower())
            except ValueError:
                raise ValidationError(
                    f"Unknown status '{status}'", details={"allowed": [s.value for s in JobStatus]}
                ) from None
        partner_id = request.query.get("partner_id") or None
        page = _parse_int(request, "page", 1, 1)
        limit = _parse_int(request, "limit", DEFAULT_PAGE_SIZE, 1, MAX_PAGE_SIZE)

        jobs, total = self.dispatcher.list_jobs(status=status, partner_id=partner_id, page=page, limit=limit)
        return await self.json_response(
            {
                "jobs": [job.to_dict() for job in jobs],
                "total": total,
                "page": page,
                "limit": limit,
                "has_more": page * limit < total,
            },
            request=request,
        )

    async def stats(self, request: web.Request) -> web.Response:
        """GET /sync/stats"""
        return await self.json_response(self.dispatcher.stats(), request=request)
