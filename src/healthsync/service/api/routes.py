"""
API route registration.
"""

from typing import TYPE_CHECKING

from aiohttp import web

from healthsync.service.api.handlers.health import HealthHandler
from healthsync.service.api.handlers.sync import SyncHandler

if TYPE_CHECKING:
    from healthsync.service.server import SyncService


def setup_routes(app: web.Application, service: "SyncService") -> None:
    """
    Register all API routes.

    Args:
        app: aiohttp Application
        service: SyncService instance for handler access
    """
    health = HealthHandler(service)
    sync = SyncHandler(service)

    app.router.add_routes(
        [
            web.get("/health", health.health),
            # Lifecycle
            web.post("/sync/init", sync.init),
            web.post("/sync/jobs/{job_id}/pause", sync.pause),
            web.post("/sync/jobs/{job_id}/resume", sync.resume),
            web.post("/sync/jobs/{job_id}/restart", sync.restart),
            # Queries
            web.get("/sync/jobs", sync.list_jobs),
            web.get("/sync/jobs/{job_id}", sync.get_job),
            web.get("/sync/stats", sync.stats),
        ]
    )
