"""
HTTP service exposing the sync job lifecycle.
"""

from healthsync.service.server import SyncService, create_app, run_service

__all__ = ["SyncService", "create_app", "run_service"]
