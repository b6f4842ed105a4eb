"""
REST API for the sync service.
"""

from healthsync.service.api.routes import setup_routes

__all__ = ["setup_routes"]
