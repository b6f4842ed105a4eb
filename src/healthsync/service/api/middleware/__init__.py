"""
API middleware components.

Provides error handling and shared-secret authentication.
"""

from healthsync.service.api.middleware.auth import setup_auth
from healthsync.service.api.middleware.error import error_middleware

__all__ = ["error_middleware", "setup_auth"]
