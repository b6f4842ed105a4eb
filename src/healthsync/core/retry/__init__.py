"""
Retry framework for transient source and destination failures.
"""

from healthsync.core.retry.manager import RetryManager
from healthsync.core.retry.policy import (
    DEFAULT_RETRY_POLICY,
    NO_RETRY_POLICY,
    TRANSIENT_EXCEPTIONS,
    RetryPolicy,
    RetryState,
)

__all__ = [
    # Policy
    "RetryPolicy",
    "RetryState",
    "DEFAULT_RETRY_POLICY",
    "NO_RETRY_POLICY",
    "TRANSIENT_EXCEPTIONS",
    # Manager
    "RetryManager",
]
