"""
HealthSync exception hierarchy.

All domain-specific exceptions inherit from HealthSyncError, so callers can
catch any framework error with a single base class while still handling
specific failures where it matters.

Hierarchy::

    HealthSyncError
    ├── ConfigurationError        - settings missing or invalid at start-up
    ├── ConflictError             - lifecycle transition not allowed
    ├── JobNotFoundError          - unknown job id
    ├── TransientIOError          - source/destination call failed, retryable
    ├── FatalError                - terminates a job as failed
    │   ├── RetryExhaustedError   - retry budget for a batch used up
    │   └── MalformedRecordError  - record cannot be keyed or written
    ├── AdapterError              - adapter lookup / configuration
    └── StateStoreError           - job or checkpoint store read/write
"""

from __future__ import annotations

from typing import Any


class HealthSyncError(Exception):
    """Base exception for all HealthSync errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(HealthSyncError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Lifecycle ---------------------------------------------------------------


class ConflictError(HealthSyncError):
    """Raised when a lifecycle request does not match the job's current status.

    No state is changed when this is raised.
    """

    def __init__(self, message: str, *, job_id: str | None = None, status: str | None = None) -> None:
        super().__init__(message, details={"job_id": job_id, "status": status})
        self.job_id = job_id
        self.status = status


class JobNotFoundError(HealthSyncError):
    """Raised when a job id is not present in the job store."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Sync job not found: {job_id}", details={"job_id": job_id})
        self.job_id = job_id


# --- I/O ---------------------------------------------------------------------


class TransientIOError(HealthSyncError):
    """Raised by adapters for failures worth retrying (timeouts, resets)."""


class FatalError(HealthSyncError):
    """Raised when a job cannot continue; the job is marked failed."""

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        cursor: str | None = None,
        details: dict | None = None,
    ) -> None:
        merged: dict[str, Any] = {"entity_type": entity_type, "cursor": cursor}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.entity_type = entity_type
        self.cursor = cursor


class RetryExhaustedError(FatalError):
    """Raised when every retry attempt for a batch has failed."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        entity_type: str | None = None,
        cursor: str | None = None,
    ) -> None:
        super().__init__(message, entity_type=entity_type, cursor=cursor, details={"attempts": attempts})
        self.attempts = attempts


class MalformedRecordError(FatalError):
    """Raised when a record lacks the fields needed to upsert it."""


# --- Adapters ----------------------------------------------------------------


class AdapterError(HealthSyncError):
    """Raised when a source or destination adapter cannot be resolved or built."""


# --- State store -------------------------------------------------------------


class StateStoreError(HealthSyncError):
    """Raised when the job or checkpoint store cannot be read or written."""
