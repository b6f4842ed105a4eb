"""
HealthSync - resumable, concurrency-bounded clinical record synchronization.
"""

__version__ = "0.1.0"

from healthsync.core.types import ENTITY_ORDER, Checkpoint, EntityBatch, EntityType, JobStatus, SyncJob
from healthsync.exceptions import (
    AdapterError,
    ConfigurationError,
    ConflictError,
    FatalError,
    HealthSyncError,
    JobNotFoundError,
    MalformedRecordError,
    RetryExhaustedError,
    StateStoreError,
    TransientIOError,
)

__all__ = [
    "__version__",
    # Types
    "ENTITY_ORDER",
    "Checkpoint",
    "EntityBatch",
    "EntityType",
    "JobStatus",
    "SyncJob",
    # Exceptions
    "AdapterError",
    "ConfigurationError",
    "ConflictError",
    "FatalError",
    "HealthSyncError",
    "JobNotFoundError",
    "MalformedRecordError",
    "RetryExhaustedError",
    "StateStoreError",
    "TransientIOError",
]
