"""
Core types: job status, canonical entity catalogue, job and checkpoint records.

A SyncJob is one flat pass over ENTITY_ORDER for one partner. A Checkpoint
is the durable cursor of one (job, entity type) pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from healthsync.exceptions import MalformedRecordError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class JobStatus(StrEnum):
    """Visible job status. Queued jobs are reported as RUNNING."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """Active jobs count towards the one-job-per-partner rule."""
        return self in (JobStatus.RUNNING, JobStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class EntityType(StrEnum):
    """Canonical entities exposed by every partner adapter set."""

    ENCOUNTER = "encounter"
    PATIENT = "patient"
    PROVIDER = "provider"
    ORGANIZATION = "organization"
    ALLERGY = "allergy"
    CONDITION = "condition"
    MEDICATION = "medication"
    OBSERVATION = "observation"
    IMMUNIZATION = "immunization"
    VITAL_SIGNS = "vital_signs"
    SCHEDULE = "schedule"
    LOCATION = "location"
    SPECIALTY = "specialty"
    REQUEST_EXAM = "request_exam"
    RESULT_EXAM = "result_exam"


# Fixed traversal order of a job pass
ENTITY_ORDER: tuple[EntityType, ...] = tuple(EntityType)

# Natural key columns per entity. Allergy and specialty views carry no
# single code column, so their keys are composite.
NATURAL_KEYS: dict[EntityType, tuple[str, ...]] = {
    EntityType.ENCOUNTER: ("encounter_code",),
    EntityType.PATIENT: ("patient_code",),
    EntityType.PROVIDER: ("provider_code",),
    EntityType.ORGANIZATION: ("organization_code",),
    EntityType.ALLERGY: ("allergy_patient_code", "allergy_substance_name"),
    EntityType.CONDITION: ("condition_code",),
    EntityType.MEDICATION: ("medication_code",),
    EntityType.OBSERVATION: ("observation_code",),
    EntityType.IMMUNIZATION: ("immunization_code",),
    EntityType.VITAL_SIGNS: ("vital_signs_code",),
    EntityType.SCHEDULE: ("schedule_code",),
    EntityType.LOCATION: ("location_code",),
    EntityType.SPECIALTY: ("specialty_provider_code", "specialty_code"),
    EntityType.REQUEST_EXAM: ("request_exam_code",),
    EntityType.RESULT_EXAM: ("result_exam_code",),
}


def natural_key_values(entity_type: EntityType | str, record: dict[str, Any]) -> tuple[str, ...]:
    """
    Extract the natural key of a canonical record.

    Raises:
        MalformedRecordError: If any key column is missing or empty
    """
    entity = EntityType(entity_type)
    values = []
    for column in NATURAL_KEYS[entity]:
        value = record.get(column)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MalformedRecordError(
                f"{entity.value} record is missing natural key column '{column}'",
                entity_type=entity.value,
                details={"column": column},
            )
        values.append(str(value))
    return tuple(values)


def natural_key(entity_type: EntityType | str, record: dict[str, Any]) -> str:
    """Natural key as a single string (composite parts joined by '|')."""
    return "|".join(natural_key_values(entity_type, record))


@dataclass
class SyncJob:
    """Durable job record."""

    id: str
    partner_id: str
    status: JobStatus = JobStatus.IDLE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: dict[str, Any] | None = None
    slot: int | None = None
    processed_records: int = 0
    current_entity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""

        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "partner_id": self.partner_id,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "paused_at": _iso(self.paused_at),
            "completed_at": _iso(self.completed_at),
            "last_error": self.last_error,
            "slot": self.slot,
            "processed_records": self.processed_records,
            "current_entity": self.current_entity,
        }


@dataclass
class Checkpoint:
    """Last committed position of one entity stream within one job."""

    job_id: str
    entity_type: str
    cursor: str | None = None
    exhausted: bool = False
    batches: int = 0
    records: int = 0
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "cursor": self.cursor,
            "exhausted": self.exhausted,
            "batches": self.batches,
            "records": self.records,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class EntityBatch:
    """
    One bounded, ordered page of canonical records from a source.

    ``cursor`` is the position after the last record; passing it back to the
    source yields the following batch. ``exhausted`` is True when the stream
    has no records past this batch.
    """

    entity_type: str
    records: list[dict[str, Any]]
    cursor: str | None
    exhausted: bool

    def __len__(self) -> int:
        return len(self.records)
