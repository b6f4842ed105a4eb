"""
Shared fixtures: an in-memory state store, fast retry policy and sample
partner records.
"""

import ibis
import pytest

from healthsync.adapters.memory import InMemoryDestination, InMemorySource
from healthsync.adapters.registry import AdapterRegistry
from healthsync.core.retry import RetryPolicy
from healthsync.core.state import StateStore
from healthsync.core.types import EntityType

PARTNER = "hospital-a"


def make_store() -> StateStore:
    """State store backed by an in-memory DuckDB."""
    store = StateStore({"state": {"url": "duckdb://:memory:"}})
    store._connection = ibis.duckdb.connect()
    store._initialized = False
    return store


def sample_records(patients: int = 5, medications: int = 7, encounters: int = 3) -> dict:
    """Canonical records for one partner, keyed by entity type."""
    return {
        EntityType.ENCOUNTER.value: [
            {"encounter_code": f"E{i:03d}", "patient_code": f"P{i % patients:03d}"} for i in range(encounters)
        ],
        EntityType.PATIENT.value: [{"patient_code": f"P{i:03d}", "name": f"Patient {i}"} for i in range(patients)],
        EntityType.MEDICATION.value: [
            {"medication_code": f"M{i:03d}", "patient_code": f"P{i % patients:03d}", "dose": f"{i}mg"}
            for i in range(medications)
        ],
    }


@pytest.fixture
def store():
    store = make_store()
    yield store
    store.close()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=2, initial_delay=0.001, max_delay=0.001, jitter=False)


@pytest.fixture
def source():
    return InMemorySource({PARTNER: sample_records()})


@pytest.fixture
def destination():
    return InMemoryDestination()


@pytest.fixture
def registry(source, destination):
    registry = AdapterRegistry()
    registry.register(PARTNER, source, destination)
    return registry
