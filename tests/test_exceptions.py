"""
Tests for the HealthSync exception hierarchy.
"""

import pytest

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


@pytest.mark.unit
class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            ConflictError,
            TransientIOError,
            FatalError,
            RetryExhaustedError,
            MalformedRecordError,
            AdapterError,
            StateStoreError,
        ],
    )
    def test_all_derive_from_base(self, exc_class):
        assert issubclass(exc_class, HealthSyncError)

    def test_job_not_found_is_base(self):
        assert issubclass(JobNotFoundError, HealthSyncError)

    def test_fatal_subclasses(self):
        assert issubclass(RetryExhaustedError, FatalError)
        assert issubclass(MalformedRecordError, FatalError)
        assert not issubclass(TransientIOError, FatalError)

    def test_catch_with_base(self):
        with pytest.raises(HealthSyncError):
            raise StateStoreError("disk full")


@pytest.mark.unit
class TestAttributes:
    def test_message_and_details(self):
        err = HealthSyncError("boom", details={"a": 1})
        assert err.message == "boom"
        assert err.details == {"a": 1}
        assert str(err) == "boom"

    def test_details_default_empty(self):
        assert HealthSyncError("boom").details == {}

    def test_conflict_carries_job_and_status(self):
        err = ConflictError("nope", job_id="j1", status="running")
        assert err.job_id == "j1"
        assert err.status == "running"
        assert err.details == {"job_id": "j1", "status": "running"}

    def test_job_not_found_message(self):
        err = JobNotFoundError("abc")
        assert err.job_id == "abc"
        assert "abc" in str(err)

    def test_fatal_error_position(self):
        err = FatalError("bad", entity_type="patient", cursor="10", details={"column": "x"})
        assert err.entity_type == "patient"
        assert err.cursor == "10"
        assert err.details == {"entity_type": "patient", "cursor": "10", "column": "x"}

    def test_retry_exhausted_attempts(self):
        err = RetryExhaustedError("gave up", attempts=4, entity_type="medication", cursor="200")
        assert err.attempts == 4
        assert err.details["attempts"] == 4
        assert err.entity_type == "medication"
