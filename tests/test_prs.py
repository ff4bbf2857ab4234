import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import PersonalRecordRepository
from pr_service import PRService


@pytest.fixture
def service(tmp_path):
    return PRService(PersonalRecordRepository(str(tmp_path / "workout.db")))


def test_candidates_follow_modality():
    assert PRService.candidates("REPS", 8, 60, None) == [
        ("REPS_MAX_WEIGHT", 60.0),
        ("REPS_MAX_REPS", 8.0),
    ]
    assert PRService.candidates("REPS", None, 40, None) == [("REPS_MAX_WEIGHT", 40.0)]
    assert PRService.candidates("ISOMETRIC", None, None, 45) == [("ISO_MAX_DURATION", 45.0)]
    assert PRService.candidates("ISOMETRIC", None, 20, None) == []
    assert PRService.candidates("REPS", None, float("nan"), None) == []


def test_records_only_improve(service):
    assert service.maybe_record(1, 1, 1, 7, "REPS", 5, 100, None) == [
        "REPS_MAX_WEIGHT",
        "REPS_MAX_REPS",
    ]
    # tie and lower values leave the stored best alone
    assert service.maybe_record(1, 1, 2, 7, "REPS", 5, 100, None) == []
    assert service.maybe_record(1, 1, 3, 7, "REPS", 3, 90, None) == []
    assert service.maybe_record(1, 2, 4, 7, "REPS", 6, 95, None) == ["REPS_MAX_REPS"]

    records = {r["pr_type"]: r for r in service.records(1)}
    assert records["REPS_MAX_WEIGHT"]["value"] == 100.0
    assert records["REPS_MAX_WEIGHT"]["set_id"] == 1
    assert records["REPS_MAX_REPS"]["value"] == 6.0
    assert records["REPS_MAX_REPS"]["session_id"] == 2

    events = service.events(1, exercise_id=7)
    assert [(e["pr_type"], e["value"]) for e in events] == [
        ("REPS_MAX_WEIGHT", 100.0),
        ("REPS_MAX_REPS", 5.0),
        ("REPS_MAX_REPS", 6.0),
    ]


def test_records_are_scoped_per_vault_and_exercise(service):
    service.maybe_record(1, 1, 1, 7, "ISOMETRIC", None, None, 60)
    assert service.maybe_record(2, 5, 9, 7, "ISOMETRIC", None, None, 30) == [
        "ISO_MAX_DURATION"
    ]
    assert service.maybe_record(1, 1, 2, 8, "ISOMETRIC", None, None, 30) == [
        "ISO_MAX_DURATION"
    ]
    assert len(service.records(1)) == 2
    assert len(service.records(2)) == 1
    assert service.events(3) == []
