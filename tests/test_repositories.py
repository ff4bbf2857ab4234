import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    AnatomicalTargetRepository,
    ExerciseRepository,
    SetRepository,
    TemplateItemRepository,
    TemplateRepository,
    VaultRepository,
    WorkoutEntryRepository,
    WorkoutSessionRepository,
)
from errors import ValidationError


@pytest.fixture
def repos(tmp_path):
    db_path = str(tmp_path / "workout.db")
    vaults = VaultRepository(db_path)
    return {
        "vault": vaults.create("Home"),
        "other": vaults.create("Gym"),
        "vaults": vaults,
        "exercises": ExerciseRepository(db_path),
        "templates": TemplateRepository(db_path),
        "items": TemplateItemRepository(db_path),
        "sessions": WorkoutSessionRepository(db_path),
        "entries": WorkoutEntryRepository(db_path),
        "sets": SetRepository(db_path),
        "targets": AnatomicalTargetRepository(db_path),
    }


def test_vault_listing(repos):
    names = [v["name"] for v in repos["vaults"].fetch_all_vaults()]
    assert names == ["Home", "Gym"]


def test_template_create_assigns_next_sort_order(repos):
    templates = repos["templates"]
    vault = repos["vault"]
    first = templates.create(vault, "Push")
    second = templates.create(vault, "Pull")
    templates.create(repos["other"], "Legs")
    rows = templates.fetch_all_templates(vault)
    assert [(r["id"], r["sort_order"]) for r in rows] == [(first, 1), (second, 2)]
    assert templates.find_by_name(vault, "Pull") == second
    assert templates.find_by_name(repos["other"], "Pull") is None


def test_session_exists_and_listing(repos):
    sessions = repos["sessions"]
    vault = repos["vault"]
    early = sessions.create(vault, None, "2024-03-01")
    late = sessions.create(vault, None, "2024-03-09")
    assert sessions.exists(vault, early) is True
    assert sessions.exists(repos["other"], early) is False
    assert sessions.exists(vault, 9999) is False

    rows = sessions.fetch_all_sessions(vault)
    assert [r["id"] for r in rows] == [late, early]
    rows = sessions.fetch_all_sessions(vault, start_date="2024-03-05")
    assert [r["id"] for r in rows] == [late]
    assert len(sessions.fetch_all_sessions(vault, limit=1)) == 1


def test_trained_days_only_count_logged_sets(repos):
    sessions = repos["sessions"]
    vault = repos["vault"]
    squat = repos["exercises"].create(vault, "Squat")
    logged = sessions.create(vault, None, "2024-03-04")
    planned = sessions.create(vault, None, "2024-03-05")
    entry = repos["entries"].add(vault, logged, squat)
    repos["sets"].add(vault, entry, reps=5, weight_kg=100)
    repos["sets"].add_planned(vault, repos["entries"].add(vault, planned, squat), 3)

    assert sessions.trained_days(vault, "2024-03-01", "2024-03-31") == {"2024-03-04"}
    assert sessions.trained_days(vault, "2024-03-05", "2024-03-31") == set()
    assert sessions.trained_days(repos["other"], "2024-03-01", "2024-03-31") == set()


def test_exercise_usage_counts(repos):
    vault = repos["vault"]
    exercises = repos["exercises"]
    bench = exercises.create(vault, "Bench Press")
    template = repos["templates"].create(vault, "Push")
    repos["items"].add(vault, template, bench, 3)
    session = repos["sessions"].create(vault, template, "2024-03-04")
    repos["entries"].add(vault, session, bench)

    usage = exercises.usage(vault, bench)
    assert usage["workout_count"] == 1
    assert usage["template_count"] == 1
    assert usage["total"] == 2
    assert exercises.usage(repos["other"], bench)["total"] == 0


def test_exercise_page_counts_matches(repos):
    vault = repos["vault"]
    exercises = repos["exercises"]
    for name in ["Curl", "Hammer Curl", "Dip"]:
        exercises.create(vault, name)
    page = exercises.fetch_page(vault, page=1, page_size=2, q="curl")
    assert page["total"] == 2
    assert [r["name"] for r in page["rows"]] == ["Curl", "Hammer Curl"]
    assert [r["name"] for r in exercises.fetch_all_exercises(vault)] == [
        "Curl",
        "Dip",
        "Hammer Curl",
    ]


def test_target_update_rejects_taken_slug(repos):
    targets = repos["targets"]
    first = targets.create("TENDON", "Tendon A", "tendon-a")
    targets.create("TENDON", "Tendon B", "tendon-b")
    with pytest.raises(ValidationError, match="slug already exists"):
        targets.update(first, slug="tendon-b")
    # keeping its own slug is allowed
    targets.update(first, name="Tendon A2", slug="tendon-a")
    assert targets.fetch_detail(first)["name"] == "Tendon A2"
    assert all(t["kind"] == "TENDON" for t in targets.fetch_all_targets("TENDON"))
