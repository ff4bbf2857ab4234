import os
import sys
import datetime

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from analytics_service import (
    aggregate_targets,
    confidence_weight,
    page_window,
    period_series,
    role_weight,
    select_target,
    summarize,
)


def muscle_row(target_id, name, week, role, sets, reps=0, tonnage=0.0, iso=0):
    return {
        "target_id": target_id,
        "target_name": name,
        "week_start": week,
        "role": role,
        "set_count": sets,
        "total_reps": reps,
        "total_iso_sec": iso,
        "total_tonnage_kg": tonnage,
    }


def tendon_row(target_id, name, week, sets, iso, load):
    return {
        "target_id": target_id,
        "target_name": name,
        "week_start": week,
        "set_count": sets,
        "total_iso_sec": iso,
        "iso_exposure_kg_sec": load,
    }


def test_weights():
    assert role_weight("PRIMARY") == 1.0
    assert role_weight("SECONDARY") == 0.5
    assert role_weight("STABILIZER") == 0.25
    assert role_weight(None) == 1.0
    assert confidence_weight("MED") == 0.67
    assert confidence_weight("LOW") == 0.33
    assert confidence_weight("unknown") == 1.0


def test_effective_sets_are_role_weighted():
    rows = [
        muscle_row(1, "Chest", "2024-01-01", "PRIMARY", 2),
        muscle_row(1, "Chest", "2024-01-01", "SECONDARY", 4),
        muscle_row(1, "Chest", "2024-01-08", "STABILIZER", 8),
    ]
    (chest,) = aggregate_targets(rows, "muscles")
    assert chest["sets"] == 14
    assert chest["effective_sets"] == 6.0


def test_tendons_use_unweighted_sets_and_average_load():
    rows = [
        tendon_row(7, "Patellar Tendon", "2024-01-01", 3, 90, 1800.0),
        tendon_row(7, "Patellar Tendon", "2024-01-08", 1, 30, 0.0),
        tendon_row(8, "Achilles Tendon", "2024-01-08", 1, 0, 0.0),
    ]
    targets = aggregate_targets(rows, "tendons", sort="iso_load")
    assert [t["target_id"] for t in targets] == [7, 8]
    patellar = targets[0]
    assert patellar["effective_sets"] == 4
    assert patellar["avg_iso_load_kg"] == 15.0
    assert targets[1]["avg_iso_load_kg"] is None


def test_unknown_sort_key_falls_back_to_sets():
    rows = [
        muscle_row(1, "Chest", "2024-01-01", "PRIMARY", 2, tonnage=5000),
        muscle_row(2, "Back", "2024-01-01", "PRIMARY", 5, tonnage=100),
    ]
    assert [t["name"] for t in aggregate_targets(rows, "muscles", sort="bogus")] == [
        "Back",
        "Chest",
    ]
    assert [t["name"] for t in aggregate_targets(rows, "muscles", sort="tonnage")] == [
        "Chest",
        "Back",
    ]
    # iso_load is not a muscle key
    assert aggregate_targets(rows, "muscles", sort="iso_load")[0]["name"] == "Back"


def test_ties_are_broken_by_name_and_filter_is_case_insensitive():
    rows = [
        muscle_row(3, "Triceps", "2024-01-01", "PRIMARY", 2),
        muscle_row(1, "Biceps", "2024-01-01", "PRIMARY", 2),
        muscle_row(2, "Quadriceps", "2024-01-01", "PRIMARY", 1),
    ]
    assert [t["name"] for t in aggregate_targets(rows, "muscles")] == [
        "Biceps",
        "Triceps",
        "Quadriceps",
    ]
    assert [t["name"] for t in aggregate_targets(rows, "muscles", q="CEPS")] == [
        "Biceps",
        "Triceps",
        "Quadriceps",
    ]
    assert [t["name"] for t in aggregate_targets(rows, "muscles", q="tri")] == ["Triceps"]


def test_selection_keeps_previous_or_falls_back_to_first():
    targets = [{"target_id": "A"}, {"target_id": "B"}, {"target_id": "C"}]
    assert select_target(targets, "B") == "B"
    filtered = [{"target_id": "A"}, {"target_id": "C"}]
    assert select_target(filtered, "B") == "A"
    assert select_target([], "B") is None
    assert select_target(targets, None) == "A"


def test_period_series_is_sorted_ascending():
    rows = [
        muscle_row(1, "Chest", "2024-01-15", "PRIMARY", 1),
        muscle_row(1, "Chest", "2024-01-01", "SECONDARY", 2),
        muscle_row(1, "Chest", "2024-01-08", "PRIMARY", 3),
        muscle_row(2, "Back", "2023-12-25", "PRIMARY", 3),
    ]
    series = period_series(rows, 1, "muscles")
    assert [p["period_start"] for p in series] == ["2024-01-01", "2024-01-08", "2024-01-15"]
    assert series[0]["effective_sets"] == 1.0


def test_aggregation_is_deterministic():
    rows = [
        muscle_row(1, "Chest", "2024-01-01", "PRIMARY", 2, reps=20, tonnage=1200),
        muscle_row(2, "Back", "2024-01-01", "SECONDARY", 4, reps=40, tonnage=2000),
    ]
    assert summarize(rows, "muscles") == summarize(list(rows), "muscles")


def test_summarize_defaults():
    rows = [
        muscle_row(1, "Chest", "2024-01-01", "PRIMARY", 2),
        muscle_row(2, "Back", "2024-01-01", "SECONDARY", 3),
    ]
    result = summarize(rows, "muscles")
    assert result["sort"] == "effective_sets"
    assert result["selected_id"] == 1
    assert [p["period_start"] for p in result["series"]] == ["2024-01-01"]
    assert summarize([], "tendons")["selected_id"] is None
    assert summarize([], "tendons")["sort"] == "iso_load"


def test_page_window_clamps_weeks():
    today = datetime.date(2024, 3, 31)
    assert page_window(2, today) == {"weeks": 4, "from": "2024-03-04", "to": "2024-03-31"}
    assert page_window(100, today)["weeks"] == 52
    default = page_window("abc", today)
    assert default["weeks"] == 12
    assert default["from"] == (today - datetime.timedelta(days=83)).isoformat()
