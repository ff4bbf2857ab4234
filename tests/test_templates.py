import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    ExerciseRepository,
    TemplateItemRepository,
    TemplateRepository,
    VaultRepository,
)
from errors import NotFoundError, ValidationError
from revalidation import PathRevalidator
from template_service import TemplateService


@pytest.fixture
def env(tmp_path):
    db_path = str(tmp_path / "workout.db")
    vaults = VaultRepository(db_path)
    exercises = ExerciseRepository(db_path)
    revalidator = PathRevalidator()
    service = TemplateService(
        TemplateRepository(db_path),
        TemplateItemRepository(db_path),
        exercises,
        revalidator,
        default_target_sets=4,
    )
    vault = vaults.create("Home")
    return {
        "vault": vault,
        "other": vaults.create("Gym"),
        "service": service,
        "exercises": exercises,
        "revalidator": revalidator,
        "bench": exercises.create(vault, "Bench Press"),
        "plank": exercises.create(vault, "Plank", "ISOMETRIC"),
    }


@pytest.mark.parametrize(
    "value,expected",
    [(None, None), ("", None), ("  ", None), ("1", 1), (20, 20), ("5.0", 5)],
)
def test_parse_target_sets(value, expected):
    assert TemplateService.parse_target_sets(value) == expected


@pytest.mark.parametrize("value", [0, 21, "2.5", "abc", True])
def test_parse_target_sets_rejects(value):
    with pytest.raises(ValidationError, match=r"target_sets must be 1-20 \(or blank\)."):
        TemplateService.parse_target_sets(value)


def test_create_and_rename(env):
    service = env["service"]
    vault = env["vault"]
    tid = service.create_template(vault, " Push Day ")
    assert service.list_templates(vault)[0]["name"] == "Push Day"
    assert f"/v/{vault}/templates/{tid}" in env["revalidator"].drain()

    with pytest.raises(ValidationError, match="Template name is required"):
        service.create_template(vault, "")
    service.rename_template(vault, tid, "Push A")
    assert service.editor_data(vault, tid)["template"]["name"] == "Push A"
    with pytest.raises(NotFoundError, match="Template not found."):
        service.rename_template(env["other"], tid, "Stolen")


def test_templates_are_ordered_by_sort_order(env):
    service = env["service"]
    vault = env["vault"]
    first = service.create_template(vault, "A")
    second = service.create_template(vault, "B")
    orders = [t["sort_order"] for t in service.list_templates(vault)]
    assert [t["id"] for t in service.list_templates(vault)] == [first, second]
    assert orders == sorted(orders)
    assert service.list_templates(env["other"]) == []


def test_items_use_default_target_sets(env):
    service = env["service"]
    vault = env["vault"]
    tid = service.create_template(vault, "Push")
    service.add_existing_exercise(vault, tid, env["bench"])
    service.add_existing_exercise(vault, tid, env["plank"], 2)
    items = service.editor_data(vault, tid)["items"]
    assert [(i["exercise_name"], i["target_sets"]) for i in items] == [
        ("Bench Press", 4),
        ("Plank", 2),
    ]
    assert [i["sort_order"] for i in items] == [1, 2]

    service.set_target_sets(vault, tid, items[0]["id"], "")
    assert service.editor_data(vault, tid)["items"][0]["target_sets"] is None
    with pytest.raises(NotFoundError, match="Template item not found."):
        service.set_target_sets(vault, tid, 9999, 3)


def test_add_exercise_from_other_vault_is_rejected(env):
    service = env["service"]
    other_ex = env["exercises"].create(env["other"], "Row")
    tid = service.create_template(env["vault"], "Pull")
    with pytest.raises(NotFoundError, match="Exercise not found in this vault."):
        service.add_existing_exercise(env["vault"], tid, other_ex)


def test_create_exercise_and_add(env):
    service = env["service"]
    vault = env["vault"]
    tid = service.create_template(vault, "Legs")
    result = service.create_exercise_and_add(vault, tid, "Wall Sit", "ISOMETRIC", True)
    exercise = env["exercises"].fetch_detail(vault, result["exercise_id"])
    assert exercise["modality"] == "ISOMETRIC"
    assert exercise["uses_bodyweight"] is True
    item = service.editor_data(vault, tid)["items"][0]
    assert item["id"] == result["item_id"]
    assert item["target_sets"] == 4

    stale = env["revalidator"].drain()
    assert f"/v/{vault}/exercises" in stale
    with pytest.raises(ValidationError, match="Name required"):
        service.create_exercise_and_add(vault, tid, " ")


def test_move_and_remove_items(env):
    service = env["service"]
    vault = env["vault"]
    tid = service.create_template(vault, "Push")
    first = service.add_existing_exercise(vault, tid, env["bench"])
    second = service.add_existing_exercise(vault, tid, env["plank"])

    assert service.move_item(vault, tid, first, "UP") is False
    assert service.move_item(vault, tid, second, "down") is False
    assert service.move_item(vault, tid, second, "UP") is True
    ids = [i["id"] for i in service.editor_data(vault, tid)["items"]]
    assert ids == [second, first]
    assert service.move_item(vault, tid, 9999, "UP") is False
    with pytest.raises(ValidationError):
        service.move_item(vault, tid, first, "SIDEWAYS")

    service.remove_item(vault, tid, second)
    assert [i["id"] for i in service.editor_data(vault, tid)["items"]] == [first]
    with pytest.raises(NotFoundError):
        service.remove_item(vault, tid, second)


def test_previews(env):
    service = env["service"]
    vault = env["vault"]
    push = service.create_template(vault, "Push")
    empty = service.create_template(vault, "Empty")
    service.add_existing_exercise(vault, push, env["plank"])
    service.add_existing_exercise(vault, push, env["bench"])
    previews = {t["id"]: t["exercise_names"] for t in service.previews(vault)}
    assert previews == {push: ["Plank", "Bench Press"], empty: []}


@pytest.mark.parametrize("target_sets", [-1, 0, 21])
def test_added_items_reject_out_of_range_target_sets(env, target_sets):
    service = env["service"]
    vault = env["vault"]
    tid = service.create_template(vault, "Push")
    with pytest.raises(ValidationError, match="target_sets must be 1-20"):
        service.add_existing_exercise(vault, tid, env["bench"], target_sets)
    with pytest.raises(ValidationError, match="target_sets must be 1-20"):
        service.create_exercise_and_add(vault, tid, "Cable Fly", target_sets=target_sets)
    assert service.editor_data(vault, tid)["items"] == []
    names = [e["name"] for e in env["exercises"].fetch_all_exercises(vault)]
    assert "Cable Fly" not in names
