from __future__ import annotations

import logging

from db import ExerciseRepository, TemplateItemRepository, TemplateRepository
from errors import ValidationError
from revalidation import PathRevalidator, template_path, vault_path, exercises_path

logger = logging.getLogger(__name__)

TARGET_SETS_RANGE = (1, 20)


class TemplateService:
    """Template CRUD and ordering of template items."""

    def __init__(
        self,
        template_repo: TemplateRepository,
        item_repo: TemplateItemRepository,
        exercise_repo: ExerciseRepository,
        revalidator: PathRevalidator | None = None,
        default_target_sets: int = 3,
    ) -> None:
        self.templates = template_repo
        self.items = item_repo
        self.exercises = exercise_repo
        self.revalidator = revalidator or PathRevalidator()
        self.default_target_sets = default_target_sets

    def _touch(self, vault_id: int, template_id: int) -> None:
        self.revalidator.mark_stale(
            template_path(vault_id, template_id), vault_path(vault_id)
        )

    @staticmethod
    def _name(name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Template name is required")
        return name

    @staticmethod
    def parse_target_sets(value) -> int | None:
        """Blank clears the value; anything else must be an integer in 1..20."""
        message = "target_sets must be 1-20 (or blank)."
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, bool):
            raise ValidationError(message)
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(message) from e
        low, high = TARGET_SETS_RANGE
        if not number.is_integer() or number < low or number > high:
            raise ValidationError(message)
        return int(number)

    def create_template(self, vault_id: int, name: str) -> int:
        template_id = self.templates.create(vault_id, self._name(name))
        logger.info("created template %s in vault %s", template_id, vault_id)
        self._touch(vault_id, template_id)
        return template_id

    def rename_template(self, vault_id: int, template_id: int, name: str) -> None:
        self.templates.rename(vault_id, template_id, self._name(name))
        self._touch(vault_id, template_id)

    def list_templates(self, vault_id: int) -> list[dict]:
        return self.templates.fetch_all_templates(vault_id)

    def previews(self, vault_id: int) -> list[dict]:
        """Templates with the names of their exercises in order."""
        templates = self.templates.fetch_all_templates(vault_id)
        names = self.items.previews(vault_id, [t["id"] for t in templates])
        for t in templates:
            t["exercise_names"] = names.get(t["id"], [])
        return templates

    def editor_data(self, vault_id: int, template_id: int) -> dict:
        return {
            "template": self.templates.fetch_detail(vault_id, template_id),
            "items": self.items.fetch_for_template(vault_id, template_id),
            "exercises": self.exercises.fetch_all_exercises(vault_id, active_only=True),
        }

    def add_existing_exercise(
        self,
        vault_id: int,
        template_id: int,
        exercise_id: int,
        target_sets: int | None = None,
    ) -> int:
        self.templates.fetch_detail(vault_id, template_id)
        self.exercises.fetch_detail(vault_id, exercise_id)
        target_sets = self.parse_target_sets(target_sets)
        if target_sets is None:
            target_sets = self.default_target_sets
        item_id = self.items.add(vault_id, template_id, exercise_id, target_sets)
        self._touch(vault_id, template_id)
        return item_id

    def create_exercise_and_add(
        self,
        vault_id: int,
        template_id: int,
        name: str,
        modality: str = "REPS",
        uses_bodyweight: bool = False,
        target_sets: int | None = None,
    ) -> dict:
        self.templates.fetch_detail(vault_id, template_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name required")
        target_sets = self.parse_target_sets(target_sets)
        if target_sets is None:
            target_sets = self.default_target_sets
        exercise_id = self.exercises.create(vault_id, name, modality, uses_bodyweight)
        item_id = self.items.add(vault_id, template_id, exercise_id, target_sets)
        self.revalidator.mark_stale(exercises_path(vault_id))
        self._touch(vault_id, template_id)
        return {"exercise_id": exercise_id, "item_id": item_id}

    def set_target_sets(self, vault_id: int, template_id: int, item_id: int, value) -> None:
        self.items.set_target_sets(vault_id, item_id, self.parse_target_sets(value))
        self._touch(vault_id, template_id)

    def remove_item(self, vault_id: int, template_id: int, item_id: int) -> None:
        self.items.remove(vault_id, item_id)
        self._touch(vault_id, template_id)

    def move_item(
        self, vault_id: int, template_id: int, item_id: int, direction: str
    ) -> bool:
        direction = (direction or "").upper()
        if direction not in ("UP", "DOWN"):
            raise ValidationError("direction must be UP or DOWN")
        items = self.items.fetch_for_template(vault_id, template_id)
        idx = next((i for i, it in enumerate(items) if it["id"] == item_id), None)
        if idx is None:
            return False
        other = idx - 1 if direction == "UP" else idx + 1
        if other < 0 or other >= len(items):
            return False
        a, b = items[idx], items[other]
        self.items.set_sort_order(vault_id, a["id"], b["sort_order"])
        self.items.set_sort_order(vault_id, b["id"], a["sort_order"])
        self._touch(vault_id, template_id)
        return True
