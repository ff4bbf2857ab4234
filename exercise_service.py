from __future__ import annotations

import logging

from algorithms import SydneyTime
from db import (
    AnatomicalTargetRepository,
    CONFIDENCES,
    ExerciseRepository,
    ExerciseTargetRepository,
    Modality,
    TARGET_ROLES,
)
from errors import InvariantError, NotFoundError, ValidationError
from revalidation import PathRevalidator, exercises_path

logger = logging.getLogger(__name__)


class ExerciseService:
    """Exercise catalog management and exercise to target assignment."""

    def __init__(
        self,
        exercise_repo: ExerciseRepository,
        exercise_target_repo: ExerciseTargetRepository,
        target_repo: AnatomicalTargetRepository,
        revalidator: PathRevalidator | None = None,
    ) -> None:
        self.exercises = exercise_repo
        self.exercise_targets = exercise_target_repo
        self.targets = target_repo
        self.revalidator = revalidator or PathRevalidator()

    def _touch(self, vault_id: int) -> None:
        self.revalidator.mark_stale(exercises_path(vault_id))

    @staticmethod
    def _name(name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name required")
        return name

    @staticmethod
    def _modality(modality: str | None) -> str:
        try:
            return Modality(modality or "REPS").value
        except ValueError as e:
            raise ValidationError(f"Unknown modality: {modality}") from e

    def list_exercises(self, vault_id: int, active_only: bool = False) -> list[dict]:
        return self.exercises.fetch_all_exercises(vault_id, active_only=active_only)

    def page(
        self,
        vault_id: int,
        page: int = 1,
        page_size: int = 50,
        include_archived: bool = False,
        q: str = "",
    ) -> dict:
        return self.exercises.fetch_page(vault_id, page, page_size, include_archived, q)

    def get(self, vault_id: int, exercise_id: int) -> dict | None:
        return self.exercises.get(vault_id, exercise_id)

    def create(
        self,
        vault_id: int,
        name: str,
        modality: str = "REPS",
        uses_bodyweight: bool = False,
    ) -> int:
        exercise_id = self.exercises.create(
            vault_id, self._name(name), self._modality(modality), uses_bodyweight
        )
        logger.info("created exercise %s in vault %s", exercise_id, vault_id)
        self._touch(vault_id)
        return exercise_id

    def update(
        self,
        vault_id: int,
        exercise_id: int,
        name: str,
        modality: str = "REPS",
        uses_bodyweight: bool = False,
    ) -> None:
        self.exercises.update(
            vault_id,
            exercise_id,
            self._name(name),
            self._modality(modality),
            uses_bodyweight,
        )
        self._touch(vault_id)

    def archive(self, vault_id: int, exercise_id: int) -> None:
        self.exercises.set_archived_at(vault_id, exercise_id, SydneyTime.now_iso())
        self._touch(vault_id)

    def unarchive(self, vault_id: int, exercise_id: int) -> None:
        self.exercises.set_archived_at(vault_id, exercise_id, None)
        self._touch(vault_id)

    def usage(self, vault_id: int, exercise_id: int) -> dict:
        self.exercises.fetch_detail(vault_id, exercise_id)
        return self.exercises.usage(vault_id, exercise_id)

    def delete(self, vault_id: int, exercise_id: int) -> None:
        """Hard delete, refused while anything still references the exercise."""
        usage = self.usage(vault_id, exercise_id)
        if usage["total"] > 0:
            raise InvariantError(
                f"Cannot delete: used in {usage['workout_count']} workouts, "
                f"{usage['template_count']} templates, "
                f"{usage['target_count']} target mappings, "
                f"{usage['pr_count']} PRs. Archive instead."
            )
        self.exercises.delete(vault_id, exercise_id)
        logger.info("deleted exercise %s from vault %s", exercise_id, vault_id)
        self._touch(vault_id)

    # ------------------------------------------------------------------
    # targets

    def targets_for(self, vault_id: int, exercise_id: int) -> list[dict]:
        return self.exercise_targets.fetch_for_exercise(vault_id, exercise_id)

    @staticmethod
    def normalize_picks(picks: list[dict]) -> list[dict]:
        """Apply defaults and keep at most one PRIMARY role.

        Picks without a role become SECONDARY; PRIMARY picks after the first
        are demoted. A target picked twice keeps its first occurrence.
        """
        seen: set[int] = set()
        seen_primary = False
        result = []
        for pick in picks:
            target_id = int(pick["target_id"])
            if target_id in seen:
                continue
            seen.add(target_id)
            role = pick.get("role") or "SECONDARY"
            if role not in TARGET_ROLES:
                raise ValidationError(f"Unknown role: {role}")
            if role == "PRIMARY":
                if seen_primary:
                    role = "SECONDARY"
                seen_primary = True
            confidence = pick.get("confidence") or None
            if confidence == "MEDIUM":
                confidence = "MED"
            if confidence is not None and confidence not in CONFIDENCES:
                raise ValidationError(f"Unknown confidence: {confidence}")
            result.append({"target_id": target_id, "role": role, "confidence": confidence})
        return result

    def set_targets(self, vault_id: int, exercise_id: int, picks: list[dict]) -> dict:
        """Replace the exercise's targets with ``picks``.

        Desired rows are upserted first, then the remaining rows are deleted,
        so a concurrent reader can briefly see the union of old and new.
        """
        self.exercises.fetch_detail(vault_id, exercise_id)
        desired = self.normalize_picks(picks)
        for pick in desired:
            self.targets.fetch_detail(pick["target_id"])

        if not desired:
            self.exercise_targets.delete_for_exercise(vault_id, exercise_id)
            self._touch(vault_id)
            return {"upserted": 0, "deleted": "all"}

        current = {
            row["target_id"]
            for row in self.exercise_targets.fetch_for_exercise(vault_id, exercise_id)
        }
        keep = {p["target_id"] for p in desired}
        for pick in desired:
            self.exercise_targets.upsert(
                vault_id, exercise_id, pick["target_id"], pick["role"], pick["confidence"]
            )
        stale = sorted(current - keep)
        self.exercise_targets.delete_targets(vault_id, exercise_id, stale)
        self._touch(vault_id)
        return {"upserted": len(desired), "deleted": len(stale)}


class AnatomyService:
    """Anatomical target catalog and tendon insight queries."""

    def __init__(self, target_repo: AnatomicalTargetRepository) -> None:
        self.targets = target_repo

    def list_targets(self, kind: str | None = None) -> list[dict]:
        return self.targets.fetch_all_targets(kind)

    def get_by_slug(self, slug: str) -> dict:
        row = self.targets.fetch_by_slug(slug)
        if row is None:
            raise NotFoundError("Target not found.")
        return row

    def create_target(
        self, kind: str, name: str, slug: str, parent_id: int | None = None
    ) -> int:
        if parent_id is not None:
            self.targets.fetch_detail(parent_id)
        return self.targets.create(kind, name, slug, parent_id)

    def update_target(self, target_id: int, **fields) -> None:
        self.targets.update(target_id, **fields)

    def delete_target(self, target_id: int) -> None:
        self.targets.delete(target_id)

    def tendon_insights(self, vault_id: int) -> list[dict]:
        return self.targets.tendons_with_exposure(vault_id)

    def exercises_for_tendon(self, vault_id: int, target_id: int) -> dict:
        tendon = self.targets.fetch_detail(target_id)
        if tendon["kind"] != "TENDON":
            raise ValidationError("Target is not a tendon.")
        return {
            "tendon": tendon,
            "exercises": self.targets.exercises_for_target(vault_id, target_id),
        }
