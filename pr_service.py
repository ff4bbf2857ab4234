from __future__ import annotations

import logging
import math

from algorithms import SydneyTime
from db import Modality, PersonalRecordRepository

logger = logging.getLogger(__name__)


class PRService:
    """Detects and records personal records for logged sets."""

    def __init__(self, pr_repo: PersonalRecordRepository) -> None:
        self.prs = pr_repo

    @staticmethod
    def candidates(
        modality: str,
        reps: int | None,
        weight_kg: float | None,
        duration_sec: int | None,
    ) -> list[tuple[str, float]]:
        """Return ``(pr_type, value)`` pairs a set with these values competes for."""

        def usable(value) -> bool:
            return value is not None and math.isfinite(float(value))

        result: list[tuple[str, float]] = []
        if Modality(modality) is Modality.REPS:
            if usable(weight_kg):
                result.append(("REPS_MAX_WEIGHT", float(weight_kg)))
            if usable(reps):
                result.append(("REPS_MAX_REPS", float(reps)))
        else:
            if usable(duration_sec):
                result.append(("ISO_MAX_DURATION", float(duration_sec)))
        return result

    def maybe_record(
        self,
        vault_id: int,
        session_id: int,
        set_id: int,
        exercise_id: int,
        modality: str,
        reps: int | None,
        weight_kg: float | None,
        duration_sec: int | None,
    ) -> list[str]:
        """Record every candidate that strictly beats the stored best.

        Returns the PR types that improved.
        """
        improved: list[str] = []
        for pr_type, value in self.candidates(modality, reps, weight_kg, duration_sec):
            prev = self.prs.best_value(vault_id, exercise_id, pr_type)
            if prev is not None and value <= prev:
                continue
            achieved_at = SydneyTime.now_iso()
            self.prs.upsert_best(
                vault_id, exercise_id, pr_type, value, achieved_at, session_id, set_id
            )
            self.prs.add_event(
                vault_id, exercise_id, pr_type, value, achieved_at, session_id, set_id
            )
            logger.info(
                "new PR vault=%s exercise=%s %s=%s (was %s)",
                vault_id,
                exercise_id,
                pr_type,
                value,
                prev,
            )
            improved.append(pr_type)
        return improved

    def records(self, vault_id: int, exercise_id: int | None = None) -> list[dict]:
        return self.prs.fetch_records(vault_id, exercise_id)

    def events(self, vault_id: int, exercise_id: int | None = None) -> list[dict]:
        return self.prs.fetch_events(vault_id, exercise_id)
