from __future__ import annotations

import datetime
import logging
from typing import Iterable

from algorithms import APP_TZ, SydneyTime
from db import (
    AsyncMetricsRepository,
    ExerciseTargetRepository,
    MetricsRepository,
    Modality,
    SetRepository,
    WorkoutEntryRepository,
)
from errors import ValidationError

logger = logging.getLogger(__name__)

ROLE_WEIGHTS = {"PRIMARY": 1.0, "SECONDARY": 0.5, "STABILIZER": 0.25}
CONFIDENCE_WEIGHTS = {"HIGH": 1.0, "MED": 0.67, "MEDIUM": 0.67, "LOW": 0.33}

MUSCLE_SORT_FIELDS = {
    "effective_sets": "effective_sets",
    "sets": "sets",
    "reps": "reps",
    "iso": "iso_sec",
    "tonnage": "tonnage_kg",
}
TENDON_SORT_FIELDS = {
    "iso_load": "iso_load_kg_sec",
    "iso": "iso_sec",
    "sets": "sets",
}
DEFAULT_SORT = {"muscles": "effective_sets", "tendons": "iso_load"}
WEEKS_RANGE = (4, 52)


def role_weight(role: str | None) -> float:
    return ROLE_WEIGHTS.get(role or "", 1.0)


def confidence_weight(confidence: str | None) -> float:
    return CONFIDENCE_WEIGHTS.get(confidence or "", 1.0)


def _check_kind(kind: str) -> None:
    if kind not in ("muscles", "tendons"):
        raise ValidationError(f"Unknown analytics kind: {kind}")


def _empty_totals() -> dict:
    return {
        "sets": 0,
        "effective_sets": 0.0,
        "reps": 0,
        "iso_sec": 0,
        "tonnage_kg": 0.0,
        "iso_load_kg_sec": 0.0,
        "avg_iso_load_kg": None,
    }


def _accumulate(totals: dict, row: dict, kind: str) -> None:
    sets = int(row.get("set_count") or 0)
    totals["sets"] += sets
    if kind == "muscles":
        totals["effective_sets"] += sets * role_weight(row.get("role"))
    else:
        totals["effective_sets"] += sets
    totals["reps"] += int(row.get("total_reps") or 0)
    totals["iso_sec"] += int(row.get("total_iso_sec") or 0)
    totals["tonnage_kg"] += float(row.get("total_tonnage_kg") or 0)
    totals["iso_load_kg_sec"] += float(row.get("iso_exposure_kg_sec") or 0)
    totals["avg_iso_load_kg"] = (
        totals["iso_load_kg_sec"] / totals["iso_sec"] if totals["iso_sec"] > 0 else None
    )


def aggregate_targets(
    rows: Iterable[dict], kind: str, q: str = "", sort: str | None = None
) -> list[dict]:
    """Fold period/role metric rows into one total per target.

    ``q`` filters target names case-insensitively. Unknown sort keys fall
    back to ``sets``; ties are broken by name then id so output is stable.
    """
    _check_kind(kind)
    by_target: dict = {}
    for row in rows:
        target_id = row["target_id"]
        entry = by_target.get(target_id)
        if entry is None:
            entry = {"target_id": target_id, "name": row.get("target_name") or "", **_empty_totals()}
            by_target[target_id] = entry
        _accumulate(entry, row, kind)

    needle = (q or "").strip().lower()
    targets = [t for t in by_target.values() if needle in t["name"].lower()]

    fields = MUSCLE_SORT_FIELDS if kind == "muscles" else TENDON_SORT_FIELDS
    field = fields.get(sort or "", "sets")
    targets.sort(key=lambda t: (-(t[field] or 0), t["name"].lower(), str(t["target_id"])))
    return targets


def period_series(
    rows: Iterable[dict], target_id, kind: str, period_key: str = "week_start"
) -> list[dict]:
    """Per-period totals for one target, ascending by period start."""
    _check_kind(kind)
    periods: dict[str, dict] = {}
    for row in rows:
        if row["target_id"] != target_id:
            continue
        period = str(row[period_key])
        totals = periods.setdefault(period, {"period_start": period, **_empty_totals()})
        _accumulate(totals, row, kind)
    return [periods[k] for k in sorted(periods)]


def select_target(targets: list[dict], previous_id=None):
    """Keep the previous selection while it is still listed, else the first target."""
    if previous_id is not None and any(t["target_id"] == previous_id for t in targets):
        return previous_id
    return targets[0]["target_id"] if targets else None


def page_window(
    weeks=None, today: datetime.date | None = None, default_weeks: int = 12
) -> dict:
    try:
        weeks = int(weeks) if weeks not in (None, "") else default_weeks
    except (TypeError, ValueError):
        weeks = default_weeks
    low, high = WEEKS_RANGE
    weeks = max(low, min(high, weeks))
    today = today or datetime.date.fromisoformat(SydneyTime.today(APP_TZ))
    start = today - datetime.timedelta(days=weeks * 7 - 1)
    return {"weeks": weeks, "from": start.isoformat(), "to": today.isoformat()}


def summarize(
    rows: list[dict],
    kind: str,
    q: str = "",
    sort: str | None = None,
    selected=None,
    grain: str = "week",
) -> dict:
    sort = sort or DEFAULT_SORT[kind]
    targets = aggregate_targets(rows, kind, q, sort)
    selected_id = select_target(targets, selected)
    period_key = "day_start" if grain == "day" else "week_start"
    series = (
        period_series(rows, selected_id, kind, period_key) if selected_id is not None else []
    )
    return {
        "kind": kind,
        "sort": sort,
        "targets": targets,
        "selected_id": selected_id,
        "series": series,
    }


class AnalyticsService:
    """Muscle and tendon volume analytics for a vault."""

    def __init__(
        self,
        metrics_repo: MetricsRepository,
        entry_repo: WorkoutEntryRepository | None = None,
        set_repo: SetRepository | None = None,
        exercise_target_repo: ExerciseTargetRepository | None = None,
        async_metrics_repo: AsyncMetricsRepository | None = None,
        timezone: str = APP_TZ,
        default_weeks: int = 12,
    ) -> None:
        self.metrics = metrics_repo
        self.entries = entry_repo
        self.sets = set_repo
        self.exercise_targets = exercise_target_repo
        self.async_metrics = async_metrics_repo
        self.timezone = timezone
        self.default_weeks = default_weeks

    def _window(self, weeks, today: datetime.date | None) -> dict:
        today = today or datetime.date.fromisoformat(SydneyTime.today(self.timezone))
        return page_window(weeks, today, self.default_weeks)

    @staticmethod
    def _grain(grain: str | None) -> str:
        grain = grain or "week"
        if grain not in ("week", "day"):
            raise ValidationError("grain must be week or day")
        return grain

    def analytics(
        self,
        vault_id: int,
        kind: str = "muscles",
        weeks=None,
        grain: str = "week",
        q: str = "",
        sort: str | None = None,
        selected=None,
        today: datetime.date | None = None,
    ) -> dict:
        _check_kind(kind)
        grain = self._grain(grain)
        window = self._window(weeks, today)
        rows = self.metrics.fetch_metrics(
            kind, vault_id, window["from"], window["to"], grain
        )
        result = summarize(rows, kind, q, sort, selected, grain)
        result.update(window=window, grain=grain)
        return result

    async def analytics_async(
        self,
        vault_id: int,
        kind: str = "muscles",
        weeks=None,
        grain: str = "week",
        q: str = "",
        sort: str | None = None,
        selected=None,
        today: datetime.date | None = None,
    ) -> dict:
        if self.async_metrics is None:
            return self.analytics(vault_id, kind, weeks, grain, q, sort, selected, today)
        _check_kind(kind)
        grain = self._grain(grain)
        window = self._window(weeks, today)
        rows = await self.async_metrics.fetch_metrics(
            kind, vault_id, window["from"], window["to"], grain
        )
        result = summarize(rows, kind, q, sort, selected, grain)
        result.update(window=window, grain=grain)
        return result

    def session_panels(
        self, vault_id: int, session_id: int, weighted: bool = True
    ) -> dict:
        """Done/planned sets per muscle and tendon for one session."""
        entries = self.entries.fetch_for_session(vault_id, session_id)
        sets = self.sets.fetch_for_session(vault_id, session_id)
        counts: dict[int, tuple[int, int]] = {}
        for entry in entries:
            own = [s for s in sets if s["entry_id"] == entry["id"]]
            done = sum(1 for s in own if SetRepository.is_logged(s))
            counts[entry["id"]] = (done, len(own))

        exercise_ids = sorted({e["exercise_id"] for e in entries})
        muscle_map = self.exercise_targets.fetch_for_exercises(
            vault_id, exercise_ids, ("MUSCLE_GROUP", "MUSCLE")
        )
        tendon_map = self.exercise_targets.fetch_for_exercises(
            vault_id, exercise_ids, ("TENDON",)
        )
        muscles = self._panel(
            entries,
            counts,
            muscle_map,
            lambda t: role_weight(t.get("role")) if weighted else 1.0,
        )
        isometric = [e for e in entries if e.get("modality") == Modality.ISOMETRIC.value]
        tendons = self._panel(
            isometric,
            counts,
            tendon_map,
            lambda t: confidence_weight(t.get("confidence")) if weighted else 1.0,
        )
        return {"weighted": weighted, "muscles": muscles, "tendons": tendons}

    @staticmethod
    def _panel(entries, counts, targets_by_exercise, weight) -> list[dict]:
        totals: dict[str, dict] = {}
        unassigned_done = unassigned_planned = 0
        for entry in entries:
            done, planned = counts.get(entry["id"], (0, 0))
            targets = targets_by_exercise.get(entry["exercise_id"], [])
            if not targets:
                unassigned_done += done
                unassigned_planned += planned
                continue
            for target in targets:
                w = weight(target)
                row = totals.setdefault(
                    target["target_name"],
                    {"name": target["target_name"], "done": 0.0, "planned": 0.0},
                )
                row["done"] += done * w
                row["planned"] += planned * w
        result = sorted(
            totals.values(), key=lambda r: (-r["done"], -r["planned"], r["name"])
        )
        if unassigned_planned > 0:
            result.append(
                {"name": "Unassigned", "done": float(unassigned_done), "planned": float(unassigned_planned)}
            )
        return result
