from __future__ import annotations

import datetime
import logging
import math

from algorithms import APP_TZ, Adherence, FormParsing, SydneyTime
from compensation import CompensationLog
from db import (
    ExerciseRepository,
    Modality,
    SetRepository,
    TemplateItemRepository,
    TemplateRepository,
    WorkoutEntryRepository,
    WorkoutSessionRepository,
)
from errors import InvariantError, NotFoundError, ValidationError
from pr_service import PRService
from revalidation import PathRevalidator, session_path, sessions_path, vault_path

logger = logging.getLogger(__name__)

# Out-of-range order value used while two entries trade places.
SORT_SENTINEL = -2147483648
QUICK_LOG_SORT_ORDER = 9999
BODY_WEIGHT_RANGE = (20.0, 250.0)


class SessionService:
    """Session instantiation, set logging and lifecycle mutations for a vault."""

    def __init__(
        self,
        session_repo: WorkoutSessionRepository,
        entry_repo: WorkoutEntryRepository,
        set_repo: SetRepository,
        template_repo: TemplateRepository,
        template_item_repo: TemplateItemRepository,
        exercise_repo: ExerciseRepository,
        pr_service: PRService,
        revalidator: PathRevalidator | None = None,
        timezone: str = APP_TZ,
        default_target_sets: int = 3,
        seed_sets: int = 3,
        quick_log_template: str = "Quick Log",
    ) -> None:
        self.sessions = session_repo
        self.entries = entry_repo
        self.sets = set_repo
        self.templates = template_repo
        self.template_items = template_item_repo
        self.exercises = exercise_repo
        self.prs = pr_service
        self.revalidator = revalidator or PathRevalidator()
        self.timezone = timezone
        self.default_target_sets = default_target_sets
        self.seed_sets = seed_sets
        self.quick_log_template = quick_log_template

    # ------------------------------------------------------------------
    # helpers

    def _touch(self, vault_id: int, session_id: int | None = None) -> None:
        paths = [sessions_path(vault_id)]
        if session_id is not None:
            paths.append(session_path(vault_id, session_id))
        self.revalidator.mark_stale(*paths)

    def _day(self, day: str | None) -> str:
        if not day:
            return SydneyTime.today(self.timezone)
        try:
            return SydneyTime.validate_ymd(day)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    @staticmethod
    def _parse_values(reps, weight_kg, duration_sec):
        try:
            return FormParsing.parse_set_values(reps, weight_kg, duration_sec)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    @staticmethod
    def _apply_modality(
        modality: str,
        reps: int | None,
        weight_kg: float | None,
        duration_sec: int | None,
        current: dict | None = None,
    ) -> tuple[int | None, float | None, int | None]:
        """Merge parsed input into the stored values for the exercise's modality.

        ``None`` keeps the current value; fields of the other modality are
        always cleared.
        """
        current = current or {}
        if reps is not None and duration_sec is not None:
            raise ValidationError("Set cannot have both reps and duration.")
        if Modality(modality) is Modality.REPS:
            if duration_sec is not None:
                raise ValidationError("Duration not allowed for REPS modality.")
            return (
                reps if reps is not None else current.get("reps"),
                weight_kg if weight_kg is not None else current.get("weight_kg"),
                None,
            )
        if reps is not None:
            raise ValidationError("Reps not allowed for ISOMETRIC modality.")
        return (
            None,
            None,
            duration_sec if duration_sec is not None else current.get("duration_sec"),
        )

    @staticmethod
    def _parse_body_weight(value) -> float | None:
        message = "body_weight_kg must be between 20 and 250 (or null)."
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, bool):
            raise ValidationError(message)
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(message) from e
        low, high = BODY_WEIGHT_RANGE
        if not math.isfinite(number) or number < low or number > high:
            raise ValidationError(message)
        return number

    def _local_instant(self, session: dict, time_hm: str) -> str:
        try:
            return SydneyTime.local_to_utc_iso(
                session["session_date"], time_hm, self.timezone
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

    # ------------------------------------------------------------------
    # instantiation

    def create_session_from_template(
        self,
        vault_id: int,
        template_id: int,
        session_date: str,
        started_at: str | None = None,
        finished_at: str | None = None,
        notes: str | None = None,
        body_weight_kg: float | None = None,
        default_target_sets: int | None = None,
    ) -> int:
        """Snapshot a template into a new session and return its id.

        Every entry gets ``target_sets`` unlogged sets (or the default when
        the item leaves it blank) numbered from 1. Rows written before a
        failure are removed again before the error is re-raised.
        """
        if not template_id:
            raise ValidationError("template_id is required")
        if not session_date:
            raise ValidationError("session_date is required")
        session_date = self._day(session_date)
        body_weight_kg = self._parse_body_weight(body_weight_kg)
        fallback = (
            self.default_target_sets
            if default_target_sets is None
            else default_target_sets
        )

        self.templates.fetch_detail(vault_id, template_id)
        plan: list[tuple[int, int]] = []
        for item in self.template_items.fetch_for_template(vault_id, template_id):
            count = item["target_sets"] if item["target_sets"] is not None else fallback
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValidationError("target_sets must be a non-negative integer")
            plan.append((item["exercise_id"], count))

        with CompensationLog(f"instantiate template {template_id}") as log:
            session_id = log.run(
                "insert session",
                lambda: self.sessions.create(
                    vault_id,
                    template_id,
                    session_date,
                    started_at=started_at,
                    finished_at=finished_at,
                    notes=notes,
                    body_weight_kg=body_weight_kg,
                ),
                lambda sid: self.sessions.delete(vault_id, sid),
            )
            for position, (exercise_id, count) in enumerate(plan, start=1):
                entry_id = log.run(
                    f"insert entry {position}",
                    lambda: self.entries.add(vault_id, session_id, exercise_id, position),
                    lambda eid: self.entries.delete(vault_id, eid),
                )
                for set_index in range(1, count + 1):
                    log.run(
                        f"insert set {position}.{set_index}",
                        lambda: self.sets.add(vault_id, entry_id, set_index),
                        lambda set_id: self.sets.delete(vault_id, set_id),
                    )

        logger.info(
            "created session %s from template %s on %s (%d entries)",
            session_id,
            template_id,
            session_date,
            len(plan),
        )
        self.revalidator.mark_stale(sessions_path(vault_id), vault_path(vault_id))
        return session_id

    def start_session(
        self, vault_id: int, template_id: int, day: str | None = None
    ) -> int:
        return self.create_session_from_template(
            vault_id,
            template_id,
            self._day(day),
            started_at=SydneyTime.now_iso(),
        )

    def late_log(self, vault_id: int, template_id: int, day: str) -> int:
        if not day:
            raise ValidationError("day must be YYYY-MM-DD")
        return self.create_session_from_template(
            vault_id,
            template_id,
            self._day(day),
            finished_at=SydneyTime.now_iso(),
        )

    # ------------------------------------------------------------------
    # sets

    def save_set(
        self,
        vault_id: int,
        session_id: int,
        set_id: int,
        reps=None,
        weight_kg=None,
        duration_sec=None,
    ) -> dict:
        reps, weight_kg, duration_sec = self._parse_values(reps, weight_kg, duration_sec)
        owner = self.sets.fetch_owner(vault_id, session_id, set_id)
        if owner is None:
            raise NotFoundError("Set not found for this session.")
        new_reps, new_weight, new_duration = self._apply_modality(
            owner["modality"], reps, weight_kg, duration_sec, owner
        )
        self.sets.update_values(vault_id, set_id, new_reps, new_weight, new_duration)

        prs: list[str] = []
        if new_reps is not None or new_weight is not None or new_duration is not None:
            prs = self.prs.maybe_record(
                vault_id,
                session_id,
                set_id,
                owner["exercise_id"],
                owner["modality"],
                new_reps,
                new_weight,
                new_duration,
            )
        self._touch(vault_id, session_id)
        return {
            "id": set_id,
            "reps": new_reps,
            "weight_kg": new_weight,
            "duration_sec": new_duration,
            "prs": prs,
        }

    def clear_set(self, vault_id: int, session_id: int, set_id: int) -> None:
        if self.sets.fetch_owner(vault_id, session_id, set_id) is None:
            raise NotFoundError("Set not found for this session.")
        self.sets.update_values(vault_id, set_id, None, None, None)
        self._touch(vault_id, session_id)

    def add_set(self, vault_id: int, session_id: int, entry_id: int) -> int:
        self.entries.fetch_detail(vault_id, session_id, entry_id)
        set_id = self.sets.add(vault_id, entry_id)
        self._touch(vault_id, session_id)
        return set_id

    def delete_set(self, vault_id: int, session_id: int, set_id: int) -> None:
        row = self.sets.fetch_detail(vault_id, set_id)
        if self.sets.fetch_owner(vault_id, session_id, set_id) is None:
            raise NotFoundError("Set not found for this session.")
        if SetRepository.is_logged(row):
            raise InvariantError("Cannot delete a logged set. Clear it first.")
        self.sets.delete(vault_id, set_id)
        self._touch(vault_id, session_id)

    # ------------------------------------------------------------------
    # entries

    def add_exercise(
        self,
        vault_id: int,
        session_id: int,
        exercise_id: int,
        seed_sets: int | None = None,
    ) -> int:
        if not self.sessions.exists(vault_id, session_id):
            raise NotFoundError("Session not found.")
        self.exercises.fetch_detail(vault_id, exercise_id)
        count = self.seed_sets if seed_sets is None else seed_sets
        if count < 0:
            raise ValidationError("seed_sets must be a non-negative integer")
        entry_id = self.entries.add(vault_id, session_id, exercise_id)
        self.sets.add_planned(vault_id, entry_id, count)
        logger.info("added exercise %s to session %s", exercise_id, session_id)
        self._touch(vault_id, session_id)
        return entry_id

    def remove_entry(self, vault_id: int, session_id: int, entry_id: int) -> None:
        self.entries.fetch_detail(vault_id, session_id, entry_id)
        sets = self.sets.fetch_for_entry(vault_id, entry_id)
        if any(SetRepository.is_logged(s) for s in sets):
            raise InvariantError(
                "Cannot remove an exercise that has logged sets. Clear those sets first."
            )
        self.sets.delete_for_entries(vault_id, [entry_id])
        self.entries.delete(vault_id, entry_id)
        self._touch(vault_id, session_id)

    def move_entry(
        self, vault_id: int, session_id: int, entry_id: int, direction: str
    ) -> bool:
        """Swap an entry with its neighbour. Returns ``False`` at the edges."""
        direction = (direction or "").upper()
        if direction not in ("UP", "DOWN"):
            raise ValidationError("direction must be UP or DOWN")
        entry = self.entries.fetch_detail(vault_id, session_id, entry_id)
        neighbor = self.entries.neighbor(
            vault_id, session_id, entry["sort_order"], direction
        )
        if neighbor is None:
            return False
        self.entries.set_sort_order(vault_id, session_id, entry_id, SORT_SENTINEL)
        self.entries.set_sort_order(
            vault_id, session_id, neighbor["id"], entry["sort_order"]
        )
        self.entries.set_sort_order(
            vault_id, session_id, entry_id, neighbor["sort_order"]
        )
        self._touch(vault_id, session_id)
        return True

    # ------------------------------------------------------------------
    # session fields

    def set_body_weight(self, vault_id: int, session_id: int, value) -> float | None:
        body_weight = self._parse_body_weight(value)
        self.sessions.set_body_weight(vault_id, session_id, body_weight)
        self._touch(vault_id, session_id)
        return body_weight

    def set_notes(self, vault_id: int, session_id: int, notes: str | None) -> None:
        notes = (notes or "").strip() or None
        self.sessions.set_notes(vault_id, session_id, notes)
        self._touch(vault_id, session_id)

    def set_start_time(self, vault_id: int, session_id: int, time_hm: str | None) -> None:
        time_hm = (time_hm or "").strip()
        if not time_hm:
            return
        session = self.sessions.fetch_detail(vault_id, session_id)
        started = self._local_instant(session, time_hm)
        patch: dict = {"started_at": started}
        finished = session["finished_at"]
        if finished and SydneyTime.parse_iso(started) > SydneyTime.parse_iso(finished):
            patch["finished_at"] = None
        self.sessions.update_times(vault_id, session_id, **patch)
        self._touch(vault_id, session_id)

    def set_finish_time(
        self, vault_id: int, session_id: int, time_hm: str | None
    ) -> None:
        time_hm = (time_hm or "").strip()
        if not time_hm:
            return
        session = self.sessions.fetch_detail(vault_id, session_id)
        finished = self._local_instant(session, time_hm)
        started = session["started_at"]
        if started and SydneyTime.parse_iso(finished) < SydneyTime.parse_iso(started):
            raise ValidationError(
                "End time cannot be earlier than start time (fixed session day)."
            )
        self.sessions.update_times(vault_id, session_id, finished_at=finished)
        self._touch(vault_id, session_id)

    def clear_start_time(self, vault_id: int, session_id: int) -> None:
        self.sessions.update_times(vault_id, session_id, started_at=None)
        self._touch(vault_id, session_id)

    def clear_finish_time(self, vault_id: int, session_id: int) -> None:
        self.sessions.update_times(vault_id, session_id, finished_at=None)
        self._touch(vault_id, session_id)

    def discard_session(self, vault_id: int, session_id: int) -> None:
        if not self.sessions.exists(vault_id, session_id):
            raise NotFoundError("Session not found.")
        entry_ids = self.entries.ids_for_session(vault_id, session_id)
        self.sets.delete_for_entries(vault_id, entry_ids)
        self.entries.delete_for_session(vault_id, session_id)
        self.sessions.delete(vault_id, session_id)
        logger.info("discarded session %s (%d entries)", session_id, len(entry_ids))
        self.revalidator.mark_stale(sessions_path(vault_id), vault_path(vault_id))

    # ------------------------------------------------------------------
    # quick log

    def _ensure_quick_log_template(self, vault_id: int) -> int:
        template_id = self.templates.find_by_name(vault_id, self.quick_log_template)
        if template_id is None:
            template_id = self.templates.create(
                vault_id, self.quick_log_template, QUICK_LOG_SORT_ORDER
            )
        return template_id

    def quick_log(
        self,
        vault_id: int,
        exercise_id: int,
        reps=None,
        weight_kg=None,
        duration_sec=None,
        day: str | None = None,
    ) -> dict:
        day = self._day(day)
        exercise = self.exercises.fetch_detail(vault_id, exercise_id)
        reps, weight_kg, duration_sec = self._apply_modality(
            exercise["modality"], *self._parse_values(reps, weight_kg, duration_sec)
        )
        if reps is None and weight_kg is None and duration_sec is None:
            raise ValidationError("Nothing to log.")

        session = self.sessions.find_unfinished(vault_id, day)
        if session is not None:
            session_id = session["id"]
        else:
            session_id = self.create_session_from_template(
                vault_id,
                self._ensure_quick_log_template(vault_id),
                day,
                started_at=SydneyTime.now_iso(),
            )

        entry_id = self.entries.find_for_exercise(vault_id, session_id, exercise_id)
        if entry_id is None:
            entry_id = self.entries.add(vault_id, session_id, exercise_id)
        set_id = self.sets.add(vault_id, entry_id, None, reps, weight_kg, duration_sec)
        prs = self.prs.maybe_record(
            vault_id,
            session_id,
            set_id,
            exercise_id,
            exercise["modality"],
            reps,
            weight_kg,
            duration_sec,
        )
        self._touch(vault_id, session_id)
        return {
            "session_id": session_id,
            "entry_id": entry_id,
            "set_id": set_id,
            "prs": prs,
        }

    # ------------------------------------------------------------------
    # queries

    def current_session(self, vault_id: int) -> dict | None:
        return self.sessions.find_unfinished(vault_id)

    def progress_pct(self, vault_id: int, session_id: int) -> int:
        done, total = self.sets.progress(vault_id, session_id)
        if total == 0:
            return 0
        return max(0, min(100, round(done / total * 100)))

    def session_detail(self, vault_id: int, session_id: int) -> dict:
        session = self.sessions.fetch_detail(vault_id, session_id)
        entries = self.entries.fetch_for_session(vault_id, session_id)
        by_entry: dict[int, list[dict]] = {e["id"]: [] for e in entries}
        for s in self.sets.fetch_for_session(vault_id, session_id):
            by_entry.setdefault(s["entry_id"], []).append(s)
        for entry in entries:
            entry["sets"] = by_entry.get(entry["id"], [])
        session["entries"] = entries
        session["progress_pct"] = self.progress_pct(vault_id, session_id)
        if session["template_id"] is not None:
            try:
                session["template_name"] = self.templates.fetch_detail(
                    vault_id, session["template_id"]
                )["name"]
            except NotFoundError:
                session["template_name"] = None
        else:
            session["template_name"] = None
        return session

    @staticmethod
    def pct_done(summary: dict) -> int:
        planned = summary.get("planned_sets") or 0
        if not planned:
            return 0
        return max(0, min(100, round(summary["logged_sets"] / planned * 100)))

    def month_summaries(self, vault_id: int, year: int, month: int) -> list[dict]:
        if month < 1 or month > 12:
            raise ValidationError("month must be 1-12")
        first, last = SydneyTime.month_bounds(year, month)
        rows = self.sessions.summaries(vault_id, first, last)
        for row in rows:
            row["pct_done"] = self.pct_done(row)
        return rows

    def calendar(
        self,
        vault_id: int,
        year: int,
        month: int,
        template_id: int | None = None,
        modality: str | None = None,
        only_pr: bool = False,
    ) -> dict[str, list[dict]]:
        """Month summaries grouped by day; days left empty by the filters are dropped."""
        if modality and modality != "ALL":
            modality = Modality(modality).value
        else:
            modality = None
        grouped: dict[str, list[dict]] = {}
        for row in self.month_summaries(vault_id, year, month):
            if template_id is not None and row["template_id"] != template_id:
                continue
            if modality is not None and modality not in row["modalities"]:
                continue
            if only_pr and not row["has_pr"]:
                continue
            grouped.setdefault(row["session_date"], []).append(row)
        return grouped

    def trained_days(self, vault_id: int, start_date: str, end_date: str) -> set[str]:
        return self.sessions.trained_days(vault_id, start_date, end_date)

    def adherence(self, vault_id: int, now: datetime.datetime | None = None) -> dict:
        now = now or datetime.datetime.now(datetime.timezone.utc)
        today = datetime.date.fromisoformat(SydneyTime.day_key(now, self.timezone))
        start = (today - datetime.timedelta(days=365)).isoformat()
        days = self.trained_days(vault_id, start, today.isoformat())
        week_start = SydneyTime.week_start(now, self.timezone)
        return {
            "streak": Adherence.compute_streak(days, now, timezone=self.timezone),
            "week_count": Adherence.compute_week_count(days, week_start),
            "week_start": week_start.isoformat(),
        }
