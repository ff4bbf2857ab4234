import asyncio
import logging
from typing import List

from fastapi import (
    APIRouter,
    Body,
    Depends,
    FastAPI,
    HTTPException,
    WebSocket,
    WebSocketDisconnect,
)

from algorithms import APP_TZ
from analytics_service import AnalyticsService
from config import APP_VERSION, revalidation_target
from db import (
    AnatomicalTargetRepository,
    AsyncMetricsRepository,
    ExerciseRepository,
    ExerciseTargetRepository,
    MetricsRepository,
    PersonalRecordRepository,
    SetRepository,
    SettingsRepository,
    TemplateItemRepository,
    TemplateRepository,
    VaultRepository,
    WorkoutEntryRepository,
    WorkoutSessionRepository,
)
from errors import InvariantError, NotFoundError
from exercise_service import AnatomyService, ExerciseService
from pr_service import PRService
from revalidation import PathRevalidator, WebhookNotifier
from session_service import SessionService
from template_service import TemplateService

logger = logging.getLogger(__name__)


def _http_error(e: ValueError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvariantError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


class VaultAPI:
    """Provides REST endpoints for vault-scoped workout logging."""

    def __init__(
        self,
        db_path: str = "workout.db",
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        logging.basicConfig(
            level=self.settings.get_text("log_level", "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        timezone = self.settings.get_text("timezone", APP_TZ)
        default_target_sets = self.settings.get_int("default_target_sets", 3)

        self.vaults = VaultRepository(db_path)
        self.exercises = ExerciseRepository(db_path)
        self.targets = AnatomicalTargetRepository(db_path)
        self.exercise_targets = ExerciseTargetRepository(db_path)
        self.templates = TemplateRepository(db_path)
        self.template_items = TemplateItemRepository(db_path)
        self.sessions = WorkoutSessionRepository(db_path)
        self.entries = WorkoutEntryRepository(db_path)
        self.sets = SetRepository(db_path)
        self.records = PersonalRecordRepository(db_path)
        self.metrics = MetricsRepository(db_path)
        self.async_metrics = AsyncMetricsRepository(db_path)
        self.watchers: list[WebSocket] = []
        self._loop: asyncio.AbstractEventLoop | None = None

        self.revalidator = PathRevalidator()
        self.revalidator.add_listener(self._on_stale)
        target = revalidation_target(self.settings.all_settings())
        if target is not None:
            self.revalidator.add_listener(WebhookNotifier(*target))

        self.pr_service = PRService(self.records)
        self.session_service = SessionService(
            self.sessions,
            self.entries,
            self.sets,
            self.templates,
            self.template_items,
            self.exercises,
            self.pr_service,
            self.revalidator,
            timezone=timezone,
            default_target_sets=default_target_sets,
            seed_sets=self.settings.get_int("seed_sets", 3),
            quick_log_template=self.settings.get_text("quick_log_template", "Quick Log"),
        )
        self.template_service = TemplateService(
            self.templates,
            self.template_items,
            self.exercises,
            self.revalidator,
            default_target_sets=default_target_sets,
        )
        self.exercise_service = ExerciseService(
            self.exercises, self.exercise_targets, self.targets, self.revalidator
        )
        self.anatomy = AnatomyService(self.targets)
        self.analytics = AnalyticsService(
            self.metrics,
            self.entries,
            self.sets,
            self.exercise_targets,
            async_metrics_repo=self.async_metrics,
            timezone=timezone,
            default_weeks=self.settings.get_int("analytics_weeks", 12),
        )
        self.app = FastAPI(
            title="Lift Vault API",
            description="REST API for vault-scoped workout logging and analytics",
            version=APP_VERSION,
        )
        self._setup_routes()

    async def _broadcast(self, event: dict) -> None:
        for ws in list(self.watchers):
            try:
                await ws.send_json(event)
            except (RuntimeError, WebSocketDisconnect):
                logger.warning("dropping websocket watcher after failed send")
                if ws in self.watchers:
                    self.watchers.remove(ws)

    def _broadcast_event(self, event: dict) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.create_task(self._broadcast(event))
        elif self._loop is not None and self._loop.is_running():
            # sync routes run in a worker thread; hand off to the socket loop
            asyncio.run_coroutine_threadsafe(self._broadcast(event), self._loop)

    def _on_stale(self, path: str) -> None:
        if self.watchers:
            self._broadcast_event({"type": "stale", "path": path})

    def _check_vault(self, vault_id: int) -> int:
        try:
            self.vaults.fetch_detail(vault_id)
        except NotFoundError as e:
            raise _http_error(e)
        return vault_id

    def _setup_routes(self) -> None:
        vault_router = APIRouter(
            prefix="/vaults/{vault_id}",
            dependencies=[Depends(self._check_vault)],
        )
        targets_router = APIRouter(prefix="/targets", tags=["Anatomy"])

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.vaults.fetch_all_vaults()
                return {"status": "ok", "version": APP_VERSION}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.websocket("/ws/updates")
        async def updates_socket(ws: WebSocket):
            await ws.accept()
            self._loop = asyncio.get_running_loop()
            self.watchers.append(ws)
            try:
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                logger.debug("websocket watcher disconnected")
            finally:
                if ws in self.watchers:
                    self.watchers.remove(ws)

        # vaults

        @self.app.post("/vaults")
        def create_vault(name: str):
            try:
                return {"id": self.vaults.create(name)}
            except ValueError as e:
                raise _http_error(e)

        @self.app.get("/vaults")
        def list_vaults():
            return self.vaults.fetch_all_vaults()

        @self.app.get("/vaults/{vault_id}")
        def get_vault(vault_id: int):
            try:
                return self.vaults.fetch_detail(vault_id)
            except ValueError as e:
                raise _http_error(e)

        # settings

        @self.app.get("/settings")
        def get_settings():
            data = self.settings.all_settings()
            data.pop("revalidate_secret", None)
            return data

        @self.app.post("/settings/{key}")
        def update_setting(key: str, value: str):
            try:
                self.settings.set_text(key, value)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        # anatomy catalog

        @targets_router.get("")
        def list_targets(kind: str = None):
            return self.anatomy.list_targets(kind)

        @targets_router.get("/{slug}")
        def get_target(slug: str):
            try:
                return self.anatomy.get_by_slug(slug)
            except ValueError as e:
                raise _http_error(e)

        @targets_router.post("")
        def create_target(kind: str, name: str, slug: str, parent_id: int = None):
            try:
                return {"id": self.anatomy.create_target(kind, name, slug, parent_id)}
            except ValueError as e:
                raise _http_error(e)

        @targets_router.put("/{target_id}")
        def update_target(
            target_id: int, name: str = None, slug: str = None, kind: str = None
        ):
            try:
                self.anatomy.update_target(target_id, name=name, slug=slug, kind=kind)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @targets_router.delete("/{target_id}")
        def delete_target(target_id: int):
            try:
                self.anatomy.delete_target(target_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        # exercises

        @vault_router.get("/exercises", tags=["Exercises"])
        def list_exercises(vault_id: int, active_only: bool = False):
            return self.exercise_service.list_exercises(vault_id, active_only)

        @vault_router.get("/exercises/page", tags=["Exercises"])
        def page_exercises(
            vault_id: int,
            page: int = 1,
            page_size: int = 50,
            q: str = "",
            include_archived: bool = False,
        ):
            return self.exercise_service.page(
                vault_id, page, page_size, include_archived, q
            )

        @vault_router.get("/exercises/{exercise_id}", tags=["Exercises"])
        def get_exercise(vault_id: int, exercise_id: int):
            row = self.exercise_service.get(vault_id, exercise_id)
            if row is None:
                raise HTTPException(
                    status_code=404, detail="Exercise not found in this vault."
                )
            row["targets"] = self.exercise_service.targets_for(vault_id, exercise_id)
            return row

        @vault_router.post("/exercises", tags=["Exercises"])
        def create_exercise(
            vault_id: int,
            name: str,
            modality: str = "REPS",
            uses_bodyweight: bool = False,
        ):
            try:
                eid = self.exercise_service.create(
                    vault_id, name, modality, uses_bodyweight
                )
            except ValueError as e:
                raise _http_error(e)
            return {"id": eid}

        @vault_router.put("/exercises/{exercise_id}", tags=["Exercises"])
        def update_exercise(
            vault_id: int,
            exercise_id: int,
            name: str,
            modality: str = "REPS",
            uses_bodyweight: bool = False,
        ):
            try:
                self.exercise_service.update(
                    vault_id, exercise_id, name, modality, uses_bodyweight
                )
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @vault_router.post("/exercises/{exercise_id}/archive", tags=["Exercises"])
        def archive_exercise(vault_id: int, exercise_id: int):
            try:
                self.exercise_service.archive(vault_id, exercise_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "archived"}

        @vault_router.post("/exercises/{exercise_id}/unarchive", tags=["Exercises"])
        def unarchive_exercise(vault_id: int, exercise_id: int):
            try:
                self.exercise_service.unarchive(vault_id, exercise_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "active"}

        @vault_router.get("/exercises/{exercise_id}/usage", tags=["Exercises"])
        def exercise_usage(vault_id: int, exercise_id: int):
            try:
                return self.exercise_service.usage(vault_id, exercise_id)
            except ValueError as e:
                raise _http_error(e)

        @vault_router.delete("/exercises/{exercise_id}", tags=["Exercises"])
        def delete_exercise(vault_id: int, exercise_id: int):
            try:
                self.exercise_service.delete(vault_id, exercise_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @vault_router.get("/exercises/{exercise_id}/targets", tags=["Exercises"])
        def exercise_targets(vault_id: int, exercise_id: int):
            return self.exercise_service.targets_for(vault_id, exercise_id)

        @vault_router.put("/exercises/{exercise_id}/targets", tags=["Exercises"])
        def set_exercise_targets(
            vault_id: int, exercise_id: int, picks: List[dict] = Body(...)
        ):
            try:
                return self.exercise_service.set_targets(vault_id, exercise_id, picks)
            except (KeyError, TypeError) as e:
                raise HTTPException(status_code=400, detail=f"invalid pick: {e}")
            except ValueError as e:
                raise _http_error(e)

        @vault_router.get("/tendons", tags=["Anatomy"])
        def tendon_insights(vault_id: int):
            return self.anatomy.tendon_insights(vault_id)

        @vault_router.get("/tendons/{target_id}", tags=["Anatomy"])
        def tendon_exercises(vault_id: int, target_id: int):
            try:
                return self.anatomy.exercises_for_tendon(vault_id, target_id)
            except ValueError as e:
                raise _http_error(e)

        # templates

        @vault_router.get("/templates", tags=["Templates"])
        def list_templates(vault_id: int):
            return self.template_service.previews(vault_id)

        @vault_router.post("/templates", tags=["Templates"])
        def create_template(vault_id: int, name: str = ""):
            try:
                return {"id": self.template_service.create_template(vault_id, name)}
            except ValueError as e:
                raise _http_error(e)

        @vault_router.get("/templates/{template_id}", tags=["Templates"])
        def template_editor(vault_id: int, template_id: int):
            try:
                return self.template_service.editor_data(vault_id, template_id)
            except ValueError as e:
                raise _http_error(e)

        @vault_router.put("/templates/{template_id}", tags=["Templates"])
        def rename_template(vault_id: int, template_id: int, name: str = ""):
            try:
                self.template_service.rename_template(vault_id, template_id, name)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @vault_router.post("/templates/{template_id}/items", tags=["Templates"])
        def add_template_item(
            vault_id: int, template_id: int, exercise_id: int, target_sets: int = None
        ):
            try:
                iid = self.template_service.add_existing_exercise(
                    vault_id, template_id, exercise_id, target_sets
                )
            except ValueError as e:
                raise _http_error(e)
            return {"id": iid}

        @vault_router.post("/templates/{template_id}/items/new", tags=["Templates"])
        def add_new_template_exercise(
            vault_id: int,
            template_id: int,
            name: str,
            modality: str = "REPS",
            uses_bodyweight: bool = False,
            target_sets: int = None,
        ):
            try:
                return self.template_service.create_exercise_and_add(
                    vault_id, template_id, name, modality, uses_bodyweight, target_sets
                )
            except ValueError as e:
                raise _http_error(e)

        @vault_router.put("/templates/{template_id}/items/{item_id}", tags=["Templates"])
        def set_item_target_sets(
            vault_id: int, template_id: int, item_id: int, target_sets: str = None
        ):
            try:
                self.template_service.set_target_sets(
                    vault_id, template_id, item_id, target_sets
                )
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @vault_router.delete(
            "/templates/{template_id}/items/{item_id}", tags=["Templates"]
        )
        def remove_template_item(vault_id: int, template_id: int, item_id: int):
            try:
                self.template_service.remove_item(vault_id, template_id, item_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @vault_router.post(
            "/templates/{template_id}/items/{item_id}/move", tags=["Templates"]
        )
        def move_template_item(
            vault_id: int, template_id: int, item_id: int, direction: str
        ):
            try:
                moved = self.template_service.move_item(
                    vault_id, template_id, item_id, direction
                )
            except ValueError as e:
                raise _http_error(e)
            return {"moved": moved}

        # sessions

        @vault_router.post("/sessions", tags=["Sessions"])
        def start_session(vault_id: int, template_id: int, day: str = None):
            try:
                sid = self.session_service.start_session(vault_id, template_id, day)
            except ValueError as e:
                raise _http_error(e)
            return {"id": sid}

        @vault_router.post("/sessions/late", tags=["Sessions"])
        def late_log(vault_id: int, template_id: int, day: str):
            try:
                sid = self.session_service.late_log(vault_id, template_id, day)
            except ValueError as e:
                raise _http_error(e)
            return {"id": sid}

        @vault_router.get("/sessions", tags=["Sessions"])
        def month_summaries(vault_id: int, year: int, month: int):
            try:
                return self.session_service.month_summaries(vault_id, year, month)
            except ValueError as e:
                raise _http_error(e)

        @vault_router.get("/sessions/current", tags=["Sessions"])
        def current_session(vault_id: int):
            return self.session_service.current_session(vault_id)

        @vault_router.get("/calendar", tags=["Sessions"])
        def calendar(
            vault_id: int,
            year: int,
            month: int,
            template_id: int = None,
            modality: str = None,
            only_pr: bool = False,
        ):
            try:
                return self.session_service.calendar(
                    vault_id, year, month, template_id, modality, only_pr
                )
            except ValueError as e:
                raise _http_error(e)

        @vault_router.get("/sessions/{session_id}", tags=["Sessions"])
        def session_detail(vault_id: int, session_id: int):
            try:
                return self.session_service.session_detail(vault_id, session_id)
            except ValueError as e:
                raise _http_error(e)

        @vault_router.delete("/sessions/{session_id}", tags=["Sessions"])
        def discard_session(vault_id: int, session_id: int):
            try:
                self.session_service.discard_session(vault_id, session_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @vault_router.get("/sessions/{session_id}/progress", tags=["Sessions"])
        def session_progress(vault_id: int, session_id: int):
            return {"pct": self.session_service.progress_pct(vault_id, session_id)}

        @vault_router.get("/sessions/{session_id}/panels", tags=["Analytics"])
        def session_panels(vault_id: int, session_id: int, weighted: bool = True):
            return self.analytics.session_panels(vault_id, session_id, weighted)

        @vault_router.post("/sessions/{session_id}/entries", tags=["Sessions"])
        def add_entry(
            vault_id: int, session_id: int, exercise_id: int, seed_sets: int = None
        ):
            try:
                eid = self.session_service.add_exercise(
                    vault_id, session_id, exercise_id, seed_sets
                )
            except ValueError as e:
                raise _http_error(e)
            return {"id": eid}

        @vault_router.delete(
            "/sessions/{session_id}/entries/{entry_id}", tags=["Sessions"]
        )
        def remove_entry(vault_id: int, session_id: int, entry_id: int):
            try:
                self.session_service.remove_entry(vault_id, session_id, entry_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @vault_router.post(
            "/sessions/{session_id}/entries/{entry_id}/move", tags=["Sessions"]
        )
        def move_entry(vault_id: int, session_id: int, entry_id: int, direction: str):
            try:
                moved = self.session_service.move_entry(
                    vault_id, session_id, entry_id, direction
                )
            except ValueError as e:
                raise _http_error(e)
            return {"moved": moved}

        @vault_router.post(
            "/sessions/{session_id}/entries/{entry_id}/sets", tags=["Sessions"]
        )
        def add_set(vault_id: int, session_id: int, entry_id: int):
            try:
                sid = self.session_service.add_set(vault_id, session_id, entry_id)
            except ValueError as e:
                raise _http_error(e)
            return {"id": sid}

        @vault_router.put("/sessions/{session_id}/sets/{set_id}", tags=["Sessions"])
        def save_set(
            vault_id: int,
            session_id: int,
            set_id: int,
            reps: str = None,
            weight_kg: str = None,
            duration_sec: str = None,
        ):
            try:
                return self.session_service.save_set(
                    vault_id, session_id, set_id, reps, weight_kg, duration_sec
                )
            except ValueError as e:
                raise _http_error(e)

        @vault_router.post(
            "/sessions/{session_id}/sets/{set_id}/clear", tags=["Sessions"]
        )
        def clear_set(vault_id: int, session_id: int, set_id: int):
            try:
                self.session_service.clear_set(vault_id, session_id, set_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "cleared"}

        @vault_router.delete("/sessions/{session_id}/sets/{set_id}", tags=["Sessions"])
        def delete_set(vault_id: int, session_id: int, set_id: int):
            try:
                self.session_service.delete_set(vault_id, session_id, set_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @vault_router.put("/sessions/{session_id}/body_weight", tags=["Sessions"])
        def set_body_weight(vault_id: int, session_id: int, body_weight_kg: str = None):
            try:
                value = self.session_service.set_body_weight(
                    vault_id, session_id, body_weight_kg
                )
            except ValueError as e:
                raise _http_error(e)
            return {"body_weight_kg": value}

        @vault_router.put("/sessions/{session_id}/notes", tags=["Sessions"])
        def set_notes(vault_id: int, session_id: int, notes: str = None):
            try:
                self.session_service.set_notes(vault_id, session_id, notes)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @vault_router.put("/sessions/{session_id}/start", tags=["Sessions"])
        def set_start(vault_id: int, session_id: int, time: str = None):
            try:
                self.session_service.set_start_time(vault_id, session_id, time)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @vault_router.delete("/sessions/{session_id}/start", tags=["Sessions"])
        def clear_start(vault_id: int, session_id: int):
            try:
                self.session_service.clear_start_time(vault_id, session_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "cleared"}

        @vault_router.put("/sessions/{session_id}/finish", tags=["Sessions"])
        def set_finish(vault_id: int, session_id: int, time: str = None):
            try:
                self.session_service.set_finish_time(vault_id, session_id, time)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "updated"}

        @vault_router.delete("/sessions/{session_id}/finish", tags=["Sessions"])
        def clear_finish(vault_id: int, session_id: int):
            try:
                self.session_service.clear_finish_time(vault_id, session_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "cleared"}

        @vault_router.post("/quick_log", tags=["Sessions"])
        def quick_log(
            vault_id: int,
            exercise_id: int,
            reps: str = None,
            weight_kg: str = None,
            duration_sec: str = None,
            day: str = None,
        ):
            try:
                return self.session_service.quick_log(
                    vault_id, exercise_id, reps, weight_kg, duration_sec, day
                )
            except ValueError as e:
                raise _http_error(e)

        # adherence, records, analytics

        @vault_router.get("/adherence", tags=["Analytics"])
        def adherence(vault_id: int):
            return self.session_service.adherence(vault_id)

        @vault_router.get("/trained_days", tags=["Analytics"])
        def trained_days(vault_id: int, start_date: str, end_date: str):
            return sorted(
                self.session_service.trained_days(vault_id, start_date, end_date)
            )

        @vault_router.get("/prs", tags=["Analytics"])
        def personal_records(vault_id: int, exercise_id: int = None):
            return self.pr_service.records(vault_id, exercise_id)

        @vault_router.get("/pr_events", tags=["Analytics"])
        def pr_events(vault_id: int, exercise_id: int = None):
            return self.pr_service.events(vault_id, exercise_id)

        @vault_router.get("/analytics", tags=["Analytics"])
        async def analytics(
            vault_id: int,
            kind: str = "muscles",
            weeks: int = None,
            grain: str = "week",
            q: str = "",
            sort: str = None,
            selected: int = None,
        ):
            try:
                return await self.analytics.analytics_async(
                    vault_id, kind, weeks, grain, q, sort, selected
                )
            except ValueError as e:
                raise _http_error(e)

        self.app.include_router(targets_router)
        self.app.include_router(vault_router)


api = VaultAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
