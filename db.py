import sqlite3
import aiosqlite
import csv
import os
import json
from contextlib import contextmanager, asynccontextmanager
from enum import Enum
from typing import List, Tuple, Optional, Iterable

from config import YamlConfig
from errors import NotFoundError, ValidationError
from settings_schema import validate_settings, SettingsSchema


class Modality(str, Enum):
    REPS = "REPS"
    ISOMETRIC = "ISOMETRIC"


MODALITIES = tuple(m.value for m in Modality)
TARGET_KINDS = ("MUSCLE_GROUP", "MUSCLE", "TENDON")
TARGET_ROLES = ("PRIMARY", "SECONDARY", "STABILIZER")
CONFIDENCES = ("HIGH", "MED", "LOW")
PR_TYPES = ("REPS_MAX_WEIGHT", "REPS_MAX_REPS", "ISO_MAX_DURATION")

# Monday of the week containing session_date.
_WEEK_START_SQL = (
    "date(session_date, '-' || ((CAST(strftime('%w', session_date) AS INTEGER) + 6) % 7) || ' days')"
)
_LOGGED_SQL = "(s.reps IS NOT NULL OR s.weight_kg IS NOT NULL OR s.duration_sec IS NOT NULL)"


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "vaults": (
            """CREATE TABLE vaults (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );""",
            ["id", "name", "created_at"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    modality TEXT NOT NULL DEFAULT 'REPS'
                        CHECK (modality IN ('REPS', 'ISOMETRIC')),
                    uses_bodyweight INTEGER NOT NULL DEFAULT 0,
                    archived_at TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(vault_id) REFERENCES vaults(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "vault_id",
                "name",
                "modality",
                "uses_bodyweight",
                "archived_at",
                "created_at",
            ],
        ),
        "anatomical_targets": (
            """CREATE TABLE anatomical_targets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    parent_id INTEGER,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(parent_id) REFERENCES anatomical_targets(id) ON DELETE SET NULL
                );""",
            ["id", "kind", "name", "slug", "parent_id", "created_at"],
        ),
        "exercise_targets": (
            """CREATE TABLE exercise_targets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    target_id INTEGER NOT NULL,
                    role TEXT,
                    confidence TEXT,
                    UNIQUE(exercise_id, target_id),
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE,
                    FOREIGN KEY(target_id) REFERENCES anatomical_targets(id) ON DELETE CASCADE
                );""",
            ["id", "vault_id", "exercise_id", "target_id", "role", "confidence"],
        ),
        "templates": (
            """CREATE TABLE templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );""",
            ["id", "vault_id", "name", "sort_order", "created_at"],
        ),
        "template_items": (
            """CREATE TABLE template_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    template_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    target_sets INTEGER,
                    FOREIGN KEY(template_id) REFERENCES templates(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            [
                "id",
                "vault_id",
                "template_id",
                "exercise_id",
                "sort_order",
                "target_sets",
            ],
        ),
        "workout_sessions": (
            """CREATE TABLE workout_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    template_id INTEGER,
                    planned_template_id INTEGER,
                    session_date TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT,
                    body_weight_kg REAL
                        CHECK (body_weight_kg IS NULL OR body_weight_kg BETWEEN 20 AND 250),
                    notes TEXT,
                    rpe INTEGER,
                    tags TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );""",
            [
                "id",
                "vault_id",
                "template_id",
                "planned_template_id",
                "session_date",
                "started_at",
                "finished_at",
                "body_weight_kg",
                "notes",
                "rpe",
                "tags",
                "created_at",
            ],
        ),
        "workout_entries": (
            """CREATE TABLE workout_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    session_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    sort_order INTEGER NOT NULL,
                    UNIQUE(session_id, sort_order),
                    FOREIGN KEY(session_id) REFERENCES workout_sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            ["id", "vault_id", "session_id", "exercise_id", "sort_order"],
        ),
        "sets": (
            """CREATE TABLE sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    entry_id INTEGER NOT NULL,
                    set_index INTEGER NOT NULL,
                    reps INTEGER,
                    weight_kg REAL,
                    duration_sec INTEGER,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    CHECK (duration_sec IS NULL OR (reps IS NULL AND weight_kg IS NULL)),
                    FOREIGN KEY(entry_id) REFERENCES workout_entries(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "vault_id",
                "entry_id",
                "set_index",
                "reps",
                "weight_kg",
                "duration_sec",
                "created_at",
            ],
        ),
        "exercise_prs": (
            """CREATE TABLE exercise_prs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    pr_type TEXT NOT NULL,
                    value REAL NOT NULL,
                    achieved_at TEXT NOT NULL,
                    session_id INTEGER,
                    set_id INTEGER,
                    UNIQUE(vault_id, exercise_id, pr_type)
                );""",
            [
                "id",
                "vault_id",
                "exercise_id",
                "pr_type",
                "value",
                "achieved_at",
                "session_id",
                "set_id",
            ],
        ),
        "pr_events": (
            """CREATE TABLE pr_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vault_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    pr_type TEXT NOT NULL,
                    value REAL NOT NULL,
                    achieved_at TEXT NOT NULL,
                    session_id INTEGER,
                    set_id INTEGER
                );""",
            [
                "id",
                "vault_id",
                "exercise_id",
                "pr_type",
                "value",
                "achieved_at",
                "session_id",
                "set_id",
            ],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    _VIEW_DEFINITIONS = {
        "logged_set_facts": f"""
            SELECT f.*,
                   CASE WHEN f.modality = 'REPS'
                        THEN COALESCE(f.reps, 0) * f.effective_load_kg ELSE 0 END AS tonnage_kg,
                   CASE WHEN f.modality = 'ISOMETRIC'
                        THEN COALESCE(f.duration_sec, 0) * f.effective_load_kg ELSE 0 END AS iso_load_kg_sec
            FROM (
                SELECT s.vault_id, s.id AS set_id, e.session_id, e.exercise_id,
                       ws.session_date, x.modality, x.uses_bodyweight, ws.body_weight_kg,
                       s.reps, s.weight_kg AS external_load_kg, s.duration_sec,
                       CASE WHEN x.uses_bodyweight = 1
                            THEN COALESCE(ws.body_weight_kg, 0) + COALESCE(s.weight_kg, 0)
                            ELSE COALESCE(s.weight_kg, 0) END AS effective_load_kg
                FROM sets s
                JOIN workout_entries e ON e.id = s.entry_id AND e.vault_id = s.vault_id
                JOIN workout_sessions ws ON ws.id = e.session_id AND ws.vault_id = e.vault_id
                JOIN exercises x ON x.id = e.exercise_id AND x.vault_id = e.vault_id
                WHERE {_LOGGED_SQL}
            ) f""",
        "muscle_set_facts": """
            SELECT f.vault_id, f.set_id, f.session_id, f.exercise_id, f.session_date,
                   et.target_id, t.name AS target_name, t.slug AS target_slug, et.role,
                   f.reps, f.duration_sec, f.tonnage_kg
            FROM logged_set_facts f
            JOIN exercise_targets et ON et.exercise_id = f.exercise_id AND et.vault_id = f.vault_id
            JOIN anatomical_targets t ON t.id = et.target_id
            WHERE t.kind IN ('MUSCLE_GROUP', 'MUSCLE')""",
        "tendon_set_facts": """
            SELECT f.vault_id, f.set_id, f.session_id, f.exercise_id, f.session_date,
                   et.target_id, t.name AS target_name, t.slug AS target_slug, et.confidence,
                   f.duration_sec, f.iso_load_kg_sec
            FROM logged_set_facts f
            JOIN exercise_targets et ON et.exercise_id = f.exercise_id AND et.vault_id = f.vault_id
            JOIN anatomical_targets t ON t.id = et.target_id
            WHERE t.kind = 'TENDON' AND f.modality = 'ISOMETRIC'""",
        "muscle_weekly_metrics": f"""
            SELECT vault_id, target_id, target_name, {_WEEK_START_SQL} AS week_start, role,
                   COUNT(*) AS set_count,
                   SUM(COALESCE(reps, 0)) AS total_reps,
                   SUM(COALESCE(duration_sec, 0)) AS total_iso_sec,
                   SUM(tonnage_kg) AS total_tonnage_kg,
                   SUM(tonnage_kg * CASE role WHEN 'PRIMARY' THEN 1.0 WHEN 'SECONDARY' THEN 0.5
                                              WHEN 'STABILIZER' THEN 0.25 ELSE 1.0 END)
                       AS weighted_tonnage_kg
            FROM muscle_set_facts
            GROUP BY vault_id, target_id, target_name, week_start, role""",
        "muscle_daily_metrics": """
            SELECT vault_id, target_id, target_name, session_date AS day_start, role,
                   COUNT(*) AS set_count,
                   SUM(COALESCE(reps, 0)) AS total_reps,
                   SUM(COALESCE(duration_sec, 0)) AS total_iso_sec,
                   SUM(tonnage_kg) AS total_tonnage_kg,
                   SUM(tonnage_kg * CASE role WHEN 'PRIMARY' THEN 1.0 WHEN 'SECONDARY' THEN 0.5
                                              WHEN 'STABILIZER' THEN 0.25 ELSE 1.0 END)
                       AS weighted_tonnage_kg
            FROM muscle_set_facts
            GROUP BY vault_id, target_id, target_name, day_start, role""",
        "tendon_weekly_metrics": f"""
            SELECT vault_id, target_id, target_name, {_WEEK_START_SQL} AS week_start,
                   COUNT(*) AS set_count,
                   SUM(COALESCE(duration_sec, 0)) AS total_iso_sec,
                   SUM(iso_load_kg_sec) AS iso_exposure_kg_sec
            FROM tendon_set_facts
            GROUP BY vault_id, target_id, target_name, week_start""",
        "tendon_daily_metrics": """
            SELECT vault_id, target_id, target_name, session_date AS day_start,
                   COUNT(*) AS set_count,
                   SUM(COALESCE(duration_sec, 0)) AS total_iso_sec,
                   SUM(iso_load_kg_sec) AS iso_exposure_kg_sec
            FROM tendon_set_facts
            GROUP BY vault_id, target_id, target_name, day_start""",
        "session_summaries": f"""
            SELECT ws.vault_id, ws.id AS session_id, ws.session_date, ws.started_at,
                   ws.finished_at, ws.template_id, ws.planned_template_id,
                   t.name AS template_name, ws.body_weight_kg, ws.rpe, ws.tags,
                   (SELECT COUNT(*) FROM workout_entries e
                     WHERE e.session_id = ws.id AND e.vault_id = ws.vault_id) AS exercise_count,
                   (SELECT COUNT(*) FROM sets s
                     JOIN workout_entries e ON e.id = s.entry_id
                     WHERE e.session_id = ws.id AND s.vault_id = ws.vault_id) AS planned_sets,
                   (SELECT COUNT(*) FROM sets s
                     JOIN workout_entries e ON e.id = s.entry_id
                     WHERE e.session_id = ws.id AND s.vault_id = ws.vault_id
                       AND {_LOGGED_SQL}) AS logged_sets,
                   EXISTS(SELECT 1 FROM pr_events p
                           WHERE p.session_id = ws.id AND p.vault_id = ws.vault_id) AS has_pr,
                   (SELECT GROUP_CONCAT(DISTINCT x.modality) FROM workout_entries e
                     JOIN exercises x ON x.id = e.exercise_id
                     WHERE e.session_id = ws.id AND e.vault_id = ws.vault_id) AS modalities
            FROM workout_sessions ws
            LEFT JOIN templates t ON t.id = ws.template_id AND t.vault_id = ws.vault_id""",
    }

    _COLUMN_DEFAULTS = {
        "modality": "'REPS'",
        "uses_bodyweight": "0",
        "sort_order": "0",
        "created_at": "CURRENT_TIMESTAMP",
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._import_anatomy_data()
        self._ensure_views()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            # views are rebuilt after tables so a migrated table never leaves one dangling
            for view in self._VIEW_DEFINITIONS:
                cursor.execute(f"DROP VIEW IF EXISTS {view};")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_views(self) -> None:
        """Create the derived metric and summary views."""
        with self._connection() as conn:
            for view, sql in self._VIEW_DEFINITIONS.items():
                conn.execute(f"CREATE VIEW IF NOT EXISTS {view} AS {sql};")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                defaults = ", ".join(
                    self._COLUMN_DEFAULTS.get(c, "NULL") for c in missing
                )
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _import_anatomy_data(self) -> None:
        csv_path = os.path.join(os.path.dirname(__file__), "anatomical_targets.csv")
        if not os.path.exists(csv_path):
            return
        with open(csv_path, newline="", encoding="utf-8") as csvfile:
            reader = csv.DictReader(csvfile)
            records = [
                (row["Kind"], row["Name"], row["Slug"], row.get("Parent Slug") or None)
                for row in reader
            ]
        with self._connection() as conn:
            for kind, name, slug, _parent in records:
                conn.execute(
                    "INSERT OR IGNORE INTO anatomical_targets (kind, name, slug) VALUES (?, ?, ?);",
                    (kind, name, slug),
                )
            for _kind, _name, slug, parent in records:
                if parent:
                    conn.execute(
                        "UPDATE anatomical_targets SET parent_id = "
                        "(SELECT id FROM anatomical_targets WHERE slug = ?) "
                        "WHERE slug = ? AND parent_id IS NULL;",
                        (parent, slug),
                    )

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def execute_count(self, query: str, params: Tuple = ()) -> int:
        """Execute a statement and return the number of affected rows."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.rowcount

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def fetch_dicts(self, query: str, params: Tuple = ()) -> List[dict]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            names = [d[0] for d in cursor.description]
            return [dict(zip(names, row)) for row in cursor.fetchall()]

    def _next_value(self, query: str, params: Tuple = ()) -> int:
        rows = self.fetch_all(query, params)
        return int(rows[0][0]) if rows and rows[0][0] is not None else 1

    @staticmethod
    def _placeholders(values: Iterable) -> str:
        return ", ".join("?" for _ in values)

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def fetch_dicts(self, query: str, params: Tuple = ()) -> List[dict]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            names = [d[0] for d in cursor.description]
            rows = await cursor.fetchall()
            return [dict(zip(names, row)) for row in rows]


class VaultRepository(BaseRepository):
    """Repository for vaults (tenant boundaries)."""

    def create(self, name: str) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Vault name is required")
        return self.execute("INSERT INTO vaults (name) VALUES (?);", (name,))

    def fetch_all_vaults(self) -> list[dict]:
        return self.fetch_dicts("SELECT id, name, created_at FROM vaults ORDER BY id;")

    def fetch_detail(self, vault_id: int) -> dict:
        rows = self.fetch_dicts(
            "SELECT id, name, created_at FROM vaults WHERE id = ?;", (vault_id,)
        )
        if not rows:
            raise NotFoundError("Vault not found.")
        return rows[0]


class ExerciseRepository(BaseRepository):
    """Repository for the per-vault exercise catalog."""

    _COLUMNS = "id, name, modality, uses_bodyweight, archived_at, created_at"

    @staticmethod
    def _shape(row: dict) -> dict:
        row["uses_bodyweight"] = bool(row["uses_bodyweight"])
        return row

    def create(
        self,
        vault_id: int,
        name: str,
        modality: str = "REPS",
        uses_bodyweight: bool = False,
    ) -> int:
        if modality not in MODALITIES:
            raise ValidationError(f"Unknown modality: {modality}")
        return self.execute(
            "INSERT INTO exercises (vault_id, name, modality, uses_bodyweight) VALUES (?, ?, ?, ?);",
            (vault_id, name, modality, int(uses_bodyweight)),
        )

    def fetch_all_exercises(self, vault_id: int, active_only: bool = False) -> list[dict]:
        query = f"SELECT {self._COLUMNS} FROM exercises WHERE vault_id = ?"
        if active_only:
            query += " AND archived_at IS NULL"
        query += " ORDER BY name COLLATE NOCASE;"
        return [self._shape(r) for r in self.fetch_dicts(query, (vault_id,))]

    def fetch_page(
        self,
        vault_id: int,
        page: int = 1,
        page_size: int = 50,
        include_archived: bool = False,
        q: str = "",
    ) -> dict:
        page_size = max(1, min(200, page_size))
        page = max(1, page)
        where = ["vault_id = ?"]
        params: list = [vault_id]
        if not include_archived:
            where.append("archived_at IS NULL")
        q = (q or "").strip()
        if q:
            escaped = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            where.append("name LIKE ? ESCAPE '\\' COLLATE NOCASE")
            params.append(f"%{escaped}%")
        clause = " AND ".join(where)
        total = self.fetch_all(
            f"SELECT COUNT(*) FROM exercises WHERE {clause};", tuple(params)
        )[0][0]
        rows = self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM exercises WHERE {clause} "
            "ORDER BY name COLLATE NOCASE LIMIT ? OFFSET ?;",
            tuple(params + [page_size, (page - 1) * page_size]),
        )
        return {
            "rows": [self._shape(r) for r in rows],
            "total": int(total),
            "page": page,
            "page_size": page_size,
        }

    def get(self, vault_id: int, exercise_id: int) -> Optional[dict]:
        rows = self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM exercises WHERE vault_id = ? AND id = ?;",
            (vault_id, exercise_id),
        )
        return self._shape(rows[0]) if rows else None

    def fetch_detail(self, vault_id: int, exercise_id: int) -> dict:
        row = self.get(vault_id, exercise_id)
        if row is None:
            raise NotFoundError("Exercise not found in this vault.")
        return row

    def update(
        self,
        vault_id: int,
        exercise_id: int,
        name: str,
        modality: str,
        uses_bodyweight: bool,
    ) -> None:
        if modality not in MODALITIES:
            raise ValidationError(f"Unknown modality: {modality}")
        count = self.execute_count(
            "UPDATE exercises SET name = ?, modality = ?, uses_bodyweight = ? "
            "WHERE id = ? AND vault_id = ?;",
            (name, modality, int(uses_bodyweight), exercise_id, vault_id),
        )
        if count == 0:
            raise NotFoundError("Exercise not found in this vault.")

    def set_archived_at(
        self, vault_id: int, exercise_id: int, archived_at: str | None
    ) -> None:
        count = self.execute_count(
            "UPDATE exercises SET archived_at = ? WHERE id = ? AND vault_id = ?;",
            (archived_at, exercise_id, vault_id),
        )
        if count == 0:
            raise NotFoundError("Exercise not found in this vault.")

    def usage(self, vault_id: int, exercise_id: int) -> dict:
        def count(query: str, params: Tuple) -> int:
            return int(self.fetch_all(query, params)[0][0])

        workouts = count(
            "SELECT COUNT(*) FROM workout_entries WHERE vault_id = ? AND exercise_id = ?;",
            (vault_id, exercise_id),
        )
        templates = count(
            "SELECT COUNT(*) FROM template_items WHERE vault_id = ? AND exercise_id = ?;",
            (vault_id, exercise_id),
        )
        targets = count(
            "SELECT COUNT(*) FROM exercise_targets WHERE vault_id = ? AND exercise_id = ?;",
            (vault_id, exercise_id),
        )
        prs = count(
            "SELECT COUNT(*) FROM exercise_prs WHERE vault_id = ? AND exercise_id = ?;",
            (vault_id, exercise_id),
        )
        return {
            "workout_count": workouts,
            "template_count": templates,
            "target_count": targets,
            "pr_count": prs,
            "total": workouts + templates + targets + prs,
        }

    def delete(self, vault_id: int, exercise_id: int) -> None:
        count = self.execute_count(
            "DELETE FROM exercises WHERE id = ? AND vault_id = ?;",
            (exercise_id, vault_id),
        )
        if count == 0:
            raise NotFoundError("Exercise not found in this vault.")


class AnatomicalTargetRepository(BaseRepository):
    """Repository for the global muscle/tendon catalog."""

    _COLUMNS = "id, kind, name, slug, parent_id, created_at"

    def fetch_all_targets(self, kind: str | None = None) -> list[dict]:
        query = f"SELECT {self._COLUMNS} FROM anatomical_targets"
        params: tuple = ()
        if kind:
            query += " WHERE kind = ?"
            params = (kind,)
        query += " ORDER BY kind, name;"
        return self.fetch_dicts(query, params)

    def fetch_by_slug(self, slug: str) -> Optional[dict]:
        rows = self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM anatomical_targets WHERE slug = ?;", (slug,)
        )
        return rows[0] if rows else None

    def fetch_detail(self, target_id: int) -> dict:
        rows = self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM anatomical_targets WHERE id = ?;", (target_id,)
        )
        if not rows:
            raise NotFoundError("Target not found.")
        return rows[0]

    def create(
        self, kind: str, name: str, slug: str, parent_id: int | None = None
    ) -> int:
        if kind not in TARGET_KINDS:
            raise ValidationError(f"Unknown target kind: {kind}")
        if not name.strip() or not slug.strip():
            raise ValidationError("Target name and slug are required")
        if self.fetch_by_slug(slug) is not None:
            raise ValidationError(f"Target slug already exists: {slug}")
        return self.execute(
            "INSERT INTO anatomical_targets (kind, name, slug, parent_id) VALUES (?, ?, ?, ?);",
            (kind, name.strip(), slug.strip(), parent_id),
        )

    def update(
        self,
        target_id: int,
        name: str | None = None,
        slug: str | None = None,
        kind: str | None = None,
    ) -> None:
        self.fetch_detail(target_id)
        if kind is not None and kind not in TARGET_KINDS:
            raise ValidationError(f"Unknown target kind: {kind}")
        if name is not None:
            self.execute(
                "UPDATE anatomical_targets SET name = ? WHERE id = ?;", (name, target_id)
            )
        if slug is not None:
            slug = slug.strip()
            if not slug:
                raise ValidationError("Target name and slug are required")
            existing = self.fetch_by_slug(slug)
            if existing is not None and existing["id"] != target_id:
                raise ValidationError(f"Target slug already exists: {slug}")
            self.execute(
                "UPDATE anatomical_targets SET slug = ? WHERE id = ?;", (slug, target_id)
            )
        if kind is not None:
            self.execute(
                "UPDATE anatomical_targets SET kind = ? WHERE id = ?;", (kind, target_id)
            )

    def delete(self, target_id: int) -> None:
        count = self.execute_count(
            "DELETE FROM anatomical_targets WHERE id = ?;", (target_id,)
        )
        if count == 0:
            raise NotFoundError("Target not found.")
        self.execute("DELETE FROM exercise_targets WHERE target_id = ?;", (target_id,))

    def tendons_with_exposure(self, vault_id: int) -> list[dict]:
        return self.fetch_dicts(
            "SELECT t.id, t.name, t.slug, "
            "(SELECT COUNT(*) FROM exercise_targets et "
            "  WHERE et.target_id = t.id AND et.vault_id = ?) AS exercise_count "
            "FROM anatomical_targets t WHERE t.kind = 'TENDON' ORDER BY t.name;",
            (vault_id,),
        )

    def exercises_for_target(self, vault_id: int, target_id: int) -> list[dict]:
        return self.fetch_dicts(
            "SELECT x.id, x.name, x.modality, et.role, et.confidence "
            "FROM exercise_targets et JOIN exercises x ON x.id = et.exercise_id "
            "WHERE et.vault_id = ? AND et.target_id = ? AND x.vault_id = ? "
            "ORDER BY x.name COLLATE NOCASE;",
            (vault_id, target_id, vault_id),
        )


class ExerciseTargetRepository(BaseRepository):
    """Repository for exercise to anatomical target mappings."""

    def fetch_for_exercise(self, vault_id: int, exercise_id: int) -> list[dict]:
        return self.fetch_dicts(
            "SELECT et.target_id, et.role, et.confidence, t.kind, t.name, t.slug, t.parent_id "
            "FROM exercise_targets et JOIN anatomical_targets t ON t.id = et.target_id "
            "WHERE et.vault_id = ? AND et.exercise_id = ? ORDER BY t.name;",
            (vault_id, exercise_id),
        )

    def fetch_for_exercises(
        self, vault_id: int, exercise_ids: list[int], kinds: Iterable[str]
    ) -> dict[int, list[dict]]:
        kinds = list(kinds)
        if not exercise_ids or not kinds:
            return {}
        rows = self.fetch_dicts(
            "SELECT et.exercise_id, et.target_id, t.name AS target_name, et.role, et.confidence "
            "FROM exercise_targets et JOIN anatomical_targets t ON t.id = et.target_id "
            f"WHERE et.vault_id = ? AND et.exercise_id IN ({self._placeholders(exercise_ids)}) "
            f"AND t.kind IN ({self._placeholders(kinds)}) ORDER BY t.name;",
            tuple([vault_id, *exercise_ids, *kinds]),
        )
        result: dict[int, list[dict]] = {}
        for row in rows:
            result.setdefault(row.pop("exercise_id"), []).append(row)
        return result

    def upsert(
        self,
        vault_id: int,
        exercise_id: int,
        target_id: int,
        role: str | None,
        confidence: str | None,
    ) -> None:
        self.execute(
            "INSERT INTO exercise_targets (vault_id, exercise_id, target_id, role, confidence) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(exercise_id, target_id) DO UPDATE SET role=excluded.role, confidence=excluded.confidence;",
            (vault_id, exercise_id, target_id, role, confidence),
        )

    def delete_targets(
        self, vault_id: int, exercise_id: int, target_ids: list[int]
    ) -> None:
        if not target_ids:
            return
        self.execute(
            "DELETE FROM exercise_targets WHERE vault_id = ? AND exercise_id = ? "
            f"AND target_id IN ({self._placeholders(target_ids)});",
            tuple([vault_id, exercise_id, *target_ids]),
        )

    def delete_for_exercise(self, vault_id: int, exercise_id: int) -> None:
        self.execute(
            "DELETE FROM exercise_targets WHERE vault_id = ? AND exercise_id = ?;",
            (vault_id, exercise_id),
        )


class TemplateRepository(BaseRepository):
    """Repository for workout templates."""

    def create(self, vault_id: int, name: str, sort_order: int | None = None) -> int:
        if sort_order is None:
            sort_order = self._next_value(
                "SELECT COALESCE(MAX(sort_order), 0) + 1 FROM templates WHERE vault_id = ?;",
                (vault_id,),
            )
        return self.execute(
            "INSERT INTO templates (vault_id, name, sort_order) VALUES (?, ?, ?);",
            (vault_id, name, sort_order),
        )

    def fetch_all_templates(self, vault_id: int) -> list[dict]:
        return self.fetch_dicts(
            "SELECT id, name, sort_order FROM templates WHERE vault_id = ? ORDER BY sort_order, id;",
            (vault_id,),
        )

    def fetch_detail(self, vault_id: int, template_id: int) -> dict:
        rows = self.fetch_dicts(
            "SELECT id, name, sort_order FROM templates WHERE vault_id = ? AND id = ?;",
            (vault_id, template_id),
        )
        if not rows:
            raise NotFoundError("Template not found.")
        return rows[0]

    def find_by_name(self, vault_id: int, name: str) -> Optional[int]:
        rows = self.fetch_all(
            "SELECT id FROM templates WHERE vault_id = ? AND name = ? ORDER BY id LIMIT 1;",
            (vault_id, name),
        )
        return int(rows[0][0]) if rows else None

    def rename(self, vault_id: int, template_id: int, name: str) -> None:
        count = self.execute_count(
            "UPDATE templates SET name = ? WHERE id = ? AND vault_id = ?;",
            (name, template_id, vault_id),
        )
        if count == 0:
            raise NotFoundError("Template not found.")


class TemplateItemRepository(BaseRepository):
    """Repository for the ordered exercise list of a template."""

    def add(
        self,
        vault_id: int,
        template_id: int,
        exercise_id: int,
        target_sets: int | None,
    ) -> int:
        sort_order = self._next_value(
            "SELECT COALESCE(MAX(sort_order), 0) + 1 FROM template_items "
            "WHERE vault_id = ? AND template_id = ?;",
            (vault_id, template_id),
        )
        return self.execute(
            "INSERT INTO template_items (vault_id, template_id, exercise_id, sort_order, target_sets) "
            "VALUES (?, ?, ?, ?, ?);",
            (vault_id, template_id, exercise_id, sort_order, target_sets),
        )

    def fetch_for_template(self, vault_id: int, template_id: int) -> list[dict]:
        return self.fetch_dicts(
            "SELECT i.id, i.exercise_id, i.sort_order, i.target_sets, "
            "x.name AS exercise_name, x.modality "
            "FROM template_items i LEFT JOIN exercises x "
            "ON x.id = i.exercise_id AND x.vault_id = i.vault_id "
            "WHERE i.vault_id = ? AND i.template_id = ? ORDER BY i.sort_order, i.id;",
            (vault_id, template_id),
        )

    def previews(self, vault_id: int, template_ids: list[int]) -> dict[int, list[str]]:
        if not template_ids:
            return {}
        rows = self.fetch_all(
            "SELECT i.template_id, x.name FROM template_items i "
            "JOIN exercises x ON x.id = i.exercise_id "
            f"WHERE i.vault_id = ? AND i.template_id IN ({self._placeholders(template_ids)}) "
            "ORDER BY i.sort_order, i.id;",
            tuple([vault_id, *template_ids]),
        )
        result: dict[int, list[str]] = {}
        for template_id, name in rows:
            result.setdefault(template_id, []).append(name)
        return result

    def set_target_sets(
        self, vault_id: int, item_id: int, target_sets: int | None
    ) -> None:
        count = self.execute_count(
            "UPDATE template_items SET target_sets = ? WHERE id = ? AND vault_id = ?;",
            (target_sets, item_id, vault_id),
        )
        if count == 0:
            raise NotFoundError("Template item not found.")

    def set_sort_order(self, vault_id: int, item_id: int, sort_order: int) -> None:
        self.execute(
            "UPDATE template_items SET sort_order = ? WHERE id = ? AND vault_id = ?;",
            (sort_order, item_id, vault_id),
        )

    def remove(self, vault_id: int, item_id: int) -> None:
        count = self.execute_count(
            "DELETE FROM template_items WHERE id = ? AND vault_id = ?;",
            (item_id, vault_id),
        )
        if count == 0:
            raise NotFoundError("Template item not found.")


class WorkoutSessionRepository(BaseRepository):
    """Repository for workout sessions."""

    _COLUMNS = (
        "id, template_id, planned_template_id, session_date, started_at, finished_at, "
        "body_weight_kg, notes, rpe, tags, created_at"
    )

    @staticmethod
    def _shape(row: dict) -> dict:
        row["tags"] = json.loads(row["tags"]) if row.get("tags") else []
        return row

    def create(
        self,
        vault_id: int,
        template_id: int | None,
        session_date: str,
        started_at: str | None = None,
        finished_at: str | None = None,
        notes: str | None = None,
        rpe: int | None = None,
        tags: list[str] | None = None,
        body_weight_kg: float | None = None,
    ) -> int:
        return self.execute(
            "INSERT INTO workout_sessions (vault_id, template_id, planned_template_id, session_date, "
            "started_at, finished_at, notes, rpe, tags, body_weight_kg) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (
                vault_id,
                template_id,
                template_id,
                session_date,
                started_at,
                finished_at,
                notes,
                rpe,
                json.dumps(tags) if tags else None,
                body_weight_kg,
            ),
        )

    def fetch_detail(self, vault_id: int, session_id: int) -> dict:
        rows = self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM workout_sessions WHERE vault_id = ? AND id = ?;",
            (vault_id, session_id),
        )
        if not rows:
            raise NotFoundError("Session not found.")
        return self._shape(rows[0])

    def exists(self, vault_id: int, session_id: int) -> bool:
        return bool(
            self.fetch_all(
                "SELECT 1 FROM workout_sessions WHERE vault_id = ? AND id = ?;",
                (vault_id, session_id),
            )
        )

    def fetch_all_sessions(
        self,
        vault_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int | None = None,
    ) -> list[dict]:
        query = f"SELECT {self._COLUMNS} FROM workout_sessions WHERE vault_id = ?"
        params: list = [vault_id]
        if start_date:
            query += " AND session_date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND session_date <= ?"
            params.append(end_date)
        query += " ORDER BY session_date DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [self._shape(r) for r in self.fetch_dicts(query + ";", tuple(params))]

    def find_unfinished(
        self, vault_id: int, session_date: str | None = None
    ) -> Optional[dict]:
        query = f"SELECT {self._COLUMNS} FROM workout_sessions WHERE vault_id = ? AND finished_at IS NULL"
        params: list = [vault_id]
        if session_date:
            query += " AND session_date = ?"
            params.append(session_date)
        query += " ORDER BY session_date DESC, created_at DESC, id DESC LIMIT 1;"
        rows = self.fetch_dicts(query, tuple(params))
        return self._shape(rows[0]) if rows else None

    def update_times(self, vault_id: int, session_id: int, **patch: str | None) -> None:
        allowed = {"started_at", "finished_at"}
        fields = [k for k in patch if k in allowed]
        if not fields:
            return
        assignments = ", ".join(f"{k} = ?" for k in fields)
        count = self.execute_count(
            f"UPDATE workout_sessions SET {assignments} WHERE vault_id = ? AND id = ?;",
            tuple([patch[k] for k in fields] + [vault_id, session_id]),
        )
        if count == 0:
            raise NotFoundError("Session not found.")

    def set_body_weight(
        self, vault_id: int, session_id: int, body_weight_kg: float | None
    ) -> None:
        count = self.execute_count(
            "UPDATE workout_sessions SET body_weight_kg = ? WHERE vault_id = ? AND id = ?;",
            (body_weight_kg, vault_id, session_id),
        )
        if count == 0:
            raise NotFoundError("Session not found.")

    def set_notes(self, vault_id: int, session_id: int, notes: str | None) -> None:
        count = self.execute_count(
            "UPDATE workout_sessions SET notes = ? WHERE vault_id = ? AND id = ?;",
            (notes, vault_id, session_id),
        )
        if count == 0:
            raise NotFoundError("Session not found.")

    def delete(self, vault_id: int, session_id: int) -> None:
        self.execute(
            "DELETE FROM workout_sessions WHERE vault_id = ? AND id = ?;",
            (vault_id, session_id),
        )

    def summaries(self, vault_id: int, start_date: str, end_date: str) -> list[dict]:
        rows = self.fetch_dicts(
            "SELECT * FROM session_summaries WHERE vault_id = ? "
            "AND session_date >= ? AND session_date <= ? "
            "ORDER BY session_date ASC, started_at ASC, session_id ASC;",
            (vault_id, start_date, end_date),
        )
        for row in rows:
            row["has_pr"] = bool(row["has_pr"])
            row["modalities"] = sorted(row["modalities"].split(",")) if row["modalities"] else []
            row["tags"] = json.loads(row["tags"]) if row.get("tags") else []
        return rows

    def trained_days(self, vault_id: int, start_date: str, end_date: str) -> set[str]:
        rows = self.fetch_all(
            "SELECT session_date FROM session_summaries WHERE vault_id = ? "
            "AND session_date >= ? AND session_date <= ? AND logged_sets > 0;",
            (vault_id, start_date, end_date),
        )
        return {str(r[0]) for r in rows}


class WorkoutEntryRepository(BaseRepository):
    """Repository for the exercises performed within a session."""

    def add(
        self,
        vault_id: int,
        session_id: int,
        exercise_id: int,
        sort_order: int | None = None,
    ) -> int:
        if sort_order is None:
            sort_order = self._next_value(
                "SELECT COALESCE(MAX(sort_order), 0) + 1 FROM workout_entries "
                "WHERE vault_id = ? AND session_id = ?;",
                (vault_id, session_id),
            )
        return self.execute(
            "INSERT INTO workout_entries (vault_id, session_id, exercise_id, sort_order) VALUES (?, ?, ?, ?);",
            (vault_id, session_id, exercise_id, sort_order),
        )

    def fetch_for_session(self, vault_id: int, session_id: int) -> list[dict]:
        rows = self.fetch_dicts(
            "SELECT e.id, e.exercise_id, e.sort_order, x.name AS exercise_name, "
            "x.modality, x.uses_bodyweight "
            "FROM workout_entries e LEFT JOIN exercises x "
            "ON x.id = e.exercise_id AND x.vault_id = e.vault_id "
            "WHERE e.vault_id = ? AND e.session_id = ? ORDER BY e.sort_order;",
            (vault_id, session_id),
        )
        for row in rows:
            row["uses_bodyweight"] = bool(row["uses_bodyweight"])
        return rows

    def fetch_detail(self, vault_id: int, session_id: int, entry_id: int) -> dict:
        rows = self.fetch_dicts(
            "SELECT id, exercise_id, sort_order FROM workout_entries "
            "WHERE vault_id = ? AND session_id = ? AND id = ?;",
            (vault_id, session_id, entry_id),
        )
        if not rows:
            raise NotFoundError("Entry not found for this session.")
        return rows[0]

    def find_for_exercise(
        self, vault_id: int, session_id: int, exercise_id: int
    ) -> Optional[int]:
        rows = self.fetch_all(
            "SELECT id FROM workout_entries WHERE vault_id = ? AND session_id = ? "
            "AND exercise_id = ? ORDER BY sort_order LIMIT 1;",
            (vault_id, session_id, exercise_id),
        )
        return int(rows[0][0]) if rows else None

    def ids_for_session(self, vault_id: int, session_id: int) -> list[int]:
        return [
            int(r[0])
            for r in self.fetch_all(
                "SELECT id FROM workout_entries WHERE vault_id = ? AND session_id = ?;",
                (vault_id, session_id),
            )
        ]

    def neighbor(
        self, vault_id: int, session_id: int, sort_order: int, direction: str
    ) -> Optional[dict]:
        if direction == "UP":
            query = (
                "SELECT id, sort_order FROM workout_entries WHERE vault_id = ? AND session_id = ? "
                "AND sort_order < ? ORDER BY sort_order DESC LIMIT 1;"
            )
        else:
            query = (
                "SELECT id, sort_order FROM workout_entries WHERE vault_id = ? AND session_id = ? "
                "AND sort_order > ? ORDER BY sort_order ASC LIMIT 1;"
            )
        rows = self.fetch_dicts(query, (vault_id, session_id, sort_order))
        return rows[0] if rows else None

    def set_sort_order(
        self, vault_id: int, session_id: int, entry_id: int, sort_order: int
    ) -> None:
        self.execute(
            "UPDATE workout_entries SET sort_order = ? WHERE vault_id = ? AND session_id = ? AND id = ?;",
            (sort_order, vault_id, session_id, entry_id),
        )

    def delete(self, vault_id: int, entry_id: int) -> None:
        self.execute(
            "DELETE FROM workout_entries WHERE vault_id = ? AND id = ?;",
            (vault_id, entry_id),
        )

    def delete_for_session(self, vault_id: int, session_id: int) -> None:
        self.execute(
            "DELETE FROM workout_entries WHERE vault_id = ? AND session_id = ?;",
            (vault_id, session_id),
        )


class SetRepository(BaseRepository):
    """Repository for sets table operations."""

    _COLUMNS = "id, entry_id, set_index, reps, weight_kg, duration_sec"

    @staticmethod
    def is_logged(row: dict) -> bool:
        return (
            row.get("reps") is not None
            or row.get("weight_kg") is not None
            or row.get("duration_sec") is not None
        )

    def add(
        self,
        vault_id: int,
        entry_id: int,
        set_index: int | None = None,
        reps: int | None = None,
        weight_kg: float | None = None,
        duration_sec: int | None = None,
    ) -> int:
        if set_index is None:
            set_index = self._next_value(
                "SELECT COALESCE(MAX(set_index), 0) + 1 FROM sets WHERE vault_id = ? AND entry_id = ?;",
                (vault_id, entry_id),
            )
        return self.execute(
            "INSERT INTO sets (vault_id, entry_id, set_index, reps, weight_kg, duration_sec) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (vault_id, entry_id, set_index, reps, weight_kg, duration_sec),
        )

    def add_planned(self, vault_id: int, entry_id: int, count: int) -> list[int]:
        """Insert ``count`` unlogged sets with ``set_index`` 1..count."""
        return [self.add(vault_id, entry_id, i) for i in range(1, count + 1)]

    def fetch_for_entry(self, vault_id: int, entry_id: int) -> list[dict]:
        return self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM sets WHERE vault_id = ? AND entry_id = ? ORDER BY set_index;",
            (vault_id, entry_id),
        )

    def fetch_for_session(self, vault_id: int, session_id: int) -> list[dict]:
        return self.fetch_dicts(
            "SELECT s.id, s.entry_id, s.set_index, s.reps, s.weight_kg, s.duration_sec "
            "FROM sets s JOIN workout_entries e ON e.id = s.entry_id AND e.vault_id = s.vault_id "
            "WHERE s.vault_id = ? AND e.session_id = ? ORDER BY e.sort_order, s.set_index;",
            (vault_id, session_id),
        )

    def fetch_detail(self, vault_id: int, set_id: int) -> dict:
        rows = self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM sets WHERE vault_id = ? AND id = ?;",
            (vault_id, set_id),
        )
        if not rows:
            raise NotFoundError("Set not found.")
        return rows[0]

    def fetch_owner(self, vault_id: int, session_id: int, set_id: int) -> Optional[dict]:
        """Set values joined with its entry's exercise, scoped to vault and session."""
        rows = self.fetch_dicts(
            "SELECT s.id, s.entry_id, s.reps, s.weight_kg, s.duration_sec, "
            "e.exercise_id, x.modality "
            "FROM sets s "
            "JOIN workout_entries e ON e.id = s.entry_id AND e.vault_id = s.vault_id "
            "JOIN exercises x ON x.id = e.exercise_id AND x.vault_id = e.vault_id "
            "WHERE s.id = ? AND s.vault_id = ? AND e.session_id = ?;",
            (set_id, vault_id, session_id),
        )
        return rows[0] if rows else None

    def update_values(
        self,
        vault_id: int,
        set_id: int,
        reps: int | None,
        weight_kg: float | None,
        duration_sec: int | None,
    ) -> None:
        self.execute(
            "UPDATE sets SET reps = ?, weight_kg = ?, duration_sec = ? WHERE id = ? AND vault_id = ?;",
            (reps, weight_kg, duration_sec, set_id, vault_id),
        )

    def delete(self, vault_id: int, set_id: int) -> None:
        self.execute("DELETE FROM sets WHERE vault_id = ? AND id = ?;", (vault_id, set_id))

    def delete_for_entries(self, vault_id: int, entry_ids: list[int]) -> None:
        if not entry_ids:
            return
        self.execute(
            f"DELETE FROM sets WHERE vault_id = ? AND entry_id IN ({self._placeholders(entry_ids)});",
            tuple([vault_id, *entry_ids]),
        )

    def progress(self, vault_id: int, session_id: int) -> tuple[int, int]:
        """Return ``(done, total)`` where done counts sets with reps or duration."""
        rows = self.fetch_all(
            "SELECT COUNT(*), "
            "SUM(CASE WHEN s.reps IS NOT NULL OR s.duration_sec IS NOT NULL THEN 1 ELSE 0 END) "
            "FROM sets s JOIN workout_entries e ON e.id = s.entry_id AND e.vault_id = s.vault_id "
            "WHERE s.vault_id = ? AND e.session_id = ?;",
            (vault_id, session_id),
        )
        total, done = rows[0]
        return int(done or 0), int(total or 0)


class PersonalRecordRepository(BaseRepository):
    """Repository for best values per exercise and their improvement events."""

    def best_value(self, vault_id: int, exercise_id: int, pr_type: str) -> float | None:
        rows = self.fetch_all(
            "SELECT value FROM exercise_prs WHERE vault_id = ? AND exercise_id = ? AND pr_type = ?;",
            (vault_id, exercise_id, pr_type),
        )
        return float(rows[0][0]) if rows and rows[0][0] is not None else None

    def upsert_best(
        self,
        vault_id: int,
        exercise_id: int,
        pr_type: str,
        value: float,
        achieved_at: str,
        session_id: int,
        set_id: int,
    ) -> None:
        self.execute(
            "INSERT INTO exercise_prs (vault_id, exercise_id, pr_type, value, achieved_at, session_id, set_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(vault_id, exercise_id, pr_type) DO UPDATE SET value=excluded.value, "
            "achieved_at=excluded.achieved_at, session_id=excluded.session_id, set_id=excluded.set_id;",
            (vault_id, exercise_id, pr_type, value, achieved_at, session_id, set_id),
        )

    def add_event(
        self,
        vault_id: int,
        exercise_id: int,
        pr_type: str,
        value: float,
        achieved_at: str,
        session_id: int,
        set_id: int,
    ) -> int:
        return self.execute(
            "INSERT INTO pr_events (vault_id, exercise_id, pr_type, value, achieved_at, session_id, set_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            (vault_id, exercise_id, pr_type, value, achieved_at, session_id, set_id),
        )

    def fetch_records(self, vault_id: int, exercise_id: int | None = None) -> list[dict]:
        query = (
            "SELECT p.exercise_id, x.name AS exercise_name, p.pr_type, p.value, p.achieved_at, "
            "p.session_id, p.set_id FROM exercise_prs p "
            "LEFT JOIN exercises x ON x.id = p.exercise_id AND x.vault_id = p.vault_id "
            "WHERE p.vault_id = ?"
        )
        params: list = [vault_id]
        if exercise_id is not None:
            query += " AND p.exercise_id = ?"
            params.append(exercise_id)
        query += " ORDER BY x.name, p.pr_type;"
        return self.fetch_dicts(query, tuple(params))

    def fetch_events(self, vault_id: int, exercise_id: int | None = None) -> list[dict]:
        query = (
            "SELECT id, exercise_id, pr_type, value, achieved_at, session_id, set_id "
            "FROM pr_events WHERE vault_id = ?"
        )
        params: list = [vault_id]
        if exercise_id is not None:
            query += " AND exercise_id = ?"
            params.append(exercise_id)
        query += " ORDER BY id;"
        return self.fetch_dicts(query, tuple(params))


class MetricsRepository(BaseRepository):
    """Read access to the weekly/daily muscle and tendon metric views."""

    _MUSCLE_COLUMNS = (
        "vault_id, target_id, target_name, {period}, role, set_count, total_reps, "
        "total_iso_sec, total_tonnage_kg, weighted_tonnage_kg"
    )
    _TENDON_COLUMNS = (
        "vault_id, target_id, target_name, {period}, set_count, total_iso_sec, iso_exposure_kg_sec"
    )

    @staticmethod
    def metrics_query(kind: str, grain: str) -> str:
        if kind not in ("muscles", "tendons"):
            raise ValidationError(f"Unknown metrics kind: {kind}")
        period = "day_start" if grain == "day" else "week_start"
        prefix = "muscle" if kind == "muscles" else "tendon"
        view = f"{prefix}_{'daily' if grain == 'day' else 'weekly'}_metrics"
        cols = MetricsRepository._MUSCLE_COLUMNS if kind == "muscles" else MetricsRepository._TENDON_COLUMNS
        return (
            f"SELECT {cols.format(period=period)} FROM {view} "
            f"WHERE vault_id = ? AND {period} >= ? AND {period} <= ? "
            f"ORDER BY {period}, target_id;"
        )

    def fetch_metrics(
        self, kind: str, vault_id: int, from_iso: str, to_iso: str, grain: str = "week"
    ) -> list[dict]:
        return self.fetch_dicts(
            self.metrics_query(kind, grain), (vault_id, from_iso, to_iso)
        )


class AsyncMetricsRepository(AsyncBaseRepository):
    """Asynchronous read access to the metric views."""

    async def fetch_metrics(
        self, kind: str, vault_id: int, from_iso: str, to_iso: str, grain: str = "week"
    ) -> list[dict]:
        return await self.fetch_dicts(
            MetricsRepository.metrics_query(kind, grain), (vault_id, from_iso, to_iso)
        )


class SettingsRepository(BaseRepository):
    """Repository for application settings synchronized with YAML."""

    def __init__(
        self, db_path: str = "workout.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._init_defaults()
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _init_defaults(self) -> None:
        defaults = SettingsSchema().model_dump(exclude_none=True)
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, str(value)),
                )

    def all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        return {k: v for k, v in rows}

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                if value is None:
                    continue
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        data: dict = {}
        for key, value in self.all_settings().items():
            field = SettingsSchema.model_fields.get(key)
            if field is not None and field.annotation is int:
                data[key] = int(value)
            else:
                data[key] = value
        self._yaml.save(data)

    def get_text(self, key: str, default: str) -> str:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return str(rows[0][0]) if rows else default

    def get_int(self, key: str, default: int) -> int:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return int(float(rows[0][0])) if rows else default

    def set_text(self, key: str, value: str) -> None:
        candidate = self.all_settings()
        candidate[key] = value
        validate_settings(candidate)
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(int(value)))
