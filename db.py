import sqlite3
import aiosqlite
import datetime
import logging
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional

from config import YamlConfig
from models import ROLES, ROLE_ATHLETE, Workout
from settings_schema import SettingsSchema, validate_settings

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

MAX_NAME_LENGTH = 25
MAX_NOTES_LENGTH = 200
MIN_DURATION = 1
MAX_DURATION = 600


class NotFoundError(ValueError):
    """Raised when a referenced record does not exist."""


class ConflictError(ValueError):
    """Raised when a write would violate a uniqueness rule."""


def to_db_timestamp(value: datetime.datetime) -> str:
    """Return ``value`` as sortable UTC text. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(text: str) -> datetime.datetime:
    return datetime.datetime.strptime(text, TIMESTAMP_FORMAT).replace(
        tzinfo=datetime.timezone.utc
    )


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


_WORKOUT_SELECT = (
    "SELECT w.id, w.athlete_id, w.exercise_id, e.name, w.duration, w.calories, "
    "w.occurred_at, w.notes FROM workouts w "
    "JOIN exercises e ON e.id = w.exercise_id"
)


def _workout_from_row(row: Tuple) -> Workout:
    wid, athlete_id, exercise_id, name, duration, calories, occurred_at, notes = row
    return Workout(
        id=int(wid),
        athlete_id=int(athlete_id),
        exercise_id=int(exercise_id),
        exercise_name=name,
        duration_minutes=int(duration),
        calories_burned=float(calories),
        occurred_at=from_db_timestamp(occurred_at),
        notes=notes,
    )


def _stats_query(start: datetime.datetime, athlete_id: Optional[int]) -> Tuple[str, Tuple]:
    query = _WORKOUT_SELECT + " WHERE w.occurred_at >= ?"
    params: list = [to_db_timestamp(start)]
    if athlete_id is not None:
        query += " AND w.athlete_id = ?"
        params.append(athlete_id)
    query += " ORDER BY w.occurred_at ASC, w.id ASC;"
    return query, tuple(params)


def _athlete_count_query(created_since: Optional[datetime.datetime]) -> Tuple[str, Tuple]:
    query = "SELECT COUNT(*) FROM users WHERE role = ?"
    params: list = [ROLE_ATHLETE]
    if created_since is not None:
        query += " AND created_at >= ?"
        params.append(to_db_timestamp(created_since))
    return query + ";", tuple(params)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL DEFAULT 'athlete',
                    height REAL,
                    weight REAL,
                    created_at TEXT NOT NULL
                );""",
            ["id", "name", "email", "role", "height", "weight", "created_at"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    calories_per_min REAL NOT NULL,
                    is_deleted INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "name", "calories_per_min", "is_deleted"],
        ),
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    athlete_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    duration INTEGER NOT NULL,
                    calories REAL NOT NULL,
                    occurred_at TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(athlete_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            [
                "id",
                "athlete_id",
                "exercise_id",
                "duration",
                "calories",
                "occurred_at",
                "notes",
                "created_at",
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

    _INDEXES = (
        "CREATE INDEX IF NOT EXISTS idx_workouts_occurred ON workouts(occurred_at);",
        "CREATE INDEX IF NOT EXISTS idx_workouts_athlete ON workouts(athlete_id, occurred_at);",
        "CREATE INDEX IF NOT EXISTS idx_users_role ON users(role, created_at);",
    )

    def __init__(self, db_path: str = "athlete_track.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for sql in self._INDEXES:
                cursor.execute(sql)
            cursor.execute("PRAGMA foreign_keys=on;")

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

        logger.info("migrating table %s", table)
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "role":
                        return f"'{ROLE_ATHLETE}'"
                    if col == "is_deleted":
                        return "0"
                    if col in ("created_at", "occurred_at"):
                        return f"'{to_db_timestamp(_utcnow())}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _init_settings(self) -> None:
        defaults = SettingsSchema().model_dump()
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, str(value)),
                )


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


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
            rows = await cursor.fetchall()
            return rows


class UserRepository(BaseRepository):
    """Repository for athlete and admin accounts."""

    def create(
        self,
        name: str,
        email: str,
        role: str = ROLE_ATHLETE,
        height: Optional[float] = None,
        weight: Optional[float] = None,
        created_at: Optional[datetime.datetime] = None,
    ) -> int:
        name = name.strip()
        email = email.strip().lower()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValueError(f"name must be 1-{MAX_NAME_LENGTH} characters")
        if "@" not in email:
            raise ValueError("invalid email")
        if role not in ROLES:
            raise ValueError(f"role must be one of {', '.join(ROLES)}")
        if role != ROLE_ATHLETE:
            height = weight = None
        try:
            uid = self.execute(
                "INSERT INTO users (name, email, role, height, weight, created_at) VALUES (?, ?, ?, ?, ?, ?);",
                (
                    name,
                    email,
                    role,
                    height,
                    weight,
                    to_db_timestamp(created_at or _utcnow()),
                ),
            )
        except sqlite3.IntegrityError:
            raise ConflictError("user with this name or email already exists")
        logger.debug("created %s %s (%s)", role, uid, email)
        return uid

    @staticmethod
    def _to_dict(row: Tuple) -> dict:
        uid, name, email, role, height, weight, created_at = row
        return {
            "id": uid,
            "name": name,
            "email": email,
            "role": role,
            "height": height,
            "weight": weight,
            "created_at": from_db_timestamp(created_at),
        }

    def fetch_detail(self, user_id: int) -> dict:
        rows = self.fetch_all(
            "SELECT id, name, email, role, height, weight, created_at FROM users WHERE id = ?;",
            (user_id,),
        )
        if not rows:
            raise NotFoundError("user not found")
        return self._to_dict(rows[0])

    def fetch_all_users(self, role: Optional[str] = None) -> List[dict]:
        query = "SELECT id, name, email, role, height, weight, created_at FROM users"
        params: Tuple = ()
        if role is not None:
            query += " WHERE role = ?"
            params = (role,)
        rows = self.fetch_all(query + " ORDER BY name;", params)
        return [self._to_dict(r) for r in rows]

    def update_profile(
        self,
        user_id: int,
        name: Optional[str] = None,
        email: Optional[str] = None,
        height: Optional[float] = None,
        weight: Optional[float] = None,
    ) -> dict:
        """Change the given profile fields and return the updated user.

        Height and weight only apply to athletes and are ignored for admins.
        """
        user = self.fetch_detail(user_id)
        if name is not None:
            name = name.strip()
            if not name or len(name) > MAX_NAME_LENGTH:
                raise ValueError(f"name must be 1-{MAX_NAME_LENGTH} characters")
            user["name"] = name
        if email is not None:
            email = email.strip().lower()
            if "@" not in email:
                raise ValueError("invalid email")
            user["email"] = email
        if user["role"] == ROLE_ATHLETE:
            for key, value in (("height", height), ("weight", weight)):
                if value is not None:
                    if value <= 0:
                        raise ValueError(f"{key} must be positive")
                    user[key] = value
        try:
            self.execute(
                "UPDATE users SET name = ?, email = ?, height = ?, weight = ? WHERE id = ?;",
                (user["name"], user["email"], user["height"], user["weight"], user_id),
            )
        except sqlite3.IntegrityError:
            raise ConflictError("user with this name or email already exists")
        logger.debug("updated profile of user %s", user_id)
        return self.fetch_detail(user_id)

    def count_athletes(self, created_since: Optional[datetime.datetime] = None) -> int:
        """Count athlete accounts, optionally only those created since a bound."""
        query, params = _athlete_count_query(created_since)
        return int(self.fetch_all(query, params)[0][0])


class AsyncUserRepository(AsyncBaseRepository):
    """Async read access to user accounts."""

    async def count_athletes(
        self, created_since: Optional[datetime.datetime] = None
    ) -> int:
        query, params = _athlete_count_query(created_since)
        rows = await self.fetch_all(query, params)
        return int(rows[0][0])


class ExerciseRepository(BaseRepository):
    """Repository for the exercise catalog with soft delete."""

    @staticmethod
    def _validate(name: str, calories_per_min: float) -> str:
        name = (name or "").strip()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValueError(f"name must be 1-{MAX_NAME_LENGTH} characters")
        if calories_per_min is None or calories_per_min <= 0:
            raise ValueError("calories per minute must be positive")
        return name

    def _check_name_free(self, name: str, exclude_id: Optional[int] = None) -> None:
        rows = self.fetch_all(
            "SELECT id, is_deleted FROM exercises WHERE name = ? COLLATE NOCASE;",
            (name,),
        )
        for eid, is_deleted in rows:
            if eid == exclude_id:
                continue
            if is_deleted:
                raise ConflictError(
                    f"Exercise with this name exists but is deleted (id {eid})"
                )
            raise ConflictError("Exercise with this name already exists")

    def add(self, name: str, calories_per_min: float) -> int:
        name = self._validate(name, calories_per_min)
        self._check_name_free(name)
        eid = self.execute(
            "INSERT INTO exercises (name, calories_per_min) VALUES (?, ?);",
            (name, float(calories_per_min)),
        )
        logger.debug("added exercise %s (%s)", eid, name)
        return eid

    @staticmethod
    def _to_dict(row: Tuple) -> dict:
        eid, name, cpm, is_deleted = row
        return {
            "id": eid,
            "name": name,
            "calories_per_min": float(cpm),
            "is_deleted": bool(is_deleted),
        }

    def fetch_all_exercises(self, include_deleted: bool = False) -> List[dict]:
        query = "SELECT id, name, calories_per_min, is_deleted FROM exercises"
        if not include_deleted:
            query += " WHERE is_deleted = 0"
        rows = self.fetch_all(query + " ORDER BY name COLLATE NOCASE;")
        return [self._to_dict(r) for r in rows]

    def fetch_detail(self, exercise_id: int) -> dict:
        rows = self.fetch_all(
            "SELECT id, name, calories_per_min, is_deleted FROM exercises WHERE id = ?;",
            (exercise_id,),
        )
        if not rows:
            raise NotFoundError("exercise not found")
        return self._to_dict(rows[0])

    def update(self, exercise_id: int, name: str, calories_per_min: float) -> None:
        name = self._validate(name, calories_per_min)
        detail = self.fetch_detail(exercise_id)
        if detail["is_deleted"]:
            raise NotFoundError("Exercise not found or is deleted")
        self._check_name_free(name, exclude_id=exercise_id)
        self.execute(
            "UPDATE exercises SET name = ?, calories_per_min = ? WHERE id = ?;",
            (name, float(calories_per_min), exercise_id),
        )

    def soft_delete(self, exercise_id: int) -> None:
        self.fetch_detail(exercise_id)
        self.execute(
            "UPDATE exercises SET is_deleted = 1 WHERE id = ?;", (exercise_id,)
        )
        logger.debug("soft deleted exercise %s", exercise_id)

    def restore(self, exercise_id: int, calories_per_min: Optional[float] = None) -> dict:
        rows = self.fetch_all(
            "SELECT id FROM exercises WHERE id = ? AND is_deleted = 1;",
            (exercise_id,),
        )
        if not rows:
            raise NotFoundError("Deleted exercise not found or already restored")
        if calories_per_min is not None:
            if calories_per_min <= 0:
                raise ValueError("calories per minute must be positive")
            self.execute(
                "UPDATE exercises SET is_deleted = 0, calories_per_min = ? WHERE id = ?;",
                (float(calories_per_min), exercise_id),
            )
        else:
            self.execute(
                "UPDATE exercises SET is_deleted = 0 WHERE id = ?;", (exercise_id,)
            )
        return self.fetch_detail(exercise_id)


class WorkoutRepository(BaseRepository):
    """Repository for logged workouts.

    Calories are derived from the exercise's calories-per-minute rate when a
    workout is written and are stored with the row.
    """

    @staticmethod
    def _validate(duration: Optional[int], notes: Optional[str]) -> None:
        if duration is not None:
            if isinstance(duration, bool) or int(duration) != duration:
                raise ValueError("duration must be a whole number of minutes")
            if not MIN_DURATION <= duration <= MAX_DURATION:
                raise ValueError(
                    f"duration must be between {MIN_DURATION} and {MAX_DURATION} minutes"
                )
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValueError(f"notes exceed {MAX_NOTES_LENGTH} characters")

    def _rate(self, exercise_id: int, active_only: bool = True) -> float:
        rows = self.fetch_all(
            "SELECT calories_per_min, is_deleted FROM exercises WHERE id = ?;",
            (exercise_id,),
        )
        if not rows or (active_only and rows[0][1]):
            raise NotFoundError(f"exercise {exercise_id} not found")
        return float(rows[0][0])

    def create(
        self,
        athlete_id: int,
        exercise_id: int,
        duration: int,
        occurred_at: Optional[datetime.datetime] = None,
        notes: Optional[str] = None,
    ) -> int:
        self._validate(duration, notes)
        calories = self._rate(exercise_id) * duration
        now = _utcnow()
        try:
            wid = self.execute(
                "INSERT INTO workouts (athlete_id, exercise_id, duration, calories, occurred_at, notes, created_at) VALUES (?, ?, ?, ?, ?, ?, ?);",
                (
                    athlete_id,
                    exercise_id,
                    int(duration),
                    calories,
                    to_db_timestamp(occurred_at or now),
                    notes,
                    to_db_timestamp(now),
                ),
            )
        except sqlite3.IntegrityError:
            raise NotFoundError(f"athlete {athlete_id} not found")
        logger.debug("logged workout %s for athlete %s", wid, athlete_id)
        return wid

    def fetch_detail(self, workout_id: int) -> Workout:
        rows = self.fetch_all(_WORKOUT_SELECT + " WHERE w.id = ?;", (workout_id,))
        if not rows:
            raise NotFoundError("Workout not found")
        return _workout_from_row(rows[0])

    def update(
        self,
        workout_id: int,
        exercise_id: Optional[int] = None,
        duration: Optional[int] = None,
        occurred_at: Optional[datetime.datetime] = None,
        notes: Optional[str] = None,
    ) -> Workout:
        """Update the given fields; calories follow exercise and duration.

        ``None`` keeps a field as it is. An empty ``notes`` string clears the notes.
        """
        self._validate(duration, notes)
        current = self.fetch_detail(workout_id)
        new_exercise = exercise_id if exercise_id is not None else current.exercise_id
        new_duration = duration if duration is not None else current.duration_minutes
        if exercise_id is not None or duration is not None:
            rate = self._rate(new_exercise, active_only=exercise_id is not None)
            calories = rate * new_duration
        else:
            calories = current.calories_burned
        self.execute(
            "UPDATE workouts SET exercise_id = ?, duration = ?, calories = ?, occurred_at = ?, notes = ? WHERE id = ?;",
            (
                new_exercise,
                int(new_duration),
                calories,
                to_db_timestamp(occurred_at or current.occurred_at),
                (notes or None) if notes is not None else current.notes,
                workout_id,
            ),
        )
        return self.fetch_detail(workout_id)

    def delete(self, workout_id: int) -> None:
        self.fetch_detail(workout_id)
        self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

    def fetch_history(self, athlete_id: Optional[int] = None) -> List[Workout]:
        """Return workouts newest first, optionally for one athlete."""
        query = _WORKOUT_SELECT
        params: Tuple = ()
        if athlete_id is not None:
            query += " WHERE w.athlete_id = ?"
            params = (athlete_id,)
        rows = self.fetch_all(query + " ORDER BY w.occurred_at DESC, w.id DESC;", params)
        return [_workout_from_row(r) for r in rows]

    def fetch_for_stats(
        self, start: datetime.datetime, athlete_id: Optional[int] = None
    ) -> List[Workout]:
        """Return workouts on or after ``start`` ordered oldest first.

        Soft-deleted exercises are joined like any other so historical
        workouts keep counting.
        """
        query, params = _stats_query(start, athlete_id)
        return [_workout_from_row(r) for r in self.fetch_all(query, params)]


class AsyncWorkoutRepository(AsyncBaseRepository):
    """Async read access to workouts for statistics."""

    async def fetch_for_stats(
        self, start: datetime.datetime, athlete_id: Optional[int] = None
    ) -> List[Workout]:
        query, params = _stats_query(start, athlete_id)
        rows = await self.fetch_all(query, params)
        return [_workout_from_row(r) for r in rows]


class SettingsRepository(BaseRepository):
    """Repository for general application settings synchronized with YAML."""

    def __init__(
        self, db_path: str = "athlete_track.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _raw_all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        return {k: v for k, v in rows}

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self.all_settings())

    def get_text(self, key: str, default: str) -> str:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def set_text(self, key: str, value: str) -> None:
        data = self._raw_all_settings()
        data[key] = value
        validate_settings(data)
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(value))

    def all_settings(self) -> dict:
        """Return all settings coerced to their schema types."""
        return SettingsSchema(**self._raw_all_settings()).model_dump()
