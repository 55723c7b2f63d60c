import sqlite3
import json
import logging
import uuid
from datetime import datetime, timezone
import pandas as pd
import hashlib

from constants import BACKUP_VERSION, DEFAULT_DB_PATH, DEFAULT_PLAN_PREFS, TIMEFRAME_OPTIONS
from models import AthleteProfile, ParsedActivity, WorkoutRecord, utc_now_ms
from tcx_parser import format_distance_km, format_duration, format_pace

logger = logging.getLogger(__name__)

# The date column is UTC "YYYY-MM-DD HH:MM" so timeframe cutoffs compare as strings
DATE_FORMAT = '%Y-%m-%d %H:%M'

INSERT_WORKOUT_SQL = '''
    INSERT INTO workouts (
        id, created_at, source_hash, filename, date,
        distance_km, duration_s, pace_s_km,
        avg_hr, max_hr, elevation_m, training_load,
        json_data, ai_coach_feedback, next_workout_suggestion
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
'''


class BackupError(ValueError):
    """A backup document that cannot be restored."""


def _workout_date(parsed, created_at_ms):
    started = parsed.start_time or datetime.fromtimestamp((created_at_ms or 0) / 1000, tz=timezone.utc)
    if started.tzinfo is not None:
        started = started.astimezone(timezone.utc)
    return started.strftime(DATE_FORMAT)


def _optional_dict(backup, key):
    value = backup.get(key)
    if value is not None and not isinstance(value, dict):
        raise BackupError(f"'{key}' must be an object")
    return value


def _read_backup_history(backup):
    """Validate every history entry up front. Returns [(entry, ParsedActivity)]."""
    history = backup.get('history')
    if history is None:
        return []
    if not isinstance(history, list):
        raise BackupError("'history' must be a list")

    records = []
    seen_ids = set()
    for position, entry in enumerate(history):
        if not isinstance(entry, dict) or not isinstance(entry.get('parsed'), dict):
            raise BackupError(f"history entry {position} has no parsed activity")
        workout_id = entry.get('id')
        if workout_id:
            if workout_id in seen_ids:
                raise BackupError(f"duplicate workout id {workout_id}")
            seen_ids.add(workout_id)
        try:
            parsed = ParsedActivity.from_dict(entry['parsed'])
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise BackupError(f"history entry {position}: {exc}") from exc
        records.append((entry, parsed))
    return records


class DatabaseManager:
    def __init__(self, db_path=DEFAULT_DB_PATH):
        self.db_path = db_path
        self.create_tables()

    def get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def create_tables(self):
        with self.get_connection() as conn:
            # Summary columns for sorting/filtering; parsed payload lives in json_data
            conn.execute('''
                CREATE TABLE IF NOT EXISTS workouts (
                    id TEXT PRIMARY KEY,
                    created_at INTEGER,     -- epoch ms, append order
                    source_hash TEXT,
                    filename TEXT,
                    date TEXT,
                    distance_km REAL,
                    duration_s REAL,
                    pace_s_km REAL,
                    avg_hr INTEGER,
                    max_hr INTEGER,
                    elevation_m REAL,
                    training_load INTEGER,
                    json_data TEXT,
                    ai_coach_feedback TEXT DEFAULT '',
                    next_workout_suggestion TEXT DEFAULT ''
                )
            ''')
            conn.execute('''
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            ''')

            # Migration: add columns introduced after the first schema
            cursor = conn.execute("PRAGMA table_info(workouts)")
            columns = [info[1] for info in cursor.fetchall()]

            migrations = {
                'source_hash': 'TEXT',
                'training_load': 'INTEGER',
                'ai_coach_feedback': "TEXT DEFAULT ''",
                'next_workout_suggestion': "TEXT DEFAULT ''",
            }

            for col, dtype in migrations.items():
                if col not in columns:
                    logger.info("Migrating database: adding %s column", col)
                    conn.execute(f"ALTER TABLE workouts ADD COLUMN {col} {dtype}")

    # --- WORKOUT HISTORY ---

    def _insert_workout(self, conn, record: WorkoutRecord, source_hash=None):
        parsed = record.parsed
        conn.execute(INSERT_WORKOUT_SQL, (
            record.id,
            record.created_at,
            source_hash,
            record.filename,
            _workout_date(parsed, record.created_at),
            parsed.total_distance_meters / 1000,
            parsed.total_duration_seconds,
            parsed.avg_pace_seconds_per_km,
            parsed.avg_hr,
            parsed.max_hr,
            parsed.elevation_gain,
            parsed.training_load_score,
            json.dumps(parsed.to_dict()),
            record.ai_coach_feedback or '',
            record.next_workout_suggestion or '',
        ))

    def add_workout(self, parsed: ParsedActivity, filename=None, source_hash=None) -> WorkoutRecord:
        """Append a parsed activity to the history under a fresh id."""
        record = WorkoutRecord(
            id=uuid.uuid4().hex,
            created_at=utc_now_ms(),
            parsed=parsed,
            filename=filename,
            distance=format_distance_km(parsed.total_distance_meters),
            duration=format_duration(parsed.total_duration_seconds),
            avg_pace=format_pace(parsed.avg_pace_seconds_per_km),
        )
        with self.get_connection() as conn:
            self._insert_workout(conn, record, source_hash)
        return record

    def attach_coaching(self, workout_id, feedback, suggestion):
        """Store coaching text next to a workout. The parsed payload is untouched."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE workouts SET ai_coach_feedback = ?, next_workout_suggestion = ? WHERE id = ?",
                (feedback or '', suggestion or '', workout_id),
            )
            return cursor.rowcount > 0

    def workout_exists(self, source_hash):
        with self.get_connection() as conn:
            cursor = conn.execute("SELECT 1 FROM workouts WHERE source_hash = ?", (source_hash,))
            return cursor.fetchone() is not None

    def delete_workout(self, workout_id):
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM workouts WHERE id = ?", (workout_id,))
            return cursor.rowcount > 0

    def get_count(self):
        with self.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM workouts").fetchone()[0]

    def _row_to_record(self, row) -> WorkoutRecord:
        parsed = ParsedActivity.from_dict(json.loads(row['json_data']))
        return WorkoutRecord(
            id=row['id'],
            created_at=row['created_at'],
            parsed=parsed,
            filename=row['filename'],
            distance=format_distance_km(parsed.total_distance_meters),
            duration=format_duration(parsed.total_duration_seconds),
            avg_pace=format_pace(parsed.avg_pace_seconds_per_km),
            ai_coach_feedback=row['ai_coach_feedback'] or '',
            next_workout_suggestion=row['next_workout_suggestion'] or '',
        )

    def get_workout(self, workout_id):
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM workouts WHERE id = ?", (workout_id,)).fetchone()
            if row:
                return self._row_to_record(row)
            return None

    def get_workouts(self, timeframe="All Time", sort_by='date', sort_order='desc'):
        """
        Fetch history with server-side sorting.
        sort_by options: 'date', 'distance', 'duration', 'pace', 'load'
        """
        sort_map = {
            'date': 'created_at',
            'distance': 'distance_km',
            'duration': 'duration_s',
            'pace': 'pace_s_km',
            'load': 'training_load',
        }
        db_sort_col = sort_map.get(sort_by, 'created_at')
        order_sql = "ASC" if sort_order == "asc" else "DESC"

        query = "SELECT * FROM workouts"
        params = []

        # --- Timeframe Filtering (UTC, same clock as the date column) ---
        if timeframe not in TIMEFRAME_OPTIONS:
            logger.warning("Unknown timeframe '%s', showing all workouts", timeframe)
        where_clauses = []
        now = datetime.now(timezone.utc)
        day_windows = {"Last 7 Days": 7, "Last 30 Days": 30, "Last 90 Days": 90}
        if timeframe in day_windows:
            date_limit = (now - pd.Timedelta(days=day_windows[timeframe])).strftime(DATE_FORMAT)
            where_clauses.append("date >= ?")
            params.append(date_limit)
        elif timeframe == "This Year":
            where_clauses.append("date >= ?")
            params.append(f"{now.year}-01-01")

        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)

        # created_at breaks ties so equal sort keys keep append order
        query += f" ORDER BY {db_sort_col} {order_sql}, created_at {order_sql}"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_record(row) for row in rows]

    # --- SETTINGS (key/value JSON) ---

    def get_setting(self, key, default=None):
        with self.get_connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            if row is None:
                return default
            try:
                return json.loads(row[0])
            except ValueError:
                logger.warning("Ignoring unreadable setting '%s'", key)
                return default

    def _put_setting(self, conn, key, value):
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), utc_now_ms()),
        )

    def set_setting(self, key, value):
        with self.get_connection() as conn:
            self._put_setting(conn, key, value)

    def delete_setting(self, key):
        with self.get_connection() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    def save_profile(self, profile: AthleteProfile):
        self.set_setting('profile', profile.to_dict())

    def load_profile(self):
        data = self.get_setting('profile')
        return AthleteProfile.from_dict(data) if isinstance(data, dict) and data else None

    def save_plan_prefs(self, prefs):
        self.set_setting('plan_prefs', {**DEFAULT_PLAN_PREFS, **(prefs or {})})

    def load_plan_prefs(self):
        stored = self.get_setting('plan_prefs')
        return {**DEFAULT_PLAN_PREFS, **(stored if isinstance(stored, dict) else {})}

    def save_readiness(self, readiness):
        """Morning readiness check (score, status, summary, recommendation, lastUpdated ms)."""
        self.set_setting('readiness', readiness)

    def load_readiness(self):
        return self.get_setting('readiness')

    def save_plan(self, plan):
        """Store the current training plan. None clears it."""
        if plan is None:
            self.delete_setting('plan')
        else:
            self.set_setting('plan', plan)

    def load_plan(self):
        return self.get_setting('plan')

    # --- BACKUP & RESTORE ---

    def create_backup(self) -> str:
        profile = self.load_profile()
        history = self.get_workouts(sort_by='date', sort_order='asc')
        backup = {
            'version': BACKUP_VERSION,
            'timestamp': utc_now_ms(),
            'profile': profile.to_dict() if profile else None,
            'settings': self.get_setting('app_settings'),
            'readiness': self.load_readiness(),
            'history': [record.to_dict() for record in history],
            'plan': self.load_plan(),
            'planPrefs': self.load_plan_prefs(),
        }
        return json.dumps(backup, indent=2)

    def restore_backup(self, json_string) -> bool:
        """
        Replace profile, settings, readiness, plan and history from a backup.

        The whole document is validated before anything is written, and all
        writes share one transaction. Returns False (logged) on bad input.
        """
        try:
            backup = json.loads(json_string)
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to restore backup: %s", exc)
            return False
        if not isinstance(backup, dict) or not backup.get('version'):
            logger.warning("Failed to restore backup: missing version")
            return False

        try:
            profile = _optional_dict(backup, 'profile')
            readiness = _optional_dict(backup, 'readiness')
            plan = _optional_dict(backup, 'plan')
            plan_prefs = _optional_dict(backup, 'planPrefs')
            records = _read_backup_history(backup)
            profile = AthleteProfile.from_dict(profile) if profile else None
        except (BackupError, TypeError) as exc:
            logger.warning("Failed to restore backup: %s", exc)
            return False

        try:
            with self.get_connection() as conn:
                if profile is not None:
                    self._put_setting(conn, 'profile', profile.to_dict())
                if backup.get('settings') is not None:
                    self._put_setting(conn, 'app_settings', backup['settings'])
                if readiness:
                    self._put_setting(conn, 'readiness', readiness)
                if plan is None:
                    conn.execute("DELETE FROM settings WHERE key = 'plan'")
                else:
                    self._put_setting(conn, 'plan', plan)
                if plan_prefs:
                    self._put_setting(conn, 'plan_prefs', {**DEFAULT_PLAN_PREFS, **plan_prefs})

                conn.execute("DELETE FROM workouts")
                for entry, parsed in records:
                    record = WorkoutRecord(
                        id=entry.get('id') or uuid.uuid4().hex,
                        created_at=entry.get('created_at') or 0,
                        parsed=parsed,
                        filename=entry.get('filename'),
                        ai_coach_feedback=entry.get('ai_coach_feedback') or '',
                        next_workout_suggestion=entry.get('next_workout_suggestion') or '',
                    )
                    self._insert_workout(conn, record)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.warning("Failed to restore backup, nothing changed: %s", exc)
            return False
        return True


def calculate_file_hash(filepath):
    """Calculate SHA-256 hash of a file for deduplication."""
    hasher = hashlib.sha256()
    with open(filepath, 'rb') as f:
        buf = f.read(65536)
        while len(buf) > 0:
            hasher.update(buf)
            buf = f.read(65536)
    return hasher.hexdigest()
