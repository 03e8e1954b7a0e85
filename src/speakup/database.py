"""
SQLite database interface for practice history.
"""

import json
import sqlite3
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    Achievement,
    AchievementDefinition,
    DrillMode,
    DrillResult,
    Goal,
    GoalType,
    ScoreFlag,
    SessionRecord,
    SpeechScore,
)


class PracticeDatabase:
    """
    Thread-safe SQLite database for recordings, drills, goals and achievements.

    Features:
    - Automatic schema creation
    - Connection per thread
    - Autocommit writes
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "~/.local/share/speakup/practice.db"):
        """
        Initialize practice database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Thread-local storage for connections
        self._local = threading.local()

        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'conn'):
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None  # Autocommit mode
            )
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    def _init_schema(self):
        """Initialize database schema if needed."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS recordings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recorded_at REAL NOT NULL,
                duration_s REAL NOT NULL,
                category TEXT,
                overall INTEGER NOT NULL,
                clarity INTEGER NOT NULL,
                pace INTEGER NOT NULL,
                filler_usage INTEGER NOT NULL,
                pause_quality INTEGER NOT NULL,
                wpm REAL,
                total_filler_count INTEGER DEFAULT 0,
                total_words INTEGER DEFAULT 0,
                pause_count INTEGER DEFAULT 0,
                avg_pause_s REAL DEFAULT 0,
                filler_breakdown TEXT,
                flags TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS drill_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                mode TEXT NOT NULL,
                completed_at REAL NOT NULL,
                score INTEGER NOT NULL,
                passed INTEGER NOT NULL,
                details TEXT,
                final_wpm REAL,
                filler_count INTEGER DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS goals (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                target INTEGER NOT NULL,
                current INTEGER DEFAULT 0,
                baseline REAL DEFAULT 0,
                start_date REAL NOT NULL,
                deadline REAL NOT NULL,
                is_completed INTEGER DEFAULT 0,
                is_active INTEGER DEFAULT 1
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS achievements (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                icon TEXT,
                is_unlocked INTEGER DEFAULT 0,
                unlocked_date REAL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_recordings_recorded_at ON recordings(recorded_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_drill_results_completed_at ON drill_results(completed_at)")

        cursor.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")

    # ───────────────────────── recordings ─────────────────────────

    def insert_recording(self, record: SessionRecord) -> int:
        """
        Insert a scored session.

        Args:
            record: Session to store (record_id is ignored)

        Returns:
            Recording ID
        """
        score = record.score
        data = {
            'recorded_at': record.recorded_at.timestamp(),
            'duration_s': record.duration_seconds,
            'category': record.category,
            'overall': score.overall,
            'clarity': score.clarity,
            'pace': score.pace,
            'filler_usage': score.filler_usage,
            'pause_quality': score.pause_quality,
            'wpm': score.words_per_minute,
            'total_filler_count': score.total_filler_count,
            'total_words': score.total_words,
            'pause_count': score.pause_count,
            'avg_pause_s': score.average_pause_seconds,
            'filler_breakdown': json.dumps([list(item) for item in score.filler_breakdown]),
            'flags': json.dumps([f.value for f in score.flags]),
        }

        conn = self._get_connection()
        cursor = conn.cursor()
        columns = ', '.join(data.keys())
        placeholders = ', '.join(['?' for _ in data])
        cursor.execute(f"INSERT INTO recordings ({columns}) VALUES ({placeholders})", list(data.values()))
        return cursor.lastrowid

    def get_recording(self, record_id: int) -> Optional[SessionRecord]:
        """Get recording by ID."""
        cursor = self._get_connection().cursor()
        cursor.execute("SELECT * FROM recordings WHERE id = ?", (record_id,))
        row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    def get_recent_recordings(self, limit: int = 10) -> List[SessionRecord]:
        """
        Get recent recordings, newest first.

        Args:
            limit: Maximum number of recordings to return
        """
        cursor = self._get_connection().cursor()
        cursor.execute("""
            SELECT * FROM recordings
            ORDER BY recorded_at DESC
            LIMIT ?
        """, (limit,))
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_all_recordings(self) -> List[SessionRecord]:
        """Full history, oldest first."""
        cursor = self._get_connection().cursor()
        cursor.execute("SELECT * FROM recordings ORDER BY recorded_at ASC")
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_recordings_last_n_days(self, days: int = 7) -> List[SessionRecord]:
        """Recordings from the last N days, oldest first."""
        cutoff_time = time.time() - (days * 24 * 60 * 60)
        cursor = self._get_connection().cursor()
        cursor.execute("""
            SELECT * FROM recordings
            WHERE recorded_at >= ?
            ORDER BY recorded_at ASC
        """, (cutoff_time,))
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_recordings_with_flag(self, flag: ScoreFlag) -> List[SessionRecord]:
        """Recordings whose score carries the given flag, newest first."""
        return [r for r in reversed(self.get_all_recordings()) if r.score.has_flag(flag)]

    def delete_recording(self, record_id: int) -> bool:
        cursor = self._get_connection().cursor()
        cursor.execute("DELETE FROM recordings WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def count_recordings(self) -> int:
        cursor = self._get_connection().cursor()
        cursor.execute("SELECT COUNT(*) FROM recordings")
        return cursor.fetchone()[0]

    def _row_to_record(self, row: sqlite3.Row) -> SessionRecord:
        breakdown = tuple((str(word), int(count)) for word, count in json.loads(row['filler_breakdown'] or '[]'))
        flags = tuple(ScoreFlag(value) for value in json.loads(row['flags'] or '[]'))

        score = SpeechScore(
            overall=row['overall'],
            clarity=row['clarity'],
            pace=row['pace'],
            filler_usage=row['filler_usage'],
            pause_quality=row['pause_quality'],
            words_per_minute=row['wpm'] or 0.0,
            total_filler_count=row['total_filler_count'],
            total_words=row['total_words'],
            pause_count=row['pause_count'],
            average_pause_seconds=row['avg_pause_s'] or 0.0,
            duration_seconds=row['duration_s'],
            filler_breakdown=breakdown,
            flags=flags,
        )
        return SessionRecord(
            recorded_at=datetime.fromtimestamp(row['recorded_at']),
            duration_seconds=row['duration_s'],
            score=score,
            category=row['category'],
            record_id=row['id'],
        )

    # ───────────────────────── drill results ─────────────────────────

    def insert_drill_result(self, result: DrillResult) -> int:
        """
        Insert a drill outcome.

        Returns:
            Drill result ID
        """
        completed_at = result.completed_at or datetime.now()
        cursor = self._get_connection().cursor()
        cursor.execute("""
            INSERT INTO drill_results (mode, completed_at, score, passed, details, final_wpm, filler_count)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            result.mode.value,
            completed_at.timestamp(),
            result.score,
            int(result.passed),
            result.details,
            result.final_wpm,
            result.filler_count,
        ))
        return cursor.lastrowid

    def get_recent_drill_results(self, limit: int = 10, mode: Optional[DrillMode] = None) -> List[DrillResult]:
        """Recent drill results, newest first, optionally for one mode."""
        cursor = self._get_connection().cursor()
        if mode is None:
            cursor.execute("""
                SELECT * FROM drill_results
                ORDER BY completed_at DESC
                LIMIT ?
            """, (limit,))
        else:
            cursor.execute("""
                SELECT * FROM drill_results
                WHERE mode = ?
                ORDER BY completed_at DESC
                LIMIT ?
            """, (mode.value, limit))

        return [
            DrillResult(
                mode=DrillMode(row['mode']),
                score=row['score'],
                passed=bool(row['passed']),
                details=row['details'] or "",
                completed_at=datetime.fromtimestamp(row['completed_at']),
                final_wpm=row['final_wpm'] or 0.0,
                filler_count=row['filler_count'],
            )
            for row in cursor.fetchall()
        ]

    # ───────────────────────── goals ─────────────────────────

    def save_goal(self, goal: Goal):
        """Insert or update a goal."""
        cursor = self._get_connection().cursor()
        cursor.execute("""
            INSERT OR REPLACE INTO goals
                (id, type, title, description, target, current, baseline,
                 start_date, deadline, is_completed, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            goal.goal_id,
            goal.type.value,
            goal.title,
            goal.description,
            goal.target,
            goal.current,
            goal.baseline,
            goal.start_date.timestamp(),
            goal.deadline.timestamp(),
            int(goal.is_completed),
            int(goal.is_active),
        ))

    def get_goals(self, active_only: bool = False) -> List[Goal]:
        """Goals ordered by start date, oldest first."""
        cursor = self._get_connection().cursor()
        query = "SELECT * FROM goals"
        if active_only:
            query += " WHERE is_active = 1 AND is_completed = 0"
        cursor.execute(query + " ORDER BY start_date ASC")

        return [
            Goal(
                type=GoalType(row['type']),
                title=row['title'],
                description=row['description'] or "",
                target=row['target'],
                start_date=datetime.fromtimestamp(row['start_date']),
                deadline=datetime.fromtimestamp(row['deadline']),
                current=row['current'],
                baseline=row['baseline'],
                is_completed=bool(row['is_completed']),
                is_active=bool(row['is_active']),
                goal_id=row['id'],
            )
            for row in cursor.fetchall()
        ]

    def delete_goal(self, goal_id: str) -> bool:
        cursor = self._get_connection().cursor()
        cursor.execute("DELETE FROM goals WHERE id = ?", (goal_id,))
        return cursor.rowcount > 0

    # ───────────────────────── achievements ─────────────────────────

    def save_achievement(self, achievement: Achievement):
        """Insert or update an achievement."""
        unlocked = achievement.unlocked_date.timestamp() if achievement.unlocked_date else None
        cursor = self._get_connection().cursor()
        cursor.execute("""
            INSERT OR REPLACE INTO achievements (id, title, description, icon, is_unlocked, unlocked_date)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            achievement.achievement_id,
            achievement.title,
            achievement.description,
            achievement.icon,
            int(achievement.is_unlocked),
            unlocked,
        ))

    def get_achievements(self) -> Dict[str, Achievement]:
        """
        All achievements keyed by ID, seeding the locked set on first use.
        """
        cursor = self._get_connection().cursor()
        cursor.execute("SELECT * FROM achievements")
        rows = cursor.fetchall()

        if not rows:
            for definition in AchievementDefinition:
                self.save_achievement(definition.to_model())
            cursor.execute("SELECT * FROM achievements")
            rows = cursor.fetchall()

        return {
            row['id']: Achievement(
                achievement_id=row['id'],
                title=row['title'],
                description=row['description'] or "",
                icon=row['icon'] or "",
                is_unlocked=bool(row['is_unlocked']),
                unlocked_date=datetime.fromtimestamp(row['unlocked_date']) if row['unlocked_date'] else None,
            )
            for row in rows
        }

    # ───────────────────────── housekeeping ─────────────────────────

    def get_summary(self) -> Dict[str, Any]:
        """Aggregate totals across all recordings."""
        cursor = self._get_connection().cursor()
        cursor.execute("""
            SELECT COUNT(*) AS total_sessions,
                   COALESCE(SUM(duration_s), 0) AS total_seconds,
                   COALESCE(AVG(overall), 0) AS avg_score,
                   COALESCE(MAX(overall), 0) AS best_score,
                   COALESCE(AVG(wpm), 0) AS avg_wpm,
                   COALESCE(SUM(total_words), 0) AS total_words,
                   COALESCE(SUM(total_filler_count), 0) AS total_fillers
            FROM recordings
        """)
        return dict(cursor.fetchone())

    def get_database_size_mb(self) -> float:
        """
        Get database file size in MB.

        Returns:
            Size in megabytes
        """
        if self.db_path.exists():
            return self.db_path.stat().st_size / (1024 * 1024)
        return 0.0

    def close(self):
        """Close database connection."""
        if hasattr(self._local, 'conn'):
            self._local.conn.close()
            delattr(self._local, 'conn')
