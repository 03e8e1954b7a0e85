#!/usr/bin/env python3
"""
Tests for SQLite practice storage.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from datetime import datetime, timedelta
import pytest

from speakup.database import PracticeDatabase
from speakup.models import (
    DrillMode,
    DrillResult,
    Goal,
    GOAL_TEMPLATES,
    ScoreFlag,
    SessionRecord,
    SpeechScore,
)


def make_record(when, overall=75, flags=(), category=None):
    return SessionRecord(
        recorded_at=when,
        duration_seconds=60.0,
        score=SpeechScore(
            overall=overall,
            clarity=80,
            pace=90,
            filler_usage=70,
            pause_quality=60,
            words_per_minute=142.5,
            total_filler_count=3,
            total_words=140,
            pause_count=4,
            average_pause_seconds=0.9,
            duration_seconds=60.0,
            filler_breakdown=(("um", 2), ("like", 1)),
            flags=flags,
        ),
        category=category,
    )


@pytest.fixture
def db(tmp_path):
    database = PracticeDatabase(str(tmp_path / "practice.db"))
    yield database
    database.close()


class TestSchema:
    """Test schema creation"""

    def test_tables_exist(self, db):
        cursor = db._get_connection().cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}

        assert {'recordings', 'drill_results', 'goals', 'achievements'} <= tables

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "practice.db"
        database = PracticeDatabase(str(path))
        assert path.parent.exists()
        database.close()


class TestRecordings:
    """Test recording storage"""

    def test_round_trip(self, db):
        when = datetime(2026, 10, 18, 9, 30)
        record_id = db.insert_recording(make_record(when, flags=(ScoreFlag.SHORT_SESSION,), category="Quick Fire"))

        stored = db.get_recording(record_id)

        assert stored.record_id == record_id
        assert stored.recorded_at == when
        assert stored.category == "Quick Fire"
        assert stored.score.overall == 75
        assert stored.score.words_per_minute == pytest.approx(142.5)
        assert stored.score.filler_breakdown == (("um", 2), ("like", 1))
        assert stored.score.flags == (ScoreFlag.SHORT_SESSION,)

    def test_missing_recording(self, db):
        assert db.get_recording(999) is None

    def test_recent_newest_first(self, db):
        base = datetime(2026, 10, 1, 9)
        for day in (2, 0, 1):
            db.insert_recording(make_record(base + timedelta(days=day), overall=60 + day))

        recent = db.get_recent_recordings(limit=2)

        assert [r.score.overall for r in recent] == [62, 61]

    def test_all_oldest_first(self, db):
        base = datetime(2026, 10, 1, 9)
        for day in (2, 0, 1):
            db.insert_recording(make_record(base + timedelta(days=day), overall=60 + day))

        assert [r.score.overall for r in db.get_all_recordings()] == [60, 61, 62]

    def test_filter_by_flag(self, db):
        base = datetime(2026, 10, 1, 9)
        db.insert_recording(make_record(base, flags=(ScoreFlag.DEGRADED,)))
        db.insert_recording(make_record(base + timedelta(hours=1)))

        degraded = db.get_recordings_with_flag(ScoreFlag.DEGRADED)

        assert len(degraded) == 1
        assert degraded[0].score.has_flag(ScoreFlag.DEGRADED)

    def test_delete(self, db):
        record_id = db.insert_recording(make_record(datetime(2026, 10, 1, 9)))

        assert db.delete_recording(record_id)
        assert not db.delete_recording(record_id)
        assert db.count_recordings() == 0

    def test_summary(self, db):
        db.insert_recording(make_record(datetime(2026, 10, 1, 9), overall=70))
        db.insert_recording(make_record(datetime(2026, 10, 2, 9), overall=90))

        summary = db.get_summary()

        assert summary['total_sessions'] == 2
        assert summary['avg_score'] == pytest.approx(80.0)
        assert summary['best_score'] == 90
        assert summary['total_words'] == 280

    def test_database_size(self, db):
        db.insert_recording(make_record(datetime(2026, 10, 1, 9)))
        assert db.get_database_size_mb() > 0


class TestDrillResults:
    """Test drill result storage"""

    def test_insert_and_filter(self, db):
        when = datetime(2026, 10, 18, 9)
        db.insert_drill_result(DrillResult(
            mode=DrillMode.PACE_CONTROL, score=100, passed=True,
            details="Average pace: 150 WPM", completed_at=when, final_wpm=150.0,
        ))
        db.insert_drill_result(DrillResult(
            mode=DrillMode.FILLER_ELIMINATION, score=50, passed=False,
            details="2 filler(s) detected", completed_at=when + timedelta(minutes=1), filler_count=2,
        ))

        everything = db.get_recent_drill_results()
        pace_only = db.get_recent_drill_results(mode=DrillMode.PACE_CONTROL)

        assert [r.mode for r in everything] == [DrillMode.FILLER_ELIMINATION, DrillMode.PACE_CONTROL]
        assert len(pace_only) == 1
        assert pace_only[0].passed
        assert pace_only[0].final_wpm == pytest.approx(150.0)


class TestGoalsAndAchievements:
    """Test goal and achievement storage"""

    def test_goal_upsert(self, db):
        goal = Goal.from_template(GOAL_TEMPLATES[0], now=datetime(2026, 10, 12, 9))
        db.save_goal(goal)

        goal.current = 4
        db.save_goal(goal)

        goals = db.get_goals()
        assert len(goals) == 1
        assert goals[0].goal_id == goal.goal_id
        assert goals[0].current == 4
        assert goals[0].type == goal.type

    def test_active_only(self, db):
        active = Goal.from_template(GOAL_TEMPLATES[0], now=datetime(2026, 10, 12, 9))
        done = Goal.from_template(GOAL_TEMPLATES[1], now=datetime(2026, 10, 12, 9))
        done.is_completed = True
        db.save_goal(active)
        db.save_goal(done)

        assert [g.goal_id for g in db.get_goals(active_only=True)] == [active.goal_id]

    def test_delete_goal(self, db):
        goal = Goal.from_template(GOAL_TEMPLATES[0], now=datetime(2026, 10, 12, 9))
        db.save_goal(goal)
        assert db.delete_goal(goal.goal_id)
        assert db.get_goals() == []

    def test_achievements_seeded_locked(self, db):
        achievements = db.get_achievements()

        assert len(achievements) == 12
        assert not any(a.is_unlocked for a in achievements.values())

    def test_unlock_persisted(self, db):
        achievement = db.get_achievements()["first_recording"]
        achievement.is_unlocked = True
        achievement.unlocked_date = datetime(2026, 10, 18, 9)
        db.save_achievement(achievement)

        stored = db.get_achievements()["first_recording"]
        assert stored.is_unlocked
        assert stored.unlocked_date == datetime(2026, 10, 18, 9)
