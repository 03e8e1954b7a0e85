#!/usr/bin/env python3
"""
Tests for session orchestration.
Tests the full flow: callbacks → live metrics → score → persist → progress.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import sqlite3
import threading
import numpy as np
import pytest
from unittest.mock import Mock

from speakup.config_loader import FeedbackConfig, SpeakUpConfig
from speakup.database import PracticeDatabase
from speakup.models import GOAL_TEMPLATES, DrillMode, LiveSnapshot, ScoreFlag, SessionState
from speakup.session import (
    PersistenceError,
    SessionController,
    SessionStateError,
)


def quiet_config():
    return SpeakUpConfig(feedback=FeedbackConfig(show_realtime_feedback=False))


def speak(controller, words=150, duration=60.0, fillers=0):
    """Feed evenly spaced audio levels and words."""
    step = duration / words
    for i in range(words):
        t = i * step
        controller.on_audio_level(t, -25.0)
        controller.on_word(t, "um" if i < fillers else "word", is_filler_candidate=i < fillers)


@pytest.fixture
def db(tmp_path):
    database = PracticeDatabase(str(tmp_path / "practice.db"))
    yield database
    database.close()


@pytest.fixture
def controller(db):
    return SessionController(config=quiet_config(), db=db)


class TestLifecycle:
    """Test controller state machine"""

    def test_initial_state(self, controller):
        assert controller.state == SessionState.IDLE
        assert isinstance(controller.get_snapshot(), LiveSnapshot)

    def test_cannot_start_twice(self, controller):
        controller.start_session()
        with pytest.raises(SessionStateError):
            controller.start_session()

    def test_stop_without_session(self, controller):
        with pytest.raises(SessionStateError):
            controller.stop_session()

    def test_session_state_error_is_runtime_error(self):
        assert issubclass(SessionStateError, RuntimeError)

    def test_events_ignored_when_idle(self, controller):
        controller.on_word(1.0, "ignored")
        controller.on_audio_level(1.0, -20.0)
        assert controller.get_snapshot().word_count == 0

    def test_new_session_after_complete(self, controller):
        controller.start_session()
        speak(controller, words=10, duration=5.0)
        controller.stop_session(timestamp=5.0)

        assert controller.start_session() == 2
        assert controller.get_snapshot().word_count == 0


class TestRecording:
    """Test a scored recording session"""

    def test_full_session(self, controller, db):
        controller.start_session(category="Quick Fire")
        speak(controller)

        live = controller.get_snapshot()
        assert live.word_count > 0

        outcome = controller.stop_session(timestamp=60.0)

        assert controller.state == SessionState.COMPLETE
        assert outcome.saved
        assert outcome.score.pace == 100
        assert outcome.score.total_words == 150
        assert outcome.score.overall >= 80

        stored = db.get_recording(outcome.record_id)
        assert stored.category == "Quick Fire"
        assert stored.score.overall == outcome.score.overall

    def test_progress_updated(self, controller, db):
        controller.start_session()
        speak(controller, words=20, duration=10.0)
        outcome = controller.stop_session(timestamp=10.0)

        assert outcome.ledger_update.streak == 1
        assert db.get_achievements()["first_recording"].is_unlocked
        assert "first_recording" in {a.achievement_id for a in controller.ledger.newly_unlocked}

    def test_fillers_counted(self, controller):
        controller.start_session()
        speak(controller, words=100, duration=40.0, fillers=5)
        outcome = controller.stop_session(timestamp=40.0)

        assert outcome.score.total_filler_count == 5
        assert outcome.score.filler_usage == 75

    def test_audio_blocks_accepted(self, controller):
        controller.start_session()
        controller.on_audio_block(0.0, np.full(512, 0.1, dtype=np.float32))
        controller.on_word(0.0, "hello")

        snapshot = controller.get_snapshot()
        assert snapshot.is_speaking
        assert snapshot.audio_level == pytest.approx(-20.0, abs=0.01)

    def test_audio_stall_marks_degraded(self, controller):
        controller.start_session()
        controller.on_audio_level(0.0, -25.0)
        for i in range(20):
            controller.on_word(i * 0.5, "word")

        outcome = controller.stop_session(timestamp=10.0)

        assert controller.ingest.audio_stalled
        assert outcome.score.has_flag(ScoreFlag.DEGRADED)
        assert outcome.score.total_words == 20

    def test_non_zero_clock_with_transcript_first(self, controller):
        start = 1000.0
        controller.start_session(start_time=start)
        for i in range(150):
            t = start + i * 0.4
            controller.on_word(t, "word")
            controller.on_audio_level(t + 0.05, -25.0)

        outcome = controller.stop_session(timestamp=start + 60.0)

        assert not controller.ingest.audio_stalled
        assert not outcome.score.has_flag(ScoreFlag.DEGRADED)
        assert outcome.score.total_words == 150
        assert outcome.score.pace == 100

    def test_background_finalization(self, controller):
        done = threading.Event()
        received = []

        def on_complete(outcome):
            received.append(outcome)
            done.set()

        controller.start_session()
        speak(controller, words=30, duration=15.0)

        assert controller.stop_session(timestamp=15.0, background=True, on_complete=on_complete) is None
        assert done.wait(timeout=5.0)
        controller.wait(timeout=5.0)

        assert controller.state == SessionState.COMPLETE
        assert received[0].record_id is not None


class TestCancel:
    """Test session cancellation"""

    def test_cancel_writes_nothing(self, controller, db):
        controller.start_session()
        speak(controller, words=50, duration=20.0)

        assert controller.cancel_session()

        assert controller.state == SessionState.CANCELLED
        assert db.count_recordings() == 0
        assert controller.get_snapshot().word_count == 0
        assert not db.get_achievements()["first_recording"].is_unlocked

    def test_cancel_without_session(self, controller):
        assert not controller.cancel_session()

    def test_cancel_drill(self, controller, db):
        controller.start_session(drill_mode=DrillMode.PACE_CONTROL)
        controller.on_word(1.0, "word")
        controller.cancel_session()

        assert db.get_recent_drill_results() == []


class TestDrillSession:
    """Test drills run through the controller"""

    def test_drill_auto_completes(self, controller, db):
        controller.start_session(drill_mode=DrillMode.FILLER_ELIMINATION)
        controller.on_audio_level(1.0, -25.0)
        controller.on_word(1.0, "um", is_filler_candidate=True)

        controller.tick(15.0)
        controller.wait(timeout=5.0)

        assert controller.state == SessionState.COMPLETE
        result = controller.last_outcome.drill_result
        assert result.score == 75
        assert not result.passed
        assert len(db.get_recent_drill_results()) == 1
        # Drills are not scored recordings
        assert db.count_recordings() == 0

    def test_drill_explicit_stop(self, controller):
        controller.start_session(drill_mode=DrillMode.PACE_CONTROL)
        outcome = controller.stop_session(timestamp=30.0)

        assert outcome.is_drill
        assert outcome.drill_result.mode == DrillMode.PACE_CONTROL
        assert outcome.score is None


class TestPersistenceFailure:
    """Test save failure and retry"""

    @pytest.fixture
    def failing_db(self):
        db = Mock()
        db.get_achievements.return_value = {}
        db.get_goals.return_value = []
        db.get_all_recordings.return_value = []
        db.insert_recording.side_effect = sqlite3.OperationalError("database is locked")
        return db

    def test_failure_keeps_outcome(self, failing_db):
        controller = SessionController(config=quiet_config(), db=failing_db)
        controller.start_session()
        speak(controller, words=30, duration=15.0)

        with pytest.raises(PersistenceError):
            controller.stop_session(timestamp=15.0)

        assert controller.state == SessionState.ERROR
        assert controller.pending_outcome is not None
        assert controller.pending_outcome.score.total_words == 30

    def test_retry_save(self, failing_db):
        controller = SessionController(config=quiet_config(), db=failing_db)
        controller.start_session()
        speak(controller, words=30, duration=15.0)
        with pytest.raises(PersistenceError):
            controller.stop_session(timestamp=15.0)
        score = controller.pending_outcome.score

        failing_db.insert_recording.side_effect = None
        failing_db.insert_recording.return_value = 42
        outcome = controller.retry_save()

        assert outcome.record_id == 42
        assert outcome.score is score
        assert controller.state == SessionState.COMPLETE
        assert controller.pending_outcome is None

    def test_drill_save_failure_stays_off_producer_thread(self, failing_db):
        failing_db.insert_drill_result.side_effect = sqlite3.OperationalError("disk full")
        controller = SessionController(config=quiet_config(), db=failing_db)
        controller.start_session(drill_mode=DrillMode.FILLER_ELIMINATION)
        controller.on_audio_level(1.0, -25.0)
        controller.on_word(1.0, "word")

        # Crossing the deadline inside the callback must not raise into it
        controller.on_audio_level(16.0, -25.0)
        controller.on_word(16.0, "late")
        controller.wait(timeout=5.0)

        assert controller.state == SessionState.ERROR
        assert isinstance(controller.last_error, PersistenceError)
        assert controller.pending_outcome.drill_result.passed

        failing_db.insert_drill_result.side_effect = None
        failing_db.insert_drill_result.return_value = 7
        outcome = controller.retry_save()

        assert outcome.drill_result_id == 7
        assert controller.state == SessionState.COMPLETE

    def test_concurrent_producers_finish_drill_once(self, db):
        controller = SessionController(config=quiet_config(), db=db)
        controller.start_session(drill_mode=DrillMode.FILLER_ELIMINATION)
        errors = []

        def produce(callback):
            try:
                for i in range(40):
                    callback(i * 0.5)
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=produce, args=(lambda t: controller.on_audio_level(t, -25.0),)),
            threading.Thread(target=produce, args=(lambda t: controller.on_word(t, "word"),)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5.0)
        controller.wait(timeout=5.0)

        assert errors == []
        assert controller.state == SessionState.COMPLETE
        assert len(db.get_recent_drill_results()) == 1

    def test_retry_without_pending(self, controller):
        with pytest.raises(SessionStateError):
            controller.retry_save()


class TestIntegrations:
    """Test broadcaster and progress helpers"""

    def test_broadcaster_notified(self, db):
        broadcaster = Mock()
        controller = SessionController(config=quiet_config(), db=db, broadcaster=broadcaster)

        controller.start_session()
        speak(controller, words=10, duration=5.0)
        controller.stop_session(timestamp=5.0)

        states = [call.args[0] for call in broadcaster.broadcast_state_change.call_args_list]
        assert states == ['recording', 'processing', 'complete']
        broadcaster.start_session.assert_called_once()
        broadcaster.end_session.assert_called_once()
        broadcaster.broadcast_score.assert_called_once()
        assert broadcaster.update_snapshot.called
        assert broadcaster.broadcast_achievement.called

    def test_mark_listened(self, controller, db):
        assert controller.mark_listened() is not None
        assert controller.mark_listened() is None
        assert db.get_achievements()["listen_back"].is_unlocked

    def test_add_goal(self, controller, db):
        goal = controller.add_goal(GOAL_TEMPLATES[0])

        assert [g.goal_id for g in db.get_goals()] == [goal.goal_id]

        controller.start_session()
        speak(controller, words=10, duration=5.0)
        controller.stop_session(timestamp=5.0)

        assert db.get_goals()[0].current == 1
