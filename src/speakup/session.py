"""
Session orchestration: ingest -> live metrics -> score -> persist -> progress.
"""

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import numpy as np

from .broadcaster import SessionBroadcaster
from .config_loader import SpeakUpConfig
from .database import PracticeDatabase
from .drills import DrillEvaluator
from .ingest import SignalIngest
from .ledger import LedgerUpdate, ProgressLedger
from .live import LiveMetricsTracker
from .models import (
    AchievementDefinition,
    DrillMode,
    DrillResult,
    Goal,
    GoalTemplate,
    LiveSnapshot,
    ScoreFlag,
    SessionEvent,
    SessionRecord,
    SessionState,
    SpeechScore,
)
from .scoring import SessionScorer


class PersistenceError(Exception):
    """Saving a finished session failed; the outcome is kept for retry_save()."""


class SessionStateError(RuntimeError):
    """Lifecycle call made in the wrong controller state."""


@dataclass
class SessionOutcome:
    """Result of finalizing one session."""
    session_id: int
    recorded_at: datetime
    duration_seconds: float
    category: Optional[str] = None
    score: Optional[SpeechScore] = None
    drill_result: Optional[DrillResult] = None
    record_id: Optional[int] = None
    drill_result_id: Optional[int] = None
    ledger_update: Optional[LedgerUpdate] = None
    saved: bool = False

    @property
    def is_drill(self) -> bool:
        return self.drill_result is not None


class SessionController:
    """
    Owns one practice session at a time.

    Features:
    - Producer callbacks safe to call from audio and transcript threads
    - Lock-free snapshot reads for the presentation layer
    - Optional background finalization
    - Save failures keep the computed outcome for retry
    """

    def __init__(
        self,
        config: Optional[SpeakUpConfig] = None,
        db: Optional[PracticeDatabase] = None,
        broadcaster: Optional[SessionBroadcaster] = None,
        ledger: Optional[ProgressLedger] = None
    ):
        """
        Initialize session controller.

        Args:
            config: Engine configuration (default: built-in defaults)
            db: Persistence collaborator (default: database at config path)
            broadcaster: Optional push channel for UI clients
            ledger: Progress ledger (default: loaded from the database)
        """
        self.config = config or SpeakUpConfig()
        self.db = db or PracticeDatabase(self.config.storage.database_path)
        self.broadcaster = broadcaster
        self.show_feedback = self.config.feedback.show_realtime_feedback

        self.ledger = ledger or ProgressLedger(
            achievements=self.db.get_achievements(),
            goals=self.db.get_goals(),
            show_feedback=self.show_feedback,
        )
        self.scorer = SessionScorer(self.config.scoring)

        live = self.config.live
        self.ingest = SignalIngest(
            stall_threshold_seconds=live.stall_threshold_seconds,
            pause_gap_seconds=live.pause_gap_seconds,
        )
        self.tracker = LiveMetricsTracker(
            window_seconds=live.window_seconds,
            speaking_threshold_db=live.speaking_threshold_db,
            min_pause_seconds=live.min_pause_seconds,
            min_wpm_elapsed_seconds=live.min_wpm_elapsed_seconds,
        )
        if self.broadcaster:
            self.tracker.subscribe(self.broadcaster.update_snapshot)

        self.state = SessionState.IDLE
        self.session_id = 0
        self.category: Optional[str] = None
        self.drill: Optional[DrillEvaluator] = None
        self.started_at: Optional[datetime] = None
        self.start_time = 0.0

        self.pending_outcome: Optional[SessionOutcome] = None
        self.last_outcome: Optional[SessionOutcome] = None
        self.last_error: Optional[Exception] = None

        self._drill_finished = False
        self._worker: Optional[threading.Thread] = None

        # Serializes drain+apply and lifecycle transitions
        self._lock = threading.RLock()

    # ───────────────────────── lifecycle ─────────────────────────

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.RECORDING, SessionState.PROCESSING)

    def start_session(
        self,
        category: Optional[str] = None,
        drill_mode: Optional[DrillMode] = None,
        start_time: float = 0.0,
        drill_duration_seconds: Optional[float] = None
    ) -> int:
        """
        Start a recording or drill session.

        Args:
            category: Prompt category for a recording session
            drill_mode: Run a timed drill instead of a scored recording
            start_time: Session clock value at start
            drill_duration_seconds: Override the drill's default length

        Returns:
            Session number
        """
        with self._lock:
            if self.is_active:
                raise SessionStateError(f"Session already active (state: {self.state.value})")

            self.ingest.reset(start_time)
            self.tracker.reset(start_time)
            self.start_time = start_time
            self.category = category
            self.started_at = datetime.now()
            self._drill_finished = False

            self.drill = None
            if drill_mode is not None:
                self.drill = DrillEvaluator(
                    drill_mode,
                    duration_seconds=drill_duration_seconds,
                    drill_config=self.config.drills,
                    live_config=self.config.live,
                )
                self.drill.start(start_time)

            self.session_id += 1
            self._set_state(SessionState.RECORDING)

            if self.broadcaster:
                self.broadcaster.start_session(
                    self.session_id,
                    mode=drill_mode.value if drill_mode else "recording"
                )

            if self.show_feedback:
                if self.drill:
                    print(f"🎤 Drill started: {self.drill.mode.title} ({self.drill.duration_seconds:.0f}s)", flush=True)
                    if self.drill.prompt:
                        print(f"   └─ Topic: {self.drill.prompt}", flush=True)
                else:
                    print(f"🎤 Recording started (Session #{self.session_id})", flush=True)

            return self.session_id

    def stop_session(
        self,
        timestamp: Optional[float] = None,
        background: bool = False,
        on_complete: Optional[Callable[[SessionOutcome], None]] = None
    ) -> Optional[SessionOutcome]:
        """
        Stop the active session, then score, persist and update progress.

        Args:
            timestamp: Session clock value at stop (default: last seen event)
            background: Finalize on a worker thread and return immediately
            on_complete: Called with the outcome once finalized

        Returns:
            SessionOutcome when finalized synchronously, else None

        Raises:
            SessionStateError: No session is recording
            PersistenceError: Saving failed (synchronous mode only)
        """
        with self._lock:
            if self.state != SessionState.RECORDING:
                raise SessionStateError("No active session to stop")

            self._apply(self.ingest.flush())
            if timestamp is not None:
                self.tracker.tick(timestamp)

            self._set_state(SessionState.PROCESSING)
            outcome = self._build_outcome(timestamp)

        if self.broadcaster:
            self.broadcaster.end_session(outcome.session_id)
        if self.show_feedback:
            print(f"\n🛑 Recording stopped\n", flush=True)

        if background:
            self._worker = threading.Thread(
                target=self._finalize_in_background,
                args=(outcome, on_complete),
                daemon=True
            )
            self._worker.start()
            return None

        return self._finalize(outcome, on_complete)

    def cancel_session(self) -> bool:
        """
        Abandon the recording session. Nothing is scored or written.

        Returns:
            True if a session was cancelled
        """
        with self._lock:
            if self.state != SessionState.RECORDING:
                return False

            if self.drill:
                self.drill.cancel()
            self.ingest.reset(self.start_time)
            self.tracker.reset(self.start_time)
            self._set_state(SessionState.CANCELLED)

        if self.broadcaster:
            self.broadcaster.end_session(self.session_id, cancelled=True)
        if self.show_feedback:
            print("🛑 Session cancelled", flush=True)
        return True

    def wait(self, timeout: Optional[float] = None):
        """Join a background finalization, if any."""
        if self._worker and self._worker.is_alive():
            self._worker.join(timeout=timeout)

    # ───────────────────────── producers ─────────────────────────

    def on_audio_level(self, timestamp: float, decibels: float):
        """Audio capture callback with a precomputed level."""
        if self.state != SessionState.RECORDING:
            return
        self.ingest.push_audio(timestamp, decibels)
        self._pump()

    def on_audio_block(self, timestamp: float, samples: np.ndarray):
        """Audio capture callback with raw float samples."""
        if self.state != SessionState.RECORDING:
            return
        self.ingest.push_audio_block(timestamp, samples)
        self._pump()

    def on_word(
        self,
        timestamp: float,
        text: str,
        is_filler_candidate: bool = False,
        end: Optional[float] = None,
        confidence: Optional[float] = None
    ):
        """Transcription callback for one recognized word."""
        if self.state != SessionState.RECORDING:
            return
        self.ingest.push_word(timestamp, text, is_filler_candidate, end=end, confidence=confidence)
        self._pump()

    def on_pause(self, start: float, end: float):
        """Transcription callback for an explicit pause interval."""
        if self.state != SessionState.RECORDING:
            return
        self.ingest.push_pause(start, end)
        self._pump()

    def tick(self, timestamp: float):
        """Timer refresh: advances the clock and auto-completes drills."""
        with self._lock:
            if self.state != SessionState.RECORDING:
                return
            self.tracker.tick(timestamp)
            if self.drill and self.drill.tick(timestamp) is not None:
                self._drill_finished = True
        self._stop_finished_drill()

    def get_snapshot(self) -> LiveSnapshot:
        """Latest live metrics (atomic reference read)."""
        return self.tracker.snapshot

    def _pump(self):
        with self._lock:
            if self.state != SessionState.RECORDING:
                return
            self._apply(self.ingest.drain())
        self._stop_finished_drill()

    def _apply(self, events: List[SessionEvent]):
        for event in events:
            self.tracker.apply(event)
            if self.drill and self.drill.feed(event) is not None:
                self._drill_finished = True
        if self.ingest.audio_stalled and not self.tracker.snapshot.degraded:
            self.tracker.mark_degraded()
            if self.show_feedback:
                print("⚠️  Audio input stalled, continuing with partial data", flush=True)

    def _stop_finished_drill(self):
        """Finalize a drill that reached its deadline off the producer thread."""
        with self._lock:
            if not self._drill_finished or self.state != SessionState.RECORDING:
                return
            self._drill_finished = False
            end = self.drill.start_time + self.drill.duration_seconds
            self.stop_session(timestamp=end, background=True)

    # ───────────────────────── finalization ─────────────────────────

    def _build_outcome(self, timestamp: Optional[float]) -> SessionOutcome:
        snapshot = self.tracker.snapshot
        duration = snapshot.elapsed_seconds
        outcome = SessionOutcome(
            session_id=self.session_id,
            recorded_at=self.started_at or datetime.now(),
            duration_seconds=duration,
            category=self.category,
        )

        if self.drill:
            outcome.drill_result = self.drill.stop(timestamp)
            return outcome

        outcome.score = self.scorer.score(
            list(self.tracker.transcript),
            duration,
            pauses=list(self.tracker.pauses),
            degraded=snapshot.degraded,
        )
        return outcome

    def _finalize_in_background(self, outcome: SessionOutcome, on_complete):
        try:
            self._finalize(outcome, on_complete)
        except PersistenceError as e:
            self.last_error = e

    def _finalize(self, outcome: SessionOutcome, on_complete=None) -> SessionOutcome:
        try:
            self._persist(outcome)
        except PersistenceError as e:
            with self._lock:
                self.pending_outcome = outcome
                self.last_error = e
                self._set_state(SessionState.ERROR)
            if self.show_feedback:
                print(f"⚠️  Failed to save session #{outcome.session_id}: {e}", flush=True)
            raise

        with self._lock:
            self.last_outcome = outcome
            self._set_state(SessionState.COMPLETE)

        self._announce(outcome)
        if on_complete:
            on_complete(outcome)
        return outcome

    def retry_save(self) -> SessionOutcome:
        """
        Retry persisting the last outcome whose save failed.

        Raises:
            SessionStateError: Nothing is waiting to be saved
            PersistenceError: Saving failed again
        """
        with self._lock:
            outcome = self.pending_outcome
            if outcome is None:
                raise SessionStateError("No unsaved session to retry")

        self._persist(outcome)

        with self._lock:
            self.pending_outcome = None
            self.last_error = None
            self.last_outcome = outcome
            if self.state == SessionState.ERROR:
                self._set_state(SessionState.COMPLETE)

        self._announce(outcome)
        return outcome

    def _persist(self, outcome: SessionOutcome):
        """Write the outcome; completed steps are skipped on retry."""
        try:
            if outcome.is_drill:
                if outcome.drill_result_id is None:
                    outcome.drill_result_id = self.db.insert_drill_result(outcome.drill_result)
                outcome.saved = True
                return

            if outcome.record_id is None:
                outcome.record_id = self.db.insert_recording(SessionRecord(
                    recorded_at=outcome.recorded_at,
                    duration_seconds=outcome.duration_seconds,
                    score=outcome.score,
                    category=outcome.category,
                ))

            if outcome.ledger_update is None:
                sessions = self.db.get_all_recordings()
                outcome.ledger_update = self.ledger.record_completion(sessions)

            for goal in self.ledger.goals:
                self.db.save_goal(goal)
            for achievement in outcome.ledger_update.unlocked:
                self.db.save_achievement(achievement)

            outcome.saved = True
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def _announce(self, outcome: SessionOutcome):
        if self.broadcaster:
            if outcome.drill_result:
                self.broadcaster.broadcast_drill_result(outcome.drill_result)
            if outcome.score:
                self.broadcaster.broadcast_score(outcome.score, outcome.record_id)
            if outcome.ledger_update:
                for achievement in outcome.ledger_update.unlocked:
                    self.broadcaster.broadcast_achievement(achievement)

        if self.show_feedback:
            self._print_summary(outcome)

    def _print_summary(self, outcome: SessionOutcome):
        if outcome.drill_result:
            result = outcome.drill_result
            status = "✓ Passed" if result.passed else "✗ Not passed"
            print(f"📊 {result.mode.title} Drill: {result.score}/100 {status}", flush=True)
            print(f"   └─ {result.details}\n", flush=True)
            return

        score = outcome.score
        print(f"📊 Session #{outcome.session_id} Summary:", flush=True)
        print(f"   ├─ Overall: {score.overall}/100", flush=True)
        print(f"   ├─ Clarity {score.clarity} | Pace {score.pace} | "
              f"Fillers {score.filler_usage} | Pauses {score.pause_quality}", flush=True)
        print(f"   ├─ Words: {score.total_words} in {score.duration_seconds:.1f}s "
              f"({score.words_per_minute:.0f} wpm)", flush=True)
        print(f"   ├─ Fillers: {score.total_filler_count} ({score.filler_percentage:.1f}%)", flush=True)
        for flag in score.flags:
            if flag == ScoreFlag.SHORT_SESSION:
                print("   ├─ ⚠️  Short session, score may be unreliable", flush=True)
            elif flag == ScoreFlag.DEGRADED:
                print("   ├─ ⚠️  Partial input, score based on available data", flush=True)
            elif flag == ScoreFlag.NO_SPEECH:
                print("   ├─ ⚠️  No speech detected", flush=True)
        if outcome.ledger_update:
            print(f"   ├─ Streak: {outcome.ledger_update.streak} day(s)", flush=True)
        print(f"   └─ Status: ✓ Saved to database\n", flush=True)

    # ───────────────────────── progress helpers ─────────────────────────

    def add_goal(self, template: GoalTemplate) -> Goal:
        """Start a goal, with its baseline taken from existing history."""
        goal = self.ledger.add_goal(template, self.db.get_all_recordings())
        self.db.save_goal(goal)
        return goal

    def mark_listened(self):
        """The user played back one of their recordings."""
        achievement = self.ledger.unlock(AchievementDefinition.LISTEN_BACK.value)
        if achievement:
            self.db.save_achievement(achievement)
            if self.broadcaster:
                self.broadcaster.broadcast_achievement(achievement)
        return achievement

    def _set_state(self, state: SessionState):
        self.state = state
        if self.broadcaster:
            self.broadcaster.broadcast_state_change(state.value)
