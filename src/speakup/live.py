"""
Live metrics tracking for an active session.

Single writer (the ingestion path) applies events; any number of readers
fetch the latest published LiveSnapshot. Each update builds a new immutable
snapshot and swaps the reference, so readers never see a half-applied state.
"""

from collections import deque
from typing import Callable, Deque, List, Optional

from .models import (
    AudioLevelEvent,
    LiveSnapshot,
    PauseEvent,
    SessionEvent,
    WordEvent,
    SILENCE_FLOOR_DB,
)


class LiveMetricsTracker:
    """
    Incremental running metrics: windowed WPM, filler count, speaking flag
    and pause intervals. Every update is O(1) amortised.
    """

    def __init__(
        self,
        window_seconds: float = 15.0,
        speaking_threshold_db: float = -40.0,
        min_pause_seconds: float = 0.5,
        min_wpm_elapsed_seconds: float = 2.0,
        start_time: float = 0.0
    ):
        """
        Initialize tracker.

        Args:
            window_seconds: Trailing window for WPM
            speaking_threshold_db: Audio level above which the user is speaking
            min_pause_seconds: Pauses shorter than this are inter-word gaps
            min_wpm_elapsed_seconds: WPM reads 0 until this much time has passed
            start_time: Session clock value at session start
        """
        self.window_seconds = window_seconds
        self.speaking_threshold_db = speaking_threshold_db
        self.min_pause_seconds = min_pause_seconds
        self.min_wpm_elapsed_seconds = min_wpm_elapsed_seconds
        self.start_time = start_time

        self._subscribers: List[Callable[[LiveSnapshot], None]] = []
        self.reset(start_time)

    def reset(self, start_time: Optional[float] = None):
        """Zero every metric for a new session."""
        if start_time is not None:
            self.start_time = start_time

        self._now = self.start_time
        self._window: Deque[float] = deque()
        self._word_count = 0
        self._filler_count = 0
        self._is_speaking = False
        self._audio_level = SILENCE_FLOOR_DB
        self._pause_count = 0
        self._pause_total = 0.0
        self._last_event_at: Optional[float] = None
        self._degraded = False

        # Retained for post-session scoring
        self.transcript: List[WordEvent] = []
        self.pauses: List[PauseEvent] = []

        self._snapshot = LiveSnapshot.empty()

    # ───────────────────────── readers ─────────────────────────

    @property
    def snapshot(self) -> LiveSnapshot:
        """Most recently published snapshot (lock-free reference read)."""
        return self._snapshot

    def subscribe(self, callback: Callable[[LiveSnapshot], None]):
        """Register a callback invoked with every new snapshot."""
        self._subscribers.append(callback)

    # ───────────────────────── writer ─────────────────────────

    def apply(self, event: SessionEvent) -> LiveSnapshot:
        """
        Apply one event and publish a new snapshot.

        Args:
            event: Next event from the merged stream

        Returns:
            The newly published snapshot
        """
        self._advance(event.timestamp)

        if isinstance(event, WordEvent):
            self._word_count += 1
            self._window.append(event.timestamp)
            if event.is_filler_candidate:
                self._filler_count += 1
            self.transcript.append(event)
        elif isinstance(event, AudioLevelEvent):
            self._audio_level = event.decibels
            self._is_speaking = event.decibels > self.speaking_threshold_db
        elif isinstance(event, PauseEvent):
            self.pauses.append(event)
            if event.duration >= self.min_pause_seconds:
                self._pause_count += 1
                self._pause_total += event.duration

        self._last_event_at = event.timestamp
        return self._publish()

    def apply_all(self, events) -> LiveSnapshot:
        for event in events:
            self.apply(event)
        return self._snapshot

    def tick(self, timestamp: float) -> LiveSnapshot:
        """Advance the session clock without an event (timer-driven refresh)."""
        if timestamp <= self._now:
            return self._snapshot
        self._advance(timestamp)
        return self._publish()

    def mark_degraded(self):
        """Flag the session as running on partial upstream data."""
        if not self._degraded:
            self._degraded = True
            self._publish()

    def _advance(self, timestamp: float):
        """Move the session clock forward and expire words leaving the window."""
        if timestamp > self._now:
            self._now = timestamp
        horizon = self._now - self.window_seconds
        while self._window and self._window[0] < horizon:
            self._window.popleft()

    def _current_wpm(self, elapsed: float) -> float:
        if elapsed < self.min_wpm_elapsed_seconds or elapsed <= 0:
            return 0.0
        # Not enough history yet: fall back to whole-session rate
        if elapsed < self.window_seconds:
            return self._word_count / (elapsed / 60.0)
        return len(self._window) / (self.window_seconds / 60.0)

    def _publish(self) -> LiveSnapshot:
        elapsed = max(0.0, self._now - self.start_time)
        snapshot = LiveSnapshot(
            elapsed_seconds=elapsed,
            last_event_at=self._last_event_at,
            words_per_minute=self._current_wpm(elapsed),
            word_count=self._word_count,
            window_word_count=len(self._window),
            window_seconds=min(elapsed, self.window_seconds),
            filler_count=self._filler_count,
            is_speaking=self._is_speaking,
            audio_level=self._audio_level,
            pause_count=self._pause_count,
            pause_total_seconds=self._pause_total,
            degraded=self._degraded,
        )
        self._snapshot = snapshot

        for callback in self._subscribers:
            callback(snapshot)
        return snapshot
