"""
Timed practice drills.

Each DrillMode is paired with a policy that carries its own thresholds and a
pure evaluation function. DrillEvaluator wraps a LiveMetricsTracker, drives
the NOT_STARTED -> RUNNING -> COMPLETE state machine and produces exactly one
DrillResult per instance.
"""

import math
import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .config_loader import DrillConfig, LiveConfig
from .live import LiveMetricsTracker
from .models import (
    AudioLevelEvent,
    DrillMode,
    DrillResult,
    PauseEvent,
    SessionEvent,
    WordEvent,
)
from .scoring import band_score, clamp_score


IMPROMPTU_TOPICS = (
    "Describe your perfect weekend from start to finish",
    "Why is your favorite food the best one out there?",
    "Explain a hobby to someone who's never heard of it",
    "Convince someone to visit your favorite place",
    "Talk about a book or movie that changed your perspective",
    "What would you do with an extra hour each day?",
    "Describe your morning routine and why it works for you",
    "What's the best advice you've ever received?",
    "If you could have dinner with anyone, who and why?",
    "Pitch a brand new app idea in 30 seconds",
    "Talk about a skill you'd love to master and why",
    "Explain something interesting you learned recently",
    "Why should everyone try your favorite activity?",
    "Describe a place that feels like home to you",
    "What's one thing you'd change about how people communicate?",
    "Tell the story of your most memorable travel experience",
    "Explain why a simple everyday object is actually amazing",
    "What's a common misconception people have about your field?",
)


class DrillState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DrillStats:
    """Final measurements handed to a drill policy."""
    duration_seconds: float
    elapsed_seconds: float
    words_per_minute: float
    word_count: int
    filler_count: int
    speech_started_at: Optional[float] = None  # seconds after drill start
    long_silences: int = 0
    markers_hit: int = 0
    markers_total: int = 0


# ───────────────────────────── policies ───────────────────────────────────

@dataclass(frozen=True)
class FillerEliminationPolicy:
    filler_penalty: int = 25

    def evaluate(self, stats: DrillStats) -> Tuple[int, bool, str]:
        fillers = stats.filler_count
        score = max(0, 100 - fillers * self.filler_penalty)
        if fillers == 0:
            return 100, True, "Perfect! Zero fillers!"
        return score, False, f"{fillers} filler(s) detected"


@dataclass(frozen=True)
class PaceControlPolicy:
    target_wpm_min: float = 130.0
    target_wpm_max: float = 170.0
    falloff_per_wpm: float = 2.0

    def evaluate(self, stats: DrillStats) -> Tuple[int, bool, str]:
        wpm = stats.words_per_minute
        score = clamp_score(band_score(wpm, self.target_wpm_min, self.target_wpm_max, self.falloff_per_wpm))
        passed = self.target_wpm_min <= wpm <= self.target_wpm_max
        details = (
            f"Average pace: {wpm:.0f} WPM "
            f"(target: {self.target_wpm_min:.0f}-{self.target_wpm_max:.0f})"
        )
        return score, passed, details


@dataclass(frozen=True)
class PausePracticePolicy:
    marker_count: int = 3
    tolerance_seconds: float = 1.0
    pass_fraction: float = 2 / 3

    def markers(self, duration_seconds: float) -> List[float]:
        """Marker times (seconds after start), evenly spaced inside the drill."""
        spacing = duration_seconds / (self.marker_count + 1)
        return [spacing * i for i in range(1, self.marker_count + 1)]

    def evaluate(self, stats: DrillStats) -> Tuple[int, bool, str]:
        total = stats.markers_total
        if total <= 0:
            return 0, False, "No pause markers scheduled"

        fraction = stats.markers_hit / total
        passed = stats.markers_hit >= math.ceil(self.pass_fraction * total - 1e-9)
        if stats.markers_hit == total:
            details = f"Perfect! Hit all {total} pause markers!"
        else:
            details = f"Hit {stats.markers_hit} of {total} pause markers"
        return clamp_score(fraction * 100), passed, details


@dataclass(frozen=True)
class ImpromptuSprintPolicy:
    grace_seconds: float = 2.0
    max_silence_seconds: float = 3.0
    filler_penalty: int = 10
    silence_penalty: int = 20
    late_start_penalty: int = 20

    def evaluate(self, stats: DrillStats) -> Tuple[int, bool, str]:
        started = stats.speech_started_at
        late = started is None or started > self.grace_seconds
        passed = not late and stats.long_silences == 0

        score = (
            100
            - stats.filler_count * self.filler_penalty
            - stats.long_silences * self.silence_penalty
            - (self.late_start_penalty if late else 0)
        )

        if started is None:
            details = "No speech detected"
        elif late:
            details = f"Started speaking after {started:.1f}s (aim for under {self.grace_seconds:.0f}s)"
        elif stats.long_silences:
            details = (
                f"{stats.long_silences} silence(s) longer than "
                f"{self.max_silence_seconds:.0f}s, {stats.filler_count} filler(s)"
            )
        else:
            details = f"Spoke with {stats.filler_count} filler(s) on an impromptu topic"
        return max(0, score), passed, details


def policy_for(mode: DrillMode, config: Optional[DrillConfig] = None):
    """Build the evaluation policy for a drill mode from configuration."""
    cfg = config or DrillConfig()
    if mode == DrillMode.FILLER_ELIMINATION:
        return FillerEliminationPolicy(filler_penalty=cfg.filler_penalty)
    if mode == DrillMode.PACE_CONTROL:
        return PaceControlPolicy(
            target_wpm_min=cfg.target_wpm_min,
            target_wpm_max=cfg.target_wpm_max,
            falloff_per_wpm=cfg.pace_falloff_per_wpm,
        )
    if mode == DrillMode.PAUSE_PRACTICE:
        return PausePracticePolicy(
            marker_count=cfg.marker_count,
            tolerance_seconds=cfg.marker_tolerance_seconds,
            pass_fraction=cfg.marker_pass_fraction,
        )
    if mode == DrillMode.IMPROMPTU_SPRINT:
        return ImpromptuSprintPolicy(
            grace_seconds=cfg.grace_seconds,
            max_silence_seconds=cfg.max_silence_seconds,
        )
    raise ValueError(f"Unknown drill mode: {mode}")


# ───────────────────────────── evaluator ──────────────────────────────────

def _merge_intervals(intervals: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
    merged: List[Tuple[float, float]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


class DrillEvaluator:
    """
    Single-use drill session.

    Feed merged session events while RUNNING; the drill completes when the
    session clock reaches its duration or on an explicit stop. A retry needs
    a new instance.
    """

    def __init__(
        self,
        mode: DrillMode,
        duration_seconds: Optional[float] = None,
        drill_config: Optional[DrillConfig] = None,
        live_config: Optional[LiveConfig] = None,
        on_complete: Optional[Callable[[DrillResult], None]] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize drill.

        Args:
            mode: Drill variant
            duration_seconds: Drill length (default: mode default)
            drill_config: Pass/fail thresholds
            live_config: Live tracker settings
            on_complete: Called once with the DrillResult
            rng: Random source for impromptu topic selection
        """
        self.mode = mode
        self.duration_seconds = float(duration_seconds or mode.default_duration_seconds)
        self.policy = policy_for(mode, drill_config)
        self.on_complete = on_complete

        live = live_config or LiveConfig()
        self.tracker = LiveMetricsTracker(
            window_seconds=live.window_seconds,
            speaking_threshold_db=live.speaking_threshold_db,
            min_pause_seconds=live.min_pause_seconds,
            min_wpm_elapsed_seconds=live.min_wpm_elapsed_seconds,
        )

        self.state = DrillState.NOT_STARTED
        self.result: Optional[DrillResult] = None
        self.stats: Optional[DrillStats] = None
        self.start_time = 0.0

        self.prompt = ""
        if mode == DrillMode.IMPROMPTU_SPRINT:
            self.prompt = (rng or random).choice(IMPROMPTU_TOPICS)

        self.markers: List[float] = []
        if isinstance(self.policy, PausePracticePolicy):
            self.markers = self.policy.markers(self.duration_seconds)

        # Activity tracking (absolute session-clock times)
        self._speech_started_at: Optional[float] = None
        self._silence_start: Optional[float] = None
        self._quiet: List[Tuple[float, float]] = []

    # ───────────────────────── lifecycle ─────────────────────────

    def start(self, timestamp: float = 0.0):
        """Begin the drill at the given session-clock time."""
        if self.state != DrillState.NOT_STARTED:
            raise RuntimeError(f"Cannot start drill in state: {self.state.value}")
        self.start_time = timestamp
        self.tracker.reset(timestamp)
        self.state = DrillState.RUNNING

    def feed(self, event: SessionEvent) -> Optional[DrillResult]:
        """
        Apply one event while running.

        Returns:
            The DrillResult if this event completed the drill, else None
        """
        if self.state != DrillState.RUNNING:
            return None

        deadline = self.start_time + self.duration_seconds
        if event.timestamp >= deadline:
            return self._finish(deadline)

        self.tracker.apply(event)
        self._observe(event)
        return None

    def tick(self, timestamp: float) -> Optional[DrillResult]:
        """Timer refresh; completes the drill once its duration has elapsed."""
        if self.state != DrillState.RUNNING:
            return None
        deadline = self.start_time + self.duration_seconds
        if timestamp >= deadline:
            return self._finish(deadline)
        self.tracker.tick(timestamp)
        return None

    def stop(self, timestamp: Optional[float] = None) -> Optional[DrillResult]:
        """Explicit user stop. Returns the (single) result."""
        if self.state == DrillState.COMPLETE:
            return self.result
        if self.state != DrillState.RUNNING:
            return None
        now = self.tracker.snapshot.last_event_at if timestamp is None else timestamp
        if now is None:
            now = self.start_time
        end = min(max(now, self.start_time), self.start_time + self.duration_seconds)
        return self._finish(end)

    def cancel(self):
        """Abandon the drill without producing a result."""
        if self.state in (DrillState.NOT_STARTED, DrillState.RUNNING):
            self.state = DrillState.CANCELLED
            self.tracker.reset()

    # ───────────────────────── live fields ─────────────────────────

    @property
    def live_filler_count(self) -> int:
        return self.tracker.snapshot.filler_count

    @property
    def live_wpm(self) -> float:
        return self.tracker.snapshot.words_per_minute

    @property
    def elapsed_seconds(self) -> float:
        return min(self.tracker.snapshot.elapsed_seconds, self.duration_seconds)

    @property
    def progress(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        if self.state == DrillState.COMPLETE:
            return 1.0
        return min(1.0, self.elapsed_seconds / self.duration_seconds)

    @property
    def time_remaining(self) -> float:
        return max(0.0, self.duration_seconds - self.elapsed_seconds)

    @property
    def pause_marker_active(self) -> bool:
        if not self.markers or self.state != DrillState.RUNNING:
            return False
        elapsed = self.elapsed_seconds
        tolerance = self.policy.tolerance_seconds
        return any(abs(elapsed - m) <= tolerance for m in self.markers)

    # ───────────────────────── internals ─────────────────────────

    def _observe(self, event: SessionEvent):
        if isinstance(event, AudioLevelEvent):
            if event.decibels > self.tracker.speaking_threshold_db:
                self._mark_speech(event.timestamp)
            elif self._silence_start is None:
                self._silence_start = event.timestamp
        elif isinstance(event, WordEvent):
            self._mark_speech(event.timestamp)
        elif isinstance(event, PauseEvent):
            self._quiet.append((event.start, event.end))

    def _mark_speech(self, timestamp: float):
        if self._speech_started_at is None:
            self._speech_started_at = timestamp
        # Speech closes any open silence
        if self._silence_start is not None:
            if timestamp > self._silence_start:
                self._quiet.append((self._silence_start, timestamp))
            self._silence_start = None

    def _quiet_intervals(self, end: float) -> List[Tuple[float, float]]:
        intervals = list(self._quiet)
        if self._silence_start is not None and end > self._silence_start:
            intervals.append((self._silence_start, end))
        return _merge_intervals(intervals)

    def _finish(self, end: float) -> DrillResult:
        self.tracker.tick(end)
        snapshot = self.tracker.snapshot
        elapsed = max(0.0, end - self.start_time)

        # Final pace is the whole-drill rate, not the trailing window
        final_wpm = (
            snapshot.word_count / (elapsed / 60.0)
            if elapsed >= self.tracker.min_wpm_elapsed_seconds and elapsed > 0 else 0.0
        )

        quiet = self._quiet_intervals(end)
        speech_started = (
            self._speech_started_at - self.start_time
            if self._speech_started_at is not None else None
        )

        long_silences = 0
        if self._speech_started_at is not None:
            for start, stop in quiet:
                start = max(start, self._speech_started_at)
                if stop - start > self.policy_max_silence:
                    long_silences += 1

        markers_hit = 0
        min_pause = self.tracker.min_pause_seconds
        for marker in self.markers:
            window_start = self.start_time + marker - self.policy.tolerance_seconds
            window_end = self.start_time + marker + self.policy.tolerance_seconds
            if any(
                stop - start >= min_pause and start <= window_end and stop >= window_start
                for start, stop in quiet
            ):
                markers_hit += 1

        stats = DrillStats(
            duration_seconds=self.duration_seconds,
            elapsed_seconds=elapsed,
            words_per_minute=final_wpm,
            word_count=snapshot.word_count,
            filler_count=snapshot.filler_count,
            speech_started_at=speech_started,
            long_silences=long_silences,
            markers_hit=markers_hit,
            markers_total=len(self.markers),
        )
        score, passed, details = self.policy.evaluate(stats)

        self.result = DrillResult(
            mode=self.mode,
            score=int(score),
            passed=bool(passed),
            details=details,
            completed_at=datetime.now(),
            final_wpm=final_wpm,
            filler_count=snapshot.filler_count,
        )
        self.stats = stats
        self.state = DrillState.COMPLETE

        if self.on_complete:
            self.on_complete(self.result)
        return self.result

    @property
    def policy_max_silence(self) -> float:
        return getattr(self.policy, 'max_silence_seconds', math.inf)
