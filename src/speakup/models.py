"""
Data models for live session analysis and progress tracking.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple, Union
import uuid


# Ordering rank for events sharing a timestamp (audio < pause < word)
AUDIO_RANK = 0
PAUSE_RANK = 1
WORD_RANK = 2

SILENCE_FLOOR_DB = -160.0


class SessionState(Enum):
    """Session controller lifecycle states"""
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


class ScoreFlag(Enum):
    """Annotations attached to a SpeechScore"""
    SHORT_SESSION = "short_session"
    NO_SPEECH = "no_speech"
    DEGRADED = "degraded"


class ScoreTrend(Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


# ───────────────────────────── session events ─────────────────────────────

@dataclass(frozen=True)
class AudioLevelEvent:
    """Single audio level sample from the capture subsystem."""
    timestamp: float
    decibels: float

    @property
    def rank(self) -> int:
        return AUDIO_RANK


@dataclass(frozen=True)
class WordEvent:
    """Transcribed word. Filler classification belongs to the transcriber."""
    timestamp: float
    text: str
    is_filler_candidate: bool = False
    end: Optional[float] = None
    confidence: Optional[float] = None

    @property
    def rank(self) -> int:
        return WORD_RANK

    @property
    def end_time(self) -> float:
        return self.end if self.end is not None else self.timestamp


@dataclass(frozen=True)
class PauseEvent:
    """Closed silence interval. Ordered by its end (when it becomes known)."""
    start: float
    end: float

    @property
    def timestamp(self) -> float:
        return self.end

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)

    @property
    def rank(self) -> int:
        return PAUSE_RANK


SessionEvent = Union[AudioLevelEvent, WordEvent, PauseEvent]


def event_sort_key(event: SessionEvent) -> Tuple[float, int]:
    """Sort key for the merged stream: timestamp, then audio/pause/word."""
    return (event.timestamp, event.rank)


# ───────────────────────────── live metrics ───────────────────────────────

@dataclass(frozen=True)
class LiveSnapshot:
    """Immutable view of in-progress metrics, replaced wholesale on update."""

    # Timing
    elapsed_seconds: float = 0.0
    last_event_at: Optional[float] = None

    # Pace
    words_per_minute: float = 0.0
    word_count: int = 0
    window_word_count: int = 0
    window_seconds: float = 0.0

    # Disfluency
    filler_count: int = 0

    # Audio activity
    is_speaking: bool = False
    audio_level: float = SILENCE_FLOOR_DB

    # Pauses (only those above the minimum duration)
    pause_count: int = 0
    pause_total_seconds: float = 0.0

    degraded: bool = False

    @classmethod
    def empty(cls) -> "LiveSnapshot":
        return cls()

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return asdict(self)


# ───────────────────────────── scores ─────────────────────────────────────

@dataclass(frozen=True)
class SpeechScore:
    """Durable score for one completed session. Never mutated."""

    overall: int = 0
    clarity: int = 0
    pace: int = 0
    filler_usage: int = 0
    pause_quality: int = 0

    # Supporting raw stats
    words_per_minute: float = 0.0
    total_filler_count: int = 0
    total_words: int = 0
    pause_count: int = 0
    average_pause_seconds: float = 0.0
    duration_seconds: float = 0.0

    filler_breakdown: Tuple[Tuple[str, int], ...] = ()
    flags: Tuple[ScoreFlag, ...] = ()

    @property
    def filler_percentage(self) -> float:
        if self.total_words <= 0:
            return 0.0
        return self.total_filler_count / self.total_words * 100

    def has_flag(self, flag: ScoreFlag) -> bool:
        return flag in self.flags

    def to_dict(self) -> Dict:
        """Convert to dictionary for storage."""
        data = asdict(self)
        data['filler_breakdown'] = [list(item) for item in self.filler_breakdown]
        data['flags'] = [f.value for f in self.flags]
        return data


@dataclass(frozen=True)
class DrillResult:
    """Outcome of a single drill instance."""
    mode: "DrillMode"
    score: int
    passed: bool
    details: str
    completed_at: Optional[datetime] = None
    final_wpm: float = 0.0
    filler_count: int = 0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['mode'] = self.mode.value
        if self.completed_at:
            data['completed_at'] = self.completed_at.timestamp()
        return data


class DrillMode(Enum):
    """Drill variants with their default duration in seconds."""
    FILLER_ELIMINATION = "filler_elimination"
    PACE_CONTROL = "pace_control"
    PAUSE_PRACTICE = "pause_practice"
    IMPROMPTU_SPRINT = "impromptu_sprint"

    @property
    def title(self) -> str:
        return _DRILL_TITLES[self]

    @property
    def description(self) -> str:
        return _DRILL_DESCRIPTIONS[self]

    @property
    def default_duration_seconds(self) -> int:
        return _DRILL_DURATIONS[self]


_DRILL_TITLES = {
    DrillMode.FILLER_ELIMINATION: "Filler Elimination",
    DrillMode.PACE_CONTROL: "Pace Control",
    DrillMode.PAUSE_PRACTICE: "Pause Practice",
    DrillMode.IMPROMPTU_SPRINT: "Impromptu Sprint",
}

_DRILL_DESCRIPTIONS = {
    DrillMode.FILLER_ELIMINATION: "15-second bursts, goal: zero fillers",
    DrillMode.PACE_CONTROL: "60 seconds, match the target WPM",
    DrillMode.PAUSE_PRACTICE: "45 seconds, pause deliberately at markers",
    DrillMode.IMPROMPTU_SPRINT: "30 seconds, random prompt, no prep",
}

_DRILL_DURATIONS = {
    DrillMode.FILLER_ELIMINATION: 15,
    DrillMode.PACE_CONTROL: 60,
    DrillMode.PAUSE_PRACTICE: 45,
    DrillMode.IMPROMPTU_SPRINT: 30,
}


# ───────────────────────────── history ────────────────────────────────────

class PromptCategory(Enum):
    PROFESSIONAL_DEVELOPMENT = "Professional Development"
    COMMUNICATION_SKILLS = "Communication Skills"
    PERSONAL_GROWTH = "Personal Growth"
    PROBLEM_SOLVING = "Problem Solving"
    CURRENT_EVENTS = "Current Events & Opinions"
    QUICK_FIRE = "Quick Fire"
    DEBATE_PERSUASION = "Debate & Persuasion"


@dataclass(frozen=True)
class SessionRecord:
    """A persisted, scored practice session (the Recording entity)."""
    recorded_at: datetime
    duration_seconds: float
    score: SpeechScore
    category: Optional[str] = None
    record_id: Optional[int] = None


@dataclass(frozen=True)
class WeeklyProgress:
    sessions_this_week: int
    sessions_last_week: int
    score_change: float       # positive = improved
    filler_reduction: float   # positive = fewer fillers
    total_minutes: float

    @property
    def has_improved(self) -> bool:
        return self.score_change > 0

    @property
    def sessions_delta(self) -> int:
        return self.sessions_this_week - self.sessions_last_week


# ───────────────────────────── goals ──────────────────────────────────────

class GoalType(Enum):
    SESSIONS_PER_WEEK = "sessions_per_week"
    REDUCE_FILLER = "reduce_filler"
    IMPROVE_SCORE = "improve_score"
    PRACTICE_STREAK = "practice_streak"
    TOTAL_MINUTES = "total_minutes"

    @property
    def unit(self) -> str:
        return {
            GoalType.SESSIONS_PER_WEEK: "sessions",
            GoalType.REDUCE_FILLER: "% reduction",
            GoalType.IMPROVE_SCORE: "points",
            GoalType.PRACTICE_STREAK: "days",
            GoalType.TOTAL_MINUTES: "minutes",
        }[self]


@dataclass(frozen=True)
class GoalTemplate:
    type: GoalType
    title: str
    description: str
    target: int
    duration_days: int


GOAL_TEMPLATES = (
    GoalTemplate(GoalType.SESSIONS_PER_WEEK, "Weekly Practice",
                 "Complete 5 practice sessions this week", 5, 7),
    GoalTemplate(GoalType.PRACTICE_STREAK, "7-Day Streak",
                 "Practice every day for a week", 7, 7),
    GoalTemplate(GoalType.IMPROVE_SCORE, "Score Improvement",
                 "Increase your average score by 10 points", 10, 14),
    GoalTemplate(GoalType.REDUCE_FILLER, "Reduce Fillers",
                 "Reduce filler word usage by 20%", 20, 14),
    GoalTemplate(GoalType.TOTAL_MINUTES, "Practice Time",
                 "Accumulate 30 minutes of practice", 30, 7),
)


@dataclass
class Goal:
    """User goal. `current` only grows; completion is terminal."""

    type: GoalType
    title: str
    description: str
    target: int
    start_date: datetime
    deadline: datetime
    current: int = 0
    baseline: float = 0.0
    is_completed: bool = False
    is_active: bool = True
    goal_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_template(
        cls,
        template: GoalTemplate,
        now: Optional[datetime] = None,
        baseline: float = 0.0
    ) -> "Goal":
        """
        Create an active goal from a template.

        Args:
            template: Template to instantiate
            now: Creation time (default: now)
            baseline: Reference value for relative goals (average score or
                filler percentage before the goal started)
        """
        start = now or datetime.now()
        return cls(
            type=template.type,
            title=template.title,
            description=template.description,
            target=template.target,
            start_date=start,
            deadline=start + timedelta(days=template.duration_days),
            baseline=baseline,
        )

    @property
    def progress(self) -> float:
        if self.target <= 0:
            return 0.0
        return min(self.current / self.target, 1.0)

    @property
    def progress_percentage(self) -> int:
        return int(self.progress * 100)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now()) > self.deadline and not self.is_completed

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        return max((self.deadline - (now or datetime.now())).days, 0)


# ───────────────────────────── achievements ───────────────────────────────

@dataclass
class Achievement:
    """Unlockable milestone. Unlocking is a one-way transition."""
    achievement_id: str
    title: str
    description: str
    icon: str = ""
    is_unlocked: bool = False
    unlocked_date: Optional[datetime] = None


class AchievementDefinition(Enum):
    FIRST_RECORDING = "first_recording"
    TEN_SESSIONS = "ten_sessions"
    FIFTY_SESSIONS = "fifty_sessions"
    HUNDRED_SESSIONS = "hundred_sessions"
    STREAK_3 = "streak_3"
    STREAK_7 = "streak_7"
    STREAK_30 = "streak_30"
    SCORE_80 = "score_80"
    SCORE_95 = "score_95"
    ZERO_FILLERS = "zero_fillers"
    ALL_CATEGORIES = "all_categories"
    LISTEN_BACK = "listen_back"

    def to_model(self) -> Achievement:
        title, description, icon = _ACHIEVEMENT_TEXT[self]
        return Achievement(
            achievement_id=self.value,
            title=title,
            description=description,
            icon=icon,
        )


_ACHIEVEMENT_TEXT = {
    AchievementDefinition.FIRST_RECORDING: ("First Steps", "Complete your first recording", "star.fill"),
    AchievementDefinition.TEN_SESSIONS: ("Dedicated Speaker", "Complete 10 practice sessions", "flame.fill"),
    AchievementDefinition.FIFTY_SESSIONS: ("Half Century", "Complete 50 practice sessions", "medal.fill"),
    AchievementDefinition.HUNDRED_SESSIONS: ("Centurion", "Complete 100 practice sessions", "crown.fill"),
    AchievementDefinition.STREAK_3: ("Getting Started", "Practice 3 days in a row", "bolt.fill"),
    AchievementDefinition.STREAK_7: ("Weekly Warrior", "Practice 7 days in a row", "bolt.shield.fill"),
    AchievementDefinition.STREAK_30: ("Monthly Master", "Practice 30 days in a row", "trophy.fill"),
    AchievementDefinition.SCORE_80: ("High Achiever", "Score 80 or higher", "chart.line.uptrend.xyaxis"),
    AchievementDefinition.SCORE_95: ("Near Perfect", "Score 95 or higher", "sparkles"),
    AchievementDefinition.ZERO_FILLERS: ("Clean Speech", "Complete a session with zero filler words", "checkmark.seal.fill"),
    AchievementDefinition.ALL_CATEGORIES: ("Well Rounded", "Record in every prompt category", "square.grid.3x3.fill"),
    AchievementDefinition.LISTEN_BACK: ("Brave Listener", "Listen to your own recording for the first time", "headphones"),
}

