"""
Longitudinal progress: practice streaks, weekly deltas, goals and achievements.

All evaluation is a function of the session history handed in; the ledger
never reads the clock unless `now` is omitted.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Set, Union

import numpy as np

from .models import (
    Achievement,
    AchievementDefinition,
    Goal,
    GoalTemplate,
    GoalType,
    PromptCategory,
    SessionRecord,
    WeeklyProgress,
)


DateLike = Union[date, datetime]


def _day(value: DateLike) -> date:
    """Normalize to a calendar day (local midnight)."""
    return value.date() if isinstance(value, datetime) else value


def calculate_streak(dates: Iterable[DateLike], today: Optional[DateLike] = None) -> int:
    """
    Count consecutive practice days ending today or yesterday.

    Args:
        dates: Session timestamps (any order, duplicates allowed)
        today: Reference day (default: today)

    Returns:
        Streak length in days, 0 if the newest practice day is older than yesterday
    """
    days = sorted({_day(d) for d in dates}, reverse=True)
    if not days:
        return 0

    reference = _day(today) if today is not None else date.today()
    if days[0] != reference and days[0] != reference - timedelta(days=1):
        return 0

    streak = 1
    for previous, current in zip(days, days[1:]):
        if previous - current != timedelta(days=1):
            break
        streak += 1
    return streak


def longest_streak(dates: Iterable[DateLike]) -> int:
    """Longest run of consecutive practice days anywhere in the history."""
    days = sorted({_day(d) for d in dates})
    if not days:
        return 0

    best = run = 1
    for previous, current in zip(days, days[1:]):
        run = run + 1 if current - previous == timedelta(days=1) else 1
        best = max(best, run)
    return best


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def weekly_progress(sessions: Sequence[SessionRecord], now: Optional[datetime] = None) -> Optional[WeeklyProgress]:
    """
    Compare this calendar week (Monday start) against the previous one.

    Returns:
        WeeklyProgress, or None when neither week has any session
    """
    now = now or datetime.now()
    start_this_week = datetime.combine(now.date() - timedelta(days=now.weekday()), datetime.min.time())
    start_last_week = start_this_week - timedelta(weeks=1)

    this_week = [s for s in sessions if s.recorded_at >= start_this_week]
    last_week = [s for s in sessions if start_last_week <= s.recorded_at < start_this_week]
    if not this_week and not last_week:
        return None

    score_change = _mean([s.score.overall for s in this_week]) - _mean([s.score.overall for s in last_week])
    filler_reduction = (
        _mean([s.score.filler_percentage for s in last_week]) -
        _mean([s.score.filler_percentage for s in this_week])
    )

    return WeeklyProgress(
        sessions_this_week=len(this_week),
        sessions_last_week=len(last_week),
        score_change=score_change,
        filler_reduction=filler_reduction,
        total_minutes=sum(s.duration_seconds for s in this_week) / 60.0,
    )


# ───────────────────────────── goals ──────────────────────────────────────

def goal_baseline(goal_type: GoalType, sessions: Sequence[SessionRecord]) -> float:
    """Reference value captured when a relative goal is created."""
    if goal_type == GoalType.IMPROVE_SCORE:
        return _mean([s.score.overall for s in sessions])
    if goal_type == GoalType.REDUCE_FILLER:
        return _mean([s.score.filler_percentage for s in sessions])
    return 0.0


def goal_metric(goal: Goal, sessions: Sequence[SessionRecord], now: datetime) -> int:
    """Current value of a goal's metric from sessions since its start date."""
    relevant = [s for s in sessions if goal.start_date <= s.recorded_at <= now]

    if goal.type == GoalType.SESSIONS_PER_WEEK:
        return len(relevant)
    if goal.type == GoalType.TOTAL_MINUTES:
        return int(sum(s.duration_seconds for s in relevant) // 60)
    if goal.type == GoalType.PRACTICE_STREAK:
        return calculate_streak([s.recorded_at for s in relevant], today=now)
    if not relevant:
        return 0
    if goal.type == GoalType.IMPROVE_SCORE:
        return max(0, int(round(_mean([s.score.overall for s in relevant]) - goal.baseline)))
    if goal.type == GoalType.REDUCE_FILLER:
        if goal.baseline <= 0:
            return 0
        current = _mean([s.score.filler_percentage for s in relevant])
        return max(0, int(round((goal.baseline - current) / goal.baseline * 100)))
    return 0


def evaluate_goals(goals: Iterable[Goal], sessions: Sequence[SessionRecord], now: Optional[datetime] = None) -> List[Goal]:
    """
    Recompute active goals in place.

    `current` only grows, a goal completes once, and a goal past its deadline
    without completing is deactivated. Safe to call repeatedly.

    Returns:
        Goals that completed during this call
    """
    now = now or datetime.now()
    completed = []

    for goal in goals:
        if not goal.is_active or goal.is_completed:
            continue

        goal.current = max(goal.current, goal_metric(goal, sessions, now))

        if goal.current >= goal.target:
            goal.is_completed = True
            goal.is_active = False
            completed.append(goal)
        elif goal.is_expired(now):
            goal.is_active = False

    return completed


# ───────────────────────────── achievements ───────────────────────────────

def seed_achievements() -> Dict[str, Achievement]:
    """Fresh, all-locked achievement set."""
    return {d.value: d.to_model() for d in AchievementDefinition}


def achievement_checks(
    sessions: Sequence[SessionRecord],
    now: Optional[datetime] = None,
    categories: Optional[Set[str]] = None
) -> Dict[str, bool]:
    """History-derived predicates keyed by achievement id."""
    total = len(sessions)
    streak = calculate_streak([s.recorded_at for s in sessions], today=now)
    all_categories = categories if categories is not None else {c.value for c in PromptCategory}
    used_categories = {s.category for s in sessions if s.category}

    return {
        AchievementDefinition.FIRST_RECORDING.value: total >= 1,
        AchievementDefinition.TEN_SESSIONS.value: total >= 10,
        AchievementDefinition.FIFTY_SESSIONS.value: total >= 50,
        AchievementDefinition.HUNDRED_SESSIONS.value: total >= 100,
        AchievementDefinition.STREAK_3.value: streak >= 3,
        AchievementDefinition.STREAK_7.value: streak >= 7,
        AchievementDefinition.STREAK_30.value: streak >= 30,
        AchievementDefinition.SCORE_80.value: any(s.score.overall >= 80 for s in sessions),
        AchievementDefinition.SCORE_95.value: any(s.score.overall >= 95 for s in sessions),
        AchievementDefinition.ZERO_FILLERS.value: any(
            s.score.total_filler_count == 0 and s.score.total_words > 0 for s in sessions
        ),
        AchievementDefinition.ALL_CATEGORIES.value: bool(all_categories) and all_categories <= used_categories,
    }


def evaluate_achievements(
    achievements: Dict[str, Achievement],
    sessions: Sequence[SessionRecord],
    now: Optional[datetime] = None,
    categories: Optional[Set[str]] = None
) -> List[Achievement]:
    """
    Unlock every achievement whose predicate now holds.

    Already-unlocked achievements are untouched, so re-evaluation is idempotent.

    Returns:
        Achievements unlocked during this call
    """
    now = now or datetime.now()
    unlocked = []
    for achievement_id, met in achievement_checks(sessions, now, categories).items():
        achievement = achievements.get(achievement_id)
        if not met or achievement is None or achievement.is_unlocked:
            continue
        achievement.is_unlocked = True
        achievement.unlocked_date = now
        unlocked.append(achievement)
    return unlocked


# ───────────────────────────── ledger ─────────────────────────────────────

@dataclass
class LedgerUpdate:
    """Everything that changed after one completed session."""
    streak: int = 0
    longest_streak: int = 0
    completed_goals: List[Goal] = field(default_factory=list)
    unlocked: List[Achievement] = field(default_factory=list)
    weekly: Optional[WeeklyProgress] = None


class ProgressLedger:
    """
    Owns goals and achievements and the queue of unlock notifications.

    The presentation layer reads `newly_unlocked` and calls
    `clear_newly_unlocked()` so each notification is consumed once.
    """

    def __init__(
        self,
        achievements: Optional[Dict[str, Achievement]] = None,
        goals: Optional[List[Goal]] = None,
        categories: Optional[Set[str]] = None,
        show_feedback: bool = True
    ):
        self.achievements = achievements if achievements is not None else seed_achievements()
        # Any definition missing from a stored set starts locked
        for definition in AchievementDefinition:
            self.achievements.setdefault(definition.value, definition.to_model())

        self.goals: List[Goal] = goals if goals is not None else []
        self.categories = categories
        self.show_feedback = show_feedback
        self._pending: Deque[Achievement] = deque()

    # ───────────────────────── goals ─────────────────────────

    @property
    def active_goals(self) -> List[Goal]:
        return [g for g in self.goals if g.is_active and not g.is_completed]

    def add_goal(
        self,
        template: GoalTemplate,
        sessions: Sequence[SessionRecord] = (),
        now: Optional[datetime] = None
    ) -> Goal:
        """Start a goal from a template, capturing a baseline from prior sessions."""
        goal = Goal.from_template(template, now=now, baseline=goal_baseline(template.type, sessions))
        self.goals.append(goal)
        return goal

    def evaluate_goals(self, sessions: Sequence[SessionRecord], now: Optional[datetime] = None) -> List[Goal]:
        completed = evaluate_goals(self.goals, sessions, now)
        if self.show_feedback:
            for goal in completed:
                print(f"🎯 Goal complete: {goal.title}", flush=True)
        return completed

    # ───────────────────────── achievements ─────────────────────────

    def evaluate_achievements(self, sessions: Sequence[SessionRecord], now: Optional[datetime] = None) -> List[Achievement]:
        unlocked = evaluate_achievements(self.achievements, sessions, now, self.categories)
        for achievement in unlocked:
            self._announce(achievement)
        return unlocked

    def unlock(self, achievement_id: str, now: Optional[datetime] = None) -> Optional[Achievement]:
        """
        Unlock an event-driven achievement (e.g. listen_back).

        Returns:
            The achievement if this call unlocked it, None if already unlocked
        """
        achievement = self.achievements.get(achievement_id)
        if achievement is None:
            raise KeyError(f"Unknown achievement: {achievement_id}")
        if achievement.is_unlocked:
            return None
        achievement.is_unlocked = True
        achievement.unlocked_date = now or datetime.now()
        self._announce(achievement)
        return achievement

    def _announce(self, achievement: Achievement):
        self._pending.append(achievement)
        if self.show_feedback:
            print(f"🏆 Achievement unlocked: {achievement.title}", flush=True)

    @property
    def newly_unlocked(self) -> List[Achievement]:
        return list(self._pending)

    def clear_newly_unlocked(self):
        self._pending.clear()

    @property
    def unlocked_count(self) -> int:
        return sum(1 for a in self.achievements.values() if a.is_unlocked)

    # ───────────────────────── combined ─────────────────────────

    def record_completion(self, sessions: Sequence[SessionRecord], now: Optional[datetime] = None) -> LedgerUpdate:
        """
        Update every longitudinal view after a session was persisted.

        Args:
            sessions: Full history including the new session
            now: Evaluation time (default: now)
        """
        now = now or datetime.now()
        dates = [s.recorded_at for s in sessions]
        return LedgerUpdate(
            streak=calculate_streak(dates, today=now),
            longest_streak=longest_streak(dates),
            completed_goals=self.evaluate_goals(sessions, now),
            unlocked=self.evaluate_achievements(sessions, now),
            weekly=weekly_progress(sessions, now),
        )
