"""
Post-session speech scoring.

SessionScorer turns a finished transcript into a four-dimension SpeechScore
(clarity, pace, filler usage, pause quality) plus an overall composite.
Scoring is pure: identical input always yields an identical score.
"""

import math
from collections import Counter
from typing import List, Optional, Sequence

import numpy as np

from .config_loader import ScoringConfig
from .models import PauseEvent, ScoreFlag, ScoreTrend, SpeechScore, WordEvent


def clamp_score(value: float) -> int:
    """Round half-up and clamp to 0..100."""
    if math.isnan(value):
        return 0
    return int(max(0, min(100, math.floor(value + 0.5))))


def band_score(value: float, low: float, high: float, falloff: float) -> float:
    """
    Full marks inside [low, high], linear symmetric falloff outside.

    Args:
        value: Measured value
        low: Lower edge of the ideal band
        high: Upper edge of the ideal band
        falloff: Points lost per unit of distance from the band

    Returns:
        Score in 0..100 (unrounded)
    """
    if low <= value <= high:
        return 100.0
    distance = (low - value) if value < low else (value - high)
    return max(0.0, 100.0 - distance * falloff)


def filler_usage_score(filler_count: int, total_words: int, penalty_per_percent: float = 5.0) -> float:
    """Score from filler density (fillers per 100 words). No fillers scores 100."""
    if filler_count <= 0 or total_words <= 0:
        return 100.0
    density = filler_count / total_words * 100.0
    return max(0.0, 100.0 - density * penalty_per_percent)


class SessionScorer:
    """Compute SpeechScore values from completed sessions."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        """
        Initialize scorer.

        Args:
            config: Scoring thresholds and weights (default: built-in defaults)
        """
        self.config = config or ScoringConfig()

    def score(
        self,
        words: Sequence[WordEvent],
        duration_seconds: float,
        pauses: Sequence[PauseEvent] = (),
        degraded: bool = False
    ) -> SpeechScore:
        """
        Score a completed session.

        Args:
            words: Ordered transcript with filler flags
            duration_seconds: Total elapsed session time
            pauses: Pause intervals observed during the session
            degraded: Upstream data was partial (stalled producer)

        Returns:
            Immutable SpeechScore
        """
        cfg = self.config
        duration = max(0.0, float(duration_seconds))
        total_words = len(words)

        flags: List[ScoreFlag] = []
        if duration < cfg.min_duration_seconds:
            flags.append(ScoreFlag.SHORT_SESSION)
        if degraded:
            flags.append(ScoreFlag.DEGRADED)

        counted_pauses = [p.duration for p in pauses if p.duration >= cfg.good_pause_min_seconds]
        pause_count = len(counted_pauses)
        average_pause = float(np.mean(counted_pauses)) if counted_pauses else 0.0

        fillers = Counter(w.text.lower().strip(".,!?;:") for w in words if w.is_filler_candidate)
        filler_total = sum(fillers.values())
        breakdown = tuple(sorted(fillers.items(), key=lambda item: (-item[1], item[0])))

        wpm = total_words / (duration / 60.0) if duration > 0 else 0.0

        if total_words == 0:
            # Nothing to judge: defined minimum instead of a division error
            flags.append(ScoreFlag.NO_SPEECH)
            return SpeechScore(
                duration_seconds=duration,
                pause_count=pause_count,
                average_pause_seconds=average_pause,
                flags=tuple(flags),
            )

        pace = clamp_score(band_score(wpm, cfg.ideal_wpm_min, cfg.ideal_wpm_max, cfg.pace_falloff_per_wpm))
        filler_usage = clamp_score(filler_usage_score(filler_total, total_words, cfg.filler_penalty_per_percent))
        pause_quality = clamp_score(self._pause_quality(counted_pauses, duration))
        clarity = clamp_score(self._clarity(words, wpm))

        return SpeechScore(
            overall=self.overall(clarity, pace, filler_usage, pause_quality),
            clarity=clarity,
            pace=pace,
            filler_usage=filler_usage,
            pause_quality=pause_quality,
            words_per_minute=wpm,
            total_filler_count=filler_total,
            total_words=total_words,
            pause_count=pause_count,
            average_pause_seconds=average_pause,
            duration_seconds=duration,
            filler_breakdown=breakdown,
            flags=tuple(flags),
        )

    def overall(self, clarity: int, pace: int, filler_usage: int, pause_quality: int) -> int:
        """Fixed-weight average of the four sub-scores."""
        w = self.config.weights
        total_weight = w.clarity + w.pace + w.filler_usage + w.pause_quality
        if total_weight <= 0:
            return 0
        weighted = (
            clarity * w.clarity +
            pace * w.pace +
            filler_usage * w.filler_usage +
            pause_quality * w.pause_quality
        ) / total_weight
        return clamp_score(weighted)

    def _pause_quality(self, pause_durations: List[float], duration: float) -> float:
        """
        Reward well-sized pauses at a natural rate.

        Too few pauses (rushed delivery) and too many both lose points; the
        share of pauses inside the good duration band is averaged in.
        """
        cfg = self.config
        minutes = duration / 60.0
        rate = len(pause_durations) / minutes if minutes > 0 else 0.0

        low, high = cfg.ideal_pauses_per_minute_min, cfg.ideal_pauses_per_minute_max
        if rate < low:
            frequency = 40.0 + 60.0 * (rate / low)
        elif rate > high:
            frequency = max(0.0, 100.0 - (rate - high) * 8.0)
        else:
            frequency = 100.0

        if not pause_durations:
            return frequency

        good = sum(
            1 for d in pause_durations
            if cfg.good_pause_min_seconds <= d <= cfg.good_pause_max_seconds
        )
        duration_quality = good / len(pause_durations) * 100.0
        return (frequency + duration_quality) / 2.0

    def _clarity(self, words: Sequence[WordEvent], wpm: float) -> float:
        """Word-count/duration consistency blended with recognition confidence."""
        cfg = self.config
        consistency = band_score(wpm, cfg.plausible_wpm_min, cfg.plausible_wpm_max, 1.0)

        confidences = [w.confidence for w in words if w.confidence is not None]
        if confidences:
            recognized = sum(1 for c in confidences if c >= cfg.recognized_confidence)
            recognition = recognized / len(confidences) * 100.0
        else:
            recognition = cfg.neutral_clarity

        return (consistency + recognition) / 2.0


def calculate_trend(current_score: int, historical_scores: Sequence[int]) -> ScoreTrend:
    """
    Compare a score against the mean of the last five.

    Args:
        current_score: Score of the newest session
        historical_scores: Earlier scores, oldest first

    Returns:
        ScoreTrend (improving/declining beyond +/-5 points, else stable)
    """
    recent = list(historical_scores)[-5:]
    if not recent:
        return ScoreTrend.STABLE

    difference = current_score - float(np.mean(recent))
    if difference > 5:
        return ScoreTrend.IMPROVING
    if difference < -5:
        return ScoreTrend.DECLINING
    return ScoreTrend.STABLE
