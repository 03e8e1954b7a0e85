"""
Live speech analysis and practice tracking for SpeakUp.

Provides:
- Signal ingestion (audio levels + transcript tokens, merged in time order)
- Live metrics (windowed WPM, fillers, speaking state, pauses)
- Timed drills with pass/fail evaluation
- Post-session scoring (clarity, pace, filler usage, pause quality)
- Progress tracking (streaks, goals, achievements)
"""

from .models import (
    AudioLevelEvent,
    WordEvent,
    PauseEvent,
    LiveSnapshot,
    SpeechScore,
    DrillMode,
    DrillResult,
    SessionRecord,
    SessionState,
    Goal,
    Achievement,
)
from .ingest import SignalIngest
from .live import LiveMetricsTracker
from .drills import DrillEvaluator
from .scoring import SessionScorer
from .ledger import ProgressLedger, calculate_streak
from .database import PracticeDatabase
from .session import SessionController, PersistenceError, SessionStateError

__all__ = [
    'AudioLevelEvent',
    'WordEvent',
    'PauseEvent',
    'LiveSnapshot',
    'SpeechScore',
    'DrillMode',
    'DrillResult',
    'SessionRecord',
    'SessionState',
    'Goal',
    'Achievement',
    'SignalIngest',
    'LiveMetricsTracker',
    'DrillEvaluator',
    'SessionScorer',
    'ProgressLedger',
    'calculate_streak',
    'PracticeDatabase',
    'SessionController',
    'PersistenceError',
    'SessionStateError',
]
