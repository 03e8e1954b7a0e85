"""
Signal ingestion: merges audio-level samples and transcript tokens into one
ordered event stream for the active session.
"""

import threading
from collections import deque
from typing import Deque, List, Optional

import numpy as np

from .models import (
    AudioLevelEvent,
    PauseEvent,
    SessionEvent,
    WordEvent,
    SILENCE_FLOOR_DB,
    event_sort_key,
)

AUDIO = "audio"
TRANSCRIPT = "transcript"


def block_to_decibels(samples: np.ndarray) -> float:
    """
    Convert a block of float PCM samples (-1.0..1.0) to an RMS level in dBFS.

    Args:
        samples: Audio samples (any shape, flattened)

    Returns:
        Level in decibels, floored at -160 dB for silence or empty blocks
    """
    data = np.asarray(samples, dtype=np.float64).ravel()
    if data.size == 0:
        return SILENCE_FLOOR_DB
    rms = float(np.sqrt(np.mean(np.square(data))))
    if rms <= 0.0:
        return SILENCE_FLOOR_DB
    return max(SILENCE_FLOOR_DB, 20.0 * float(np.log10(rms)))


class _SourceBuffer:
    """Pending events and clock for a single upstream producer."""

    def __init__(self, name: str):
        self.name = name
        self.pending: Deque[SessionEvent] = deque()
        self.latest: Optional[float] = None

    def clamp(self, timestamp: float) -> float:
        if self.latest is not None and timestamp < self.latest:
            return self.latest
        return timestamp


class SignalIngest:
    """
    Merge two independent producers into one timestamp-ordered stream.

    Events are held until every non-stalled producer has advanced past them,
    so a lagging transcriber cannot reorder the stream. A producer whose clock
    trails the other by more than `stall_threshold_seconds` stops holding the
    stream back.

    Thread-safe: audio and transcript callbacks may arrive on different threads.
    """

    def __init__(
        self,
        stall_threshold_seconds: float = 3.0,
        pause_gap_seconds: float = 0.3,
        derive_pauses: bool = True
    ):
        """
        Initialize ingestion buffer.

        Args:
            stall_threshold_seconds: Lag after which a producer counts as stalled
            pause_gap_seconds: Minimum word gap emitted as a derived pause
            derive_pauses: Emit PauseEvents from gaps between timed words
        """
        self.stall_threshold_seconds = stall_threshold_seconds
        self.pause_gap_seconds = pause_gap_seconds
        self.derive_pauses = derive_pauses

        self._lock = threading.Lock()
        self._reset_locked(0.0)

    def _reset_locked(self, start_time: float):
        self._sources = {
            AUDIO: _SourceBuffer(AUDIO),
            TRANSCRIPT: _SourceBuffer(TRANSCRIPT),
        }
        self._start_time = float(start_time)
        self._released_until: Optional[float] = None
        self._last_word_end: Optional[float] = None
        self._last_derived: Optional[PauseEvent] = None
        self._explicit_pauses = False
        self.anomaly_count = 0
        self.audio_stalled = False
        self.transcript_stalled = False

    # ───────────────────────── producers ─────────────────────────

    def push_audio(self, timestamp: float, decibels: float):
        """Queue an audio level sample."""
        with self._lock:
            source = self._sources[AUDIO]
            ts = self._admit(source, timestamp)
            source.pending.append(AudioLevelEvent(timestamp=ts, decibels=float(decibels)))

    def push_audio_block(self, timestamp: float, samples: np.ndarray):
        """Queue a raw PCM block, converted to its RMS level."""
        self.push_audio(timestamp, block_to_decibels(samples))

    def push_word(
        self,
        timestamp: float,
        text: str,
        is_filler_candidate: bool = False,
        end: Optional[float] = None,
        confidence: Optional[float] = None
    ):
        """Queue a transcribed word."""
        with self._lock:
            source = self._sources[TRANSCRIPT]
            ts = self._admit(source, timestamp)
            word_end = max(ts, end) if end is not None else None

            # A timed gap between words is a pause the transcriber saw
            if (self.derive_pauses and not self._explicit_pauses
                    and self._last_word_end is not None
                    and ts - self._last_word_end >= self.pause_gap_seconds):
                self._last_derived = PauseEvent(start=self._last_word_end, end=ts)
                source.pending.append(self._last_derived)

            source.pending.append(WordEvent(
                timestamp=ts,
                text=text,
                is_filler_candidate=bool(is_filler_candidate),
                end=word_end,
                confidence=confidence,
            ))
            self._last_word_end = word_end

    def push_pause(self, start: float, end: float):
        """
        Queue an explicit pause interval reported by the transcriber.

        Once explicit pauses arrive, word gaps are no longer turned into
        pauses. A derived pause covering the same gap is replaced while still
        buffered; if it was already released, the explicit one is dropped.
        """
        with self._lock:
            source = self._sources[TRANSCRIPT]
            ts = self._admit(source, end)
            pause = PauseEvent(start=min(start, ts), end=ts)

            self._explicit_pauses = True
            derived, self._last_derived = self._last_derived, None
            if derived is not None and derived.start < pause.end and pause.start < derived.end:
                if derived not in source.pending:
                    return
                source.pending.remove(derived)

            source.pending.append(pause)

    def _admit(self, source: _SourceBuffer, timestamp: float) -> float:
        """Clamp regressions and late arrivals so the merged stream stays ordered."""
        ts = float(timestamp)
        clamped = source.clamp(ts)
        if self._released_until is not None and clamped < self._released_until:
            clamped = self._released_until
        if clamped != ts:
            self.anomaly_count += 1
        source.latest = clamped
        return clamped

    # ───────────────────────── consumer ─────────────────────────

    def drain(self) -> List[SessionEvent]:
        """
        Release every event that can no longer be preceded by a later arrival.

        Returns:
            Events in (timestamp, audio < pause < word) order
        """
        with self._lock:
            watermark = self._watermark_locked()
            if watermark is None:
                return []
            return self._release_locked(watermark)

    def flush(self) -> List[SessionEvent]:
        """Release everything still buffered (stream closed)."""
        with self._lock:
            return self._release_locked(None)

    def reset(self, start_time: float = 0.0):
        """
        Discard the buffer (session ended or cancelled).

        Args:
            start_time: Session clock value both producers start from
        """
        with self._lock:
            self._reset_locked(start_time)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(len(s.pending) for s in self._sources.values())

    def _watermark_locked(self) -> Optional[float]:
        audio = self._sources[AUDIO].latest
        transcript = self._sources[TRANSCRIPT].latest
        newest = max((t for t in (audio, transcript) if t is not None), default=None)
        if newest is None:
            return None

        # A source that never reported is still at the session start
        audio_clock = audio if audio is not None else self._start_time
        transcript_clock = transcript if transcript is not None else self._start_time

        self.transcript_stalled = newest - transcript_clock > self.stall_threshold_seconds
        audio_lagging = newest - audio_clock > self.stall_threshold_seconds
        if audio_lagging:
            self.audio_stalled = True

        clocks = []
        if not audio_lagging:
            clocks.append(audio_clock)
        if not self.transcript_stalled:
            clocks.append(transcript_clock)
        return min(clocks) if clocks else newest

    def _release_locked(self, watermark: Optional[float]) -> List[SessionEvent]:
        released: List[SessionEvent] = []
        for source in self._sources.values():
            while source.pending and (watermark is None or source.pending[0].timestamp <= watermark):
                released.append(source.pending.popleft())

        # sorted() is stable; per-source order is already chronological
        released = sorted(released, key=event_sort_key)
        if released:
            last = released[-1].timestamp
            if self._released_until is None or last > self._released_until:
                self._released_until = last
        return released
