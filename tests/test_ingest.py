#!/usr/bin/env python3
"""
Tests for signal ingestion.
Tests stream merging, tie-breaking, stall handling and timestamp clamping.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import math
import numpy as np
import pytest

from speakup.ingest import SignalIngest, block_to_decibels
from speakup.models import AudioLevelEvent, PauseEvent, WordEvent


class TestBlockToDecibels:
    """Test RMS level conversion"""

    def test_silence_is_floored(self):
        assert block_to_decibels(np.zeros(512)) == -160.0

    def test_empty_block_is_floored(self):
        assert block_to_decibels(np.array([])) == -160.0

    def test_full_scale_is_zero_db(self):
        assert block_to_decibels(np.ones(256)) == pytest.approx(0.0)

    def test_half_scale(self):
        level = block_to_decibels(np.full(256, 0.5))
        assert level == pytest.approx(20 * math.log10(0.5))

    def test_multichannel_block_flattened(self):
        stereo = np.full((128, 2), 0.5, dtype=np.float32)
        assert block_to_decibels(stereo) == pytest.approx(20 * math.log10(0.5), abs=1e-4)


class TestOrdering:
    """Test merged stream ordering"""

    @pytest.fixture
    def ingest(self):
        return SignalIngest(stall_threshold_seconds=3.0, derive_pauses=False)

    def test_audio_before_word_at_same_timestamp(self, ingest):
        ingest.push_word(1.0, "hello")
        ingest.push_audio(1.0, -20.0)

        events = ingest.drain()

        assert [type(e) for e in events] == [AudioLevelEvent, WordEvent]

    def test_pause_between_audio_and_word(self, ingest):
        ingest.push_word(2.0, "next")
        ingest.push_pause(1.0, 2.0)
        ingest.push_audio(2.0, -50.0)

        events = ingest.flush()

        assert [type(e) for e in events] == [AudioLevelEvent, PauseEvent, WordEvent]

    def test_interleaves_sources_by_timestamp(self, ingest):
        for t in (0.1, 0.3, 0.5):
            ingest.push_audio(t, -30.0)
        ingest.push_word(0.2, "one")
        ingest.push_word(0.4, "two")
        ingest.push_word(0.6, "three")

        events = ingest.drain()

        timestamps = [e.timestamp for e in events]
        assert timestamps == sorted(timestamps)
        assert timestamps == [0.1, 0.2, 0.3, 0.4, 0.5]

    def test_events_held_until_other_source_catches_up(self, ingest):
        ingest.push_word(0.0, "start")
        ingest.push_audio(0.5, -30.0)
        ingest.push_audio(1.0, -30.0)

        # Transcript clock is still at 0.0
        events = ingest.drain()
        assert [e.timestamp for e in events] == [0.0]
        assert ingest.pending_count == 2

        ingest.push_word(1.0, "later")
        events = ingest.drain()
        assert [e.timestamp for e in events] == [0.5, 1.0, 1.0]

    def test_released_stream_never_goes_backwards(self, ingest):
        released = []
        ingest.push_audio(0.0, -30.0)
        ingest.push_word(0.0, "a")
        released += ingest.drain()
        ingest.push_audio(1.0, -30.0)
        ingest.push_word(0.8, "b")
        released += ingest.drain()
        released += ingest.flush()

        timestamps = [e.timestamp for e in released]
        assert timestamps == sorted(timestamps)


class TestStalls:
    """Test producer stall detection"""

    def test_lagging_transcript_stops_holding_audio(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0)
        ingest.push_audio(0.5, -30.0)
        assert ingest.drain() == []

        ingest.push_audio(3.6, -30.0)
        events = ingest.drain()

        assert ingest.transcript_stalled
        assert [e.timestamp for e in events] == [0.5, 3.6]

    def test_audio_stall_is_sticky(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0, derive_pauses=False)
        ingest.push_audio(0.5, -30.0)
        ingest.push_word(4.0, "words")
        ingest.drain()

        assert ingest.audio_stalled

        ingest.push_audio(4.0, -30.0)
        ingest.drain()
        assert ingest.audio_stalled

    def test_no_stall_within_threshold(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0)
        ingest.push_audio(2.0, -30.0)
        ingest.push_word(0.0, "hi")
        ingest.drain()

        assert not ingest.audio_stalled
        assert not ingest.transcript_stalled


class TestAnomalies:
    """Test clamping of out-of-order input"""

    def test_regressing_timestamp_clamped(self):
        ingest = SignalIngest()
        ingest.push_audio(1.0, -30.0)
        ingest.push_audio(0.5, -30.0)

        events = ingest.flush()

        assert [e.timestamp for e in events] == [1.0, 1.0]
        assert ingest.anomaly_count == 1

    def test_late_event_clamped_to_released_watermark(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0, derive_pauses=False)
        ingest.push_audio(5.0, -30.0)
        first = ingest.drain()
        assert [e.timestamp for e in first] == [5.0]

        ingest.push_word(2.0, "late")
        events = ingest.flush()

        assert events[0].timestamp == 5.0
        assert ingest.anomaly_count == 1

    def test_non_zero_start_with_word_first(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0, derive_pauses=False)
        ingest.reset(1000.0)

        ingest.push_word(1000.0, "hello")
        released = ingest.drain()

        assert not ingest.audio_stalled
        assert not ingest.transcript_stalled
        assert [e.timestamp for e in released] == [1000.0]

    def test_non_zero_start_interleaved_sources(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0, derive_pauses=False)
        ingest.reset(1000.0)

        released = []
        for i in range(20):
            t = 1000.0 + i * 0.4
            ingest.push_word(t, "word")
            released += ingest.drain()
            ingest.push_audio(t + 0.05, -25.0)
            released += ingest.drain()
        released += ingest.flush()

        assert not ingest.audio_stalled
        assert len(released) == 40
        timestamps = [e.timestamp for e in released]
        assert timestamps == sorted(timestamps)

    def test_silent_audio_after_non_zero_start_still_stalls(self):
        ingest = SignalIngest(stall_threshold_seconds=3.0, derive_pauses=False)
        ingest.reset(1000.0)

        ingest.push_word(1004.0, "words")
        ingest.drain()

        assert ingest.audio_stalled

    def test_reset_clears_everything(self):
        ingest = SignalIngest()
        ingest.push_audio(1.0, -30.0)
        ingest.push_audio(0.0, -30.0)
        ingest.reset()

        assert ingest.pending_count == 0
        assert ingest.anomaly_count == 0
        assert ingest.flush() == []


class TestDerivedPauses:
    """Test pauses derived from timed word gaps"""

    def test_gap_between_timed_words_emits_pause(self):
        ingest = SignalIngest(pause_gap_seconds=0.3)
        ingest.push_word(0.0, "first", end=0.2)
        ingest.push_word(1.0, "second", end=1.3)

        events = ingest.flush()

        pauses = [e for e in events if isinstance(e, PauseEvent)]
        assert len(pauses) == 1
        assert pauses[0].start == 0.2
        assert pauses[0].end == 1.0
        assert pauses[0].duration == pytest.approx(0.8)
        # Pause sorts before the word that ended it
        assert isinstance(events[1], PauseEvent)

    def test_short_gap_ignored(self):
        ingest = SignalIngest(pause_gap_seconds=0.3)
        ingest.push_word(0.0, "quick", end=0.3)
        ingest.push_word(0.4, "words")

        assert not any(isinstance(e, PauseEvent) for e in ingest.flush())

    def test_untimed_words_do_not_emit_pauses(self):
        ingest = SignalIngest()
        ingest.push_word(0.0, "no")
        ingest.push_word(5.0, "ends")

        assert not any(isinstance(e, PauseEvent) for e in ingest.flush())

    def test_explicit_pause_replaces_buffered_derived_pause(self):
        ingest = SignalIngest(pause_gap_seconds=0.3)
        ingest.push_word(0.0, "first", end=0.2)
        ingest.push_word(1.0, "second", end=1.3)
        ingest.push_pause(0.2, 1.0)

        pauses = [e for e in ingest.flush() if isinstance(e, PauseEvent)]

        assert pauses == [PauseEvent(start=0.2, end=1.0)]

    def test_explicit_pause_skipped_when_gap_already_released(self):
        ingest = SignalIngest(pause_gap_seconds=0.3)
        ingest.push_audio(2.0, -25.0)
        ingest.push_word(0.0, "first", end=0.2)
        ingest.push_word(1.0, "second", end=1.3)
        released = ingest.drain()

        ingest.push_pause(0.2, 1.0)
        released += ingest.flush()

        pauses = [e for e in released if isinstance(e, PauseEvent)]
        assert len(pauses) == 1

    def test_explicit_pauses_stop_derivation(self):
        ingest = SignalIngest(pause_gap_seconds=0.3)
        ingest.push_pause(0.0, 0.5)
        ingest.push_word(0.5, "first", end=0.8)
        ingest.push_word(2.0, "second", end=2.3)

        pauses = [e for e in ingest.flush() if isinstance(e, PauseEvent)]

        assert pauses == [PauseEvent(start=0.0, end=0.5)]

    def test_reset_restores_derivation(self):
        ingest = SignalIngest(pause_gap_seconds=0.3)
        ingest.push_pause(0.0, 0.5)
        ingest.reset()

        ingest.push_word(0.0, "first", end=0.2)
        ingest.push_word(1.0, "second")

        assert any(isinstance(e, PauseEvent) for e in ingest.flush())

    def test_filler_flag_passed_through(self):
        ingest = SignalIngest()
        ingest.push_word(0.0, "um", is_filler_candidate=True, confidence=0.9)

        word = ingest.flush()[0]
        assert word.is_filler_candidate
        assert word.confidence == 0.9
