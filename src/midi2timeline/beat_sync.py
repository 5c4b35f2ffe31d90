# src/midi2timeline/beat_sync.py
"""
Tempo-map-aware beat clock.

Converts playback time into beat/bar phase, indices, edge-triggered
boundary flags and the groove envelopes (anticipation, arrival, groove)
consumed by visual effects.
"""
from __future__ import annotations
import math
from typing import Optional, Sequence, Tuple
from .tempo import build_segments, find_segment
from .timeline import (
    BeatState, TempoEvent, TimeSignatureEvent, TempoSegment,
    DEFAULT_BPM, DEFAULT_TIMESIG,
)

ARRIVAL_DECAY_S = 0.1      # 1.0 on the boundary, ~0 after 0.5 s
MIDI_STABILITY = 1.0       # symbolic timing is exact

def anticipation(phase: float) -> float:
    """0 -> 1 while approaching the next boundary, accelerating."""
    return phase * phase

def arrival(seconds_since: float) -> float:
    return math.exp(-max(0.0, seconds_since) / ARRIVAL_DECAY_S)

def groove(phase: float) -> float:
    """Smooth cosine, 1.0 exactly on the boundary, 0.0 halfway."""
    return 0.5 + 0.5 * math.cos(2.0 * math.pi * phase)

def beat_strength(beat_index: int, beats_per_bar: int) -> float:
    """Metrical weight of a beat position (1.0 = downbeat)."""
    if beat_index == 0:
        return 1.0
    if beats_per_bar == 4:
        return 0.5 if beat_index == 2 else 0.25
    if beats_per_bar == 6:
        return 1.0 if beat_index == 3 else 0.25
    if beats_per_bar == 2:
        return 0.35
    return 0.25

class BeatSync:
    """
    Per-frame clock over a precomputed segment list.

    ``update`` is stateful (edge detection against the previous call) and must
    be called at most once per frame; ``peek`` reads the same state without
    touching the counters. Call ``reset`` after any seek.
    """

    def __init__(self, segments: Sequence[TempoSegment]):
        self.segments = list(segments) or build_segments([], [])
        self.prev_total_beats = 0.0
        self.prev_total_bars = 0.0

    def _totals(self, current_time: float) -> Tuple[TempoSegment, float, float]:
        seg = find_segment(self.segments, current_time)
        elapsed = current_time - seg.start_time
        total_beats = seg.start_beat + elapsed * (seg.bpm / 60.0)
        bpb = seg.beats_per_bar
        # keep bar numbering continuous across meter changes
        total_bars = seg.start_bar + math.floor(total_beats / bpb) - math.floor(seg.start_beat / bpb)
        return seg, total_beats, total_bars

    def _state(self, seg: TempoSegment, total_beats: float,
               on_beat: bool, on_bar: bool) -> BeatState:
        bpb = seg.beats_per_bar
        beat_duration = 60.0 / seg.bpm
        bar_duration = beat_duration * bpb

        beat_phase = total_beats - math.floor(total_beats)
        bar_phase = (total_beats % bpb) / bpb
        beat_index = int(math.floor(total_beats)) % bpb

        return BeatState(
            beat_phase=beat_phase,
            bar_phase=bar_phase,
            bpm=seg.bpm,
            beat_duration=beat_duration,
            beats_per_bar=bpb,
            beat_index=beat_index,
            on_beat=on_beat,
            on_bar=on_bar,
            stability=MIDI_STABILITY,
            next_beat_in=(1.0 - beat_phase) * beat_duration,
            next_bar_in=(1.0 - bar_phase) * bar_duration,
            beat_anticipation=anticipation(beat_phase),
            bar_anticipation=anticipation(bar_phase),
            beat_arrival=arrival(beat_phase * beat_duration),
            bar_arrival=arrival(bar_phase * bar_duration),
            beat_groove=groove(beat_phase),
            bar_groove=groove(bar_phase),
        )

    def update(self, current_time: float, dt: float) -> BeatState:
        seg, total_beats, total_bars = self._totals(current_time)

        on_beat = math.floor(total_beats) > math.floor(self.prev_total_beats) and dt > 0
        on_bar = math.floor(total_bars) > math.floor(self.prev_total_bars) and dt > 0

        # written unconditionally; use peek() for side-effect-free reads
        self.prev_total_beats = total_beats
        self.prev_total_bars = total_bars

        return self._state(seg, total_beats, on_beat, on_bar)

    def peek(self, current_time: float) -> BeatState:
        seg, total_beats, _ = self._totals(current_time)
        return self._state(seg, total_beats, False, False)

    def reset(self):
        self.prev_total_beats = 0.0
        self.prev_total_bars = 0.0

def create_midi_beat_sync(tempo_events: Optional[Sequence[TempoEvent]],
                          time_sig_events: Optional[Sequence[TimeSignatureEvent]]) -> BeatSync:
    tempos = sorted(tempo_events or [TempoEvent(0.0, DEFAULT_BPM)], key=lambda e: e.time)
    timesigs = sorted(time_sig_events or [TimeSignatureEvent(0.0, *DEFAULT_TIMESIG)],
                      key=lambda e: e.time)
    return BeatSync(build_segments(tempos, timesigs))

def create_idle_beat_sync(bpm: float = DEFAULT_BPM, beats_per_bar: int = 4) -> BeatSync:
    """Constant-tempo clock for when no song is loaded."""
    return create_midi_beat_sync(
        [TempoEvent(0.0, bpm)],
        [TimeSignatureEvent(0.0, beats_per_bar, 4)],
    )
