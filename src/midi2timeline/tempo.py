# src/midi2timeline/tempo.py
from __future__ import annotations
import math
from typing import List, Sequence
from .timeline import TempoEvent, TimeSignatureEvent, TempoSegment, DEFAULT_BPM, DEFAULT_TIMESIG

def tempo_at(time: float, tempos: Sequence[TempoEvent]) -> float:
    """Tempo of the last event with ``time <= t`` (scans backward)."""
    for ev in reversed(tempos):
        if ev.time <= time:
            return ev.bpm
    return DEFAULT_BPM

def time_sig_at(time: float, timesigs: Sequence[TimeSignatureEvent]) -> int:
    """Numerator of the last meter change at or before ``time``."""
    for ev in reversed(timesigs):
        if ev.time <= time:
            return ev.numerator
    return DEFAULT_TIMESIG[0]

def build_segments(tempos: Sequence[TempoEvent],
                   timesigs: Sequence[TimeSignatureEvent]) -> List[TempoSegment]:
    """
    Merge tempo and meter changes into constant-tempo/meter segments with
    cumulative beat/bar counts. Inputs must be sorted by time.
    """
    times = sorted({ev.time for ev in tempos} | {ev.time for ev in timesigs})

    segments: List[TempoSegment] = []
    cum_beats = 0.0
    cum_bars = 0.0
    prev_time = 0.0
    prev_bpm = tempos[0].bpm if tempos else DEFAULT_BPM
    prev_bpb = timesigs[0].numerator if timesigs else DEFAULT_TIMESIG[0]

    for t in times:
        # advance counters at the previous segment's tempo/meter
        if segments and t > prev_time:
            beats = (t - prev_time) * (prev_bpm / 60.0)
            cum_beats += beats
            cum_bars += beats / prev_bpb

        bpm = tempo_at(t, tempos)
        bpb = max(1, int(time_sig_at(t, timesigs)))
        segments.append(TempoSegment(
            start_time=t, bpm=bpm, beats_per_bar=bpb,
            start_beat=cum_beats, start_bar=cum_bars,
        ))
        prev_time, prev_bpm, prev_bpb = t, bpm, bpb

    if not segments:
        segments.append(TempoSegment(0.0, DEFAULT_BPM, DEFAULT_TIMESIG[0], 0.0, 0.0))
    return segments

def find_segment(segments: Sequence[TempoSegment], time: float) -> TempoSegment:
    """Rightmost segment with ``start_time <= time``; clamps to segment 0."""
    lo, hi = 0, len(segments) - 1
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if segments[mid].start_time <= time:
            lo = mid
        else:
            hi = mid - 1
    return segments[lo]

def beats_at(segments: Sequence[TempoSegment], time: float) -> float:
    """Cumulative beats elapsed at ``time`` (linear extrapolation before t=start)."""
    seg = find_segment(segments, time)
    return seg.start_beat + (time - seg.start_time) * (seg.bpm / 60.0)

def time_at_beat(segments: Sequence[TempoSegment], beat: float) -> float:
    """Inverse of :func:`beats_at`."""
    lo, hi = 0, len(segments) - 1
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if segments[mid].start_beat <= beat:
            lo = mid
        else:
            hi = mid - 1
    seg = segments[lo]
    return seg.start_time + (beat - seg.start_beat) * (60.0 / seg.bpm)

def bar_start_times(segments: Sequence[TempoSegment], duration: float) -> List[float]:
    """Start time of every bar line in [0, duration), following the segment bar counts."""
    times: List[float] = []
    for i, seg in enumerate(segments):
        seg_end = segments[i + 1].start_time if i + 1 < len(segments) else duration
        bar = math.ceil(seg.start_bar - 1e-9)
        while True:
            t = seg.start_time + (bar - seg.start_bar) * seg.beats_per_bar * (60.0 / seg.bpm)
            if t >= seg_end - 1e-9 or t >= duration:
                break
            times.append(t)
            bar += 1
    return times
