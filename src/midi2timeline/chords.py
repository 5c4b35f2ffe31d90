# src/midi2timeline/chords.py
from __future__ import annotations
import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple
import numpy as np
from .keys import diatonic_set, scale_degree
from .tempo import beats_at, find_segment, time_at_beat
from .timeline import ChordEvent, NoteEvent, TempoSegment

log = logging.getLogger(__name__)

# Ordered: on equal scores the earlier (root, template) wins
CHORD_TEMPLATES: Tuple[Tuple[str, Tuple[int, ...]], ...] = (
    ("major", (0, 4, 7)),
    ("minor", (0, 3, 7)),
    ("dim",   (0, 3, 6)),
    ("aug",   (0, 4, 8)),
    ("sus4",  (0, 5, 7)),
    ("sus2",  (0, 2, 7)),
    ("maj7",  (0, 4, 7, 11)),
    ("dom7",  (0, 4, 7, 10)),
    ("min7",  (0, 3, 7, 10)),
    ("hdim7", (0, 3, 6, 10)),
    ("dim7",  (0, 3, 6, 9)),
)

# subtracted from the score: negative = bonus (common), positive = penalty (rare)
QUALITY_PREFERENCE: Dict[str, float] = {
    "major": 0.0, "minor": 0.0, "dim": 0.0,
    "aug": 0.02, "sus4": 0.02, "sus2": 0.02,
    "maj7": 0.0, "dom7": -0.02, "min7": 0.0, "hdim7": 0.0, "dim7": 0.0,
}

MINOR_FAMILY = frozenset({"minor", "min7", "dim", "hdim7", "dim7"})

CHORD_THRESHOLD = 0.3
NON_CHORD_PENALTY = 0.3
DIATONIC_BONUS = 0.15
SILENCE_WEIGHT = 1e-6
SEVENTH_MIN_TONE_SHARE = 0.05   # each tone of a 4-note template must carry this share
WINDOW_BARS = 0.5               # half-bar analysis windows

def detect_chord(weights: Sequence[float],
                 diatonic: FrozenSet[int] = frozenset(),
                 cfg: Optional[dict] = None) -> Tuple[str, int]:
    """
    Best-fit (quality, root) for a 12-bin weighted pitch-class profile.
    Returns ("unknown", 0) for silence or when nothing scores above threshold.
    """
    cfg = cfg or {}
    threshold = float(cfg.get("chord_threshold", CHORD_THRESHOLD))
    penalty = float(cfg.get("non_chord_penalty", NON_CHORD_PENALTY))
    bonus = float(cfg.get("diatonic_bonus", DIATONIC_BONUS))
    min_share = float(cfg.get("seventh_min_tone_share", SEVENTH_MIN_TONE_SHARE))

    w = np.asarray(weights, dtype=float)
    total = float(w.sum())
    if total < SILENCE_WEIGHT:
        return "unknown", 0

    best_score = -np.inf
    best = ("unknown", 0)
    for root in range(12):
        diatonic_bonus = bonus if root in diatonic else 0.0
        for quality, intervals in CHORD_TEMPLATES:
            tones = [(root + i) % 12 for i in intervals]
            if len(tones) > 3 and w[tones].min() < min_share * total:
                continue
            match = float(w[tones].sum())
            non_chord = total - match
            score = (match / total) - penalty * (non_chord / total) + diatonic_bonus \
                    - QUALITY_PREFERENCE.get(quality, 0.0)
            if score > best_score:
                best_score = score
                best = (quality, root)

    if best_score < threshold:
        return "unknown", 0
    return best

def window_weights(notes: Sequence[NoteEvent], start: float, end: float,
                   first_idx: int = 0) -> Tuple[np.ndarray, float]:
    """
    Overlap-weighted profile of the notes sounding in [start, end) and the
    earliest onset inside the window (``end`` if no note starts there).
    """
    weights = np.zeros(12)
    earliest = end
    for n in notes[first_idx:]:
        if n.time >= end:
            break
        if n.end > start:
            overlap = min(n.end, end) - max(n.time, start)
            weights[n.midi % 12] += overlap * n.velocity
            if start <= n.time < earliest:
                earliest = n.time
    return weights, earliest

def detect_chords(notes: Sequence[NoteEvent],
                  segments: Sequence[TempoSegment],
                  duration: float,
                  key: int,
                  mode: str,
                  cfg: Optional[dict] = None) -> List[ChordEvent]:
    """
    Windowed chord detection over time-sorted, non-drum notes. Consecutive
    windows with the same (quality, root) collapse into one event stamped
    with the earliest attack of its first window.
    """
    cfg = cfg or {}
    window_bars = float(cfg.get("window_bars", WINDOW_BARS))
    diatonic = diatonic_set(key, mode)
    pitched = [n for n in notes if not n.is_drum]

    chords: List[ChordEvent] = []
    # notes longer than this are still found by the scan start
    longest = max((n.duration for n in pitched), default=0.0)
    scan = 0
    t = 0.0
    beat = beats_at(segments, t)
    while t < duration:
        # window edges on the beat grid
        seg = find_segment(segments, t)
        beat += seg.beats_per_bar * window_bars
        t_end = time_at_beat(segments, beat)
        if t_end <= t:
            break

        while scan < len(pitched) and pitched[scan].time < t - longest:
            scan += 1
        weights, onset = window_weights(pitched, t, t_end, scan)
        quality, root = detect_chord(weights, diatonic, cfg)

        prev = chords[-1] if chords else None
        if prev is None or prev.quality != quality or prev.root != root:
            chords.append(ChordEvent(
                time=onset if onset < t_end else t,
                quality=quality,
                root=root,
                degree=scale_degree(root, key, mode) if quality != "unknown" else 0,
            ))
        t = t_end

    log.debug("chords: %d events over %.2fs", len(chords), duration)
    return chords
