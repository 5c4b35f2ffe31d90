# src/midi2timeline/keys.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence
import numpy as np
from .timeline import KeyRegion, NoteEvent

log = logging.getLogger(__name__)

# Krumhansl-Kessler key profiles, index 0 = tonic
KRUMHANSL_MAJOR = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
KRUMHANSL_MINOR = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])

MAJOR_BIAS = 0.02          # tie-break relative major/minor pairs toward major
CORR_EPS = 1e-10

MAJOR_SCALE = (0, 2, 4, 5, 7, 9, 11)
MINOR_SCALE = (0, 2, 3, 5, 7, 8, 10)

# tonic pitch classes whose key signature is written with flats
FLAT_MAJOR_KEYS = frozenset({5, 10, 3, 8, 1})      # F Bb Eb Ab Db
FLAT_MINOR_KEYS = frozenset({2, 7, 0, 5, 10, 3})   # d g c f bb eb

@dataclass(frozen=True)
class KeyResult:
    key: int
    mode: str
    confidence: float

def _pearson(h: np.ndarray, p: np.ndarray) -> float:
    mh, mp = h.mean(), p.mean()
    cov = (h * p).mean() - mh * mp
    sh = np.sqrt(max(0.0, (h * h).mean() - mh * mh))
    sp = np.sqrt(max(0.0, (p * p).mean() - mp * mp))
    return float(cov / (sh * sp + CORR_EPS))

def detect_key_with_confidence(histogram: Sequence[float],
                               major_bias: float = MAJOR_BIAS) -> KeyResult:
    """
    Krumhansl-Schmuckler key finding over a 12-bin pitch-class histogram.
    Returns the best (shift, mode) and the correlation mapped to 0..1.
    """
    h = np.asarray(histogram, dtype=float)
    best_corr = -np.inf
    best_key, best_mode = 0, "major"

    for shift in range(12):
        rotated = np.roll(h, -shift)       # rotated[i] = h[(i + shift) % 12]
        for mode, profile in (("major", KRUMHANSL_MAJOR), ("minor", KRUMHANSL_MINOR)):
            corr = _pearson(rotated, profile)
            if mode == "major":
                corr += major_bias
            if corr > best_corr:
                best_corr, best_key, best_mode = corr, shift, mode

    confidence = float(np.clip((best_corr + 1.0) / 2.0, 0.0, 1.0))
    return KeyResult(best_key, best_mode, confidence)

def detect_key(histogram: Sequence[float], major_bias: float = MAJOR_BIAS) -> tuple[int, str]:
    res = detect_key_with_confidence(histogram, major_bias)
    return res.key, res.mode

def diatonic_set(key: int, mode: str) -> FrozenSet[int]:
    scale = MAJOR_SCALE if mode == "major" else MINOR_SCALE
    return frozenset((key + s) % 12 for s in scale)

def scale_degree(root: int, key: int, mode: str) -> int:
    """1-7 for diatonic roots, 0 if chromatic."""
    scale = MAJOR_SCALE if mode == "major" else MINOR_SCALE
    interval = (root - key) % 12
    return scale.index(interval) + 1 if interval in scale else 0

def uses_flats(key: int, mode: str) -> bool:
    return key in (FLAT_MAJOR_KEYS if mode == "major" else FLAT_MINOR_KEYS)

def pitch_histogram(notes: Sequence[NoteEvent],
                    start: Optional[float] = None,
                    end: Optional[float] = None) -> np.ndarray:
    """Σ duration × velocity per pitch class; optionally only the overlap with [start, end)."""
    hist = np.zeros(12)
    for n in notes:
        if n.is_drum:
            continue
        if start is None or end is None:
            hist[n.midi % 12] += n.duration * n.velocity
            continue
        if n.end > start and n.time < end:
            overlap = min(n.end, end) - max(n.time, start)
            hist[n.midi % 12] += overlap * n.velocity
    return hist

def detect_key_regions(notes: Sequence[NoteEvent],
                       duration: float,
                       bar_duration: float,
                       window_bars: float = 4.0,
                       hop_bars: float = 1.0,
                       min_stable_windows: int = 3,
                       confidence_threshold: float = 0.15,
                       min_region_bars: float = 4.0,
                       major_bias: float = MAJOR_BIAS) -> List[KeyRegion]:
    """
    Local keys (modulations) via windowed key finding with hysteresis:
    a new key has to win ``min_stable_windows`` consecutive windows before
    the region switches. Regions shorter than ``min_region_bars`` are folded
    into the previous region.
    """
    window_s = bar_duration * window_bars
    hop_s = bar_duration * hop_bars
    if not notes or bar_duration <= 0 or duration < window_s:
        return []

    windows: List[tuple] = []   # (center, key, mode, confidence)
    t = 0.0
    while t < duration - window_s / 2:
        res = detect_key_with_confidence(pitch_histogram(notes, t, t + window_s), major_bias)
        windows.append((t + window_s / 2, res.key, res.mode, res.confidence))
        t += hop_s

    if not windows:
        return []

    def _mean_conf(lo: float, hi: float) -> float:
        vals = [w[3] for w in windows if lo <= w[0] < hi]
        return sum(vals) / len(vals) if vals else 0.5

    regions: List[KeyRegion] = []
    cur_key, cur_mode = windows[0][1], windows[0][2]
    region_start = 0.0
    cand_key, cand_mode = cur_key, cur_mode
    cand_count, cand_conf = 0, 0.0
    min_stable = max(1, int(min_stable_windows))

    for center, key, mode, conf in windows:
        if key == cur_key and mode == cur_mode:
            cand_count, cand_conf = 0, 0.0
        elif key == cand_key and mode == cand_mode:
            cand_count += 1
            cand_conf += conf
            if cand_count >= min_stable and cand_conf / cand_count > confidence_threshold:
                switch_at = center - hop_s * cand_count
                if switch_at > region_start:
                    regions.append(KeyRegion(region_start, switch_at, cur_key, cur_mode,
                                             _mean_conf(region_start, switch_at)))
                region_start = switch_at
                cur_key, cur_mode = cand_key, cand_mode
                cand_count, cand_conf = 0, 0.0
        else:
            cand_key, cand_mode = key, mode
            cand_count, cand_conf = 1, conf

    regions.append(KeyRegion(region_start, duration, cur_key, cur_mode,
                             _mean_conf(region_start, float("inf"))))

    # short regions are tonicizations, not modulations
    min_len = bar_duration * min_region_bars
    merged: List[KeyRegion] = []
    for r in regions:
        if merged and (r.end_time - r.start_time) < min_len:
            last = merged[-1]
            merged[-1] = KeyRegion(last.start_time, r.end_time, last.key, last.mode, last.confidence)
        else:
            merged.append(r)

    log.debug("key regions: %d (from %d windows)", len(merged), len(windows))
    return merged
