# src/midi2timeline/tension.py
"""
Lerdahl-inspired harmonic tension (cf. Lerdahl & Krumhansl, "Modeling Tonal
Tension", 2007) and Roman-numeral labels.

tension = hierarchical distance + surface dissonance + root motion + tendency,
weighted 40/25/20/15 and clamped to 0..1. These are tuned heuristics.
"""
from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional, Sequence
from .chords import MINOR_FAMILY
from .timeline import ChordEvent

WEIGHTS = {"hierarchical": 0.40, "dissonance": 0.25, "motion": 0.20, "tendency": 0.15}

# signed steps around the circle of fifths from the tonic, by scale degree
FIFTHS_FROM_TONIC: Dict[int, int] = {
    0: 3,    # chromatic: moderate
    1: 0,    # I
    2: 2,    # ii
    3: 4,    # iii
    4: -1,   # IV
    5: 1,    # V
    6: 3,    # vi
    7: 5,    # vii
}

QUALITY_DISSONANCE: Dict[str, float] = {
    "major": 0.0,
    "minor": 0.08,
    "sus2": 0.10,
    "sus4": 0.12,
    "maj7": 0.15,
    "min7": 0.15,
    "dom7": 0.25,
    "aug": 0.30,
    "dim": 0.35,
    "hdim7": 0.35,
    "dim7": 0.40,
    "unknown": 0.1,
}

# shortest root interval in semitones -> motion tension
MOTION_TENSION: Dict[int, float] = {
    0: 0.0,
    1: 0.3,    # half step
    2: 0.25,
    3: 0.15,
    4: 0.15,
    5: 0.05,   # fourth/fifth: smooth
    6: 0.4,    # tritone
}

TENDENCY_TENSION: Dict[int, float] = {
    0: 0.0,
    1: 0.0,
    2: 0.05,
    3: 0.05,
    4: 0.1,
    5: 0.2,    # dominant pull
    6: 0.05,
    7: 0.3,    # leading tone
}

NUMERALS = ("I", "II", "III", "IV", "V", "VI", "VII")

# chromatic roots: semitones above the tonic -> altered numeral
CHROMATIC_NUMERALS: Dict[int, str] = {
    1: "bII", 3: "bIII", 6: "#IV", 8: "bVI", 10: "bVII",
    # only chromatic in minor keys
    4: "#III", 9: "#VI", 11: "#VII",
}

QUALITY_SUFFIX: Dict[str, str] = {
    "dim": "°",
    "aug": "+",
    "sus4": "sus4",
    "sus2": "sus2",
    "maj7": "Δ7",
    "dom7": "7",
    "min7": "7",
    "hdim7": "ø7",
    "dim7": "°7",
}

def hierarchical_tension(degree: int) -> float:
    return min(1.0, abs(FIFTHS_FROM_TONIC.get(degree, 3)) / 6.0)

def root_motion_tension(prev_root: Optional[int], root: int) -> float:
    if prev_root is None or prev_root < 0:
        return 0.0
    interval = abs(root - prev_root) % 12
    semitones = min(interval, 12 - interval)
    return MOTION_TENSION.get(semitones, 0.1)

def chord_tension(degree: int, quality: str, prev_root: Optional[int], root: int,
                  weights: Optional[dict] = None) -> float:
    w = {**WEIGHTS, **(weights or {})}
    t = (hierarchical_tension(degree) * w["hierarchical"]
         + QUALITY_DISSONANCE.get(quality, 0.0) * w["dissonance"]
         + root_motion_tension(prev_root, root) * w["motion"]
         + TENDENCY_TENSION.get(degree, 0.0) * w["tendency"])
    return max(0.0, min(1.0, t))

def roman_numeral(degree: int, quality: str,
                  root: Optional[int] = None, key: Optional[int] = None) -> str:
    if quality == "unknown":
        return "?"
    if 1 <= degree <= 7:
        base = NUMERALS[degree - 1]
    elif root is not None and key is not None:
        base = CHROMATIC_NUMERALS.get((root - key) % 12, "?")
    else:
        return "?"
    if quality in MINOR_FAMILY:
        base = base.lower()
    return base + QUALITY_SUFFIX.get(quality, "")

def apply_tension(chords: Sequence[ChordEvent], key: int,
                  weights: Optional[dict] = None) -> List[ChordEvent]:
    """
    Single forward pass (root motion needs the previous chord): fills
    tension, numeral and next_degree. Returns new events.
    """
    out: List[ChordEvent] = []
    prev_root: Optional[int] = None
    for i, c in enumerate(chords):
        out.append(replace(
            c,
            tension=chord_tension(c.degree, c.quality, prev_root, c.root, weights),
            numeral=roman_numeral(c.degree, c.quality, c.root, key),
            next_degree=chords[i + 1].degree if i + 1 < len(chords) else 0,
        ))
        prev_root = c.root
    return out
