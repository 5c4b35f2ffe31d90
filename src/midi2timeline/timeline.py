from __future__ import annotations
from dataclasses import dataclass, field
from typing import Tuple

DEFAULT_BPM = 120.0
DEFAULT_TIMESIG = (4, 4)

# --- Conductor (tempo map) ---

@dataclass(frozen=True)
class TempoEvent:
    time: float            # seconds
    bpm: float

@dataclass(frozen=True)
class TimeSignatureEvent:
    time: float            # seconds
    numerator: int
    denominator: int

@dataclass(frozen=True)
class TempoSegment:
    start_time: float
    bpm: float
    beats_per_bar: int
    start_beat: float      # cumulative beats before this segment
    start_bar: float       # cumulative bars before this segment

# --- Per-frame beat state ---

@dataclass(frozen=True)
class BeatState:
    beat_phase: float      # 0..1 within beat (0 = on the beat)
    bar_phase: float       # 0..1 within bar
    bpm: float
    beat_duration: float   # seconds per beat
    beats_per_bar: int
    beat_index: int        # beat in bar, 0-based
    on_beat: bool          # edge: beat boundary crossed this frame
    on_bar: bool           # edge: bar boundary crossed this frame
    stability: float
    next_beat_in: float    # seconds
    next_bar_in: float
    beat_anticipation: float
    bar_anticipation: float
    beat_arrival: float
    bar_arrival: float
    beat_groove: float
    bar_groove: float

# --- Analysis results ---

@dataclass(frozen=True)
class ChordEvent:
    time: float
    quality: str           # "major" | "minor" | ... | "unknown"
    root: int              # pitch class 0-11
    degree: int            # 1-7, 0 = chromatic
    tension: float = 0.0   # 0-1, filled by the tension pass
    numeral: str = ""
    next_degree: int = 0   # degree of the following chord, 0 if last

@dataclass(frozen=True)
class NoteEvent:
    time: float
    duration: float
    midi: int
    velocity: float        # 0-1
    channel: int           # track index
    is_drum: bool = False

    @property
    def end(self) -> float:
        return self.time + self.duration

@dataclass(frozen=True)
class DrumHit:
    time: float
    energy: float          # 0-1
    kind: str = "kick"     # "kick" | "snare" | "hihat"

@dataclass(frozen=True)
class KeyRegion:
    start_time: float
    end_time: float
    key: int
    mode: str
    confidence: float

@dataclass(frozen=True)
class TrackInfo:
    index: int
    name: str
    instrument_name: str
    program: int
    is_drum: bool
    midi_channel: int

@dataclass(frozen=True)
class MusicTimeline:
    name: str
    tempo: float                              # initial tempo
    time_signature: Tuple[int, int]           # initial meter
    tempo_events: Tuple[TempoEvent, ...]
    time_signature_events: Tuple[TimeSignatureEvent, ...]
    key: int
    key_mode: str
    use_flats: bool
    duration: float
    chords: Tuple[ChordEvent, ...] = ()
    drums: Tuple[DrumHit, ...] = ()
    notes: Tuple[NoteEvent, ...] = ()
    key_regions: Tuple[KeyRegion, ...] = ()
    tracks: Tuple[TrackInfo, ...] = field(default_factory=tuple)
