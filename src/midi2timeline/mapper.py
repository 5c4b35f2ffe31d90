# src/midi2timeline/mapper.py
"""
Per-frame music -> visual parameter mapping.

A MusicMapper walks the (sorted, immutable) chord/drum/note streams of one
MusicTimeline with forward-only cursors. Each playback session owns its own
instance; after any seek/rewind/song change call ``reset()``, which also
resets the owned beat clock.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Set, Tuple
import numpy as np
from .beat_sync import BeatSync, beat_strength, create_midi_beat_sync
from .config import section
from .tempo import bar_start_times
from .timeline import BeatState, ChordEvent, MusicTimeline, NoteEvent
from .util.search import binary_search_first_ge, binary_search_time

log = logging.getLogger(__name__)

LOOKBACK_S = 0.05          # an event may lag "now" by this much and still fire
SNAP_RATE = 8.0            # ~0.12 s to 90 % of a new chord target
NOTE_LOOKAHEAD_S = 4.0
VOICE_WINDOW_S = 2.0
UPCOMING_PAST_S = 0.1

# harmonic release: tension falling below its running average
RELEASE_AVG_RATE = 2.0
RELEASE_TRIGGER = 0.06
RELEASE_REARM = 0.02
RELEASE_MIN_LEVEL = 0.15
RELEASE_DECAY = 4.0
MELODIC_DECAY = 2.0
MELODIC_WEIGHT = 0.3

# rhythmic tension: anticipation + off-beat melody, released on strong beats
RHYTHM_ANTICIPATION_WEIGHT = 0.6
RHYTHM_OFFBEAT_KICK = 0.5
RHYTHM_FOLLOW_RATE = 8.0
RHYTHM_AVG_RATE = 3.0
RHYTHM_RELEASE_MIN_LEVEL = 0.15
RHYTHM_RELEASE_BOOST = 0.3
RHYTHM_RELEASE_DECAY = 5.0

VoiceKey = Tuple[int, int]   # (channel, midi)

@dataclass(frozen=True)
class ActiveVoice:
    midi: int
    pitch_class: int
    velocity: float
    track: int
    onset: bool            # began sounding this frame

@dataclass(frozen=True)
class UpcomingChord:
    time: float
    root: int
    quality: str
    degree: int
    numeral: str
    time_until: float      # negative = already sounding

@dataclass(frozen=True)
class UpcomingNote:
    time: float
    duration: float
    midi: int
    pitch_class: int
    velocity: float
    track: int
    time_until: float

@dataclass(frozen=True)
class MusicParams:
    current_time: float
    dt: float
    # rhythm
    bpm: float
    beat_duration: float
    beats_per_bar: int
    bar_duration: float
    beat_position: float
    bar_position: float
    beat_index: int
    beat_strength: float
    on_beat: bool
    on_bar: bool
    beat_stability: float
    next_beat_in: float
    next_bar_in: float
    beat_anticipation: float
    bar_anticipation: float
    beat_arrival: float
    bar_arrival: float
    beat_groove: float
    bar_groove: float
    # harmony
    chord_root: int
    chord_degree: int
    chord_quality: str
    chord_numeral: str
    tension: float
    harmonic_x: float      # smoothed chord root on the circle of fifths
    harmonic_y: float
    harmonic_tension_smooth: float
    harmonic_tension_release: float
    on_harmonic_release: bool
    rhythmic_tension: float
    rhythmic_tension_smooth: float
    rhythmic_release: float
    on_rhythmic_release: bool
    key: int
    key_mode: str
    use_flats: bool
    # voices
    melody_pitch_class: int   # -1 if none
    melody_midi: int
    melody_velocity: float
    melody_onset: bool
    bass_pitch_class: int
    bass_midi: int
    bass_velocity: float
    note_onsets: int
    active_voices: Tuple[ActiveVoice, ...]
    # drums
    drum_energy: float
    kick: bool
    snare: bool
    hihat: bool

NO_CHORD = UpcomingChord(-1.0, -1, "", 0, "", 0.0)
BAR_EPS = 1e-6             # chord onsets within this of a bar line belong to that bar

def build_bar_chords(chords: Sequence[ChordEvent], bar_times: Sequence[float]) -> List[ChordEvent]:
    """
    Simplified harmony, one entry per bar stamped with the bar start: the
    first chord starting inside the bar, else the chord sounding at its start.
    Bars with no chord at all get root -1.
    """
    out: List[ChordEvent] = []
    for i, start in enumerate(bar_times):
        end = bar_times[i + 1] if i + 1 < len(bar_times) else float("inf")
        idx = binary_search_first_ge(chords, start - BAR_EPS)
        if not (idx < len(chords) and chords[idx].time < end - BAR_EPS):
            idx = binary_search_time(chords, start + BAR_EPS)
        if idx >= 0:
            out.append(replace(chords[idx], time=start))
        else:
            out.append(ChordEvent(start, "", -1, 0))
    return out

def harmonic_target(root: int, tension: float) -> np.ndarray:
    """Target vector for a chord: root angle on the circle of fifths + tension."""
    angle = ((root * 7) % 12) * (2.0 * math.pi / 12.0)
    return np.array([math.cos(angle), math.sin(angle), tension])

def snap(current: np.ndarray, target: np.ndarray, rate: float, dt: float) -> np.ndarray:
    return target + (current - target) * math.exp(-rate * max(0.0, dt))

class MusicMapper:
    def __init__(self, timeline: MusicTimeline, cfg: Optional[dict] = None,
                 beat_sync: Optional[BeatSync] = None):
        mcfg = section(cfg, "mapper")
        self.timeline = timeline
        self.lookback = float(mcfg.get("lookback", LOOKBACK_S))
        self.snap_rate = float(mcfg.get("snap_rate", SNAP_RATE))
        self.note_lookahead = float(mcfg.get("note_lookahead", NOTE_LOOKAHEAD_S))
        self.voice_window = float(mcfg.get("voice_window", VOICE_WINDOW_S))
        self.smoothing_rate = 4.0 + (timeline.tempo / 120.0) * 2.0

        self.beat_sync = beat_sync or create_midi_beat_sync(
            timeline.tempo_events, timeline.time_signature_events)
        self._pitched: Tuple[NoteEvent, ...] = tuple(n for n in timeline.notes if not n.is_drum)
        self._longest_note = max((n.duration for n in self._pitched), default=0.0)
        self._bar_chords = build_bar_chords(
            timeline.chords, bar_start_times(self.beat_sync.segments, timeline.duration))
        log.debug("mapper for %r: %d chords, %d notes, %d drum hits",
                  timeline.name, len(timeline.chords), len(self._pitched), len(timeline.drums))
        self.reset()

    # --- lifecycle ---

    def reset(self):
        """Zero cursors, smoothing and edge state; must accompany every seek."""
        tl = self.timeline
        self.last_chord_index = -1
        self.last_drum_index = -1
        self.last_note_index = -1
        self._started = False

        self.chord_root = tl.key
        self.chord_degree = 1
        self.chord_quality = "minor" if tl.key_mode == "minor" else "major"
        self.chord_numeral = "i" if tl.key_mode == "minor" else "I"

        self.target_tension = 0.0
        self.tension = 0.0
        self.tension_smooth = 0.0
        self.tension_release = 0.0
        self._release_armed = True
        self.melodic_tension = 0.0
        self.rhythmic_tension = 0.0
        self.rhythmic_tension_smooth = 0.0
        self.rhythmic_release = 0.0

        self.target_vector = harmonic_target(tl.key, 0.0)
        self.current_vector = self.target_vector.copy()

        self.last_active: Set[VoiceKey] = set()
        self.last_melody_pc = -1
        self.last_melody_midi = -1
        self.beat_sync.reset()

    # --- cursors ---

    def _advance_chord(self, t: float) -> int:
        chords = self.timeline.chords
        if self.last_chord_index < 0:
            return binary_search_time(chords, t)
        idx = self.last_chord_index
        while idx + 1 < len(chords) and chords[idx + 1].time <= t:
            idx += 1
        return idx

    def _process_drums(self, t: float) -> Tuple[float, Set[str]]:
        drums = self.timeline.drums
        lo = t - self.lookback
        if not self._started:
            # skip everything that is already stale
            self.last_drum_index = binary_search_first_ge(drums, lo) - 1
        energy = 0.0
        kinds: Set[str] = set()
        i = self.last_drum_index + 1
        while i < len(drums) and drums[i].time <= t:
            d = drums[i]
            if d.time >= lo:
                energy = min(1.0, energy + d.energy)
                kinds.add(d.kind)
            self.last_drum_index = i
            i += 1
        return energy, kinds

    def _process_note_onsets(self, t: float) -> int:
        notes = self._pitched
        lo = t - self.lookback
        if not self._started:
            self.last_note_index = binary_search_first_ge(notes, lo) - 1
        count = 0
        i = self.last_note_index + 1
        while i < len(notes) and notes[i].time <= t:
            if notes[i].time >= lo:
                count += 1
            self.last_note_index = i
            i += 1
        return count

    def _voices(self, t: float) -> Tuple[List[ActiveVoice], Optional[NoteEvent], Optional[NoteEvent]]:
        """Sounding voices (scanning back from the note cursor), highest and lowest."""
        notes = self._pitched
        keys: Set[VoiceKey] = set()
        voices: List[ActiveVoice] = []
        top: Optional[NoteEvent] = None
        bottom: Optional[NoteEvent] = None
        for i in range(self.last_note_index, -1, -1):
            n = notes[i]
            if n.time < t - max(self.voice_window, self._longest_note):
                break
            if n.end < t:
                continue
            key = (n.channel, n.midi)
            if key in keys:
                continue
            keys.add(key)
            voices.append(ActiveVoice(n.midi, n.midi % 12, n.velocity, n.channel,
                                      onset=key not in self.last_active))
            if top is None or n.midi > top.midi:
                top = n
            if bottom is None or n.midi < bottom.midi:
                bottom = n
        self.last_active = keys
        return voices, top, bottom

    # --- per frame ---

    def update(self, dt: float, current_time: float) -> MusicParams:
        """Advance one frame. Call at most once per frame with non-decreasing time."""
        tl = self.timeline

        idx = self._advance_chord(current_time)
        if idx >= 0 and idx != self.last_chord_index:
            chord: ChordEvent = tl.chords[idx]
            self.chord_root = chord.root
            self.chord_degree = chord.degree
            self.chord_quality = chord.quality
            self.chord_numeral = chord.numeral
            self.target_tension = chord.tension
            self.target_vector = harmonic_target(chord.root, chord.tension)
        self.last_chord_index = idx

        self.current_vector = snap(self.current_vector, self.target_vector, self.snap_rate, dt)

        # tension: chord tension plus decaying melodic leaps
        effective = min(1.0, self.target_tension + self.melodic_tension * MELODIC_WEIGHT)
        self.tension += (effective - self.tension) * (1.0 - math.exp(-self.smoothing_rate * max(0.0, dt)))
        on_release = self._detect_release(dt)

        beat: BeatState = self.beat_sync.update(current_time, dt)

        drum_energy, kinds = self._process_drums(current_time)
        onsets = self._process_note_onsets(current_time)
        voices, top, bottom = self._voices(current_time)
        self._started = True

        melody_pc = top.midi % 12 if top else -1
        melody_onset = melody_pc >= 0 and melody_pc != self.last_melody_pc
        if melody_onset and top and self.last_melody_midi >= 0:
            leap = abs(top.midi - self.last_melody_midi)
            leap_tension = 0.0 if leap <= 2 else 0.1 if leap <= 4 else 0.2 if leap <= 7 else 0.35
            self.melodic_tension += leap_tension * top.velocity
        self.melodic_tension *= math.exp(-MELODIC_DECAY * max(0.0, dt))
        self.last_melody_pc = melody_pc
        self.last_melody_midi = top.midi if top else -1
        on_rhythmic_release = self._detect_rhythmic_release(beat, melody_onset, dt)

        return MusicParams(
            current_time=current_time,
            dt=dt,
            bpm=beat.bpm,
            beat_duration=beat.beat_duration,
            beats_per_bar=beat.beats_per_bar,
            bar_duration=beat.beat_duration * beat.beats_per_bar,
            beat_position=beat.beat_phase,
            bar_position=beat.bar_phase,
            beat_index=beat.beat_index,
            beat_strength=beat_strength(beat.beat_index, beat.beats_per_bar),
            on_beat=beat.on_beat,
            on_bar=beat.on_bar,
            beat_stability=beat.stability,
            next_beat_in=beat.next_beat_in,
            next_bar_in=beat.next_bar_in,
            beat_anticipation=beat.beat_anticipation,
            bar_anticipation=beat.bar_anticipation,
            beat_arrival=beat.beat_arrival,
            bar_arrival=beat.bar_arrival,
            beat_groove=beat.beat_groove,
            bar_groove=beat.bar_groove,
            chord_root=self.chord_root,
            chord_degree=self.chord_degree,
            chord_quality=self.chord_quality,
            chord_numeral=self.chord_numeral,
            tension=self.tension,
            harmonic_x=float(self.current_vector[0]),
            harmonic_y=float(self.current_vector[1]),
            harmonic_tension_smooth=self.tension_smooth,
            harmonic_tension_release=self.tension_release,
            on_harmonic_release=on_release,
            rhythmic_tension=self.rhythmic_tension,
            rhythmic_tension_smooth=self.rhythmic_tension_smooth,
            rhythmic_release=self.rhythmic_release,
            on_rhythmic_release=on_rhythmic_release,
            key=tl.key,
            key_mode=tl.key_mode,
            use_flats=tl.use_flats,
            melody_pitch_class=melody_pc,
            melody_midi=top.midi if top else -1,
            melody_velocity=top.velocity if top else 0.0,
            melody_onset=melody_onset,
            bass_pitch_class=bottom.midi % 12 if bottom else -1,
            bass_midi=bottom.midi if bottom else -1,
            bass_velocity=bottom.velocity if bottom else 0.0,
            note_onsets=onsets,
            active_voices=tuple(voices),
            drum_energy=drum_energy,
            kick="kick" in kinds,
            snare="snare" in kinds,
            hihat="hihat" in kinds,
        )

    def _detect_release(self, dt: float) -> bool:
        """True on the frame tension drops noticeably below its running average."""
        self.tension_smooth += (self.tension - self.tension_smooth) * min(1.0, RELEASE_AVG_RATE * max(0.0, dt))
        deviation = self.tension_smooth - self.tension
        fired = False
        if deviation > RELEASE_TRIGGER and self._release_armed and self.tension_smooth > RELEASE_MIN_LEVEL:
            self.tension_release = min(1.0, self.tension_smooth + deviation)
            self._release_armed = False
            fired = True
        self.tension_release *= math.exp(-RELEASE_DECAY * max(0.0, dt))
        if deviation < RELEASE_REARM:
            self._release_armed = True
        return fired

    def _detect_rhythmic_release(self, beat: BeatState, melody_onset: bool, dt: float) -> bool:
        """
        Rhythmic tension builds from beat anticipation and melody attacks
        between beats; it is released on the next strong beat (1 or 3).
        """
        dt = max(0.0, dt)
        offbeat = melody_onset and 0.2 < beat.beat_phase < 0.8
        target = min(1.0, beat.beat_anticipation * RHYTHM_ANTICIPATION_WEIGHT
                     + (RHYTHM_OFFBEAT_KICK if offbeat else 0.0))
        self.rhythmic_tension += (target - self.rhythmic_tension) * min(1.0, RHYTHM_FOLLOW_RATE * dt)
        self.rhythmic_tension_smooth += (self.rhythmic_tension - self.rhythmic_tension_smooth) \
            * min(1.0, RHYTHM_AVG_RATE * dt)

        fired = False
        if beat.on_beat and beat.beat_index in (0, 2) \
                and self.rhythmic_tension_smooth > RHYTHM_RELEASE_MIN_LEVEL:
            self.rhythmic_release = min(1.0, self.rhythmic_tension_smooth + RHYTHM_RELEASE_BOOST)
            fired = True
        self.rhythmic_release *= math.exp(-RHYTHM_RELEASE_DECAY * dt)
        return fired

    # --- lookahead queries (read-only) ---

    def upcoming_chords(self, current_time: float, count: int = 4) -> List[UpcomingChord]:
        """The sounding chord followed by the next ``count - 1`` chords."""
        chords = self.timeline.chords
        start = max(0, binary_search_time(chords, current_time))
        return [
            UpcomingChord(c.time, c.root, c.quality, c.degree, c.numeral, c.time - current_time)
            for c in chords[start:start + count]
        ]

    def bar_chords(self, current_time: float) -> List[UpcomingChord]:
        """
        One chord per bar for the previous, current and next two bars.
        Bars outside the song come back as ``NO_CHORD``.
        """
        bars = self._bar_chords
        current = binary_search_time(bars, current_time)
        out: List[UpcomingChord] = []
        for i in range(current - 1, current + 3):
            if 0 <= i < len(bars) and bars[i].root >= 0:
                c = bars[i]
                out.append(UpcomingChord(c.time, c.root, c.quality, c.degree, c.numeral,
                                         c.time - current_time))
            else:
                out.append(NO_CHORD)
        return out

    def upcoming_notes(self, current_time: float) -> List[UpcomingNote]:
        """Notes overlapping [now - 0.1 s, now + lookahead)."""
        notes = self._pitched
        window_start = current_time - UPCOMING_PAST_S
        window_end = current_time + self.note_lookahead
        out: List[UpcomingNote] = []
        for n in notes[binary_search_first_ge(notes, window_start - self._longest_note):]:
            if n.time >= window_end:
                break
            if n.end > window_start:
                out.append(UpcomingNote(n.time, n.duration, n.midi, n.midi % 12,
                                        n.velocity, n.channel, n.time - current_time))
        return out

    def idle_params(self, dt: float) -> MusicParams:
        """Neutral parameters while nothing is playing."""
        tl = self.timeline
        minor = tl.key_mode == "minor"
        bpb = tl.time_signature[0]
        beat_duration = 60.0 / tl.tempo
        hx, hy, _ = harmonic_target(tl.key, 0.0)
        return MusicParams(
            current_time=0.0, dt=dt, bpm=tl.tempo,
            beat_duration=beat_duration, beats_per_bar=bpb, bar_duration=beat_duration * bpb,
            beat_position=0.0, bar_position=0.0, beat_index=0, beat_strength=1.0,
            on_beat=False, on_bar=False, beat_stability=1.0,
            next_beat_in=beat_duration, next_bar_in=beat_duration * bpb,
            beat_anticipation=0.0, bar_anticipation=0.0,
            beat_arrival=0.0, bar_arrival=0.0,
            beat_groove=0.5, bar_groove=0.5,
            chord_root=tl.key, chord_degree=1,
            chord_quality="minor" if minor else "major",
            chord_numeral="i" if minor else "I",
            tension=0.0, harmonic_x=float(hx), harmonic_y=float(hy),
            harmonic_tension_smooth=0.0, harmonic_tension_release=0.0,
            on_harmonic_release=False,
            rhythmic_tension=0.0, rhythmic_tension_smooth=0.0,
            rhythmic_release=0.0, on_rhythmic_release=False,
            key=tl.key, key_mode=tl.key_mode, use_flats=tl.use_flats,
            melody_pitch_class=-1, melody_midi=-1, melody_velocity=0.0, melody_onset=False,
            bass_pitch_class=-1, bass_midi=-1, bass_velocity=0.0,
            note_onsets=0, active_voices=(),
            drum_energy=0.0, kick=False, snare=False, hihat=False,
        )
