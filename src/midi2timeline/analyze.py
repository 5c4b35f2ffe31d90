# src/midi2timeline/analyze.py
from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple
import pretty_midi as pm
from .chords import detect_chords
from .config import section
from .keys import detect_key, detect_key_regions, pitch_histogram, uses_flats, MAJOR_BIAS
from .tempo import build_segments
from .tension import apply_tension
from .timeline import (
    MusicTimeline, TempoEvent, TimeSignatureEvent, NoteEvent, DrumHit, TrackInfo,
    DEFAULT_BPM, DEFAULT_TIMESIG,
)
from .util.midi import load_midi_bytes, note_voices

log = logging.getLogger(__name__)

DRUM_CHANNEL = 9
DRUM_KEYWORDS = ("drum", "kit", "percussion", "tom", "snare", "kick", "cymbal")

# GM percussion map -> coarse kind
_HIHAT = {42, 44, 46, 49, 51, 52, 54, 55, 56, 57, 59}
_SNARE = {37, 38, 39, 40}
_KICK = {35, 36, 41, 43, 45, 47, 48}   # toms count as low hits

DRUM_ENERGY = {"kick": 1.0, "snare": 0.8, "hihat": 0.35}

def classify_drum(note: int) -> Optional[str]:
    if note in _HIHAT:
        return "hihat"
    if note in _SNARE:
        return "snare"
    if note in _KICK:
        return "kick"
    return None

def is_drum_track(inst: pm.Instrument) -> bool:
    """GM drum channel, or a drum-ish track/instrument name."""
    if inst.is_drum:
        return True
    names = (inst.name or "").lower(), _instrument_name(inst).lower()
    return any(kw in n for kw in DRUM_KEYWORDS for n in names)

def _instrument_name(inst: pm.Instrument) -> str:
    if inst.is_drum:
        return "Drum Kit"
    try:
        return pm.program_to_instrument_name(int(inst.program))
    except ValueError:
        return ""

def _conductor(midi: pm.PrettyMIDI) -> Tuple[List[TempoEvent], List[TimeSignatureEvent]]:
    times, bpms = midi.get_tempo_changes()
    tempos = [TempoEvent(float(t), float(b)) for t, b in zip(times, bpms)]
    if not tempos:
        tempos.append(TempoEvent(0.0, DEFAULT_BPM))
    tempos.sort(key=lambda e: e.time)

    timesigs = [
        TimeSignatureEvent(float(ts.time), int(ts.numerator), int(ts.denominator))
        for ts in midi.time_signature_changes
    ]
    if not timesigs:
        timesigs.append(TimeSignatureEvent(0.0, *DEFAULT_TIMESIG))
    timesigs.sort(key=lambda e: e.time)
    return tempos, timesigs

def _match_channel(inst: pm.Instrument, voices: Sequence[Tuple[str, int, int]], used: Set[int]) -> int:
    """Channel of the first unclaimed voice with the same track name, program and drum flag."""
    for i, (track_name, channel, program) in enumerate(voices):
        if i in used:
            continue
        if track_name == (inst.name or "") and program == inst.program \
                and (channel == DRUM_CHANNEL) == bool(inst.is_drum):
            used.add(i)
            return channel
    return DRUM_CHANNEL if inst.is_drum else 0

def build_timeline(midi: pm.PrettyMIDI, name: str = "", cfg: Optional[dict] = None,
                   voices: Sequence[Tuple[str, int, int]] = ()) -> MusicTimeline:
    """
    Analyze a parsed MIDI file into an immutable MusicTimeline. ``voices``
    (see :func:`util.midi.note_voices`) supplies the MIDI channel per track.
    """
    acfg = section(cfg, "analysis")
    tcfg = section(cfg, "tension")

    tempos, timesigs = _conductor(midi)
    segments = build_segments(tempos, timesigs)

    notes: List[NoteEvent] = []
    drums: List[DrumHit] = []
    tracks: List[TrackInfo] = []
    duration = 0.0
    used: Set[int] = set()

    for idx, inst in enumerate(midi.instruments):
        drum = is_drum_track(inst)
        tracks.append(TrackInfo(
            index=idx,
            name=inst.name or "",
            instrument_name=_instrument_name(inst),
            program=int(inst.program),
            is_drum=drum,
            midi_channel=_match_channel(inst, voices, used),
        ))
        for n in inst.notes:
            duration = max(duration, float(n.end))
            vel = n.velocity / 127.0
            if drum:
                kind = classify_drum(n.pitch)
                if kind:
                    drums.append(DrumHit(float(n.start), min(1.0, vel * DRUM_ENERGY[kind]), kind))
            else:
                notes.append(NoteEvent(float(n.start), float(n.end - n.start), int(n.pitch), vel, idx))

    notes.sort(key=lambda ev: (ev.time, ev.midi))
    drums.sort(key=lambda ev: ev.time)

    hist = pitch_histogram(notes)
    major_bias = float(acfg.get("key_major_bias", MAJOR_BIAS))
    key, mode = detect_key(hist, major_bias)

    chords = detect_chords(notes, segments, duration, key, mode, acfg)
    chords = apply_tension(chords, key, tcfg.get("weights"))

    initial_tempo = tempos[0].bpm
    initial_ts = (timesigs[0].numerator, timesigs[0].denominator)
    regions = []
    rcfg = acfg.get("key_regions", {}) or {}
    if rcfg.get("enabled", True):
        bar_duration = 60.0 / initial_tempo * initial_ts[0]
        regions = detect_key_regions(
            notes, duration, bar_duration,
            window_bars=float(rcfg.get("window_bars", 4)),
            hop_bars=float(rcfg.get("hop_bars", 1)),
            min_stable_windows=int(rcfg.get("min_stable_windows", 3)),
            confidence_threshold=float(rcfg.get("confidence_threshold", 0.15)),
            min_region_bars=float(rcfg.get("min_region_bars", 4)),
            major_bias=major_bias,
        )

    log.info("analyzed %r: key=%d %s, %d chords, %d notes, %d drum hits, %.1fs",
             name, key, mode, len(chords), len(notes), len(drums), duration)

    return MusicTimeline(
        name=name,
        tempo=initial_tempo,
        time_signature=initial_ts,
        tempo_events=tuple(tempos),
        time_signature_events=tuple(timesigs),
        key=key,
        key_mode=mode,
        use_flats=uses_flats(key, mode),
        duration=duration,
        chords=tuple(chords),
        drums=tuple(drums),
        notes=tuple(notes),
        key_regions=tuple(regions),
        tracks=tuple(tracks),
    )

def analyze_midi_bytes(data: bytes, name: str = "", cfg: Optional[dict] = None) -> MusicTimeline:
    """Raises MidiLoadError on unparseable input; never returns a partial timeline."""
    return build_timeline(load_midi_bytes(data), name=name, cfg=cfg, voices=note_voices(data))

def analyze_midi_file(path: str, cfg: Optional[dict] = None) -> MusicTimeline:
    p = Path(path)
    return analyze_midi_bytes(p.read_bytes(), name=p.stem, cfg=cfg)
