from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, List
import mido
import yaml
from .tempo import beats_at, build_segments
from .timeline import MusicTimeline
from .util.time import beats_to_ticks, bpm_to_micro

log = logging.getLogger(__name__)

NOTE_NAMES_SHARP = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
NOTE_NAMES_FLAT = ["C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B"]

def pitch_name(pc: int, use_flats: bool = False) -> str:
    return (NOTE_NAMES_FLAT if use_flats else NOTE_NAMES_SHARP)[pc % 12]

# ---------- internal helpers ----------

def _emit_conductor(timeline: MusicTimeline, to_tick) -> List[tuple]:
    """Tempo/meter meta events as (tick, order, message) without delta times."""
    events = []
    for ev in timeline.time_signature_events:
        events.append((to_tick(ev.time), 0, mido.MetaMessage(
            "time_signature", numerator=ev.numerator, denominator=ev.denominator, time=0)))
    for ev in timeline.tempo_events:
        events.append((to_tick(ev.time), 1, mido.MetaMessage(
            "set_tempo", tempo=bpm_to_micro(ev.bpm), time=0)))
    return events

def _append_sorted(track: mido.MidiTrack, events: List[tuple]):
    # time signature before tempo before markers on the same tick
    events.sort(key=lambda x: (x[0], x[1]))
    last = 0
    for tick, _, msg in events:
        track.append(msg.copy(time=tick - last))
        last = tick

# ---------- public writer APIs ----------

def write_annotated_midi(timeline: MusicTimeline, out_path: str, ticks_per_beat: int = 480):
    """
    Conductor-only MIDI (tempo + time signatures) with one marker per chord
    ("C: I", "G: V7", ...) and a key signature; handy for checking the
    analysis against the source in a DAW.
    """
    segments = build_segments(timeline.tempo_events, timeline.time_signature_events)

    def to_tick(t: float) -> int:
        return max(0, beats_to_ticks(beats_at(segments, t), ticks_per_beat))

    mid = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    track = mido.MidiTrack()
    track.append(mido.MetaMessage("track_name", name=timeline.name or "Analysis", time=0))

    events = _emit_conductor(timeline, to_tick)
    key_name = pitch_name(timeline.key, timeline.use_flats) + ("m" if timeline.key_mode == "minor" else "")
    try:
        events.append((0, 2, mido.MetaMessage("key_signature", key=key_name, time=0)))
    except (ValueError, mido.KeySignatureError):
        log.debug("no key_signature for %s", key_name)
    for c in timeline.chords:
        label = f"{pitch_name(c.root, timeline.use_flats)}: {c.numeral}" if c.quality != "unknown" else "?"
        events.append((to_tick(c.time), 3, mido.MetaMessage("marker", text=label, time=0)))
    _append_sorted(track, events)

    mid.tracks.append(track)
    mid.save(out_path)
    log.info("annotated MIDI -> %s (%d chord markers)", out_path, len(timeline.chords))

def timeline_to_dict(timeline: MusicTimeline) -> Dict[str, Any]:
    return {
        "name": timeline.name,
        "key": pitch_name(timeline.key, timeline.use_flats),
        "mode": timeline.key_mode,
        "use_flats": timeline.use_flats,
        "duration": round(timeline.duration, 4),
        "tempo": [{"time": round(e.time, 4), "bpm": round(e.bpm, 3)} for e in timeline.tempo_events],
        "time_signature": [
            {"time": round(e.time, 4), "numerator": e.numerator, "denominator": e.denominator}
            for e in timeline.time_signature_events
        ],
        "key_regions": [
            {"start": round(r.start_time, 4), "end": round(r.end_time, 4),
             "key": pitch_name(r.key, timeline.use_flats), "mode": r.mode,
             "confidence": round(r.confidence, 3)}
            for r in timeline.key_regions
        ],
        "chords": [
            {"time": round(c.time, 4), "root": pitch_name(c.root, timeline.use_flats),
             "quality": c.quality, "degree": c.degree, "numeral": c.numeral,
             "tension": round(c.tension, 4)}
            for c in timeline.chords
        ],
        "tracks": [
            {"index": t.index, "name": t.name, "instrument": t.instrument_name, "drum": t.is_drum}
            for t in timeline.tracks
        ],
        "counts": {"notes": len(timeline.notes), "drums": len(timeline.drums)},
    }

def write_sidecar(timeline: MusicTimeline, out_path: str):
    """YAML summary of the analysis next to the MIDI file."""
    path = Path(out_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(timeline_to_dict(timeline), sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )
    log.info("sidecar -> %s", path)
