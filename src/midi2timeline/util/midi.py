from __future__ import annotations
import io
from typing import List, Tuple
import mido
import pretty_midi as pm

RIFF_MAGIC = b"RIFF"
SMF_MAGIC = b"MThd"

_PARSE_ERRORS = (OSError, EOFError, ValueError, IndexError, KeyError, mido.KeySignatureError)

class MidiLoadError(Exception):
    """Raised when bytes cannot be parsed as a standard MIDI file."""

def unwrap_riff(data: bytes) -> bytes:
    """Slice an embedded SMF out of a RIFF (.rmi) container; other data is returned as is."""
    if len(data) > 20 and data[:4] == RIFF_MAGIC:
        pos = data.find(SMF_MAGIC, 8)
        if pos >= 0:
            return data[pos:]
    return data

def load_midi_bytes(data: bytes) -> pm.PrettyMIDI:
    try:
        return pm.PrettyMIDI(io.BytesIO(unwrap_riff(bytes(data))))
    except _PARSE_ERRORS as exc:
        raise MidiLoadError(f"unreadable MIDI data: {exc}") from exc

def note_voices(data: bytes) -> List[Tuple[str, int, int]]:
    """
    (track name, channel, program) of every voice that plays notes, in file
    order. pretty_midi keeps the program but not the channel of an instrument.
    """
    try:
        mid = mido.MidiFile(file=io.BytesIO(unwrap_riff(bytes(data))))
    except _PARSE_ERRORS as exc:
        raise MidiLoadError(f"unreadable MIDI data: {exc}") from exc

    voices: List[Tuple[str, int, int]] = []
    for track in mid.tracks:
        names = [msg.name for msg in track if msg.type == "track_name"]
        name = names[-1] if names else ""
        programs = {}
        seen = set()
        for msg in track:
            if msg.type == "program_change":
                programs[msg.channel] = msg.program
            elif msg.type == "note_on" and msg.velocity > 0:
                key = (msg.channel, programs.get(msg.channel, 0))
                if key not in seen:
                    seen.add(key)
                    voices.append((name, *key))
    return voices
