from .analyze import analyze_midi_bytes, analyze_midi_file, build_timeline
from .beat_sync import BeatSync, create_idle_beat_sync, create_midi_beat_sync
from .mapper import MusicMapper, MusicParams
from .timeline import MusicTimeline, ChordEvent, NoteEvent, DrumHit, BeatState
from .util.midi import MidiLoadError

__version__ = "0.1.0"
