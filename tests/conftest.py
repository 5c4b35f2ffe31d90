import io
import mido
import pytest

TPB = 480

def _note_events(notes, channel=0):
    """(start_tick, end_tick, pitch, velocity) -> delta-timed note messages."""
    events = []
    for start, end, pitch, vel in notes:
        events.append((start, 1, mido.Message("note_on", note=pitch, velocity=vel, channel=channel)))
        events.append((end, 0, mido.Message("note_off", note=pitch, velocity=0, channel=channel)))
    events.sort(key=lambda x: (x[0], x[1]))
    track = mido.MidiTrack()
    last = 0
    for tick, _, msg in events:
        track.append(msg.copy(time=tick - last))
        last = tick
    return track

def make_midi_bytes(notes, drums=(), tempos=((0, 500000),), meters=((0, 4, 4),), piano_channel=0):
    """Type-1 file: conductor track, one piano track, optional GM drum track."""
    mid = mido.MidiFile(type=1, ticks_per_beat=TPB)

    conductor = mido.MidiTrack()
    conductor.append(mido.MetaMessage("track_name", name="Conductor", time=0))
    meta = [(tick, 0, mido.MetaMessage("time_signature", numerator=n, denominator=d))
            for tick, n, d in meters]
    meta += [(tick, 1, mido.MetaMessage("set_tempo", tempo=us)) for tick, us in tempos]
    meta.sort(key=lambda x: (x[0], x[1]))
    last = 0
    for tick, _, msg in meta:
        conductor.append(msg.copy(time=tick - last))
        last = tick
    mid.tracks.append(conductor)

    piano = _note_events(notes, channel=piano_channel)
    piano.insert(0, mido.MetaMessage("track_name", name="Piano", time=0))
    mid.tracks.append(piano)

    if drums:
        kit = _note_events(drums, channel=9)
        kit.insert(0, mido.MetaMessage("track_name", name="Drums", time=0))
        mid.tracks.append(kit)

    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()

@pytest.fixture
def c_major_bytes():
    """C-E-G-C held for 4 bars of 4/4 at 120 bpm (8 s), kick on every beat."""
    end = 16 * TPB
    notes = [(0, end, p, 100) for p in (60, 64, 67, 72)]
    drums = [(b * TPB, b * TPB + 60, 36, 100) for b in range(16)]
    return make_midi_bytes(notes, drums)

@pytest.fixture
def c_major_file(tmp_path, c_major_bytes):
    path = tmp_path / "c_major.mid"
    path.write_bytes(c_major_bytes)
    return path

@pytest.fixture
def progression_bytes():
    """I-IV-V7-I, one bar each at 120 bpm; a melody note per bar."""
    bar = 4 * TPB
    chords = [(60, 64, 67), (65, 69, 72), (67, 71, 74, 77), (60, 64, 67)]
    melody = [76, 77, 79, 84]
    notes = []
    for i, (tones, top) in enumerate(zip(chords, melody)):
        notes += [(i * bar, (i + 1) * bar, p, 90) for p in tones]
        notes.append((i * bar, (i + 1) * bar, top, 110))
    return make_midi_bytes(notes)

@pytest.fixture
def midi_factory():
    return make_midi_bytes
