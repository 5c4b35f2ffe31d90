import math
from dataclasses import replace
import pytest
from midi2timeline.analyze import analyze_midi_bytes
from midi2timeline.beat_sync import create_idle_beat_sync
from midi2timeline.mapper import MusicMapper, NO_CHORD, harmonic_target, snap
from midi2timeline.timeline import ChordEvent, MusicTimeline, TempoEvent, TimeSignatureEvent
from midi2timeline.util.search import binary_search_first_ge, binary_search_time

FPS = 60

def _play(mapper, seconds, start=0.0):
    frames = []
    n = int(round(seconds * FPS))
    for i in range(n + 1):
        t = start + i / FPS
        frames.append(mapper.update(1.0 / FPS if i else 0.0, t))
    return frames

@pytest.fixture
def progression(progression_bytes):
    return analyze_midi_bytes(progression_bytes)

def test_binary_search_helpers():
    events = [ChordEvent(t, "major", 0, 1) for t in (0.0, 1.0, 1.0, 2.5)]
    assert binary_search_time(events, -0.1) == -1
    assert binary_search_time(events, 0.0) == 0
    assert binary_search_time(events, 1.0) == 2
    assert binary_search_time(events, 9.0) == 3
    assert binary_search_first_ge(events, 1.0) == 1
    assert binary_search_first_ge(events, 1.1) == 3
    assert binary_search_first_ge(events, 3.0) == 4
    assert binary_search_time([], 1.0) == -1
    assert binary_search_first_ge([], 1.0) == 0

def test_first_frame(progression):
    p = MusicMapper(progression).update(0.0, 0.0)
    assert p.chord_numeral == "I"
    assert p.note_onsets == 4
    assert len(p.active_voices) == 4
    assert all(v.onset for v in p.active_voices)
    assert p.melody_midi == 76
    assert p.melody_onset
    assert p.bass_midi == 60
    assert p.key == 0 and p.key_mode == "major"

def test_chords_follow_playback(progression):
    mapper = MusicMapper(progression)
    frames = _play(mapper, 7.0)
    numerals = [f.chord_numeral for f in frames]
    assert numerals[int(1.0 * FPS)] == "I"
    assert numerals[int(3.0 * FPS)] == "IV"
    assert numerals[int(5.0 * FPS)] == "V7"
    assert numerals[-1] == "I"
    assert mapper.last_chord_index == 3

def test_every_onset_counted_once(progression):
    frames = _play(MusicMapper(progression), 8.0)
    assert sum(f.note_onsets for f in frames) == len(progression.notes)

def test_sustained_voices_not_retriggered(progression):
    frames = _play(MusicMapper(progression), 1.0)
    assert all(not v.onset for v in frames[-1].active_voices)
    assert frames[-1].note_onsets == 0
    assert not frames[-1].melody_onset

def test_harmonic_vector_snaps_to_chord(progression):
    frames = _play(MusicMapper(progression), 3.0)
    angle = ((5 * 7) % 12) * 2 * math.pi / 12   # F on the circle of fifths
    assert frames[-1].harmonic_x == pytest.approx(math.cos(angle), abs=1e-2)
    assert frames[-1].harmonic_y == pytest.approx(math.sin(angle), abs=1e-2)

def test_tension_settles_on_chord(progression):
    frames = _play(MusicMapper(progression), 5.9)
    assert frames[-1].tension == pytest.approx(progression.chords[2].tension, abs=1e-3)
    assert all(0.0 <= f.tension <= 1.0 for f in frames)

def test_beat_edges(progression):
    frames = _play(MusicMapper(progression), 4.0)
    assert sum(f.on_beat for f in frames) == 8
    assert sum(f.on_bar for f in frames) == 2
    assert frames[0].beat_strength == 1.0

def test_drums(c_major_bytes):
    tl = analyze_midi_bytes(c_major_bytes)
    frames = _play(MusicMapper(tl), 8.0)
    kicks = [f for f in frames if f.kick]
    assert len(kicks) == 16
    assert kicks[1].current_time == pytest.approx(0.5, abs=1.0 / FPS)
    assert kicks[0].drum_energy == pytest.approx(100 / 127)
    assert not any(f.snare or f.hihat for f in frames)

def test_reset_rewinds(progression):
    mapper = MusicMapper(progression)
    _play(mapper, 3.0)
    mapper.reset()
    assert mapper.last_chord_index == -1
    assert mapper.beat_sync.prev_total_beats == 0.0
    p = mapper.update(0.0, 0.0)
    assert p.chord_numeral == "I"
    assert p.note_onsets == 4

def test_seek_skips_stale_events(progression):
    mapper = MusicMapper(progression)
    p = mapper.update(0.0, 5.0)
    assert p.chord_numeral == "V7"
    assert p.note_onsets == 0
    assert len(p.active_voices) == 5

def test_harmonic_release():
    tl = MusicTimeline("t", 120.0, (4, 4), (TempoEvent(0.0, 120.0),),
                       (TimeSignatureEvent(0.0, 4, 4),), 0, "major", False, 1.0)
    mapper = MusicMapper(tl)
    mapper.tension_smooth = 0.5
    mapper.tension = 0.1
    assert mapper._detect_release(0.0)
    assert mapper.tension_release == pytest.approx(0.9)
    assert not mapper._detect_release(0.0)

def test_empty_timeline():
    tl = MusicTimeline("empty", 90.0, (3, 4), (TempoEvent(0.0, 90.0),),
                       (TimeSignatureEvent(0.0, 3, 4),), 9, "minor", False, 0.0)
    mapper = MusicMapper(tl)
    p = mapper.update(0.1, 0.1)
    assert p.chord_numeral == "i"
    assert p.melody_pitch_class == -1
    assert p.active_voices == ()
    assert mapper.upcoming_chords(0.0) == []

def test_upcoming_chords(progression):
    up = MusicMapper(progression).upcoming_chords(1.0, 3)
    assert [c.numeral for c in up] == ["I", "IV", "V7"]
    assert [c.time_until for c in up] == pytest.approx([-1.0, 1.0, 3.0])

def test_upcoming_notes(progression):
    up = MusicMapper(progression).upcoming_notes(1.0)
    assert len(up) == 13
    assert min(n.time for n in up) == 0.0
    assert max(n.time for n in up) == pytest.approx(4.0)

def test_lookups_are_read_only(progression):
    mapper = MusicMapper(progression)
    mapper.upcoming_chords(5.0)
    mapper.upcoming_notes(5.0)
    assert mapper.last_chord_index == -1
    assert mapper.last_note_index == -1

def test_idle_params(progression):
    p = MusicMapper(progression).idle_params(0.016)
    assert p.bpm == pytest.approx(120.0)
    assert p.beat_duration == pytest.approx(0.5)
    assert p.chord_numeral == "I"
    assert not p.on_beat

def test_snap_converges():
    cur = harmonic_target(0, 0.0)
    tgt = harmonic_target(7, 0.5)
    out = snap(cur, tgt, 8.0, 0.12)
    dist0 = abs(cur - tgt).max()
    assert abs(out - tgt).max() == pytest.approx(dist0 * math.exp(-0.96))
    assert snap(cur, tgt, 8.0, 0.0) == pytest.approx(cur)

def _bar_timeline(chords, duration=8.0):
    return MusicTimeline("bars", 120.0, (4, 4), (TempoEvent(0.0, 120.0),),
                         (TimeSignatureEvent(0.0, 4, 4),), 0, "major", False, duration,
                         chords=tuple(chords))

def test_bar_chords_one_per_bar():
    tl = _bar_timeline([
        ChordEvent(0.0, "major", 0, 1, numeral="I"),
        ChordEvent(2.0, "major", 5, 4, numeral="IV"),
        ChordEvent(3.0, "dom7", 7, 5, numeral="V7"),
    ])
    bars = MusicMapper(tl).bar_chords(2.5)
    assert [c.numeral for c in bars] == ["I", "IV", "V7", "V7"]
    assert [c.time for c in bars] == [0.0, 2.0, 4.0, 6.0]
    assert [c.time_until for c in bars] == pytest.approx([-2.5, -0.5, 1.5, 3.5])

def test_bar_chords_outside_song():
    tl = _bar_timeline([ChordEvent(0.0, "major", 0, 1, numeral="I")], duration=4.0)
    mapper = MusicMapper(tl)
    first = mapper.bar_chords(0.0)
    assert first[0] is NO_CHORD
    assert [c.numeral for c in first[1:3]] == ["I", "I"]
    assert first[3] is NO_CHORD
    assert mapper.bar_chords(3.0)[3] is NO_CHORD

def test_offbeat_melody_releases_on_downbeat(progression):
    mapper = MusicMapper(progression)
    clock = create_idle_beat_sync(120, 4)
    between_beats = clock.peek(0.25)
    for _ in range(20):
        assert not mapper._detect_rhythmic_release(between_beats, True, 0.05)
    assert mapper.rhythmic_tension_smooth > 0.15

    assert not mapper._detect_rhythmic_release(replace(clock.peek(0.5), on_beat=True), False, 0.05)
    assert mapper._detect_rhythmic_release(replace(clock.peek(2.0), on_beat=True), False, 0.05)
    assert mapper.rhythmic_release > 0.5

def test_anticipation_alone_does_not_release(progression):
    mapper = MusicMapper(progression)
    clock = create_idle_beat_sync(120, 4)
    between_beats = clock.peek(0.25)
    for _ in range(40):
        mapper._detect_rhythmic_release(between_beats, False, 0.05)
    assert not mapper._detect_rhythmic_release(replace(clock.peek(2.0), on_beat=True), False, 0.05)
    assert mapper.rhythmic_release == 0.0

def test_rhythmic_state_in_params_and_reset(progression):
    mapper = MusicMapper(progression)
    frames = _play(mapper, 3.0)
    assert all(0.0 <= f.rhythmic_tension <= 1.0 for f in frames)
    assert all(0.0 <= f.rhythmic_release <= 1.0 for f in frames)
    assert max(f.rhythmic_tension for f in frames) > 0.0
    mapper.reset()
    assert (mapper.rhythmic_tension, mapper.rhythmic_tension_smooth, mapper.rhythmic_release) == (0.0, 0.0, 0.0)
    idle = mapper.idle_params(0.016)
    assert idle.rhythmic_tension == 0.0 and not idle.on_rhythmic_release
