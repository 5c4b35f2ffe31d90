import mido
import yaml
from midi2timeline.analyze import analyze_midi_bytes
from midi2timeline.write import pitch_name, timeline_to_dict, write_annotated_midi, write_sidecar

def test_pitch_names():
    assert pitch_name(1) == "C#"
    assert pitch_name(1, use_flats=True) == "Db"
    assert pitch_name(14) == "D"

def test_sidecar(tmp_path, progression_bytes):
    tl = analyze_midi_bytes(progression_bytes, name="prog")
    out = tmp_path / "out" / "prog.yaml"
    write_sidecar(tl, str(out))
    data = yaml.safe_load(out.read_text(encoding="utf-8"))
    assert data["name"] == "prog"
    assert (data["key"], data["mode"]) == ("C", "major")
    assert [c["numeral"] for c in data["chords"]] == ["I", "IV", "V7", "I"]
    assert [c["root"] for c in data["chords"]] == ["C", "F", "G", "C"]
    assert data["tempo"][0]["bpm"] == 120.0
    assert data["counts"]["notes"] == len(tl.notes)

def test_dict_is_plain_data(c_major_bytes):
    d = timeline_to_dict(analyze_midi_bytes(c_major_bytes))
    # safe_dump refuses numpy scalars and other objects
    yaml.safe_dump(d)
    assert d["counts"]["drums"] == 16

def test_annotated_midi(tmp_path, progression_bytes):
    tl = analyze_midi_bytes(progression_bytes)
    out = tmp_path / "annotated.mid"
    write_annotated_midi(tl, str(out))

    mid = mido.MidiFile(str(out))
    assert len(mid.tracks) == 1
    abs_tick = 0
    markers, tempos, keys = [], [], []
    for msg in mid.tracks[0]:
        abs_tick += msg.time
        if msg.type == "marker":
            markers.append((abs_tick, msg.text))
        elif msg.type == "set_tempo":
            tempos.append(msg.tempo)
        elif msg.type == "key_signature":
            keys.append(msg.key)
    assert [text for _, text in markers] == ["C: I", "F: IV", "G: V7", "C: I"]
    assert [tick for tick, _ in markers] == [0, 1920, 3840, 5760]
    assert tempos == [500000]
    assert keys == ["C"]
