import pytest
from midi2timeline.chords import CHORD_TEMPLATES
from midi2timeline.tension import (
    apply_tension, chord_tension, hierarchical_tension, roman_numeral, root_motion_tension,
)
from midi2timeline.timeline import ChordEvent

QUALITIES = [q for q, _ in CHORD_TEMPLATES] + ["unknown"]

def test_tonic_is_relaxed():
    assert chord_tension(1, "major", None, 0) == 0.0
    assert hierarchical_tension(1) == 0.0

def test_bounds():
    for degree in range(8):
        for quality in QUALITIES:
            for prev in (None, 0, 6, 11):
                t = chord_tension(degree, quality, prev, 5)
                assert 0.0 <= t <= 1.0

def test_weighted_components():
    # V7 after IV in C
    t = chord_tension(5, "dom7", 5, 7)
    assert t == pytest.approx(0.40 / 6 + 0.25 * 0.25 + 0.20 * 0.25 + 0.15 * 0.2)

def test_dominant_more_tense_than_subdominant():
    assert chord_tension(5, "dom7", 0, 7) > chord_tension(4, "major", 0, 5)
    assert chord_tension(7, "dim", 0, 11) > chord_tension(5, "major", 0, 7)

def test_root_motion():
    assert root_motion_tension(None, 7) == 0.0
    assert root_motion_tension(0, 7) == root_motion_tension(0, 5) == 0.05
    assert root_motion_tension(0, 6) == 0.4
    assert root_motion_tension(11, 0) == 0.3

def test_weight_override():
    only_dissonance = {"hierarchical": 0.0, "dissonance": 1.0, "motion": 0.0, "tendency": 0.0}
    assert chord_tension(5, "dim7", 0, 7, only_dissonance) == pytest.approx(0.40)

@pytest.mark.parametrize("degree,quality,root,key,expected", [
    (1, "major", 0, 0, "I"),
    (5, "dom7", 7, 0, "V7"),
    (7, "dim", 11, 0, "vii°"),
    (2, "minor", 2, 0, "ii"),
    (2, "min7", 2, 0, "ii7"),
    (7, "hdim7", 11, 0, "viiø7"),
    (4, "maj7", 5, 0, "IVΔ7"),
    (5, "sus4", 7, 0, "Vsus4"),
    (0, "major", 10, 0, "bVII"),
    (0, "major", 1, 0, "bII"),
    (0, "minor", 6, 0, "#iv"),
    (0, "major", 4, 0, "#III"),
    (0, "major", 9, 0, "#VI"),
    (0, "dim", 11, 0, "#vii°"),
    (0, "major", 8, 0, "bVI"),
    (0, "unknown", 0, 0, "?"),
])
def test_roman_numerals(degree, quality, root, key, expected):
    assert roman_numeral(degree, quality, root, key) == expected

def test_chromatic_without_context():
    assert roman_numeral(0, "major") == "?"

def test_apply_tension_fills_fields():
    chords = [
        ChordEvent(0.0, "major", 0, 1),
        ChordEvent(2.0, "dom7", 7, 5),
        ChordEvent(4.0, "major", 0, 1),
    ]
    out = apply_tension(chords, 0)
    assert [c.numeral for c in out] == ["I", "V7", "I"]
    assert [c.next_degree for c in out] == [5, 1, 0]
    assert out[0].tension == 0.0
    assert out[1].tension > out[2].tension > 0.0
    # inputs untouched
    assert chords[1].tension == 0.0 and chords[1].numeral == ""
