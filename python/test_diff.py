"""
Tests for minimal-change computation and anchor phrases.
"""

from bidfill.diff import anchor_phrases, minimal_change


def test_change_stops_at_word_boundary():
    change = minimal_change("Datum: 01.01.2024", "Datum: 01.02.2024")
    assert change.prefix == "Datum: "
    assert change.old == "01.01.2024"
    assert change.new == "01.02.2024"
    assert change.suffix == ""


def test_placeholder_replaced_by_value():
    change = minimal_change("IČO: doplní účastník", "IČO: 07023987")
    assert (change.prefix, change.old, change.new, change.suffix) == ("IČO: ", "doplní účastník", "07023987", "")


def test_common_suffix_is_kept():
    change = minimal_change("V ........ dne 1. 2. 2025", "V Brně dne 1. 2. 2025")
    assert change.prefix == "V "
    assert change.old == "........"
    assert change.new == "Brně"
    assert change.suffix == " dne 1. 2. 2025"


def test_parts_reassemble():
    original = "Kontaktní osoba: [doplnit], tel.: [doplnit]"
    replacement = "Kontaktní osoba: Jana Nováková, tel.: [doplnit]"
    change = minimal_change(original, replacement)
    assert change.prefix + change.old + change.suffix == original
    assert change.prefix + change.new + change.suffix == replacement


def test_identical_texts_are_noop():
    assert minimal_change("beze změny", "beze změny").is_noop
    assert not minimal_change("a", "b").is_noop


def test_anchor_phrases_longest_first():
    anchors = list(anchor_phrases("Kupující: ABC s.r.o., IČO: "))
    assert anchors == ["Kupující: ABC s.r.o., IČO:", "ABC s.r.o., IČO:", "s.r.o., IČO:", "IČO:"]


def test_anchor_phrases_limited_to_five_words():
    anchors = list(anchor_phrases("one two three four five six seven"))
    assert anchors[0] == "three four five six seven"
    assert len(anchors) == 5
    assert list(anchor_phrases("   ")) == []
