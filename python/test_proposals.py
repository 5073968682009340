"""
Tests for prompt building and lenient proposal parsing.
"""

from bidfill.fill.mapper import build_paragraph_map
from bidfill.proposals import build_user_message, parse_proposals, render_indexed_text

from conftest import para, run, wrap_body


def _pairs(requests):
    return [(r.original, r.replacement) for r in requests]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_bare_list():
    text = '[{"original": "IČO: doplní účastník", "replacement": "IČO: 07023987"}]'
    assert _pairs(parse_proposals(text)) == [("IČO: doplní účastník", "IČO: 07023987")]


def test_fenced_code_block():
    text = 'Výsledek:\n```json\n[\n  {"original": "a", "replacement": "b"}\n]\n```\n'
    assert _pairs(parse_proposals(text)) == [("a", "b")]


def test_list_embedded_in_prose():
    text = 'Zde jsou náhrady: [{"original": "a", "replacement": "b"}] Doufám, že pomohou.'
    assert _pairs(parse_proposals(text)) == [("a", "b")]


def test_wrapped_in_object():
    text = '{"replacements": [{"original": "a", "replacement": "b"}]}'
    assert _pairs(parse_proposals(text)) == [("a", "b")]


def test_bare_newline_inside_string_is_repaired():
    text = '[{"original": "Obchodní firma:\ndoplní účastník", "replacement": "Obchodní firma:\nAlfa"}]'
    assert _pairs(parse_proposals(text)) == [("Obchodní firma:\ndoplní účastník", "Obchodní firma:\nAlfa")]


def test_trailing_comma_is_repaired():
    text = '[{"original": "a", "replacement": "b",}, {"original": "c", "replacement": "d"},]'
    assert _pairs(parse_proposals(text)) == [("a", "b"), ("c", "d")]


def test_objects_extracted_from_broken_list():
    text = '[{"original": "a \\"x\\"", "replacement": "b"} {"original": "c", "replacement": "d"} oops'
    assert _pairs(parse_proposals(text)) == [('a "x"', "b"), ("c", "d")]


def test_invalid_items_are_skipped():
    text = '[{"original": "", "replacement": "x"}, {"original": 1, "replacement": "y"}, "z", {"original": "a", "replacement": "b"}]'
    assert _pairs(parse_proposals(text)) == [("a", "b")]


def test_unreadable_answer_is_empty():
    assert parse_proposals("") == []
    assert parse_proposals("Omlouvám se, šablonu nemohu vyplnit.") == []
    assert parse_proposals("[nejde to]") == []


# ---------------------------------------------------------------------------
# Prompt text
# ---------------------------------------------------------------------------


def test_indexed_text_skips_empty_paragraphs():
    markup = wrap_body(para(run("Krycí list")) + "<w:p/>" + para(run("IČO: doplní účastník")))
    assert render_indexed_text(build_paragraph_map(markup)) == "[0] Krycí list\n[2] IČO: doplní účastník"


def test_user_message_contains_data(company, tender):
    message = build_user_message("[0] IČO: doplní účastník", "kryci_list.docx", company, tender)

    assert "ŠABLONA: kryci_list.docx" in message
    assert "[0] IČO: doplní účastník" in message
    assert "- ico: 07023987" in message
    assert "- Nabídková cena bez DPH: 1 250 000,00 Kč" in message
    assert "- Datum: 01.02.2025" in message
    assert "NEVYPLNĚNÁ MÍSTA" not in message


def test_user_message_defaults_date_and_lists_remaining(company):
    message = build_user_message("[0] x", "sablona.docx", company, {}, remaining_markers=["[3] Sídlo: ____"])

    assert "- Datum: " in message
    assert "NEVYPLNĚNÁ MÍSTA:\n- [3] Sídlo: ____" in message
