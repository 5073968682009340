"""
Tests for review and manual-completion highlighting.
"""

from bidfill.fill.annotate import annotate, mark_applied, mark_unfilled
from bidfill.fill.mapper import build_paragraph_map
from bidfill.utils.markup import is_well_formed

from conftest import para, run, wrap_body

YELLOW = '<w:highlight w:val="yellow"/>'
RED = '<w:highlight w:val="red"/>'


def _texts(markup):
    return [p.plain_text for p in build_paragraph_map(markup)]


# ---------------------------------------------------------------------------
# Applied values
# ---------------------------------------------------------------------------


def test_applied_value_run_is_highlighted():
    markup = wrap_body(para(run("IČO: 07023987")) + para(run("Podpis")))
    marked = mark_applied(markup, ["IČO: 07023987"], "yellow")

    assert marked.count(YELLOW) == 1
    assert _texts(marked) == _texts(markup)
    assert f"<w:r><w:rPr>{YELLOW}</w:rPr><w:t>IČO: 07023987</w:t></w:r>" in marked


def test_value_over_several_runs_highlights_each():
    markup = wrap_body(para(run("Alfa "), run("Technik", "<w:b/>")))
    marked = mark_applied(markup, ["Alfa Technik"], "yellow")
    assert marked.count(YELLOW) == 2


def test_missing_value_is_ignored():
    markup = wrap_body(para(run("Podpis")))
    assert mark_applied(markup, ["nic takového", "  "], "yellow") == markup


# ---------------------------------------------------------------------------
# Unfilled markers
# ---------------------------------------------------------------------------


def test_marker_is_isolated_into_own_run():
    markup = wrap_body(para(run("Telefon: doplní účastník, e-mail", "<w:b/>")))
    marked = mark_unfilled(markup, "red", 500)

    assert _texts(marked) == ["Telefon: doplní účastník, e-mail"]
    assert marked.count("<w:r>") == 3
    assert f"<w:rPr><w:b/>{RED}</w:rPr><w:t xml:space=\"preserve\">doplní účastník</w:t>" in marked
    assert marked.count(RED) == 1
    assert is_well_formed(marked)


def test_every_marker_is_flagged():
    markup = wrap_body(
        para(run("Jméno: ____________"))
        + para(run("V ........ dne ........"))
        + para(run("Cena: [doplnit cenu]"))
    )
    marked = mark_unfilled(markup, "red", 500)

    assert marked.count(RED) == 4
    assert _texts(marked) == _texts(markup)
    assert is_well_formed(marked)


def test_marker_across_runs_highlights_touched_runs():
    markup = wrap_body(para(run("doplní "), '<w:r><w:tab/></w:r>', run("účastník")))
    marked = mark_unfilled(markup, "red", 500)
    assert marked.count(RED) == 2
    assert "<w:r><w:tab/></w:r>" in marked
    assert _texts(marked) == _texts(markup)


def test_already_flagged_markers_are_left_alone():
    markup = wrap_body(para(run("Jméno: ____")))
    once = mark_unfilled(markup, "red", 500)
    assert mark_unfilled(once, "red", 500) == once


def test_cap_bounds_iterations():
    markup = wrap_body("".join(para(run(f"Položka {i}: ____")) for i in range(5)))
    marked = mark_unfilled(markup, "red", 2)
    assert marked.count(RED) == 2


def test_marker_in_complex_run_gets_run_highlight():
    markup = wrap_body(para("<w:r><w:tab/><w:t>doplní účastník</w:t></w:r>"))
    marked = mark_unfilled(markup, "red", 500)
    assert marked.count(RED) == 1
    assert "<w:r><w:rPr>" in marked


# ---------------------------------------------------------------------------
# annotate
# ---------------------------------------------------------------------------


def test_annotate_uses_both_colours(settings):
    markup = wrap_body(para(run("IČO: 07023987")) + para(run("DIČ: doplní účastník")))
    marked = annotate(markup, ["IČO: 07023987"], settings)

    assert marked.count(YELLOW) == 1
    assert marked.count(RED) == 1
    assert _texts(marked) == _texts(markup)
