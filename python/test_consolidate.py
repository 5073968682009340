"""
Tests for run consolidation.
"""

from bidfill.fill.consolidate import consolidate
from bidfill.fill.mapper import build_paragraph_map

from conftest import para, run, wrap_body


def _texts(markup):
    return [p.plain_text for p in build_paragraph_map(markup)]


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def test_spell_check_split_is_merged():
    markup = wrap_body(
        para(
            run("IČ", "<w:b/>"),
            '<w:proofErr w:type="spellStart"/>',
            run("O: doplní", "<w:b/>"),
            '<w:proofErr w:type="spellEnd"/>',
            run(" účastník"),
        )
    )
    merged = consolidate(markup)

    assert _texts(merged) == _texts(markup)
    assert merged.count("<w:r>") == 1
    assert "<w:proofErr" not in merged
    assert '<w:r><w:rPr><w:b/></w:rPr><w:t xml:space="preserve">IČO: doplní účastník</w:t></w:r>' in merged


def test_bookmark_split_is_merged():
    markup = wrap_body(
        para(
            run("Obchodní "),
            '<w:bookmarkStart w:id="0" w:name="firma"/>',
            run("firma: doplní účastník"),
            '<w:bookmarkEnd w:id="0"/>',
        )
    )
    merged = consolidate(markup)

    (p,) = build_paragraph_map(merged)
    assert p.plain_text == "Obchodní firma: doplní účastník"
    assert len(p.text_fragments) == 1


def test_earlier_run_properties_win():
    markup = wrap_body(para(run("Cena ", "<w:i/>"), run("bez DPH", "<w:b/>")))
    merged = consolidate(markup)
    assert '<w:r><w:rPr><w:i/></w:rPr><w:t xml:space="preserve">Cena bez DPH</w:t></w:r>' in merged


def test_entities_survive_merge():
    markup = wrap_body(para(run("A &amp; "), run("B")))
    merged = consolidate(markup)
    assert _texts(merged) == ["A & B"]
    assert "A &amp; B" in merged


# ---------------------------------------------------------------------------
# Boundaries
# ---------------------------------------------------------------------------


def test_nothing_to_merge_returns_input():
    markup = wrap_body(para(run("one")) + para(run("two")))
    assert consolidate(markup) == markup


def test_tab_run_blocks_merge():
    markup = wrap_body(para(run("Cena:"), "<w:r><w:tab/></w:r>", run("100 Kč")))
    assert consolidate(markup) == markup


def test_revision_boundary_blocks_merge():
    markup = wrap_body(para(run("Dodavatel: "), '<w:ins w:id="1" w:author="A">', run("Alfa"), "</w:ins>"))
    assert consolidate(markup) == markup


def test_paragraphs_never_merge():
    markup = wrap_body(para(run("a"), run("b")) + para(run("c"), run("d")))
    merged = consolidate(markup)
    assert _texts(merged) == ["ab", "cd"]
    assert merged.count("<w:r>") == 2


def test_consolidation_is_idempotent():
    markup = wrap_body(para(run("a"), '<w:proofErr w:type="gramStart"/>', run("b"), run("c")))
    once = consolidate(markup)
    assert consolidate(once) == once
