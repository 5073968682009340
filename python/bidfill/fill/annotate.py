"""
Visual markers for the reviewer.

Values written by the engine get the review highlight on their run; whatever
unfilled markers survive get the manual highlight, isolated into a run of
their own where the run structure allows it.
"""

from typing import Iterable, List, Optional, Set, Tuple

import structlog

from bidfill.config import Settings, get_settings
from bidfill.fill.mapper import Paragraph, TextFragment, build_paragraph_map
from bidfill.fill.markers import find_unfilled
from bidfill.utils.markup import SIMPLE_RUN_RE, encoded_offset, enclosing_run, run_has_highlight, set_run_highlight

logger = structlog.get_logger(__name__)


def _covered(paragraph: Paragraph, start: int, end: int) -> List[TextFragment]:
    return [f for f in paragraph.text_fragments if f.plain_end > start and f.plain_start < end]


def _runs_for(markup: str, fragments: Iterable[TextFragment]) -> List[Tuple[int, int]]:
    runs = []
    for frag in fragments:
        run = enclosing_run(markup, frag.markup_text_start)
        if run is not None and run not in runs:
            runs.append(run)
    return runs


def _highlight_runs(markup: str, runs: List[Tuple[int, int]], color: str) -> str:
    for start, end in sorted(runs, reverse=True):
        markup = markup[:start] + set_run_highlight(markup[start:end], color) + markup[end:]
    return markup


def mark_applied(markup: str, applied_values: Iterable[str], color: str) -> str:
    """Highlights the run(s) holding the first occurrence of each distinct value."""
    values = sorted({v.strip() for v in applied_values if v and v.strip()}, key=lambda v: (-len(v), v))
    for value in values:
        paragraphs = build_paragraph_map(markup)
        for p in paragraphs:
            idx = p.plain_text.find(value)
            if idx == -1:
                continue
            runs = _runs_for(markup, _covered(p, idx, idx + len(value)))
            markup = _highlight_runs(markup, runs, color)
            break
        else:
            logger.debug("Applied value not found for highlighting", value=value[:60])
    return markup


def _isolate(markup: str, paragraph: Paragraph, start: int, end: int, color: str) -> str:
    """
    Moves paragraph text [start, end) into its own highlighted run when it
    sits in one simple text run; otherwise highlights every run it touches.
    """
    fragments = _covered(paragraph, start, end)
    if len(fragments) == 1:
        frag = fragments[0]
        run = enclosing_run(markup, frag.markup_text_start)
        simple = SIMPLE_RUN_RE.fullmatch(markup, run[0], run[1]) if run else None
        if simple:
            raw = simple.group("text")
            s = encoded_offset(raw, start - frag.plain_start)
            e = encoded_offset(raw, end - frag.plain_start)
            head = simple.group("open") + (simple.group("rpr") or "")

            pieces = []
            if s > 0:
                pieces.append(f'{head}<w:t xml:space="preserve">{raw[:s]}</w:t></w:r>')
            pieces.append(set_run_highlight(f'{head}<w:t xml:space="preserve">{raw[s:e]}</w:t></w:r>', color))
            if e < len(raw):
                pieces.append(f'{head}<w:t xml:space="preserve">{raw[e:]}</w:t></w:r>')
            return markup[: run[0]] + "".join(pieces) + markup[run[1] :]

    return _highlight_runs(markup, _runs_for(markup, fragments), color)


def mark_unfilled(markup: str, color: str, cap: int) -> str:
    """
    Highlights every remaining unfilled marker, one per iteration.
    A marker whose runs cannot be changed is remembered and skipped; cap
    bounds the loop regardless.
    """
    stuck: Set[Tuple[int, int]] = set()
    marked = 0

    for _ in range(cap):
        paragraphs = build_paragraph_map(markup)
        target = None
        for p, m in find_unfilled(paragraphs):
            if (p.index, m.start()) in stuck:
                continue
            runs = _runs_for(markup, _covered(p, m.start(), m.end()))
            if runs and all(run_has_highlight(markup[s:e], color) for s, e in runs):
                continue
            target = (p, m)
            break

        if target is None:
            break

        p, m = target
        updated = _isolate(markup, p, m.start(), m.end(), color)
        if updated == markup:
            stuck.add((p.index, m.start()))
            continue
        markup = updated
        marked += 1
    else:
        logger.warning("Unfilled marker cap reached", cap=cap, marked=marked)

    if marked:
        logger.info("Unfilled markers flagged", count=marked)
    return markup


def annotate(markup: str, applied_values: Iterable[str], settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    markup = mark_applied(markup, applied_values, settings.review_highlight)
    return mark_unfilled(markup, settings.manual_highlight, settings.annotation_cap)
