"""
Low-level helpers for working on WordprocessingML as text.
Every place that decodes or encodes run text goes through decode_entities/encode_text.
"""

import re
from typing import Optional, Tuple

import structlog
from lxml import etree

logger = structlog.get_logger(__name__)


_ENTITY_RE = re.compile(r"&(#x[0-9a-fA-F]+|#[0-9]+|amp|lt|gt|quot|apos);")
_NAMED_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "apos": "'"}

# --- Tag patterns ---
TEXT_OPEN_RE = re.compile(r"<w:t(?:\s[^>]*)?>")
TEXT_NODE_RE = re.compile(r"<w:t(?:\s[^>]*)?>([^<]*)</w:t>")
RUN_OPEN_RE = re.compile(r"<w:r(?=[\s>])[^>]*>")

# A run holding nothing but optional properties and a single text node.
SIMPLE_RUN_RE = re.compile(
    r"(?P<open><w:r(?:\s[^>]*)?>)"
    r"(?P<rpr><w:rPr>(?:(?!</w:rPr>).)*</w:rPr>|<w:rPr/>)?"
    r"<w:t(?:\s[^>]*)?>(?P<text>[^<]*)</w:t>"
    r"</w:r>",
    re.S,
)

# Markers that carry no text and may sit between two halves of a phrase.
IGNORABLE_GAP_RE = re.compile(
    r"(?:\s|<w:proofErr\b[^>]*/>|<w:bookmarkStart\b[^>]*/>|<w:bookmarkEnd\b[^>]*/>)*"
)

HIGHLIGHT_RE = re.compile(r"<w:highlight\b[^>]*/>")

# w:rPr children that the schema places after w:highlight.
_AFTER_HIGHLIGHT = {
    "w:u",
    "w:effect",
    "w:bdr",
    "w:shd",
    "w:fitText",
    "w:vertAlign",
    "w:rtl",
    "w:cs",
    "w:em",
    "w:lang",
    "w:eastAsianLayout",
    "w:specVanish",
    "w:oMath",
    "w:rPrChange",
}


def _decode_entity(match: re.Match) -> str:
    name = match.group(1)
    if name.startswith("#x"):
        return chr(int(name[2:], 16))
    if name.startswith("#"):
        return chr(int(name[1:]))
    return _NAMED_ENTITIES[name]


def decode_entities(text: str) -> str:
    if "&" not in text:
        return text
    return _ENTITY_RE.sub(_decode_entity, text)


def encode_text(text: str) -> str:
    """
    Encodes text for a w:t node. Quotes stay literal, as Word writes them,
    so that encoded text can be searched for in raw markup.
    """
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def encoded_offset(raw: str, decoded_index: int) -> int:
    """
    Maps an index into decode_entities(raw) back to an index into raw.
    """
    if "&" not in raw:
        return decoded_index

    pos = 0
    count = 0
    while count < decoded_index and pos < len(raw):
        if raw[pos] == "&":
            m = _ENTITY_RE.match(raw, pos)
            pos = m.end() if m else pos + 1
        else:
            pos += 1
        count += 1
    return pos


def in_text_node(markup: str, start: int, end: Optional[int] = None) -> bool:
    """True if markup[start:end] lies entirely inside the content of one w:t element."""
    if end is None:
        end = start
    lt = markup.rfind("<", 0, start)
    if lt == -1:
        return False
    open_m = TEXT_OPEN_RE.match(markup, lt)
    if not open_m or open_m.end() > start:
        return False
    if markup.find("<", start, end) != -1:
        return False
    return markup.startswith("</w:t>", markup.find("<", end))


def enclosing_run(markup: str, pos: int) -> Optional[Tuple[int, int]]:
    """Returns the (start, end) of the innermost w:r containing pos."""
    start = max(markup.rfind("<w:r>", 0, pos), markup.rfind("<w:r ", 0, pos))
    if start == -1:
        return None
    if markup.rfind("</w:r>", start, pos) != -1:
        return None
    close = markup.find("</w:r>", pos)
    if close == -1:
        return None
    return start, close + len("</w:r>")


def _rpr_span(run: str) -> Optional[Tuple[int, int]]:
    """(start, end) of the run's own w:rPr, end pointing at its closing tag."""
    open_m = RUN_OPEN_RE.match(run)
    if not open_m:
        return None
    head = open_m.end()
    if not run.startswith("<w:rPr>", head):
        return None

    close = run.find("</w:rPr>", head)
    change = run.find("<w:rPrChange", head, close)
    if change != -1:
        change_end = run.find("</w:rPrChange>", change)
        if change_end != -1:
            close = run.find("</w:rPr>", change_end)
    if close == -1:
        return None
    return head, close


def run_has_highlight(run: str, color: str) -> bool:
    span = _rpr_span(run)
    if span is None:
        return False
    rpr = run[span[0] : span[1]]
    limit = rpr.find("<w:rPrChange")
    if limit != -1:
        rpr = rpr[:limit]
    return f'<w:highlight w:val="{color}"/>' in rpr


def set_run_highlight(run: str, color: str) -> str:
    """
    Returns the run with a w:highlight of the given colour, replacing any
    existing highlight and keeping w:rPr children in schema order.
    """
    tag = f'<w:highlight w:val="{color}"/>'
    open_m = RUN_OPEN_RE.match(run)
    if not open_m:
        return run
    head = open_m.end()

    if run.startswith("<w:rPr/>", head):
        return run[:head] + f"<w:rPr>{tag}</w:rPr>" + run[head + len("<w:rPr/>") :]

    span = _rpr_span(run)
    if span is None:
        return run[:head] + f"<w:rPr>{tag}</w:rPr>" + run[head:]

    start, close = span
    rpr = run[start:close]
    own_limit = rpr.find("<w:rPrChange")
    own = rpr if own_limit == -1 else rpr[:own_limit]

    existing = HIGHLIGHT_RE.search(own)
    if existing:
        new_rpr = rpr[: existing.start()] + tag + rpr[existing.end() :]
        return run[:start] + new_rpr + run[close:]

    insert_at = len(rpr)
    for child in re.finditer(r"<(w:[A-Za-z]+)", rpr[len("<w:rPr>") :]):
        if child.group(1) in _AFTER_HIGHLIGHT:
            insert_at = len("<w:rPr>") + child.start()
            break
    return run[:start] + rpr[:insert_at] + tag + rpr[insert_at:] + run[close:]


def is_well_formed(markup: str) -> bool:
    try:
        parser = etree.XMLParser(huge_tree=True, resolve_entities=False)
        etree.fromstring(markup.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError as e:
        logger.debug("Markup is not well-formed", error=str(e))
        return False
    return True
