import re
from typing import Iterable, List, Tuple

from bidfill.fill.mapper import Paragraph

# Text left in a template for the bidder to complete.
UNFILLED_MARKER_RE = re.compile(
    r"\[\s*(?:doplnit|vyplnit|(?:doplní|vyplní)\s+(?:účastník|uchazeč|dodavatel))[^\]\n]{0,60}\]"
    r"|(?:doplní|vyplní)\s+(?:účastník|uchazeč|dodavatel|prodávající|zhotovitel)"
    r"|_{3,}"
    r"|\.{4,}"
    r"|…+",
    re.IGNORECASE,
)


def find_unfilled(paragraphs: Iterable[Paragraph]) -> List[Tuple[Paragraph, re.Match]]:
    return [(p, m) for p in paragraphs for m in UNFILLED_MARKER_RE.finditer(p.plain_text)]


def count_unfilled(paragraphs: Iterable[Paragraph]) -> int:
    return sum(1 for p in paragraphs for _ in UNFILLED_MARKER_RE.finditer(p.plain_text))


def has_unfilled(text: str) -> bool:
    return UNFILLED_MARKER_RE.search(text) is not None
