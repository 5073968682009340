import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import structlog

from bidfill.utils.markup import TEXT_OPEN_RE, decode_entities, encode_text, encoded_offset

logger = structlog.get_logger(__name__)

# Paragraph open (group 1 is "/" when self-closing), paragraph close, or a text node (group 2).
_TOKEN_RE = re.compile(r"<w:p(?=[\s>/])[^>]*?(/?)>|</w:p>|<w:t(?:\s[^>]*)?>([^<]*)</w:t>")


@dataclass(frozen=True)
class TextFragment:
    plain_start: int
    plain_end: int
    markup_text_start: int
    markup_text_end: int


@dataclass(frozen=True)
class Paragraph:
    index: int
    plain_text: str
    text_fragments: Tuple[TextFragment, ...]
    markup_start: int
    markup_end: int


@dataclass(frozen=True)
class Splice:
    """Replace markup[start:end] with text (already encoded)."""

    start: int
    end: int
    text: str


@dataclass
class _ParagraphBuilder:
    markup_start: int
    parts: List[str] = field(default_factory=list)
    fragments: List[TextFragment] = field(default_factory=list)
    length: int = 0

    def add_text(self, decoded: str, start: int, end: int):
        self.fragments.append(TextFragment(self.length, self.length + len(decoded), start, end))
        self.parts.append(decoded)
        self.length += len(decoded)


def build_paragraph_map(markup: str) -> Tuple[Paragraph, ...]:
    """
    Scans w:p elements and the w:t text nodes inside them.

    Paragraphs nested in text boxes are tracked with a stack and become
    paragraphs of their own; their text is not repeated in the outer paragraph.
    Tabs, breaks, field instructions and deleted text contribute nothing.
    """
    stack: List[_ParagraphBuilder] = []
    done: List[Tuple[_ParagraphBuilder, int]] = []

    for m in _TOKEN_RE.finditer(markup):
        raw_text = m.group(2)
        if raw_text is not None:
            if stack and raw_text:
                stack[-1].add_text(decode_entities(raw_text), m.start(2), m.end(2))
        elif m.group(0) == "</w:p>":
            if stack:
                done.append((stack.pop(), m.end()))
        elif m.group(1):
            done.append((_ParagraphBuilder(m.start()), m.end()))
        else:
            stack.append(_ParagraphBuilder(m.start()))

    if stack:
        logger.warning("Unclosed paragraphs ignored", count=len(stack))

    done.sort(key=lambda item: item[0].markup_start)
    return tuple(
        Paragraph(
            index=i,
            plain_text="".join(builder.parts),
            text_fragments=tuple(builder.fragments),
            markup_start=builder.markup_start,
            markup_end=end,
        )
        for i, (builder, end) in enumerate(done)
    )


def document_text(paragraphs: Iterable[Paragraph]) -> str:
    return "\n".join(p.plain_text for p in paragraphs)


def splices_for_range(
    markup: str, paragraph: Paragraph, start: int, end: int, replacement: str
) -> Tuple[Splice, ...]:
    """
    Translates a plain-text range of a paragraph into markup splices.

    The encoded replacement goes into the first covered fragment; the matched
    parts of the following fragments are emptied. Only the encoded bytes of the
    matched range are touched.
    """
    if start == end:
        frag = _fragment_at(paragraph.text_fragments, start)
        if frag is None:
            return ()
        pos = _markup_pos(markup, frag, start)
        return (Splice(pos, pos, encode_text(replacement)),)

    covered = [f for f in paragraph.text_fragments if f.plain_end > start and f.plain_start < end]
    splices = []
    for i, frag in enumerate(covered):
        s = _markup_pos(markup, frag, max(start, frag.plain_start))
        e = _markup_pos(markup, frag, min(end, frag.plain_end))
        splices.append(Splice(s, e, encode_text(replacement) if i == 0 else ""))
    return tuple(splices)


def _fragment_at(fragments: Sequence[TextFragment], pos: int) -> Optional[TextFragment]:
    for frag in fragments:
        if frag.plain_start <= pos <= frag.plain_end:
            return frag
    return None


def _markup_pos(markup: str, frag: TextFragment, plain_pos: int) -> int:
    raw = markup[frag.markup_text_start : frag.markup_text_end]
    return frag.markup_text_start + encoded_offset(raw, plain_pos - frag.plain_start)


def apply_splices(markup: str, splices: Iterable[Splice]) -> str:
    # Back to front so earlier offsets stay valid.
    for sp in sorted(splices, key=lambda s: s.start, reverse=True):
        markup = markup[: sp.start] + sp.text + markup[sp.end :]
        markup = _preserve_space(markup, sp.start)
    return markup


def _preserve_space(markup: str, pos: int) -> str:
    """Adds xml:space="preserve" to the w:t around pos if its text now has edge whitespace."""
    lt = markup.rfind("<", 0, pos)
    if lt == -1:
        return markup
    open_m = TEXT_OPEN_RE.match(markup, lt)
    if not open_m or "xml:space" in open_m.group(0):
        return markup

    content_end = markup.find("<", open_m.end())
    content = markup[open_m.end() : content_end]
    if not content or content == content.strip():
        return markup
    insert_at = lt + len("<w:t")
    return markup[:insert_at] + ' xml:space="preserve"' + markup[insert_at:]
