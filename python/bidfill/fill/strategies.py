"""
Matching strategies.

Each strategy has the signature ``(ctx, original, replacement) -> Optional[EditSpan]``,
reads the markup and paragraph map without modifying them, and returns the
splices that would put ``replacement`` in place of the located text.
"""

import re
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from bidfill.config import Settings
from bidfill.diff import MinimalChange, anchor_phrases, minimal_change
from bidfill.fill.mapper import Paragraph, Splice, splices_for_range
from bidfill.fill.markers import UNFILLED_MARKER_RE
from bidfill.models import Strategy
from bidfill.utils.markup import decode_entities, encode_text, in_text_node

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EditSpan:
    splices: Tuple[Splice, ...]
    matched_text: str
    applied_text: str


@dataclass
class MatchContext:
    markup: str
    paragraphs: Tuple[Paragraph, ...]
    fields: Dict[str, str] = field(default_factory=dict)
    settings: Settings = field(default_factory=Settings)


# --- Text folding ---

_FOLD = str.maketrans(
    {
        "“": '"',
        "”": '"',
        "„": '"',
        "‘": "'",
        "’": "'",
        "‚": "'",
        "–": "-",
        "—": "-",
    }
)


def fold_with_map(text: str) -> Tuple[str, List[int]]:
    """
    Folds smart quotes and dashes and collapses whitespace runs to one space.
    Returns the folded text and, per folded character, its index in text.
    """
    chars: List[str] = []
    positions: List[int] = []
    prev_space = False
    for i, ch in enumerate(text.translate(_FOLD)):
        if ch.isspace():
            if prev_space:
                continue
            chars.append(" ")
            prev_space = True
        else:
            chars.append(ch)
            prev_space = False
        positions.append(i)
    return "".join(chars), positions


def find_normalized(haystack: str, needle: str, start: int = 0, end: Optional[int] = None) -> Optional[Tuple[int, int]]:
    """Finds needle in haystack[start:end] ignoring whitespace and quote differences; returns raw offsets."""
    folded_needle = fold_with_map(needle)[0].strip()
    if not folded_needle:
        return None
    folded, positions = fold_with_map(haystack)
    idx = folded.find(folded_needle, bisect_left(positions, start))
    if idx == -1:
        return None
    raw_start = positions[idx]
    raw_end = positions[idx + len(folded_needle) - 1] + 1
    if end is not None and raw_end > end:
        return None
    return raw_start, raw_end


def _trim_edges(old: str, new: str) -> Tuple[str, str]:
    """Strips whitespace off old and the same leading/trailing whitespace off new."""
    core = old.strip()
    if not core:
        return "", new
    lead = old[: len(old) - len(old.lstrip())]
    trail = old[len(old.rstrip()) :]
    if lead and new.startswith(lead):
        new = new[len(lead) :]
    if trail and new.endswith(trail):
        new = new[: len(new) - len(trail)]
    return core, new


def locate_change(text: str, change: MinimalChange, lo: int = 0, hi: Optional[int] = None) -> Optional[Tuple[int, int, str]]:
    """
    Finds where change.old sits in text[lo:hi].

    An occurrence right after an anchor phrase taken from change.prefix is
    preferred over the first bare occurrence. A pure insertion needs an anchor.
    Returns (start, end, new_text).
    """
    hi = len(text) if hi is None else hi
    old, new = _trim_edges(change.old, change.new.replace("\n", " "))

    for anchor in anchor_phrases(change.prefix):
        a = find_normalized(text, anchor, lo, hi)
        if a is None:
            continue
        if old:
            hit = find_normalized(text, old, a[1], hi)
            if hit:
                return hit[0], hit[1], new
        else:
            pos = a[1]
            if change.prefix[-1:].isspace():
                while pos < hi and text[pos].isspace():
                    pos += 1
            return pos, pos, new

    if old:
        hit = find_normalized(text, old, lo, hi)
        if hit:
            return hit[0], hit[1], new
    return None


def _paragraph_edit(ctx: MatchContext, paragraph: Paragraph, start: int, end: int, text: str) -> Optional[EditSpan]:
    splices = splices_for_range(ctx.markup, paragraph, start, end, text)
    if not splices:
        return None
    return EditSpan(splices, paragraph.plain_text[start:end], text)


# --- 1. Exact ---


def match_exact(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    for p in ctx.paragraphs:
        idx = p.plain_text.find(original)
        if idx != -1:
            return _paragraph_edit(ctx, p, idx, idx + len(original), replacement)
    return None


# --- 2. Normalized ---


def match_normalized(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    decoded = decode_entities(original)
    if decoded != original:
        replacement = decode_entities(replacement)
    if decoded[:1].isspace():
        replacement = replacement.lstrip()
    if decoded[-1:].isspace():
        replacement = replacement.rstrip()

    for p in ctx.paragraphs:
        hit = find_normalized(p.plain_text, decoded)
        if hit:
            return _paragraph_edit(ctx, p, hit[0], hit[1], replacement)
    return None


# --- 3. Multi-paragraph ---


def _locate_lines(
    paragraphs: Tuple[Paragraph, ...], first: int, lines: List[Tuple[int, str]], window: int
) -> Optional[Dict[int, Tuple[Paragraph, int, int]]]:
    located: Dict[int, Tuple[Paragraph, int, int]] = {}
    j, offset = first, 0
    last = min(len(paragraphs), first + window)
    for line_no, line in lines:
        while j < last:
            hit = find_normalized(paragraphs[j].plain_text, line, offset)
            if hit:
                located[line_no] = (paragraphs[j], hit[0], hit[1])
                offset = hit[1]
                break
            j += 1
            offset = 0
        else:
            return None
    return located


def match_multi_paragraph(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    lines = original.split("\n")
    wanted = [(i, line) for i, line in enumerate(lines) if line.strip()]
    if len(wanted) < 2:
        return None

    window = len(wanted) + ctx.settings.multi_paragraph_slack
    for k, p in enumerate(ctx.paragraphs):
        if find_normalized(p.plain_text, wanted[0][1]) is None:
            continue
        located = _locate_lines(ctx.paragraphs, k, wanted, window)
        if located is None:
            continue
        span = _multi_paragraph_edit(ctx, lines, located, original, replacement)
        if span is not None:
            return span
    return None


def _multi_paragraph_edit(
    ctx: MatchContext,
    lines: List[str],
    located: Dict[int, Tuple[Paragraph, int, int]],
    original: str,
    replacement: str,
) -> Optional[EditSpan]:
    new_lines = replacement.split("\n")

    if len(new_lines) == len(lines):
        pairs = [(i, old, new) for i, (old, new) in enumerate(zip(lines, new_lines)) if old != new]
        changes = [(i, minimal_change(old, new)) for i, old, new in pairs]
    else:
        change = minimal_change(original, replacement)
        if "\n" in change.old:
            return None
        line_no = change.prefix.count("\n")
        local = MinimalChange(
            prefix=change.prefix.rsplit("\n", 1)[-1],
            old=change.old,
            new=change.new,
            suffix=change.suffix.split("\n", 1)[0],
        )
        changes = [(line_no, local)]

    splices: List[Splice] = []
    matched: List[str] = []
    applied: List[str] = []
    for line_no, change in changes:
        if line_no not in located:
            return None
        p, start, end = located[line_no]
        hit = locate_change(p.plain_text, change, start, end)
        if hit is None:
            return None
        s, e, text = hit
        part = splices_for_range(ctx.markup, p, s, e, text)
        if not part:
            return None
        splices.extend(part)
        matched.append(p.plain_text[s:e])
        applied.append(text)

    if not splices:
        return None
    return EditSpan(tuple(splices), "\n".join(matched), "\n".join(applied))


# --- 4. Fuzzy token overlap ---


def match_fuzzy(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    tokens = original.split()
    if not tokens:
        return None

    best: Optional[Paragraph] = None
    best_score = 0.0
    for p in ctx.paragraphs:
        present = set(p.plain_text.split())
        if not present:
            continue
        score = sum(1 for t in tokens if t in present) / len(tokens)
        if score >= ctx.settings.fuzzy_token_threshold and score > best_score:
            best, best_score = p, score

    if best is None:
        return None

    change = minimal_change(original.replace("\n", " "), replacement.replace("\n", " "))
    if change.is_noop:
        return None
    hit = locate_change(best.plain_text, change)
    if hit is None:
        logger.debug("Fuzzy paragraph found but change not locatable", paragraph=best.index, score=best_score)
        return None
    return _paragraph_edit(ctx, best, *hit)


# --- 5. Label-deterministic ---

_QUALIFIER = r"(?:\s+(?:dodavatele|účastníka|uchazeče|zhotovitele|prodávajícího|společnosti))?"


def _label(*names: str) -> re.Pattern:
    alternatives = "|".join(names)
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w){_QUALIFIER}", re.IGNORECASE)


# Field key -> label pattern. Longer labels first where one contains another.
LABELS: List[Tuple[str, re.Pattern]] = [
    ("dic", _label("DIČ", r"Daňové identifikační číslo")),
    ("ico", _label("IČO", "IČ", r"Identifikační číslo")),
    ("nazev", _label(r"Obchodní firma", r"Obchodní název", r"Název účastníka", r"Název dodavatele")),
    ("sidlo", _label(r"Se sídlem", r"Sídlo", r"Adresa sídla", r"Místo podnikání")),
    (
        "jednajici_osoba",
        _label(r"Kontaktní osoba", r"Osoba oprávněná jednat", r"Jednající osoba", r"Statutární orgán", r"Zastoupen[áý]?"),
    ),
    ("telefon", _label("Telefon", r"Tel\.", "Mobil")),
    ("email", _label("E-mail", "Email", r"E-mailová adresa")),
    ("datova_schranka", _label(r"ID datové schránky", r"Datová schránka")),
    ("iban", _label("IBAN")),
    ("ucet", _label(r"Bankovní spojení", r"Číslo účtu", r"Číslo bankovního účtu")),
    ("rejstrik", _label(r"Spisová značka", r"Zapsán[aá]? v obchodním rejstříku", r"Zápis v obchodním rejstříku")),
]

_LABEL_SEPARATOR_RE = re.compile(r"[ \t\u00a0]*[:：]?[ \t\u00a0]*")


def match_label(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    head = original.strip()
    for key, label_re in LABELS:
        if not label_re.match(head):
            continue
        value = ctx.fields.get(key)
        if not value:
            return None

        for p in ctx.paragraphs:
            for lm in label_re.finditer(p.plain_text):
                sep = _LABEL_SEPARATOR_RE.match(p.plain_text, lm.end())
                pos = sep.end()
                placeholder = UNFILLED_MARKER_RE.match(p.plain_text, pos)
                if placeholder:
                    return _paragraph_edit(ctx, p, placeholder.start(), placeholder.end(), value)
                if ":" in sep.group(0) and not p.plain_text[pos:].strip():
                    text = value if sep.group(0).endswith(" ") else " " + value
                    return _paragraph_edit(ctx, p, len(p.plain_text), len(p.plain_text), text)
        return None
    return None


# --- 6. Raw markup fallbacks ---


def _raw_substring(ctx: MatchContext, needle: str, replacement: str) -> Optional[EditSpan]:
    if not needle:
        return None
    markup = ctx.markup
    start = markup.find(needle)
    while start != -1:
        end = start + len(needle)
        if in_text_node(markup, start, end):
            return EditSpan((Splice(start, end, encode_text(replacement)),), decode_entities(needle), replacement)
        start = markup.find(needle, start + 1)
    return None


def match_raw_encoded(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    return _raw_substring(ctx, encode_text(original), replacement)


def match_raw_direct(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    return _raw_substring(ctx, original, decode_entities(replacement))


# Any tag except paragraph boundaries and non-visible text containers.
_BETWEEN = r"(?:<(?!/?w:(?:p|delText|instrText)[\s>/])[^>]*>)*"
_TAG_RE = re.compile(r"<[^>]*>")


def _tolerant_pattern(text: str) -> re.Pattern:
    parts = [r"\s+" if tok.isspace() else re.escape(encode_text(tok)) for tok in re.findall(r"\s+|\S", text)]
    return re.compile(_BETWEEN.join(parts))


def match_raw_tolerant(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    text = original.strip()
    if not text or len(text) > ctx.settings.tolerant_max_length:
        return None
    if text != original:
        replacement = replacement.strip()

    markup = ctx.markup
    for m in _tolerant_pattern(text).finditer(markup):
        if not in_text_node(markup, m.start()):
            continue
        region = m.group(0)
        tags = "".join(_TAG_RE.findall(region))
        matched = decode_entities(_TAG_RE.sub("", region))
        return EditSpan((Splice(m.start(), m.end(), encode_text(replacement) + tags),), matched, replacement)
    return None


def match_raw_proximity(ctx: MatchContext, original: str, replacement: str) -> Optional[EditSpan]:
    change = minimal_change(original, replacement)
    if change.is_noop:
        return None
    old, new = _trim_edges(change.old, change.new)
    old_enc = encode_text(old)
    markup = ctx.markup
    window = ctx.settings.proximity_window

    for anchor in anchor_phrases(change.prefix):
        enc_anchor = encode_text(anchor)
        a = markup.find(enc_anchor)
        while a != -1:
            anchor_end = a + len(enc_anchor)
            if in_text_node(markup, a, anchor_end):
                if old_enc:
                    pos = markup.find(old_enc, anchor_end, anchor_end + window)
                    while pos != -1:
                        if in_text_node(markup, pos, pos + len(old_enc)):
                            return EditSpan((Splice(pos, pos + len(old_enc), encode_text(new)),), old, new)
                        pos = markup.find(old_enc, pos + 1, anchor_end + window)
                else:
                    pos = anchor_end
                    if change.prefix[-1:].isspace():
                        while pos < len(markup) and markup[pos] in " \t":
                            pos += 1
                    return EditSpan((Splice(pos, pos, encode_text(new)),), "", new)
            a = markup.find(enc_anchor, a + 1)
    return None


StrategyFn = Callable[[MatchContext, str, str], Optional[EditSpan]]

# Tried in this order; the first producing a change wins.
STRATEGIES: List[Tuple[Strategy, StrategyFn]] = [
    (Strategy.EXACT, match_exact),
    (Strategy.NORMALIZED, match_normalized),
    (Strategy.MULTI_PARAGRAPH, match_multi_paragraph),
    (Strategy.FUZZY, match_fuzzy),
    (Strategy.LABEL, match_label),
    (Strategy.RAW_ENCODED, match_raw_encoded),
    (Strategy.RAW_DIRECT, match_raw_direct),
    (Strategy.RAW_TOLERANT, match_raw_tolerant),
    (Strategy.RAW_PROXIMITY, match_raw_proximity),
]

RAW_STRATEGIES = {Strategy.RAW_ENCODED, Strategy.RAW_DIRECT, Strategy.RAW_TOLERANT, Strategy.RAW_PROXIMITY}
