"""
Run consolidation.

Editors split a single phrase over many w:r elements (spell-check state,
revision ids, bookmarks). Merging them makes a placeholder live in one text
node, so the single-fragment path of the exact strategy applies.
"""

from typing import List

import structlog

from bidfill.utils.markup import IGNORABLE_GAP_RE, SIMPLE_RUN_RE

logger = structlog.get_logger(__name__)


def _merge_group(markup: str, group: List) -> str:
    first = group[0]
    rpr = first.group("rpr") or ""
    text = "".join(m.group("text") for m in group)
    return f'{first.group("open")}{rpr}<w:t xml:space="preserve">{text}</w:t></w:r>'


def consolidate(markup: str) -> str:
    """
    Merges adjacent simple text runs.

    Two runs merge when nothing but ignorable markers (w:proofErr,
    w:bookmarkStart, w:bookmarkEnd, whitespace) separates them; the markers
    are dropped and the earlier run's properties win. Runs holding tabs,
    breaks, fields or drawings never match SIMPLE_RUN_RE, and paragraph or
    revision boundaries are never ignorable, so nothing merges across them.
    Returns the input unchanged when there is nothing to merge.
    """
    groups: List[List] = []
    current: List = []
    prev_end = -1

    for m in SIMPLE_RUN_RE.finditer(markup):
        if current and IGNORABLE_GAP_RE.fullmatch(markup, prev_end, m.start()):
            current.append(m)
        else:
            if len(current) > 1:
                groups.append(current)
            current = [m]
        prev_end = m.end()
    if len(current) > 1:
        groups.append(current)

    if not groups:
        return markup

    out = []
    cursor = 0
    same_props = 0
    mixed_props = 0
    dropped_markers = 0
    for group in groups:
        out.append(markup[cursor : group[0].start()])
        out.append(_merge_group(markup, group))
        cursor = group[-1].end()

        for a, b in zip(group, group[1:]):
            if a.end() != b.start():
                dropped_markers += 1
            if (a.group("rpr") or "") == (b.group("rpr") or ""):
                same_props += 1
            else:
                mixed_props += 1
    out.append(markup[cursor:])

    logger.debug(
        "Consolidated runs",
        groups=len(groups),
        same_props=same_props,
        mixed_props=mixed_props,
        gaps_dropped=dropped_markers,
    )
    return "".join(out)
