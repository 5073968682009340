import re
from dataclasses import dataclass
from typing import Iterator

from diff_match_patch import diff_match_patch

_dmp = diff_match_patch()


@dataclass(frozen=True)
class MinimalChange:
    """original == prefix + old + suffix and replacement == prefix + new + suffix."""

    prefix: str
    old: str
    new: str
    suffix: str

    @property
    def is_noop(self) -> bool:
        return self.old == self.new


def minimal_change(original: str, replacement: str) -> MinimalChange:
    """
    Trims the common prefix and suffix of original and replacement.
    Trimming stops at word boundaries so that the changed part is a whole
    token ("01.01.2024" -> "01.02.2024", not "1" -> "2"), which keeps it
    locatable in the document.
    """
    prefix_len = _dmp.diff_commonPrefix(original, replacement)
    if prefix_len < len(original) and prefix_len < len(replacement):
        while prefix_len > 0 and not original[prefix_len - 1].isspace() and not original[prefix_len].isspace():
            prefix_len -= 1

    old_rest = original[prefix_len:]
    new_rest = replacement[prefix_len:]
    suffix_len = _dmp.diff_commonSuffix(old_rest, new_rest)
    if 0 < suffix_len < len(old_rest) and suffix_len < len(new_rest):
        while suffix_len > 0 and not original[-(suffix_len + 1)].isspace() and not original[-suffix_len].isspace():
            suffix_len -= 1

    old_end = len(original) - suffix_len
    new_end = len(replacement) - suffix_len
    return MinimalChange(
        prefix=original[:prefix_len],
        old=original[prefix_len:old_end],
        new=replacement[prefix_len:new_end],
        suffix=original[old_end:],
    )


def anchor_phrases(prefix: str, max_words: int = 5) -> Iterator[str]:
    """Trailing word sequences of prefix, longest first."""
    words = list(re.finditer(r"\S+", prefix))
    for n in range(min(max_words, len(words)), 0, -1):
        yield prefix[words[-n].start() : words[-1].end()]
