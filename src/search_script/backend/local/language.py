"""Term handling for the in-process engine: tokenizing, stop words and fuzzy matching."""

import re
from collections.abc import Iterator

STOP_LIST_NAME = "google"
TOKENIZER_NAME = "unicode61"
STEMMER_NAME = "none"

STOP_WORDS = frozenset(
    [
        "a", "about", "an", "are", "as", "at", "be", "by", "com", "edu",
        "for", "from", "how", "i", "in", "is", "it", "of", "on", "that",
        "the", "this", "to", "was", "what", "when", "where", "which", "who",
        "why", "will", "with",
    ]
)

_WORD_PATTERN = re.compile(r"[^\W_]+")

_SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}
SOUNDEX_KEY_LENGTH = 4


def iter_terms(text: str) -> Iterator[str]:
    """Yield the lower-cased word terms of a text, in order."""
    for match in _WORD_PATTERN.finditer(text):
        yield match.group(0).lower()


def is_stop_word(term: str) -> bool:
    return term.lower() in STOP_WORDS


def soundex(term: str) -> str:
    """Standard four character soundex key, e.g. ``robert`` -> ``R163``."""
    letters = [c for c in term.lower() if c.isalpha()]
    if not letters:
        return ""

    first = letters[0]
    key = [first.upper()]
    previous = _SOUNDEX_CODES.get(first, "")
    for letter in letters[1:]:
        code = _SOUNDEX_CODES.get(letter, "")
        if code and code != previous:
            key.append(code)
            if len(key) == SOUNDEX_KEY_LENGTH:
                break
        # h and w do not separate letters with the same code
        if letter not in "hw":
            previous = code

    return "".join(key).ljust(SOUNDEX_KEY_LENGTH, "0")


def within_one_edit(left: str, right: str) -> bool:
    """True when the two terms differ by at most one insertion, deletion or substitution."""
    if left == right:
        return True
    if abs(len(left) - len(right)) > 1:
        return False

    if len(left) > len(right):
        left, right = right, left

    # left is now the shorter (or equal length) term
    index = 0
    while index < len(left) and left[index] == right[index]:
        index += 1

    if len(left) == len(right):
        return left[index + 1 :] == right[index + 1 :]
    return left[index:] == right[index + 1 :]
