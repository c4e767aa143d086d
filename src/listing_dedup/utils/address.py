"""Address and free-text normalization utilities."""

import re
import unicodedata
from typing import Final

# Street-suffix synonyms mapped to one canonical word
STREET_TYPES: Final[dict[str, str]] = {
    "st": "street",
    "str": "street",
    "rd": "road",
    "ave": "avenue",
    "av": "avenue",
    "blvd": "boulevard",
    "ln": "lane",
    "dr": "drive",
    "ct": "court",
    "pl": "place",
    "sq": "square",
    "grn": "green",
    "gdn": "gardens",
    "gdns": "gardens",
    "ter": "terrace",
    "terr": "terrace",
    "cres": "crescent",
    "cl": "close",
    "clse": "close",
    "pk": "park",
    "hwy": "highway",
    "pkwy": "parkway",
    "apt": "apartment",
    "fl": "floor",
}

_PUNCTUATION = re.compile(r"[^\w\s]|_", re.UNICODE)


def _fold(raw: str) -> str:
    """Lowercase, strip diacritics, replace punctuation with spaces, collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", raw.lower())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(_PUNCTUATION.sub(" ", without_marks).split())


def normalize_address(raw: str | None) -> str:
    """Canonicalise a free-text address for comparison.

    Handles:
    - "123 Main St" -> "123 main street"
    - "123, Main Street." -> "123 main street"
    - "42 Andrássy Ave" -> "42 andrassy avenue"

    Never fails: if nothing survives cleaning, the lowercased, trimmed
    original is returned as a degenerate normalized form.

    Args:
        raw: Address string, or None.

    Returns:
        Normalized address ("" for None).
    """
    if raw is None:
        return ""
    folded = _fold(raw)
    if not folded:
        return raw.strip().lower()
    return " ".join(STREET_TYPES.get(token, token) for token in folded.split())


def normalize_text(raw: str | None) -> frozenset[str]:
    """Tokenise titles and descriptions into a comparable token set.

    Args:
        raw: Free text, or None.

    Returns:
        Set of lowercase, diacritic-free tokens (empty for None or blank text).
    """
    if not raw:
        return frozenset()
    folded = _fold(raw)
    if not folded:
        degenerate = raw.strip().lower()
        return frozenset([degenerate]) if degenerate else frozenset()
    return frozenset(folded.split())


def normalize_phrase(raw: str | None) -> str:
    """Folded text with word order kept, for exact-match comparisons.

    E.g. "Sunny 2BR!" -> "sunny 2br", but "2BR Sunny" -> "2br sunny".
    """
    if not raw:
        return ""
    return _fold(raw)


def address_tokens(raw: str | None) -> frozenset[str]:
    """Token set of a normalized address."""
    normalized = normalize_address(raw)
    return frozenset(normalized.split()) if normalized else frozenset()


def address_prefix(normalized: str, tokens: int = 2) -> str | None:
    """Leading tokens of a normalized address, used as a candidate blocking key.

    E.g. "123 main street budapest" -> "123 main". Addresses shorter than
    ``tokens`` words have no prefix, since one word alone is too weak a key.

    Args:
        normalized: Output of :func:`normalize_address`.
        tokens: Number of leading tokens to keep.

    Returns:
        Prefix string, or None if the address is too short.
    """
    parts = normalized.split()
    if len(parts) < tokens:
        return None
    return " ".join(parts[:tokens])
