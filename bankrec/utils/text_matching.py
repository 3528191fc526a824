"""
Text helpers for counterparty matching on bank descriptions.
"""

import re
import unicodedata
from typing import Iterable, List, Optional

from rapidfuzz import fuzz

TOKEN_SPLIT = re.compile(r"[\s,;./\-]+")
MIN_TOKEN_LENGTH = 3


def normalize_text(text: str) -> str:
    """Lower-case, strip accents and anything that is not a letter, digit or space."""
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"[^a-z0-9 ]", "", stripped.lower()).strip()


def tokenize(text: str, noise_words: Iterable[str] = ()) -> List[str]:
    """
    Split a description into lower-cased tokens longer than two characters.
    Order is preserved and duplicates are dropped.
    """
    noise = {w.lower() for w in noise_words}
    tokens: List[str] = []
    for raw in TOKEN_SPLIT.split((text or "").lower()):
        if len(raw) < MIN_TOKEN_LENGTH or raw in noise or raw in tokens:
            continue
        tokens.append(raw)
    return tokens


def name_tokens(name: str) -> List[str]:
    """Tokens of a customer/provider name."""
    return [w for w in TOKEN_SPLIT.split((name or "").lower()) if len(w) >= MIN_TOKEN_LENGTH]


def extract_supplier_name(description: str) -> Optional[str]:
    """
    Supplier name after a slash, e.g. "Recibo/iberent technology" -> "iberent technology".
    Pure reference numbers and fragments shorter than three characters are ignored.
    """
    if not description:
        return None
    slash = description.find("/")
    if slash < 0 or slash >= len(description) - 2:
        return None
    after = description[slash + 1:].strip()
    if len(after) >= MIN_TOKEN_LENGTH and not after.isdigit():
        return after
    return None


def name_similarity(a: str, b: str) -> float:
    """
    Similarity of two names in [0, 1].
    Identical names score 1.0 and containment scores 0.85.
    """
    left = normalize_text(a)
    right = normalize_text(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if left in right or right in left:
        return 0.85
    return fuzz.token_sort_ratio(left, right) / 100.0


def matching_tokens(tokens: Iterable[str], *haystacks: Optional[str]) -> List[str]:
    """Tokens contained in at least one of the haystacks (case-insensitive)."""
    lowered = [h.lower() for h in haystacks if h]
    return [t for t in tokens if any(t in h for h in lowered)]
