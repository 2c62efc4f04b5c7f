"""
similarity.py — String and address similarity primitives for the duplicate scanner.

  - normalize_string: lower-case, keep only ASCII word characters and CJK ideographs
  - string_similarity: Dice coefficient over character bigrams (0.0–1.0)
  - extract_address_tokens / address_token_overlap: Taiwanese address components
    (road/street, section, lot number, lane, alley) compared as sets
  - capacity_difference_percent: relative capacity gap against the pair average

Pure functions; no database or I/O.
"""

import re
from typing import Optional, Set

from app.services.dedup_config import CAPACITY_UNKNOWN_SENTINEL

_CJK = "\u4e00-\u9fff"

# \w is ASCII-only here; CJK ideographs are whitelisted explicitly
_NON_WORD_RE = re.compile(rf"[^\w{_CJK}]", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+")

_ROAD_RE = re.compile(rf"[{_CJK}]+[路街]")
_SECTION_RE = re.compile(rf"[{_CJK}一二三四五六七八九十]+段")
_LOT_RE = re.compile(r"[0-9]+(?:-[0-9]+)?地號")
_LANE_RE = re.compile(r"[0-9]+巷")
_ALLEY_RE = re.compile(r"[0-9]+弄")

_ADDRESS_TOKEN_PATTERNS = (_ROAD_RE, _SECTION_RE, _LOT_RE, _LANE_RE, _ALLEY_RE)


def normalize_string(value: Optional[str]) -> str:
    if not value:
        return ""
    return _NON_WORD_RE.sub("", value.lower()).strip()


def _bigrams(s: str):
    return (s[i:i + 2] for i in range(len(s) - 1))


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Dice coefficient between two strings after normalization.

    shared = number of bigram positions in ``b`` whose bigram occurs in ``a``;
    result = 2 × shared / (bigram positions in a + bigram positions in b).

    Returns 0.0 when either side is missing or normalizes to empty,
    1.0 on an exact normalized match, 0.0 when either side is a single character.
    """
    s1 = normalize_string(a)
    s2 = normalize_string(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    if len(s1) < 2 or len(s2) < 2:
        return 0.0

    bigrams1 = set(_bigrams(s1))
    shared = sum(1 for bg in _bigrams(s2) if bg in bigrams1)
    return (2 * shared) / ((len(s1) - 1) + (len(s2) - 1))


def extract_address_tokens(address: Optional[str]) -> Set[str]:
    """First road, section, lot, lane and alley token found in the address."""
    if not address:
        return set()
    compact = _WHITESPACE_RE.sub("", address)
    tokens: Set[str] = set()
    for pattern in _ADDRESS_TOKEN_PATTERNS:
        match = pattern.search(compact)
        if match:
            tokens.add(match.group(0))
    return tokens


def address_token_overlap(a: Optional[str], b: Optional[str]) -> float:
    """Shared tokens divided by the size of the larger token set (0.0–1.0)."""
    tokens1 = extract_address_tokens(a)
    tokens2 = extract_address_tokens(b)
    if not tokens1 or not tokens2:
        return 0.0
    return len(tokens1 & tokens2) / max(len(tokens1), len(tokens2))


def capacity_difference_percent(cap1: Optional[float], cap2: Optional[float]) -> float:
    """
    |cap1 - cap2| as a percentage of their average.

    Missing (None) or zero capacity on either side yields CAPACITY_UNKNOWN_SENTINEL,
    so such pairs never pass a "capacity close" or capacity-gate check.
    """
    if not cap1 or not cap2:
        return CAPACITY_UNKNOWN_SENTINEL
    c1 = float(cap1)
    c2 = float(cap2)
    avg = (c1 + c2) / 2
    if avg <= 0:
        return CAPACITY_UNKNOWN_SENTINEL
    return abs(c1 - c2) / avg * 100
