"""
Duplicate scanner configuration — single source of truth for thresholds,
criterion labels, decision tags and audit reason prefixes.

Import from here in the scanner, repository and routes rather than hardcoding values.
"""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


# ── Hard exclusion thresholds (percent) ───────────────────────────────────────
# Pair is dropped when address AND name similarity are both below these
MIN_ADDRESS_SIMILARITY: float = _env_float("DEDUP_MIN_ADDRESS_SIMILARITY", 40.0)
MIN_NAME_SIMILARITY: float = _env_float("DEDUP_MIN_NAME_SIMILARITY", 40.0)

# Pair is dropped when capacities differ by more than this
MAX_CAPACITY_DIFFERENCE: float = _env_float("DEDUP_MAX_CAPACITY_DIFFERENCE", 50.0)


# ── Medium confidence primary conditions (percent) ────────────────────────────
MEDIUM_ADDRESS_THRESHOLD: float = _env_float("DEDUP_MEDIUM_ADDRESS_THRESHOLD", 80.0)
MEDIUM_NAME_THRESHOLD: float = _env_float("DEDUP_MEDIUM_NAME_THRESHOLD", 75.0)


# ── Auxiliary signals ─────────────────────────────────────────────────────────
# "Capacity close" signal; also the capacity gate for low confidence
MAX_LOW_CAPACITY_DIFFERENCE: float = _env_float("DEDUP_MAX_LOW_CAPACITY_DIFFERENCE", 15.0)

# Address token overlap (percent of the larger token set) recorded as a supporting signal
MIN_ADDRESS_TOKEN_OVERLAP: float = _env_float("DEDUP_MIN_ADDRESS_TOKEN_OVERLAP", 20.0)


# Returned by capacity_difference_percent when either side has no capacity
CAPACITY_UNKNOWN_SENTINEL: float = 100.0


# ── Confidence levels ─────────────────────────────────────────────────────────
CONFIDENCE_ORDER: dict[str, int] = {
    "high":   0,
    "medium": 1,
    "low":    2,
}


# ── Review decisions ──────────────────────────────────────────────────────────
DECISION_DISMISS = "dismiss"
DECISION_CONFIRM = "confirm"
DECISION_MERGED = "merged"
REVIEW_DECISIONS: tuple[str, ...] = (DECISION_DISMISS, DECISION_CONFIRM, DECISION_MERGED)


# ── Audit log reason prefixes (downstream log filters key on these) ──────────
AUDIT_PREFIX_DISMISS = "DEDUP_DISMISS"
AUDIT_PREFIX_CONFIRM = "DEDUP_CONFIRM"
AUDIT_PREFIX_MERGE = "DEDUP_MERGE"

DEFAULT_DISMISS_REASON = "Operator judged the projects to be distinct"
DEFAULT_CONFIRM_REASON = "Confirmed duplicate cleanup"


# ── Criterion labels shown to operators ───────────────────────────────────────
CRITERION_SAME_SITE_CODE = "Same site code"
CRITERION_SAME_INVESTOR_YEAR_SEQ = "Same investor code + year + sequence"
CRITERION_ADDRESS_HIGHLY_SIMILAR = "Address highly similar"
CRITERION_NAME_HIGHLY_SIMILAR = "Name highly similar"
CRITERION_ADDRESS_SIMILARITY = "Address similarity"
CRITERION_NAME_SIMILARITY = "Name similarity"
CRITERION_ADDRESS_TOKENS = "Address tokens overlap"
CRITERION_SAME_INVESTOR = "Same investor"
CRITERION_SAME_TOWNSHIP = "Same township"
CRITERION_CAPACITY_CLOSE = "Capacity close"

# Reasons a high-confidence identifier check could not run
BLOCKER_SITE_CODE_NULL = "site code missing"
BLOCKER_SEQ_NULL = "sequence missing"
BLOCKER_INVESTOR_CODE_NULL = "investor code missing"
BLOCKER_YEAR_NULL = "intake year missing"
BLOCKER_VALUES_DIFFER = "values differ"


# Key under which persisted scanner overrides are stored in app_settings
SETTINGS_KEY = "duplicate_scanner"
