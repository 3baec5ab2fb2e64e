"""Header-based broker format scoring.

A pure, deterministic heuristic: adapters declare their columns and the
structural cues they look for, and score_headers turns that into a bounded
confidence plus a human-readable rationale.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from trade_import.constants import BrokerType

REQUIRED_COLUMNS_WEIGHT = 0.4
INDICATOR_BASE_BONUS = 0.2
INDICATOR_STEP_BONUS = 0.1
INDICATOR_BONUS_CAP = 0.5
STRUCTURAL_CUE_BONUS = 0.1

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_header_key(header: str | None) -> str:
    """Lowercase and strip everything but letters and digits ("Fees & Comm" -> "feescomm")."""
    if not header:
        return ""
    return _NON_ALNUM.sub("", header.lower())


def column_matches(required: str, header: str) -> bool:
    """Fuzzy column match: equal after normalization, or either contains the other."""
    wanted = normalize_header_key(required)
    actual = normalize_header_key(header)
    if not wanted or not actual:
        return False
    return wanted == actual or wanted in actual or actual in wanted


def find_column(required: str, headers: Iterable[str]) -> str | None:
    """Return the first header that fuzzily matches the required column."""
    for header in headers:
        if column_matches(required, header):
            return header
    return None


@dataclass(frozen=True)
class HeaderScore:
    """Outcome of scoring one adapter against a header row."""

    confidence: float
    reason: str
    found_columns: tuple[str, ...] = field(default_factory=tuple)
    missing_columns: tuple[str, ...] = field(default_factory=tuple)


def score_headers(
    headers: Sequence[str],
    required: Sequence[str],
    indicators: Sequence[str] = (),
    *,
    min_indicators: int = 1,
    cues: Sequence[str] = (),
) -> HeaderScore:
    """Score a header row against one broker's declared columns.

    Args:
        headers: Column names from the file
        required: Columns the broker export always has
        indicators: Columns distinctive to this broker
        min_indicators: Distinctive columns needed before the indicator bonus applies
        cues: Names of structural cues the caller already found in the headers

    Returns:
        HeaderScore with confidence clamped to [0, 1]
    """
    confidence = 0.0
    reasons: list[str] = []
    found: list[str] = []
    missing: list[str] = []

    for column in required:
        match = find_column(column, headers)
        if match is None:
            missing.append(column)
        else:
            found.append(match)

    if required and not missing:
        confidence += REQUIRED_COLUMNS_WEIGHT
        reasons.append("all required columns present")
    elif missing:
        reasons.append(f"missing required columns: {', '.join(missing)}")

    normalized = [normalize_header_key(h) for h in headers]
    matched_indicators = [
        indicator
        for indicator in indicators
        if normalize_header_key(indicator)
        and any(normalize_header_key(indicator) in h for h in normalized)
    ]
    if matched_indicators and len(matched_indicators) >= min_indicators:
        bonus = INDICATOR_BASE_BONUS + INDICATOR_STEP_BONUS * len(matched_indicators)
        confidence += min(bonus, INDICATOR_BONUS_CAP)
        reasons.append(f"broker-specific columns: {', '.join(matched_indicators)}")

    for cue in cues:
        confidence += STRUCTURAL_CUE_BONUS
        reasons.append(cue)

    confidence = round(max(0.0, min(1.0, confidence)), 4)
    return HeaderScore(
        confidence=confidence,
        reason="; ".join(reasons) if reasons else "no matching columns",
        found_columns=tuple(found),
        missing_columns=tuple(missing),
    )


@dataclass(frozen=True)
class BrokerDetectionResult:
    """Classifier verdict for one adapter against a header row."""

    broker_type: BrokerType
    broker_name: str
    confidence: float
    reason: str
    required_columns: tuple[str, ...] = field(default_factory=tuple)
    found_columns: tuple[str, ...] = field(default_factory=tuple)
