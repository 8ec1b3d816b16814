"""
抽出結果から代表となる再生数を1つ決める。
判定の優先順: playcount 要素 → popular tracks の名前部分一致 → popular tracks 先頭
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from lib.playcount.models import (
    Confidence,
    ExtractionResult,
    PlayCountFound,
    PlayCountNotFound,
    PrimaryPolicy,
    ReconciledPlayCount,
)

logger = logging.getLogger(__name__)


def primary_policy_from_env() -> PrimaryPolicy:
    raw = os.getenv("PLAYCOUNT_PRIMARY_POLICY", "first").strip().lower()
    try:
        return PrimaryPolicy(raw)
    except ValueError:
        raise RuntimeError(
            f"Unknown PLAYCOUNT_PRIMARY_POLICY: {raw!r} (expected 'first' or 'largest')"
        ) from None


DEFAULT_PRIMARY_POLICY = primary_policy_from_env()



def parse_count(text: Optional[str]) -> Optional[int]:
    """'1,234,567' -> 1234567. Anything else -> None."""
    if not text:
        return None
    digits = text.strip().replace(",", "")
    if not digits.isdigit():
        return None
    try:
        return int(digits)
    except ValueError:
        return None


def _found(text: str, confidence: Confidence) -> ReconciledPlayCount:
    value = parse_count(text)
    if value is None:
        logger.warning(f"[PLAYCOUNT] unparseable count {text!r} ({confidence.value})")
        return PlayCountNotFound()
    return PlayCountFound(count=value, confidence=confidence)


def _pick_primary(extraction: ExtractionResult, policy: PrimaryPolicy) -> str:
    candidates = extraction.play_counts
    if policy is PrimaryPolicy.LARGEST:
        parsed = [(parse_count(c.count), c.count) for c in candidates]
        parsed = [p for p in parsed if p[0] is not None]
        if parsed:
            return max(parsed, key=lambda p: p[0])[1]
    return candidates[0].count


def reconcile(
    extraction: ExtractionResult,
    policy: PrimaryPolicy | None = None,
) -> ReconciledPlayCount:
    """
    Args:
        extraction: scan_document() の戻り
        policy: which playcount element is authoritative (default: first)

    Returns:
        PlayCountFound(count, confidence) or PlayCountNotFound()
    """
    policy = policy or DEFAULT_PRIMARY_POLICY

    if extraction.play_counts:
        return _found(_pick_primary(extraction, policy), Confidence.PRIMARY)

    rows = extraction.popular_tracks
    if not rows:
        return PlayCountNotFound()

    track_name = extraction.track_name
    if track_name:
        needle = track_name.lower()
        for row in rows:
            # substring, so "Song (feat. X)" still matches "Song"
            if row.name and needle in row.name.lower():
                return _found(row.count, Confidence.MATCHED)

    return _found(rows[0].count, Confidence.UNMATCHED)


def reconcile_play_count(
    extraction: ExtractionResult,
    policy: PrimaryPolicy | None = None,
) -> Optional[int]:
    return reconcile(extraction, policy).count
