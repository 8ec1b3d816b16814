"""
Spotify track play-count extraction and revenue estimation.

Public API:
  - resolve_track_id(reference) -> str
  - scan_document(html) -> ExtractionResult
  - extract_track_page(page, track_id) -> ExtractionResult
  - reconcile(extraction, policy) -> PlayCountFound | PlayCountNotFound
  - estimate_revenue(play_count) -> RevenueEstimate
"""
from lib.playcount.extractor import extract_track_page, scan_document
from lib.playcount.models import (
    Confidence,
    ExtractionResult,
    PlayCountFound,
    PlayCountNotFound,
    PopularTrackRow,
    PrimaryPolicy,
    RawPlayCountCandidate,
    RevenueEstimate,
)
from lib.playcount.reconciler import reconcile, reconcile_play_count
from lib.playcount.resolver import InvalidTrackReference, is_valid_track_id, resolve_track_id
from lib.playcount.revenue import PER_STREAM_RATE_USD, estimate_revenue

__all__ = [
    "extract_track_page",
    "scan_document",
    "reconcile",
    "reconcile_play_count",
    "resolve_track_id",
    "is_valid_track_id",
    "estimate_revenue",
    "InvalidTrackReference",
    "PER_STREAM_RATE_USD",
    "Confidence",
    "ExtractionResult",
    "PlayCountFound",
    "PlayCountNotFound",
    "PopularTrackRow",
    "PrimaryPolicy",
    "RawPlayCountCandidate",
    "RevenueEstimate",
]
