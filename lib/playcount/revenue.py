"""Play count -> estimated payout."""
from __future__ import annotations

from typing import Optional

from lib.playcount.models import RevenueEstimate

# Industry-average payout per stream in USD. An estimate, not Spotify's actual rate.
PER_STREAM_RATE_USD = 0.00238
CURRENCY = "USD"


def estimate_revenue(play_count: Optional[int]) -> RevenueEstimate:
    total = None
    if isinstance(play_count, int) and not isinstance(play_count, bool) and play_count >= 0:
        total = play_count * PER_STREAM_RATE_USD
    return RevenueEstimate(per_stream=PER_STREAM_RATE_USD, total=total, currency=CURRENCY)
