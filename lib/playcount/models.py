"""
Play-count extraction / revenue estimation のデータモデル。
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union


class Confidence(str, Enum):
    """
    再生数の確からしさ。
    優先順位: PRIMARY > MATCHED > UNMATCHED
    """
    PRIMARY = "primary"       # data-testid="playcount" の要素から取得
    MATCHED = "matched"       # popular tracks 内で名前が部分一致した行
    UNMATCHED = "unmatched"   # 一致なし、popular tracks の先頭行（弱い推定）


class PrimaryPolicy(str, Enum):
    """Which playcount element counts as the page's own figure."""
    FIRST = "first"
    LARGEST = "largest"


@dataclass(frozen=True)
class RawPlayCountCandidate:
    """A digits-and-commas string scraped from one playcount element."""
    count: str
    source_markup: str

    def to_dict(self) -> Dict[str, str]:
        return {"count": self.count, "element": self.source_markup}


@dataclass(frozen=True)
class PopularTrackRow:
    """A sibling row from the "popular tracks by this artist" listing."""
    name: str
    count: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "count": self.count}


@dataclass(frozen=True)
class ExtractionResult:
    """Raw, unreconciled output of one page scan."""
    track_name: Optional[str]
    play_counts: Tuple[RawPlayCountCandidate, ...] = ()
    popular_tracks: Tuple[PopularTrackRow, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.play_counts and not self.popular_tracks


@dataclass(frozen=True)
class PlayCountFound:
    count: int
    confidence: Confidence


@dataclass(frozen=True)
class PlayCountNotFound:
    count: None = None
    confidence: None = None


ReconciledPlayCount = Union[PlayCountFound, PlayCountNotFound]


@dataclass(frozen=True)
class RevenueEstimate:
    per_stream: float
    total: Optional[float]
    currency: str = "USD"

    def to_dict(self) -> Dict[str, object]:
        return {
            "perStream": self.per_stream,
            "total": self.total,
            "currency": self.currency,
        }
