#!/usr/bin/env python3
"""
Spotify トラックの
- 再生数（Web プレイヤーをヘッドレスブラウザでスクレイピング）
- 推定収益（再生数 × 1ストリームあたりの平均単価）
- 公式 Web API のメタデータ（名前 / アーティスト / アルバム / 再生時間 / popularity）

を Python 辞書で返すコアモジュール。
"""

from __future__ import annotations

import asyncio
import logging
import os
import unicodedata
from time import perf_counter
from typing import Any, Callable, Dict, List

import httpx

from lib.cache_manager import (
    build_token_cache_key,
    get_token_cache,
    should_cache_token,
)
from lib.playcount import (
    ExtractionResult,
    PlayCountFound,
    PrimaryPolicy,
    extract_track_page,
    estimate_revenue,
    is_valid_track_id,
    reconcile,
)
from lib.playcount.models import ReconciledPlayCount, RevenueEstimate
from lib.playcount.resolver import InvalidTrackReference
from playwright_pool import ChromiumLauncher, admission_slot, browser_session

# Configure logger for this module
logger = logging.getLogger(__name__)

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"
SPOTIFY_HTTP_TIMEOUT_S = float(os.getenv("SPOTIFY_HTTP_TIMEOUT_S", "10"))


class PlayCountFetchError(Exception):
    """Browser-side failure, with the pipeline phase in meta for diagnostics."""

    def __init__(self, message: str, meta: dict | None = None):
        super().__init__(message)
        self.meta = meta or {}


class SpotifyApiError(Exception):
    """Upstream accounts / Web API error. The message is the upstream's own."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def _nfc(s: Any) -> Any:
    if not isinstance(s, str):
        return s
    try:
        return unicodedata.normalize("NFC", s)
    except Exception:
        return s


# =========================
# 再生数 + 推定収益
# =========================


def playcount_result_to_dict(
    extraction: ExtractionResult,
    reconciled: ReconciledPlayCount,
    revenue: RevenueEstimate,
    perf: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """
    戻り値フォーマット:
    {
      "trackName": str | None,
      "playCounts": [{"count": str, "element": str}, ...],
      "popularTracks": [{"name": str, "count": str}, ...],
      "revenue": {"perStream": float, "total": float | None, "currency": "USD"},
      "playCount": int | None,
      "confidence": "primary" | "matched" | "unmatched" | None,
      "meta": {...}
    }
    """
    confidence = reconciled.confidence.value if isinstance(reconciled, PlayCountFound) else None
    return {
        "trackName": _nfc(extraction.track_name),
        "playCounts": [c.to_dict() for c in extraction.play_counts],
        "popularTracks": [{**r.to_dict(), "name": _nfc(r.name)} for r in extraction.popular_tracks],
        "revenue": revenue.to_dict(),
        "playCount": reconciled.count,
        "confidence": confidence,
        "meta": dict(perf or {}),
    }


async def fetch_track_play_count(
    track_id: str,
    launcher: ChromiumLauncher | None = None,
    admission: asyncio.Semaphore | None = None,
    playwright_factory: Callable | None = None,
    wait_for_markers: bool | None = None,
    policy: PrimaryPolicy | None = None,
) -> Dict[str, Any]:
    """
    1トラック分の再生数をスクレイピングし、推定収益を付けて返す。
    resolve → launch → navigate → wait → extract → reconcile → estimate（順次実行）
    """
    if not is_valid_track_id(track_id):
        raise InvalidTrackReference(track_id)

    t0_total = perf_counter()
    session_kwargs: Dict[str, Any] = {"launcher": launcher}
    if playwright_factory is not None:
        session_kwargs["playwright_factory"] = playwright_factory

    phase = "admission"
    try:
        async with admission_slot(admission):
            t0_session = perf_counter()
            phase = "launch"
            async with browser_session(**session_kwargs) as page:
                phase = "navigate"
                extraction = await extract_track_page(page, track_id, wait_for_markers=wait_for_markers)
            session_ms = int((perf_counter() - t0_session) * 1000)
    except Exception as e:
        logger.error(f"[PLAYCOUNT] {phase} failed for track_id={track_id}: {e!r}")
        raise PlayCountFetchError(str(e), meta={"phase": phase, "track_id": track_id}) from e

    reconciled = reconcile(extraction, policy)
    revenue = estimate_revenue(reconciled.count)

    perf = {
        "session_ms": session_ms,
        "total_ms": int((perf_counter() - t0_total) * 1000),
    }
    logger.info(
        f"[PERF] track_id={track_id} play_count={reconciled.count} "
        f"confidence={getattr(reconciled.confidence, 'value', None)} "
        f"session_ms={perf['session_ms']} total_ms={perf['total_ms']}"
    )
    return playcount_result_to_dict(extraction, reconciled, revenue, perf)


# =========================
# Spotify Web API（client credentials）
# =========================


def _client_credentials() -> tuple[str, str]:
    """
    環境変数から Spotify API のクレデンシャルを読み込む。

    必要な環境変数:
    - SPOTIFY_CLIENT_ID
    - SPOTIFY_CLIENT_SECRET
    """
    client_id = os.getenv("SPOTIFY_CLIENT_ID")
    client_secret = os.getenv("SPOTIFY_CLIENT_SECRET")

    if not client_id or not client_secret:
        raise RuntimeError(
            "Spotify client credentials are not set. "
            "Please set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET."
        )
    return client_id, client_secret


def _json_or_empty(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def fetch_access_token(transport: httpx.AsyncBaseTransport | None = None) -> str:
    client_id, client_secret = _client_credentials()

    cache = get_token_cache()
    cache_key = build_token_cache_key(client_id)
    cached = cache.get(cache_key)
    if cached:
        return cached

    async with httpx.AsyncClient(timeout=SPOTIFY_HTTP_TIMEOUT_S, transport=transport) as client:
        resp = await client.post(
            SPOTIFY_TOKEN_URL,
            auth=(client_id, client_secret),
            data={"grant_type": "client_credentials"},
        )
    data = _json_or_empty(resp)

    if resp.status_code != 200 or "access_token" not in data:
        message = data.get("error_description") or data.get("error") or "Failed to get access token"
        logger.error(f"[Spotify] token exchange failed ({resp.status_code}): {message}")
        raise SpotifyApiError(message, status=resp.status_code)

    token = data["access_token"]
    if should_cache_token(data.get("expires_in")):
        cache[cache_key] = token
    return token


async def fetch_track_metadata(
    track_id: str,
    access_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Dict[str, Any]:
    """GET /v1/tracks/{id}. Upstream errors are raised with their own message; no retries."""
    if not is_valid_track_id(track_id):
        raise InvalidTrackReference(track_id)

    async with httpx.AsyncClient(timeout=SPOTIFY_HTTP_TIMEOUT_S, transport=transport) as client:
        resp = await client.get(
            f"{SPOTIFY_API_BASE}/tracks/{track_id}",
            headers={"Authorization": f"Bearer {access_token}"},
        )
    data = _json_or_empty(resp)

    if resp.status_code != 200:
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        message = message or "Failed to fetch track data"
        logger.error(f"[Spotify] track {track_id} failed ({resp.status_code}): {message}")
        raise SpotifyApiError(message, status=resp.status_code)

    return data


def track_metadata_to_dict(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    /v1/tracks のレスポンスから表示に必要な項目だけを取り出す。

    戻り値フォーマット:
    {
      "id", "name", "uri", "external_url", "duration_ms", "explicit", "popularity",
      "artists": [{"id", "name", "uri"}],
      "album": {"id", "name", "album_type", "release_date", "total_tracks", "uri",
                "images": [{"url", "height", "width"}], "artists": [...]},
    }
    """

    def _artists(items: Any) -> List[Dict[str, Any]]:
        out = []
        for a in items or []:
            if not isinstance(a, dict) or not a.get("name"):
                continue
            out.append({"id": a.get("id"), "name": _nfc(a["name"]), "uri": a.get("uri")})
        return out

    album = raw.get("album") or {}
    images = [
        {"url": img.get("url"), "height": img.get("height"), "width": img.get("width")}
        for img in album.get("images") or []
        if isinstance(img, dict) and img.get("url")
    ]

    return {
        "id": raw.get("id"),
        "name": _nfc(raw.get("name") or ""),
        "uri": raw.get("uri"),
        "external_url": (raw.get("external_urls") or {}).get("spotify"),
        "duration_ms": raw.get("duration_ms"),
        "explicit": bool(raw.get("explicit")),
        "popularity": raw.get("popularity"),
        "artists": _artists(raw.get("artists")),
        "album": {
            "id": album.get("id"),
            "name": _nfc(album.get("name") or ""),
            "album_type": album.get("album_type"),
            "release_date": album.get("release_date"),
            "total_tracks": album.get("total_tracks"),
            "uri": album.get("uri"),
            "images": images,
            "artists": _artists(album.get("artists")),
        },
    }


async def fetch_track_metadata_with_token(
    track_id: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Dict[str, Any]:
    token = await fetch_access_token(transport=transport)
    raw = await fetch_track_metadata(track_id, token, transport=transport)
    return track_metadata_to_dict(raw)
