from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load .env / .env.local before core reads its module-level settings
_here = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(_here, ".env"))
load_dotenv(os.path.join(_here, ".env.local"), override=True)

from fastapi import FastAPI, Query, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from starlette.middleware.gzip import GZipMiddleware  # noqa: E402
from pydantic import BaseModel  # noqa: E402

import core  # noqa: E402
from lib.playcount import InvalidTrackReference, is_valid_track_id, resolve_track_id  # noqa: E402
from lib.playcount.resolver import INVALID_REFERENCE_MESSAGE  # noqa: E402
from playwright_pool import get_launcher, new_admission_semaphore  # noqa: E402
import logging  # noqa: E402

# Basic logging configuration to ensure logger outputs appear in the terminal
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn.error")
logger.setLevel(logging.INFO)


# =========================
# Pydantic models
# =========================

class PlayCountCandidateModel(BaseModel):
    count: str
    element: str


class PopularTrackModel(BaseModel):
    name: str
    count: str


class RevenueModel(BaseModel):
    perStream: float
    total: Optional[float] = None
    currency: str = "USD"


class TrackPlayCountResponse(BaseModel):
    trackName: Optional[str] = None
    playCounts: List[PlayCountCandidateModel]
    popularTracks: List[PopularTrackModel]
    revenue: RevenueModel
    playCount: Optional[int] = None  # reconciled value that revenue.total was computed from
    confidence: Optional[str] = None  # "primary" | "matched" | "unmatched" (UI hint: unmatched = weak guess)
    meta: Optional[Dict[str, Any]] = None


class ImageModel(BaseModel):
    url: str
    height: Optional[int] = None
    width: Optional[int] = None


class ArtistModel(BaseModel):
    id: Optional[str] = None
    name: str
    uri: Optional[str] = None


class AlbumModel(BaseModel):
    id: Optional[str] = None
    name: str
    album_type: Optional[str] = None
    release_date: Optional[str] = None
    total_tracks: Optional[int] = None
    uri: Optional[str] = None
    images: List[ImageModel] = []
    artists: List[ArtistModel] = []


class TrackMetadataResponse(BaseModel):
    id: Optional[str] = None
    name: str
    uri: Optional[str] = None
    external_url: Optional[str] = None
    duration_ms: Optional[int] = None
    explicit: bool = False
    popularity: Optional[int] = None
    artists: List[ArtistModel]
    album: AlbumModel


class TokenResponse(BaseModel):
    access_token: str


class ResolveResponse(BaseModel):
    trackId: str


# =========================
# FastAPI app & CORS
# =========================

app = FastAPI(
    title="Spotify Track Revenue Estimator",
    version="1.0.0",
)

# Add GZip middleware for response compression (popularTracks markup can be large)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.on_event("startup")
def _log_startup():
    logger.info("track-revenue: startup event triggered")


@app.on_event("startup")
async def _init_playwright_state():
    # Browser strategy and admission limit are fixed for the process lifetime;
    # browsers themselves are launched per request.
    app.state.launcher = get_launcher()
    app.state.browser_sem = new_admission_semaphore()


# デフォルトの許可オリジン
default_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# 環境変数 ALLOWED_ORIGINS があればそれを優先（カンマ区切り）
env_origins = os.getenv("ALLOWED_ORIGINS")
if env_origins:
    origins = [o.strip() for o in env_origins.split(",") if o.strip()]
else:
    origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================
# Health check
# =========================

@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "status": "ok",
        "build_commit": os.getenv("RENDER_GIT_COMMIT", "local")[:7],
        "browser_mode": os.getenv("PLAYCOUNT_BROWSER_MODE", "local"),
    }


@app.get("/", tags=["system"])
def root() -> Dict[str, Any]:
    # Render health-style response to silence platform health checks on /
    return {"ok": True, "status": "ok"}


# =========================
# Core helpers
# =========================

def _invalid_reference_response() -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": INVALID_REFERENCE_MESSAGE})


# =========================
# Endpoints
# =========================

@app.get("/api/spotify/resolve", response_model=ResolveResponse)
def resolve_reference(
    ref: str = Query(..., description="spotify:track:<id> or https://open.spotify.com/track/<id>"),
):
    """URI / URL からトラックIDを取り出す（ブラウザは起動しない）。"""
    try:
        return {"trackId": resolve_track_id(ref)}
    except InvalidTrackReference:
        logger.info(f"[api/resolve] rejected ref={ref!r}")
        return _invalid_reference_response()


@app.get("/api/spotify/track/{track_id}", response_model=TrackPlayCountResponse)
async def get_track_play_count(track_id: str, request: Request):
    """
    Web プレイヤーをスクレイピングして再生数と推定収益を返す。
    再生数が見つからない場合も 200（playCount=null, revenue.total=null）。
    """
    # Re-validate: anything that is not a bare id never reaches the browser
    if not is_valid_track_id(track_id):
        logger.info(f"[api/spotify/track] rejected track_id={track_id!r}")
        return _invalid_reference_response()

    logger.info(f"[api/spotify/track] track_id={track_id}")
    try:
        return await core.fetch_track_play_count(
            track_id,
            launcher=getattr(request.app.state, "launcher", None),
            admission=getattr(request.app.state, "browser_sem", None),
        )
    except Exception as e:
        meta = getattr(e, "meta", {})
        logger.error(f"[api/spotify/track] error for track_id={track_id}: {e} meta={meta}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch Spotify data", "details": str(e), "meta": meta},
        )


@app.get("/api/spotify/token", response_model=TokenResponse)
async def get_token():
    try:
        return {"access_token": await core.fetch_access_token()}
    except Exception as e:
        logger.error(f"[api/spotify/token] error: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})


@app.get("/api/spotify/tracks/{track_id}/metadata", response_model=TrackMetadataResponse)
async def get_track_metadata(track_id: str):
    """公式 Web API のトラック情報（upstream のエラーメッセージはそのまま返す）。"""
    if not is_valid_track_id(track_id):
        return _invalid_reference_response()
    try:
        return await core.fetch_track_metadata_with_token(track_id)
    except Exception as e:
        status = getattr(e, "status", None)
        logger.error(f"[api/spotify/metadata] error for track_id={track_id} upstream_status={status}: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})


# =========================
# Local dev entrypoint
# =========================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "3001")),
        reload=True,
    )
