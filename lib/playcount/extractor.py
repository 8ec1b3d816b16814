"""
Spotify web player のトラックページから再生数の候補を抽出する。

The page is client-rendered, so after navigation we wait for the network to go
quiet, for a visible body, and then for rendering to settle. The default
settle step is a fixed 2 s delay; it is a race against the web player's own
rendering and can miss counts on a slow host. PLAYCOUNT_WAIT_FOR_MARKERS=1
switches to polling for the DOM markers instead.
"""
from __future__ import annotations

import logging
import os
import re
from typing import List, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from lib.playcount.models import (
    ExtractionResult,
    PopularTrackRow,
    RawPlayCountCandidate,
)

logger = logging.getLogger(__name__)

TRACK_PAGE_URL = "https://open.spotify.com/track/{track_id}"

PLAYCOUNT_SELECTOR = '[data-testid="playcount"]'
TRACK_ROW_SELECTOR = '[data-testid="track-row"]'
TRACK_ROW_NAME_SELECTOR = '[data-testid="internal-track-link"]'
TRACK_ROW_COUNT_SELECTOR = "span:not([data-testid])"

SETTLE_DELAY_MS = int(os.getenv("PLAYCOUNT_SETTLE_DELAY_MS", "2000"))
WAIT_FOR_MARKERS = os.getenv("PLAYCOUNT_WAIT_FOR_MARKERS", "0") == "1"
MARKER_TIMEOUT_MS = int(os.getenv("PLAYCOUNT_MARKER_TIMEOUT_MS", "5000"))

_COUNT_RE = re.compile(r"^[0-9,]+$")


def looks_like_count(text: Optional[str]) -> bool:
    """Digits and thousands-separator commas only (after trimming)."""
    return bool(text) and _COUNT_RE.match(text.strip()) is not None


def track_name_from_title(title: Optional[str]) -> Optional[str]:
    # "Song Name - song and lyrics by Artist | Spotify" -> "Song Name"
    if not title:
        return None
    collapsed = " ".join(title.split())
    name = collapsed.split(" - ", 1)[0]
    return name or None


def scan_document(html: str) -> ExtractionResult:
    """Scan a rendered page snapshot for playcount candidates and popular-track rows."""
    soup = BeautifulSoup(html or "", "html.parser")

    play_counts: List[RawPlayCountCandidate] = []
    for el in soup.select(PLAYCOUNT_SELECTOR):
        text = el.get_text()
        if looks_like_count(text):
            play_counts.append(RawPlayCountCandidate(count=text.strip(), source_markup=str(el)))

    popular_tracks: List[PopularTrackRow] = []
    for row in soup.select(TRACK_ROW_SELECTOR):
        name_el = row.select_one(TRACK_ROW_NAME_SELECTOR)
        count_el = row.select_one(TRACK_ROW_COUNT_SELECTOR)
        if name_el is None or count_el is None:
            continue
        count = count_el.get_text()
        if looks_like_count(count):
            popular_tracks.append(PopularTrackRow(name=name_el.get_text().strip(), count=count.strip()))

    title = soup.title.get_text() if soup.title else None

    return ExtractionResult(
        track_name=track_name_from_title(title),
        play_counts=tuple(play_counts),
        popular_tracks=tuple(popular_tracks),
    )


async def load_track_page(
    page: Page,
    track_id: str,
    wait_for_markers: bool | None = None,
) -> None:
    url = TRACK_PAGE_URL.format(track_id=track_id)
    logger.info(f"[PLAYCOUNT] goto_start url={url}")
    # Navigation timeout comes from the session's default (hard failure, no retry)
    await page.goto(url, wait_until="networkidle")
    logger.info("[PLAYCOUNT] goto_done")

    await page.wait_for_selector("body", state="visible")

    poll = WAIT_FOR_MARKERS if wait_for_markers is None else wait_for_markers
    if poll:
        try:
            await page.wait_for_selector(
                f"{PLAYCOUNT_SELECTOR}, {TRACK_ROW_SELECTOR}",
                timeout=MARKER_TIMEOUT_MS,
            )
            logger.info("[PLAYCOUNT] markers found")
        except PlaywrightTimeoutError:
            # Albums, unavailable tracks etc. never render the markers
            logger.info(f"[PLAYCOUNT] no markers after {MARKER_TIMEOUT_MS}ms; scanning as-is")
    else:
        await page.wait_for_timeout(SETTLE_DELAY_MS)


async def extract_track_page(
    page: Page,
    track_id: str,
    wait_for_markers: bool | None = None,
) -> ExtractionResult:
    await load_track_page(page, track_id, wait_for_markers=wait_for_markers)
    html = await page.content()
    result = scan_document(html)
    logger.info(
        f"[PLAYCOUNT] scan_done track_name={result.track_name!r} "
        f"play_counts={len(result.play_counts)} popular_tracks={len(result.popular_tracks)}"
    )
    return result
