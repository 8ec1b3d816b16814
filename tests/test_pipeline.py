import asyncio
import unittest

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core import PlayCountFetchError, fetch_track_play_count
from lib.playcount.resolver import InvalidTrackReference
from lib.playcount.revenue import PER_STREAM_RATE_USD
from playwright_pool import LocalChromiumLauncher
from playwright_fakes import (
    ALBUM_PAGE_HTML,
    FALLBACK_PAGE_HTML,
    TRACK_PAGE_HTML,
    FakePage,
    FakePlaywright,
)


async def _fetch(pw: FakePlaywright, track_id: str = "4nlH5jTAEsKrWYYVfUouRX", **kwargs):
    return await fetch_track_play_count(
        track_id,
        launcher=LocalChromiumLauncher(),
        playwright_factory=pw.factory(),
        wait_for_markers=False,
        **kwargs,
    )


class PipelineTests(unittest.IsolatedAsyncioTestCase):
    async def test_primary_count_and_consistent_revenue(self):
        pw = FakePlaywright(FakePage(html=TRACK_PAGE_HTML))
        data = await _fetch(pw)

        self.assertEqual(data["trackName"], "Blinding Lights")
        self.assertEqual(data["playCounts"][0]["count"], "4,512,345,678")
        self.assertIn("element", data["playCounts"][0])
        self.assertEqual(data["popularTracks"], [{"name": "Save Your Tears", "count": "2,001,002"}])
        self.assertEqual(data["playCount"], 4512345678)
        self.assertEqual(data["confidence"], "primary")
        self.assertEqual(data["revenue"]["perStream"], PER_STREAM_RATE_USD)
        self.assertEqual(data["revenue"]["total"], data["playCount"] * PER_STREAM_RATE_USD)
        self.assertEqual(data["revenue"]["currency"], "USD")
        self.assertIn("total_ms", data["meta"])
        self.assertEqual(pw.browser.close_calls, 1)

    async def test_fallback_row_matched_by_name(self):
        pw = FakePlaywright(FakePage(html=FALLBACK_PAGE_HTML))
        data = await _fetch(pw)

        self.assertEqual(data["playCounts"], [])
        self.assertEqual(data["playCount"], 1500000)
        self.assertEqual(data["confidence"], "matched")
        self.assertEqual(data["revenue"]["total"], 1500000 * PER_STREAM_RATE_USD)

    async def test_non_track_page_yields_null_revenue(self):
        pw = FakePlaywright(FakePage(html=ALBUM_PAGE_HTML))
        data = await _fetch(pw)

        self.assertIsNone(data["playCount"])
        self.assertIsNone(data["confidence"])
        self.assertEqual(data["revenue"], {"perStream": PER_STREAM_RATE_USD, "total": None, "currency": "USD"})
        self.assertEqual(pw.browser.close_calls, 1)

    async def test_navigation_timeout_is_wrapped_with_phase(self):
        pw = FakePlaywright(FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded.")))
        with self.assertRaises(PlayCountFetchError) as ctx:
            await _fetch(pw)

        self.assertIn("Timeout 30000ms exceeded", str(ctx.exception))
        self.assertEqual(ctx.exception.meta["phase"], "navigate")
        self.assertIsInstance(ctx.exception.__cause__, PlaywrightTimeoutError)
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)

    async def test_launch_failure_is_wrapped_with_phase(self):
        pw = FakePlaywright(launch_error=RuntimeError("Executable doesn't exist"))
        with self.assertRaises(PlayCountFetchError) as ctx:
            await _fetch(pw)

        self.assertEqual(ctx.exception.meta["phase"], "launch")
        self.assertEqual(pw.stop_calls, 1)

    async def test_invalid_id_never_starts_a_browser(self):
        pw = FakePlaywright(FakePage(html=TRACK_PAGE_HTML))
        with self.assertRaises(InvalidTrackReference):
            await _fetch(pw, track_id="spotify:track:abc")
        self.assertEqual(pw.start_calls, 0)

    async def test_concurrent_requests_get_separate_sessions(self):
        sem = asyncio.Semaphore(1)
        drivers = [FakePlaywright(FakePage(html=TRACK_PAGE_HTML)) for _ in range(3)]
        results = await asyncio.gather(*(_fetch(pw, admission=sem) for pw in drivers))

        self.assertEqual([r["playCount"] for r in results], [4512345678] * 3)
        for pw in drivers:
            self.assertEqual(pw.start_calls, 1)
            self.assertEqual(pw.browser.close_calls, 1)


if __name__ == "__main__":
    unittest.main()
