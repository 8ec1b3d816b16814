import asyncio
import os
import unittest
from unittest import mock

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import playwright_pool
from playwright_pool import (
    NAVIGATION_TIMEOUT_MS,
    USER_AGENT,
    VIEWPORT,
    ChromiumLauncher,
    LocalChromiumLauncher,
    SlimChromiumLauncher,
    admission_slot,
    browser_session,
    launcher_from_env,
)
from lib.playcount.extractor import extract_track_page
from playwright_fakes import TRACK_PAGE_HTML, FakePage, FakePlaywright


class BrowserSessionTeardownTests(unittest.IsolatedAsyncioTestCase):
    async def _run(self, pw: FakePlaywright):
        async with browser_session(LocalChromiumLauncher(), playwright_factory=pw.factory()) as page:
            return await extract_track_page(page, "abc123", wait_for_markers=False)

    async def test_success_closes_once_and_configures_page(self):
        pw = FakePlaywright(FakePage(html=TRACK_PAGE_HTML))
        result = await self._run(pw)

        self.assertEqual(result.track_name, "Blinding Lights")
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)
        self.assertEqual(pw.browser.context_kwargs, {"viewport": VIEWPORT, "user_agent": USER_AGENT})
        self.assertEqual(VIEWPORT, {"width": 1280, "height": 800})
        self.assertEqual(pw.page.navigation_timeout, NAVIGATION_TIMEOUT_MS)
        self.assertEqual(NAVIGATION_TIMEOUT_MS, 30000)

    async def test_navigation_timeout_closes_once(self):
        pw = FakePlaywright(FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded.")))
        with self.assertRaises(PlaywrightTimeoutError):
            await self._run(pw)
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)

    async def test_extraction_exception_closes_once(self):
        pw = FakePlaywright(FakePage(content_error=RuntimeError("Execution context was destroyed")))
        with self.assertRaises(RuntimeError):
            await self._run(pw)
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)

    async def test_launch_exception_stops_driver_once(self):
        pw = FakePlaywright(launch_error=RuntimeError("Executable doesn't exist"))
        with self.assertRaises(RuntimeError):
            await self._run(pw)
        self.assertEqual(pw.browser.close_calls, 0)
        self.assertEqual(pw.stop_calls, 1)

    async def test_close_failure_does_not_mask_original_error(self):
        pw = FakePlaywright(FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded.")))

        async def _broken_close():
            pw.browser.close_calls += 1
            raise RuntimeError("Target closed")

        pw.browser.close = _broken_close
        with self.assertRaises(PlaywrightTimeoutError):
            await self._run(pw)
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)

    async def test_stop_failure_does_not_mask_original_error(self):
        pw = FakePlaywright(FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded.")))

        async def _broken_stop():
            pw.stop_calls += 1
            raise RuntimeError("Connection closed")

        pw.stop = _broken_stop
        with self.assertRaises(PlaywrightTimeoutError):
            await self._run(pw)
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)

    async def test_stop_failure_after_success_keeps_result(self):
        pw = FakePlaywright(FakePage(html=TRACK_PAGE_HTML))

        async def _broken_stop():
            pw.stop_calls += 1
            raise RuntimeError("Connection closed")

        pw.stop = _broken_stop
        with self.assertLogs("playwright_pool", level="WARNING") as logs:
            result = await self._run(pw)
        self.assertEqual(result.track_name, "Blinding Lights")
        self.assertEqual(pw.browser.close_calls, 1)
        self.assertEqual(pw.stop_calls, 1)
        self.assertIn("playwright stop failed", logs.output[0])


class LauncherTests(unittest.IsolatedAsyncioTestCase):
    def test_local_and_slim_share_the_launcher_base(self):
        self.assertTrue(issubclass(LocalChromiumLauncher, ChromiumLauncher))
        self.assertTrue(issubclass(SlimChromiumLauncher, ChromiumLauncher))
        self.assertFalse(issubclass(SlimChromiumLauncher, LocalChromiumLauncher))

    async def test_local_launch_flags(self):
        pw = FakePlaywright()
        await LocalChromiumLauncher(headless=True).launch(pw)
        kwargs = pw.chromium.launch_kwargs
        self.assertTrue(kwargs["headless"])
        self.assertIn("--no-sandbox", kwargs["args"])
        self.assertIn("--disable-setuid-sandbox", kwargs["args"])
        self.assertNotIn("executable_path", kwargs)

    async def test_slim_launch_uses_executable_path(self):
        pw = FakePlaywright()
        await SlimChromiumLauncher("/opt/chromium/chromium").launch(pw)
        kwargs = pw.chromium.launch_kwargs
        self.assertEqual(kwargs["executable_path"], "/opt/chromium/chromium")
        self.assertIn("--single-process", kwargs["args"])
        self.assertIn("--no-sandbox", kwargs["args"])

    def test_launcher_from_env(self):
        with mock.patch.dict(os.environ, {"PLAYCOUNT_BROWSER_MODE": "slim", "PLAYCOUNT_CHROMIUM_PATH": "/tmp/chromium"}):
            launcher = launcher_from_env()
        self.assertIsInstance(launcher, SlimChromiumLauncher)
        self.assertEqual(launcher.mode, "slim")

        with mock.patch.dict(os.environ, {"PLAYCOUNT_BROWSER_MODE": "local", "PLAYCOUNT_HEADLESS": "0"}):
            launcher = launcher_from_env()
        self.assertEqual(launcher.mode, "local")
        self.assertFalse(launcher.headless)

    def test_slim_without_path_fails_at_startup(self):
        with mock.patch.dict(os.environ, {"PLAYCOUNT_BROWSER_MODE": "slim", "PLAYCOUNT_CHROMIUM_PATH": ""}):
            with self.assertRaises(RuntimeError):
                launcher_from_env()

    def test_unknown_mode_rejected(self):
        with mock.patch.dict(os.environ, {"PLAYCOUNT_BROWSER_MODE": "firefox"}):
            with self.assertRaises(RuntimeError):
                launcher_from_env()

    def test_get_launcher_is_fixed_after_first_call(self):
        with mock.patch.object(playwright_pool, "_default_launcher", None):
            first = playwright_pool.get_launcher()
            self.assertIs(playwright_pool.get_launcher(), first)


class AdmissionSlotTests(unittest.IsolatedAsyncioTestCase):
    async def test_semaphore_bounds_concurrent_sessions(self):
        sem = asyncio.Semaphore(2)
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with admission_slot(sem):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))
        self.assertEqual(peak, 2)

    async def test_no_semaphore_is_noop(self):
        async with admission_slot(None):
            pass


if __name__ == "__main__":
    unittest.main()
