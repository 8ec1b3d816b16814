import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from playwright.async_api import async_playwright, Browser, Page, Playwright

logger = logging.getLogger(__name__)

VIEWPORT = {"width": 1280, "height": 800}
NAVIGATION_TIMEOUT_MS = 30000
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

MAX_CONCURRENT_BROWSERS = int(os.getenv("PLAYCOUNT_MAX_BROWSERS", "2"))


def _launch_args() -> list[str]:
    args: list[str] = ["--no-sandbox", "--disable-setuid-sandbox"]
    # Render/Linux 対策: /dev/shm が小さいコンテナでのクラッシュ回避
    if sys.platform.startswith("linux"):
        args += ["--disable-dev-shm-usage"]
    return args


class ChromiumLauncher:
    """Launch strategy: `mode` for logs, `launch(pw)` returns a started Browser."""

    mode = ""

    def __init__(self, headless: bool = True):
        self.headless = headless

    def launch_args(self) -> list[str]:
        return _launch_args()

    async def launch(self, pw: Playwright) -> Browser:
        return await pw.chromium.launch(headless=self.headless, args=self.launch_args())


class LocalChromiumLauncher(ChromiumLauncher):
    """Playwright-managed Chromium (`playwright install chromium`)."""

    mode = "local"


class SlimChromiumLauncher(ChromiumLauncher):
    """Minimised Chromium build at an explicit path, for small serverless hosts."""

    mode = "slim"

    def __init__(self, executable_path: str, headless: bool = True):
        super().__init__(headless=headless)
        if not executable_path:
            raise RuntimeError(
                "PLAYCOUNT_CHROMIUM_PATH must point to a Chromium binary when PLAYCOUNT_BROWSER_MODE=slim"
            )
        self.executable_path = executable_path

    def launch_args(self) -> list[str]:
        return _launch_args() + ["--single-process", "--no-zygote", "--disable-gpu"]

    async def launch(self, pw: Playwright) -> Browser:
        return await pw.chromium.launch(
            executable_path=self.executable_path,
            headless=self.headless,
            args=self.launch_args(),
        )


def launcher_from_env() -> ChromiumLauncher:
    """Pick the launch strategy once, at process startup."""
    mode = os.getenv("PLAYCOUNT_BROWSER_MODE", "local").strip().lower()
    headless = os.getenv("PLAYCOUNT_HEADLESS", "1") != "0"
    if mode == "slim":
        return SlimChromiumLauncher(os.getenv("PLAYCOUNT_CHROMIUM_PATH", ""), headless=headless)
    if mode != "local":
        raise RuntimeError(f"Unknown PLAYCOUNT_BROWSER_MODE: {mode!r} (expected 'local' or 'slim')")
    return LocalChromiumLauncher(headless=headless)


_default_launcher: Optional[ChromiumLauncher] = None


def get_launcher() -> ChromiumLauncher:
    global _default_launcher
    if _default_launcher is None:
        _default_launcher = launcher_from_env()
        logger.info(f"[PW_POOL] browser mode={_default_launcher.mode}")
    return _default_launcher


def new_admission_semaphore(limit: int | None = None) -> asyncio.Semaphore:
    return asyncio.Semaphore(limit or MAX_CONCURRENT_BROWSERS)


@asynccontextmanager
async def admission_slot(semaphore: Optional[asyncio.Semaphore]) -> AsyncIterator[None]:
    """Bound the number of live browser processes; no-op without a semaphore."""
    if semaphore is None:
        yield
        return
    async with semaphore:
        yield


@asynccontextmanager
async def browser_session(
    launcher: Optional[ChromiumLauncher] = None,
    playwright_factory: Callable = async_playwright,
) -> AsyncIterator[Page]:
    """
    1リクエスト = 1ブラウザ。共有もプールもしない。
    Yields a ready page; the browser and driver are closed on every exit path.
    """
    launcher = launcher or get_launcher()
    pw = await playwright_factory().start()
    browser: Optional[Browser] = None
    try:
        browser = await launcher.launch(pw)
        logger.info(f"[PW_POOL] launch browser mode={launcher.mode}")
        context = await browser.new_context(viewport=VIEWPORT, user_agent=USER_AGENT)
        page = await context.new_page()
        page.set_default_navigation_timeout(NAVIGATION_TIMEOUT_MS)
        yield page
    finally:
        await _teardown(pw, browser)


async def _teardown(pw: Playwright, browser: Optional[Browser]) -> None:
    # Closing the browser closes its contexts and pages too
    if browser is not None:
        try:
            await browser.close()
            logger.info("[PW_POOL] close browser")
        except Exception as e:
            logger.warning(f"[PW_POOL] browser close failed: {e}")
    try:
        await pw.stop()
    except Exception as e:
        logger.warning(f"[PW_POOL] playwright stop failed: {e}")
