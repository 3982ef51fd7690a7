# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PlaywrightRenderer — shared Chromium with one isolated BrowserContext per render.

A single Chromium process hosts every render of a run; each ``open()`` gets a
fresh BrowserContext (no cookies, storage or service workers shared between
pages) that is destroyed by ``PlaywrightArtifact.close()``. How many renders
run at once is decided by the scheduler's render pool, not here.

Lifecycle follows the ``AsyncContextManager`` pattern::

    async with PlaywrightRenderer(BrowserConfig()) as renderer:
        artifact = await renderer.open("https://example.com", RenderOptions())
        try:
            page_type = await artifact.evaluate("window.pageType")
        finally:
            await artifact.close()
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import suppress
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import NavigationError, RenderError, RenderTimeoutError
from .renderer import RenderOptions

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

_AUTO_INSTALL_TIMEOUT = 300  # seconds, Chromium is a ~140MB download


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    locale: str = "ko-KR"
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str = DEFAULT_USER_AGENT
    settle_quiet_ms: int = 300  # DOM mutation quiet period (ms)
    settle_max_ms: int = 3000  # Maximum settle wait (ms)


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return hardened Chromium launch arguments."""
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--deny-permission-prompts",
        "--noerrdialogs",
    ]


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium``. Returns True on success."""
    logger.info("Chromium not found, running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
    except (OSError, TimeoutError):
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False
    if proc.returncode != 0:
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    logger.info("Chromium installed successfully")
    return True


# Resolves once the DOM has been quiet for quietMs, or after maxMs.
_DOM_SETTLE_JS = """([quietMs, maxMs]) => new Promise(resolve => {
  let quietTimer = null;
  const finish = (reason) => {
    observer.disconnect();
    clearTimeout(quietTimer);
    clearTimeout(maxTimer);
    resolve(reason);
  };
  const resetQuiet = () => {
    clearTimeout(quietTimer);
    quietTimer = setTimeout(() => finish('quiet'), quietMs);
  };
  const observer = new MutationObserver(resetQuiet);
  observer.observe(document.documentElement, {childList: true, subtree: true, characterData: true});
  resetQuiet();
  const maxTimer = setTimeout(() => finish('timeout'), maxMs);
})"""


class PlaywrightArtifact:
    """A rendered page inside its own BrowserContext."""

    def __init__(self, context: BrowserContext, page: Page, screenshot: bytes, http_status: int | None) -> None:
        self._context = context
        self._page = page
        self.url = page.url
        self.screenshot = screenshot
        self.http_status = http_status
        self._closed = False

    async def evaluate(self, expression: str) -> Any:
        """Evaluate a read-only JS expression against the loaded page."""
        if self._closed:
            raise RuntimeError("artifact already closed")
        return await self._page.evaluate(expression)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with suppress(PlaywrightError):
            await self._context.close()


class PlaywrightRenderer:
    """PageRenderer backed by a shared headless Chromium."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self._config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> PlaywrightRenderer:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        args = chromium_launch_args(self._config)
        try:
            self._browser = await self._playwright.chromium.launch(headless=self._config.headless, args=args)
        except PlaywrightError as exc:
            if "executable doesn't exist" in str(exc).lower() and await _auto_install_chromium():
                self._browser = await self._playwright.chromium.launch(headless=self._config.headless, args=args)
            else:
                await self._playwright.stop()
                self._playwright = None
                raise RenderError(
                    "Chromium could not be launched. Please run: playwright install chromium"
                ) from exc
        logger.info("PlaywrightRenderer started (headless=%s)", self._config.headless)

    async def shutdown(self) -> None:
        if self._browser:
            with suppress(PlaywrightError):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(PlaywrightError):
                await self._playwright.stop()
            self._playwright = None
        logger.info("PlaywrightRenderer shut down")

    # ── PageRenderer ─────────────────────────────────────────────────

    async def open(self, url: str, options: RenderOptions) -> PlaywrightArtifact:
        if self._browser is None:
            raise RuntimeError("PlaywrightRenderer not started. Use async with or call start().")

        context = await self._browser.new_context(
            viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
            locale=self._config.locale,
            user_agent=self._config.user_agent,
            service_workers="block",
            permissions=[],
            accept_downloads=False,
        )
        try:
            page = await context.new_page()
            response = await page.goto(url, wait_until="load", timeout=options.timeout * 1000)
            if response is not None and response.status >= 400:
                raise NavigationError(f"HTTP {response.status}", url=url)
            await self._wait_for_dom_settle(page)
            screenshot = await page.screenshot(full_page=options.full_page_screenshot)
        except PlaywrightTimeoutError as exc:
            await _close_quietly(context)
            raise RenderTimeoutError(f"navigation timed out: {exc}", url=url) from exc
        except PlaywrightError as exc:
            await _close_quietly(context)
            raise NavigationError(f"navigation failed: {exc}", url=url) from exc
        except BaseException:
            await _close_quietly(context)
            raise

        return PlaywrightArtifact(context, page, screenshot, response.status if response else None)

    async def _wait_for_dom_settle(self, page: Page) -> None:
        try:
            reason = await page.evaluate(
                _DOM_SETTLE_JS,
                [self._config.settle_quiet_ms, self._config.settle_max_ms],
            )
            logger.debug("DOM settle on %s: %s", page.url, reason)
        except PlaywrightError:
            logger.debug("DOM settle failed, continuing", exc_info=True)


async def _close_quietly(context: BrowserContext) -> None:
    with suppress(PlaywrightError):
        await context.close()
