"""
PageRenderer - one Chromium instance per watch session.

Each session gets its own Playwright driver, browser and isolated context.
A render attempt is split in two phases so the caller can bound navigation
separately from extraction:

1. navigate: load the URL and wait for the network to go quiet
2. extract: let scripts settle, scroll lazy content into existence and read
   the order button's state
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
)

from pagewatch.core.contracts import ElementSnapshot, EngineDisconnected, EngineLaunchFailure

logger = logging.getLogger("pagewatch.renderer")

# The watched element is fixed for this version.
TARGET_SELECTOR = ".order__button.btn-main"
HIDDEN_CLASS = "hide"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

AUTO_SCROLL_JS = """
async ({distance, intervalMs, maxSteps}) => {
    await new Promise((resolve) => {
        let totalHeight = 0;
        let steps = 0;
        let lastY = -1;
        const timer = setInterval(() => {
            const scrollHeight = document.body ? document.body.scrollHeight : 0;
            window.scrollBy(0, distance);
            totalHeight += distance;
            steps += 1;
            const y = window.scrollY;
            const stalled = y === lastY;
            lastY = y;
            if (stalled || totalHeight >= scrollHeight || steps >= maxSteps) {
                clearInterval(timer);
                resolve();
            }
        }, intervalMs);
    });
    return window.scrollY;
}
"""

EXTRACT_TARGET_JS = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return {found: false};
    return {
        found: true,
        classes: Array.from(el.classList),
        text: (el.textContent || '').trim(),
        ariaLabel: el.getAttribute('aria-label'),
        dataLink: el.getAttribute('data-link'),
    };
}
"""


def snapshot_from_element(payload: Optional[dict[str, Any]]) -> Optional[ElementSnapshot]:
    """Absent and hidden buttons both read as None."""
    if not payload or not payload.get("found"):
        return None
    if HIDDEN_CLASS in (payload.get("classes") or ()):
        return None
    return ElementSnapshot.from_payload(payload)


@dataclass(frozen=True)
class RendererConfig:
    """Configuration for PageRenderer."""
    headless: bool = True
    executable_path: Optional[str] = None
    sandbox_enabled: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1366
    viewport_height: int = 768
    wait_until: str = "networkidle"
    post_load_pause_ms: int = 1_000
    post_scroll_pause_ms: int = 2_000
    scroll_step_px: int = 500
    scroll_interval_ms: int = 100
    scroll_max_steps: int = 400


@dataclass
class RenderHandle:
    """Resources owned by a single watch session."""
    url: str
    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    closed: bool = field(default=False)


class PageRenderer:
    """
    Renders the watched page and reads the order button.

    The renderer itself is stateless and can be shared between sessions;
    everything a session owns lives in its RenderHandle.
    """

    def __init__(self, config: Optional[RendererConfig] = None) -> None:
        self.config = config or RendererConfig()

    def _launch_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "headless": self.config.headless,
            "chromium_sandbox": self.config.sandbox_enabled,
        }
        if self.config.executable_path:
            options["executable_path"] = self.config.executable_path
        if not self.config.sandbox_enabled:
            options["args"] = ["--no-sandbox", "--disable-setuid-sandbox"]
        return options

    async def open(self, url: str) -> RenderHandle:
        """
        Launch a fresh browser with an isolated context for one session.

        Args:
            url: The page the session will watch

        Returns:
            RenderHandle owning the driver, browser, context and page

        Raises:
            EngineLaunchFailure: if any part of the engine could not start
        """
        logger.info("[Renderer] Launching browser...")
        playwright: Optional[Playwright] = None
        browser: Optional[Browser] = None
        try:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(**self._launch_options())
            context = await browser.new_context(
                user_agent=self.config.user_agent,
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                },
            )
            page = await context.new_page()
        except asyncio.CancelledError:
            await self._teardown(browser=browser, playwright=playwright)
            raise
        except Exception as e:
            logger.error(f"[Renderer] Browser launch failed: {e}")
            await self._teardown(browser=browser, playwright=playwright)
            raise EngineLaunchFailure(f"Failed to launch browser: {e}") from e

        logger.info("[Renderer] ✓ Browser ready")
        return RenderHandle(
            url=url,
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
        )

    async def navigate(self, handle: RenderHandle) -> None:
        """
        Load the watched URL and wait for network activity to settle.

        Playwright's own navigation timeout is disabled; the caller bounds
        this call.

        Raises:
            EngineDisconnected: if the browser process has gone away
        """
        if handle.closed or not handle.browser.is_connected():
            raise EngineDisconnected("Browser is no longer connected")

        logger.info(f"[Renderer] Navigating to {handle.url}")
        await handle.page.goto(handle.url, wait_until=self.config.wait_until, timeout=0)

    async def extract(self, handle: RenderHandle) -> Optional[ElementSnapshot]:
        """
        Force lazy content to load and read the order button.

        Returns:
            ElementSnapshot, or None when the button is absent or hidden
        """
        await asyncio.sleep(self.config.post_load_pause_ms / 1000.0)
        await self._auto_scroll(handle.page)
        await asyncio.sleep(self.config.post_scroll_pause_ms / 1000.0)

        payload = await handle.page.evaluate(EXTRACT_TARGET_JS, TARGET_SELECTOR)
        return snapshot_from_element(payload)

    async def _auto_scroll(self, page: Page) -> None:
        await page.evaluate(
            AUTO_SCROLL_JS,
            {
                "distance": self.config.scroll_step_px,
                "intervalMs": self.config.scroll_interval_ms,
                "maxSteps": self.config.scroll_max_steps,
            },
        )

    async def close(self, handle: RenderHandle) -> None:
        """Release everything the handle owns. Safe to call more than once."""
        if handle.closed:
            return
        handle.closed = True
        logger.info("[Renderer] Closing browser...")
        await self._teardown(
            context=handle.context,
            browser=handle.browser,
            playwright=handle.playwright,
        )
        logger.info("[Renderer] ✓ Browser closed")

    async def _teardown(
        self,
        context: Optional[BrowserContext] = None,
        browser: Optional[Browser] = None,
        playwright: Optional[Playwright] = None,
    ) -> None:
        if context is not None:
            try:
                await context.close()
            except Exception as e:
                logger.warning(f"[Renderer] Context close failed: {e}")
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"[Renderer] Browser close failed: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"[Renderer] Playwright stop failed: {e}")
