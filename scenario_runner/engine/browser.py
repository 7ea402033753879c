"""Playwright-driven backends for the automation contract: Chromium and Camoufox."""

from __future__ import annotations

import json
import logging
import re
import sys
from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Request, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import BROWSER_HEADLESS, BROWSER_TIMEOUT
from .adapter import AutomationAdapter, InterceptOptions
from .errors import AdapterError, BackendUnavailable, ElementNotFound, NavigationFailure, Timeout

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_CLOSED_MARKERS = ("has been closed", "Browser closed", "Connection closed")


class PageAdapter(AutomationAdapter):
    """Contract implementation on top of a single Playwright page.

    Subclasses only decide how the browser is launched and torn down.
    """

    name = "page"

    def __init__(self, headless: Optional[bool] = None, timeout: int = BROWSER_TIMEOUT):
        self._headless = headless if headless is not None else BROWSER_HEADLESS
        self._timeout = timeout
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def is_running(self) -> bool:
        return self._page is not None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @abstractmethod
    async def _start_browser(self) -> Browser: ...

    @abstractmethod
    async def _stop_browser(self): ...

    async def launch(self):
        if self.is_running:
            return
        logger.info(f"Launching {self.name} browser (headless={self._headless})...")
        try:
            self._browser = await self._start_browser()
            self._context = await self._browser.new_context(viewport={"width": 1366, "height": 768})
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self._timeout)
        except Exception as e:
            logger.error(f"Failed to launch {self.name} browser: {e}")
            await self.close()
            raise BackendUnavailable(f"Failed to launch {self.name} browser: {e}") from e

    async def close(self):
        logger.info(f"Closing {self.name} browser...")
        try:
            if self._context:
                await self._context.close()
        except Exception as e:
            logger.warning(f"Error closing context: {e}")
        finally:
            self._context = None
            self._page = None

        try:
            await self._stop_browser()
        except Exception as e:
            logger.warning(f"Error closing {self.name}: {e}")
        finally:
            self._browser = None

        logger.info(f"{self.name} browser closed.")

    # ── Error translation ────────────────────────────────────────────────────

    def _require_page(self) -> Page:
        if self._page is None:
            raise BackendUnavailable("Browser is not running.")
        return self._page

    @asynccontextmanager
    async def _translate(self, operation: str, target: str, on_timeout: type[AdapterError] = ElementNotFound):
        """Turn Playwright exceptions into contract errors."""
        try:
            yield
        except AdapterError:
            raise
        except PlaywrightTimeoutError as e:
            raise on_timeout(f"{operation} '{target}' timed out: {e.message}") from e
        except PlaywrightError as e:
            if any(marker in e.message for marker in _CLOSED_MARKERS):
                raise BackendUnavailable(f"{operation} '{target}' failed: {e.message}") from e
            if operation == "navigate":
                raise NavigationFailure(f"Could not navigate to '{target}': {e.message}") from e
            raise ElementNotFound(f"{operation} '{target}' failed: {e.message}") from e

    # ── Contract ─────────────────────────────────────────────────────────────

    async def navigate(self, url: str):
        page = self._require_page()
        async with self._translate("navigate", url, on_timeout=NavigationFailure):
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self._timeout)
        if response is not None and response.status >= 400:
            raise NavigationFailure(f"Navigation to '{url}' returned HTTP {response.status}")
        logger.info(f"Landed on URL: {page.url}")

    async def click(self, selector: str):
        page = self._require_page()
        async with self._translate("click", selector):
            await page.click(selector)

    async def fill(self, selector: str, value: str):
        page = self._require_page()
        async with self._translate("fill", selector):
            await page.fill(selector, value)

    async def get_text(self, selector: str) -> str:
        page = self._require_page()
        async with self._translate("getText", selector):
            text = await page.text_content(selector)
        return text or ""

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        page = self._require_page()
        async with self._translate("getAttribute", selector):
            return await page.get_attribute(selector, name)

    async def get_style(self, selector: str, prop: str) -> str:
        page = self._require_page()
        async with self._translate("getStyle", selector):
            return await page.eval_on_selector(
                selector,
                "(el, prop) => getComputedStyle(el).getPropertyValue(prop)",
                prop,
            )

    async def get_value(self, selector: str) -> str:
        page = self._require_page()
        async with self._translate("getValue", selector):
            return await page.input_value(selector)

    async def get_current_url(self) -> str:
        return self._require_page().url

    async def wait_for_selector(self, selector: str, timeout: int):
        page = self._require_page()
        async with self._translate("waitForSelector", selector, on_timeout=Timeout):
            await page.wait_for_selector(selector, timeout=timeout)

    async def is_visible(self, selector: str) -> bool:
        page = self._require_page()
        async with self._translate("isVisible", selector):
            element = await page.query_selector(selector)
            return await element.is_visible() if element else False

    async def get_text_content(self, selector: str) -> str:
        page = self._require_page()
        async with self._translate("getTextContent", selector):
            element = await page.query_selector(selector)
            if element is None:
                return ""
            return (await element.text_content()) or ""

    async def get_frame_content(self, frame_selector: str, content_selector: str) -> str:
        page = self._require_page()
        async with self._translate("getFrameContent", frame_selector):
            frame_handle = await page.wait_for_selector(frame_selector)
            frame = await frame_handle.content_frame()
            if frame is None:
                raise ElementNotFound(f"Frame '{frame_selector}' not found")
            content = await frame.wait_for_selector(content_selector)
            return await content.inner_text()

    async def intercept_network(self, options: InterceptOptions):
        page = self._require_page()
        pattern = re.compile(options.url) if options.regex else options.url

        async def handle(route: Route, request: Request):
            if not options.matches_method(request.method):
                await route.fallback()
            elif options.inject_headers:
                await route.fallback(headers={**request.headers, **options.inject_headers})
            else:
                await route.fulfill(
                    status=options.status,
                    content_type=options.content_type,
                    body=json.dumps(options.mock_data),
                )

        async with self._translate("interceptNetwork", options.url):
            await page.route(pattern, handle)
        logger.info(f"Intercepting {options.method or 'ANY'} {options.url}")


class PlaywrightAdapter(PageAdapter):
    """Stock Chromium driven by Playwright."""

    name = "playwright"

    def __init__(self, headless: Optional[bool] = None, timeout: int = BROWSER_TIMEOUT):
        super().__init__(headless, timeout)
        self._playwright = None

    async def _start_browser(self) -> Browser:
        self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self._headless)

    async def _stop_browser(self):
        try:
            if self._browser:
                await self._browser.close()
        finally:
            if self._playwright:
                await self._playwright.stop()
            self._playwright = None


class CamoufoxAdapter(PageAdapter):
    """Camoufox anti-detection Firefox, for sites that challenge stock browsers."""

    name = "camoufox"

    def __init__(self, headless: Optional[bool] = None, timeout: int = BROWSER_TIMEOUT):
        super().__init__(headless, timeout)
        self._camoufox = None

    async def _start_browser(self) -> Browser:
        from camoufox.async_api import AsyncCamoufox

        self._camoufox = AsyncCamoufox(
            headless=self._headless,
            humanize=True,
            i_know_what_im_doing=True,
            config={"forceScopeAccess": True},
            disable_coop=True,
        )
        return await self._camoufox.__aenter__()

    async def _stop_browser(self):
        if self._camoufox:
            try:
                await self._camoufox.__aexit__(None, None, None)
            finally:
                self._camoufox = None
