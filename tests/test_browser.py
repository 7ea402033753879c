"""Tests for the Playwright-backed adapters, driven through a stand-in page.

Validates:
  - Backend factory resolves the closed set of backends.
  - Every read operation returns page state.
  - Playwright exceptions become contract errors.
  - Network interception fulfils, passes through or injects headers.
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from scenario_runner.engine.adapter import InterceptOptions
from scenario_runner.engine.backends import get_backend_factory
from scenario_runner.engine.browser import CamoufoxAdapter, PageAdapter, PlaywrightAdapter
from scenario_runner.engine.captcha import detect_captcha, verification_message
from scenario_runner.engine.errors import BackendUnavailable, ElementNotFound, NavigationFailure, Timeout


class StubElement:
    def __init__(self, text: str = "", frame: StubFrame | None = None):
        self._text = text
        self._frame = frame

    async def is_visible(self):
        return True

    async def text_content(self):
        return self._text

    async def inner_text(self):
        return self._text

    async def content_frame(self):
        return self._frame


class StubFrame:
    def __init__(self, texts: dict[str, str]):
        self.texts = texts

    async def wait_for_selector(self, selector):
        return StubElement(self.texts[selector])


class StubPage:
    """Just enough of playwright's Page for the adapter."""

    def __init__(
        self,
        raises: Exception | None = None,
        status: int = 200,
        visible: set[str] | None = None,
        texts: dict[str, str] | None = None,
        attributes: dict[tuple[str, str], str] | None = None,
        styles: dict[tuple[str, str], str] | None = None,
        values: dict[str, str] | None = None,
        frames: dict[str, StubFrame | None] | None = None,
    ):
        self.raises = raises
        self.status = status
        self.visible = visible or set()
        self.texts = texts or {}
        self.attributes = attributes or {}
        self.styles = styles or {}
        self.values = values or {}
        self.frames = frames or {}
        self.url = "about:blank"
        self.routes: list[tuple] = []
        self.clicked: list[str] = []

    def _maybe_raise(self):
        if self.raises:
            raise self.raises

    async def goto(self, url, wait_until=None, timeout=None):
        self._maybe_raise()
        self.url = url
        return SimpleNamespace(status=self.status)

    async def click(self, selector):
        self._maybe_raise()
        self.clicked.append(selector)

    async def wait_for_selector(self, selector, timeout=None):
        self._maybe_raise()
        return StubElement(frame=self.frames.get(selector))

    async def query_selector(self, selector):
        self._maybe_raise()
        if selector not in self.visible and selector not in self.texts:
            return None
        return StubElement(self.texts.get(selector, ""))

    async def text_content(self, selector):
        self._maybe_raise()
        return self.texts.get(selector)

    async def get_attribute(self, selector, name):
        self._maybe_raise()
        return self.attributes.get((selector, name))

    async def eval_on_selector(self, selector, expression, arg):
        self._maybe_raise()
        return self.styles[(selector, arg)]

    async def input_value(self, selector):
        self._maybe_raise()
        return self.values[selector]

    async def route(self, pattern, handler):
        self._maybe_raise()
        self.routes.append((pattern, handler))


class StubRoute:
    def __init__(self):
        self.fell_back: dict | None = None
        self.fulfilled: dict | None = None

    async def fallback(self, **kwargs):
        self.fell_back = kwargs

    async def fulfill(self, **kwargs):
        self.fulfilled = kwargs


def _adapter(page: StubPage) -> PlaywrightAdapter:
    adapter = PlaywrightAdapter(headless=True, timeout=1000)
    adapter._page = page
    return adapter


# =====================================================================
# Backend selection
# =====================================================================


def test_factory_builds_configured_backend():
    factory = get_backend_factory("Camoufox", headless=True, timeout=2500)

    first, second = factory(), factory()

    assert isinstance(first, CamoufoxAdapter)
    assert first is not second
    assert first._headless is True
    assert first._timeout == 2500
    assert isinstance(get_backend_factory("playwright")(), PlaywrightAdapter)


def test_unknown_backend_rejected():
    with pytest.raises(ValueError, match="selenium"):
        get_backend_factory("selenium")


# =====================================================================
# Error translation
# =====================================================================


class TestErrorTranslation:

    @pytest.mark.asyncio
    async def test_not_launched(self):
        with pytest.raises(BackendUnavailable):
            await PlaywrightAdapter().click("#submit")

    @pytest.mark.asyncio
    async def test_missing_element(self):
        adapter = _adapter(StubPage(raises=PlaywrightError("strict mode violation")))

        with pytest.raises(ElementNotFound, match="#submit"):
            await adapter.click("#submit")

    @pytest.mark.asyncio
    async def test_click_timeout_is_element_not_found(self):
        adapter = _adapter(StubPage(raises=PlaywrightTimeoutError("Timeout 1000ms exceeded")))

        with pytest.raises(ElementNotFound):
            await adapter.click("#submit")

    @pytest.mark.asyncio
    async def test_wait_timeout(self):
        adapter = _adapter(StubPage(raises=PlaywrightTimeoutError("Timeout 1000ms exceeded")))

        with pytest.raises(Timeout):
            await adapter.wait_for_selector("#dashboard", 1000)

    @pytest.mark.asyncio
    async def test_closed_browser(self):
        adapter = _adapter(StubPage(raises=PlaywrightError("Target page, context or browser has been closed")))

        with pytest.raises(BackendUnavailable):
            await adapter.click("#submit")

    @pytest.mark.asyncio
    async def test_navigation_errors(self):
        with pytest.raises(NavigationFailure):
            await _adapter(StubPage(raises=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))).navigate("https://nowhere.test")
        with pytest.raises(NavigationFailure, match="500"):
            await _adapter(StubPage(status=500)).navigate("https://example.test/broken")

    @pytest.mark.asyncio
    async def test_successful_navigation(self):
        page = StubPage()

        await _adapter(page).navigate("https://example.test/login")

        assert page.url == "https://example.test/login"


# =====================================================================
# Reading page state
# =====================================================================


class TestReads:

    @pytest.mark.asyncio
    async def test_text_attribute_style_and_value(self):
        adapter = _adapter(StubPage(
            texts={"h1": "Welcome back"},
            attributes={("#email", "type"): "email"},
            styles={("#banner", "color"): "rgb(255, 0, 0)"},
            values={"#email": "alice@example.test"},
        ))

        assert await adapter.get_text("h1") == "Welcome back"
        assert await adapter.get_text("#empty") == ""
        assert await adapter.get_attribute("#email", "type") == "email"
        assert await adapter.get_attribute("#email", "placeholder") is None
        assert await adapter.get_style("#banner", "color") == "rgb(255, 0, 0)"
        assert await adapter.get_value("#email") == "alice@example.test"

    @pytest.mark.asyncio
    async def test_current_url_follows_navigation(self):
        adapter = _adapter(StubPage())

        await adapter.navigate("https://example.test/dashboard")

        assert await adapter.get_current_url() == "https://example.test/dashboard"

    @pytest.mark.asyncio
    async def test_text_content_of_missing_element_is_empty(self):
        adapter = _adapter(StubPage(texts={".toast": "Saved"}))

        assert await adapter.get_text_content(".toast") == "Saved"
        assert await adapter.get_text_content(".missing") == ""

    @pytest.mark.asyncio
    async def test_frame_content(self):
        adapter = _adapter(StubPage(frames={"#otp-frame": StubFrame({".code": "123456"})}))

        assert await adapter.get_frame_content("#otp-frame", ".code") == "123456"

    @pytest.mark.asyncio
    async def test_element_without_frame(self):
        adapter = _adapter(StubPage(frames={"#not-a-frame": None}))

        with pytest.raises(ElementNotFound, match="#not-a-frame"):
            await adapter.get_frame_content("#not-a-frame", ".code")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call",
        [
            lambda a: a.get_text("h1"),
            lambda a: a.get_attribute("#email", "type"),
            lambda a: a.get_style("#banner", "color"),
            lambda a: a.get_value("#email"),
            lambda a: a.get_text_content(".toast"),
            lambda a: a.get_frame_content("#otp-frame", ".code"),
            lambda a: a.is_visible("#ok"),
        ],
    )
    async def test_read_failures_become_element_not_found(self, call):
        adapter = _adapter(StubPage(raises=PlaywrightError("Element is not attached to the DOM")))

        with pytest.raises(ElementNotFound):
            await call(adapter)

    @pytest.mark.asyncio
    async def test_read_timeout_becomes_element_not_found(self):
        adapter = _adapter(StubPage(raises=PlaywrightTimeoutError("Timeout 1000ms exceeded")))

        with pytest.raises(ElementNotFound):
            await adapter.get_frame_content("#otp-frame", ".code")

    @pytest.mark.asyncio
    async def test_reads_need_a_running_browser(self):
        with pytest.raises(BackendUnavailable):
            await PlaywrightAdapter().get_current_url()


def test_page_adapter_needs_a_browser_launcher():
    with pytest.raises(TypeError):
        PageAdapter()


# =====================================================================
# Network interception
# =====================================================================


class TestInterception:

    @staticmethod
    async def _install(options: InterceptOptions):
        page = StubPage()
        await _adapter(page).intercept_network(options)
        (pattern, handler), = page.routes
        return pattern, handler

    @pytest.mark.asyncio
    async def test_fulfils_matching_requests_with_mock(self):
        options = InterceptOptions.model_validate({"url": "**/api/user", "mockData": {"name": "alice"}, "status": 201})
        pattern, handler = await self._install(options)
        route = StubRoute()

        await handler(route, SimpleNamespace(method="get", headers={}))

        assert pattern == "**/api/user"
        assert route.fulfilled == {"status": 201, "content_type": "application/json", "body": json.dumps({"name": "alice"})}

    @pytest.mark.asyncio
    async def test_other_methods_pass_through(self):
        _, handler = await self._install(InterceptOptions(url="**/api/user"))
        route = StubRoute()

        await handler(route, SimpleNamespace(method="POST", headers={}))

        assert route.fell_back == {}
        assert route.fulfilled is None

    @pytest.mark.asyncio
    async def test_injects_headers(self):
        options = InterceptOptions.model_validate(
            {"url": r".*/api/.*", "regex": True, "method": None, "injectHeaders": {"X-Test": "1"}}
        )
        pattern, handler = await self._install(options)
        route = StubRoute()

        await handler(route, SimpleNamespace(method="DELETE", headers={"accept": "*/*"}))

        assert pattern.match("https://example.test/api/items")
        assert route.fell_back == {"headers": {"accept": "*/*", "X-Test": "1"}}


# =====================================================================
# CAPTCHA detection
# =====================================================================


@pytest.mark.asyncio
async def test_detects_visible_captcha():
    adapter = _adapter(StubPage(visible={"#cf-turnstile"}))

    captcha_type = await detect_captcha(adapter)

    assert captcha_type == "cloudflare_turnstile"
    assert "cloudflare_turnstile" in verification_message(captcha_type)


@pytest.mark.asyncio
async def test_no_captcha():
    assert await detect_captcha(_adapter(StubPage())) is None
    assert verification_message(None) == "Human verification required"
