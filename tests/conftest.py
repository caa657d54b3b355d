"""Shared fixtures: in-process stand-ins for Playwright objects."""
from typing import Any, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from grocery_compare.browser_session import VARIANT_SCRIPT, BrowserSessionRegistry
from grocery_compare.models import AutomationConfig
from grocery_compare.pages.cart_page import CART_SCRIPT
from grocery_compare.session_store import InMemorySessionCache, JsonFileSessionStore, SessionRepository


class FakeRequest:
    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type


class FakeRoute:
    """Records whether a request was aborted or continued."""

    def __init__(self, resource_type: str) -> None:
        self.request = FakeRequest(resource_type)
        self.outcome: Optional[str] = None

    async def abort(self) -> None:
        self.outcome = "abort"

    async def continue_(self) -> None:
        self.outcome = "continue"


class FakeBrowserState:
    """Knobs and the interaction trace shared by every fake page."""

    def __init__(self) -> None:
        self.trace: list[tuple] = []
        self.missing_selectors: set[str] = set()
        self.failing_urls: dict[str, Exception] = {}
        self.network_idle = True
        self.cart_result: Any = {"items": [], "subtotal": "₹0", "deliveryFee": "FREE", "total": "₹0"}
        self.variant_found = True
        self.cookies_after_action: list[dict[str, Any]] = [
            {"name": "auth", "value": "token", "domain": ".blinkit.com", "path": "/"}
        ]


class FakePage:
    def __init__(self, state: FakeBrowserState, context: "FakeContext") -> None:
        self._state = state
        self._context = context
        self.url = "about:blank"
        self.closed = False

    async def goto(self, url: str, wait_until: str = "load", timeout: int = 0) -> None:
        self._state.trace.append(("goto", url))
        if url in self._state.failing_urls:
            raise self._state.failing_urls[url]
        self.url = url

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: int = 0) -> None:
        self._state.trace.append(("wait", selector))
        if selector in self._state.missing_selectors:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def wait_for_load_state(self, state: str = "load", timeout: int = 0) -> None:
        if not self._state.network_idle:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    async def click(self, selector: str, timeout: int = 0) -> None:
        self._state.trace.append(("click", selector))
        if selector in self._state.missing_selectors:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")
        self._context.jar = list(self._state.cookies_after_action)

    async def fill(self, selector: str, value: str, timeout: int = 0) -> None:
        self._state.trace.append(("fill", selector, value))
        if selector in self._state.missing_selectors:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if expression == CART_SCRIPT:
            self._state.trace.append(("extract_cart",))
            return self._state.cart_result
        if expression == VARIANT_SCRIPT:
            self._state.trace.append(("variant", arg[1]))
            return self._state.variant_found
        self._state.trace.append(("evaluate", expression))
        return None

    async def content(self) -> str:
        return f"<html><body>{self.url}</body></html>"

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, state: FakeBrowserState, options: dict[str, Any]) -> None:
        self._state = state
        self.options = options
        self.jar: list[dict[str, Any]] = []
        self.route_handler = None
        self.pages: list[FakePage] = []
        self.closed = False

    async def route(self, pattern: str, handler) -> None:
        self.route_handler = handler

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.jar.extend(cookies)

    async def cookies(self) -> list[dict[str, Any]]:
        return list(self.jar)

    async def new_page(self) -> FakePage:
        page = FakePage(self._state, self)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, state: Optional[FakeBrowserState] = None) -> None:
        self.state = state or FakeBrowserState()
        self.contexts: list[FakeContext] = []
        self.closed = False

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(self.state, options)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fast_config():
    """Automation config with no waiting."""
    return AutomationConfig(
        timeout_ms=100,
        navigation_timeout_ms=100,
        login_settle_ms=0,
        otp_settle_ms=0,
        add_to_cart_settle_ms=0,
        cart_settle_ms=0,
        network_idle_timeout_ms=10,
    )


@pytest.fixture
def fake_browser():
    return FakeBrowser()


@pytest.fixture
def registry(fast_config, fake_browser):
    async def launcher():
        return fake_browser

    return BrowserSessionRegistry(fast_config, launcher=launcher)


@pytest.fixture
def repository(tmp_path):
    return SessionRepository(JsonFileSessionStore(tmp_path / "sessions"), InMemorySessionCache())
