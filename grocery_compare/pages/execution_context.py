"""One isolated browser context + page bound to a session."""
import time
from typing import Any, Optional

import structlog
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import NavigationError, SelectorTimeout

logger = structlog.get_logger()


class ExecutionContext:
    """Wraps a Playwright page and its isolation context.

    Provides the wait, click, fill and navigation helpers used by the
    automation flows, translating Playwright failures into the package's
    error types.
    """

    def __init__(
        self,
        session_id: str,
        page: Page,
        context: BrowserContext,
        timeout_ms: int = 30000,
        navigation_timeout_ms: int = 30000,
    ) -> None:
        """Initialize the execution context.

        Args:
            session_id: Session this context belongs to.
            page: Playwright page instance.
            context: Isolated browser context owning the page's cookie jar.
            timeout_ms: Default wait timeout in milliseconds.
            navigation_timeout_ms: Navigation timeout in milliseconds.
        """
        self.session_id = session_id
        self._page = page
        self._context = context
        self.timeout_ms = timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.is_active = True

    @property
    def page(self) -> Page:
        """Get the underlying Playwright page."""
        return self._page

    @property
    def context(self) -> BrowserContext:
        return self._context

    async def navigate(self, url: str) -> None:
        """Navigate to ``url``.

        Raises:
            NavigationError: On DNS, TLS, timeout or other load failures.
        """
        try:
            await self._page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, f"timed out after {self.navigation_timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(url, e.message) from e

    async def wait_for_selector(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        """Wait for a selector to become visible.

        Args:
            selector: CSS or other selector string.
            timeout_ms: Maximum wait time; the context default when None.

        Raises:
            SelectorTimeout: If the selector did not appear in time.
        """
        timeout = self.timeout_ms if timeout_ms is None else timeout_ms
        started = time.monotonic()
        try:
            await self._page.wait_for_selector(selector, state="visible", timeout=timeout)
        except PlaywrightTimeoutError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise SelectorTimeout(selector, elapsed_ms, timeout) from e

    async def wait_for_network_idle(self, timeout_ms: int) -> bool:
        """Wait for network idle. Returns False if no idle signal arrived in time."""
        try:
            await self._page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    async def click(self, selector: str) -> None:
        started = time.monotonic()
        try:
            await self._page.click(selector, timeout=self.timeout_ms)
        except PlaywrightTimeoutError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise SelectorTimeout(selector, elapsed_ms, self.timeout_ms) from e

    async def fill(self, selector: str, value: str) -> None:
        started = time.monotonic()
        try:
            await self._page.fill(selector, value, timeout=self.timeout_ms)
        except PlaywrightTimeoutError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise SelectorTimeout(selector, elapsed_ms, self.timeout_ms) from e

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self._page.evaluate(expression, arg)

    async def cookies(self) -> list[dict[str, Any]]:
        return [dict(c) for c in await self._context.cookies()]

    def url(self) -> str:
        return self._page.url

    async def content(self) -> str:
        return await self._page.content()

    async def close(self) -> None:
        """Release the page and its isolation context.

        Each close is attempted even if the other fails; failures are logged.
        """
        self.is_active = False
        for name, target in (("page", self._page), ("context", self._context)):
            try:
                await target.close()
            except PlaywrightError as e:
                logger.warning(
                    "context_close_failed",
                    session_id=self.session_id,
                    target=name,
                    error=str(e),
                )
