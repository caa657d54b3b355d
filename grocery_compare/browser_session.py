"""Browser session registry.

One shared Chromium process, lazily launched, and at most one isolated
execution context per session id. Every DOM command for a session goes through
the registry and is serialized on that session's lock; commands for different
sessions never wait on each other.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog
from playwright.async_api import Browser, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import RegistryCapacityError, SessionNotFound
from .models import AutomationConfig, SessionData
from .pages.execution_context import ExecutionContext

logger = structlog.get_logger()

# Resource types aborted in every context for faster page loads
BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "stylesheet", "media"})

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]

COOKIE_FIELDS = ("name", "value", "url", "domain", "path", "expires", "httpOnly", "secure", "sameSite")

# First element (DOM order) whose text contains the label, case-sensitive
VARIANT_SCRIPT = """
([selector, label]) => {
  for (const el of document.querySelectorAll(selector)) {
    if ((el.textContent || '').includes(label)) {
      el.click();
      return true;
    }
  }
  return false;
}
"""


class KeyedLock:
    """One asyncio.Lock per key, held only while someone uses it.

    ``async with locks(key):`` serializes work on ``key``. The key is
    forgotten once its last holder or waiter leaves.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def __call__(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def restorable_cookies(cookies: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Filter persisted cookies down to records Playwright can replay.

    A cookie needs a name, a value and either a url or a domain.
    """
    restorable = []
    for cookie in cookies or []:
        if not isinstance(cookie, dict) or not cookie.get("name") or "value" not in cookie:
            continue
        if not (cookie.get("url") or cookie.get("domain")):
            continue
        record = {k: cookie[k] for k in COOKIE_FIELDS if cookie.get(k) is not None}
        if "url" not in record:
            record.setdefault("path", "/")
        restorable.append(record)
    return restorable


async def _block_non_essential(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserSessionRegistry:
    """Maps session ids to live execution contexts.

    The browser is started on first use (or explicitly with ``start``) and
    released with ``shutdown``. Pass ``launcher`` to supply the browser from
    elsewhere, e.g. a remote endpoint or a test double.
    """

    def __init__(
        self,
        config: AutomationConfig,
        launcher: Optional[Callable[[], Awaitable[Browser]]] = None,
    ) -> None:
        self.config = config
        self._launcher = launcher
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._browser_lock = asyncio.Lock()
        self._contexts: dict[str, ExecutionContext] = {}
        self._locks = KeyedLock()
        self._pending = 0

    async def __aenter__(self) -> "BrowserSessionRegistry":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    @property
    def active_count(self) -> int:
        return len(self._contexts)

    def is_active(self, session_id: str) -> bool:
        execution = self._contexts.get(session_id)
        return execution is not None and execution.is_active

    async def start(self) -> Browser:
        """Launch the shared browser if it is not running yet."""
        async with self._browser_lock:
            if self._browser is None:
                if self._launcher is not None:
                    self._browser = await self._launcher()
                else:
                    self._browser = await self._launch_chromium()
                logger.info("browser_started", headless=self.config.headless)
            return self._browser

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(PlaywrightError),
        reraise=True,
    )
    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=BROWSER_ARGS,
        )

    async def shutdown(self) -> None:
        """Close every context, then the browser."""
        for session_id in list(self._contexts):
            await self.close(session_id)

        async with self._browser_lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.warning("browser_close_failed", error=str(e))
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("browser_stopped")

    async def restore_or_create(self, session_id: str, session: SessionData) -> ExecutionContext:
        """Return the active context for ``session_id``, creating it if needed.

        A new context replays the session's cookies and, when the session has a
        last known URL, navigates there before returning.

        Raises:
            NavigationError: If navigating to the saved URL fails. The
                half-built context is closed and not registered.
            RegistryCapacityError: If ``max_contexts`` contexts are open.
        """
        async with self._locks(session_id):
            existing = self._contexts.get(session_id)
            if existing is not None and existing.is_active:
                return existing

            limit = self.config.max_contexts
            if limit is not None and len(self._contexts) + self._pending >= limit:
                logger.warning("context_limit_reached", limit=limit, session_id=session_id)
                raise RegistryCapacityError(limit)

            self._pending += 1
            try:
                execution = await self._create_context(session_id, session)
            finally:
                self._pending -= 1

            self._contexts[session_id] = execution
            logger.info(
                "context_created",
                session_id=session_id,
                platform=str(session.platform),
                active_contexts=len(self._contexts),
            )
            return execution

    async def _create_context(self, session_id: str, session: SessionData) -> ExecutionContext:
        browser = await self.start()
        context = await browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            user_agent=self.config.user_agent,
            locale="en-IN",
            service_workers="block",  # Required for route interception
        )
        try:
            await context.route("**/*", _block_non_essential)

            cookies = restorable_cookies(session.cookies)
            if cookies:
                await context.add_cookies(cookies)

            page = await context.new_page()
        except BaseException:
            await context.close()
            raise

        execution = ExecutionContext(
            session_id,
            page,
            context,
            timeout_ms=self.config.timeout_ms,
            navigation_timeout_ms=self.config.navigation_timeout_ms,
        )
        if session.current_url:
            try:
                await execution.navigate(session.current_url)
            except BaseException:
                await execution.close()
                raise
        return execution

    async def close(self, session_id: str) -> None:
        """Release the context for ``session_id``. Unknown ids are a no-op."""
        async with self._locks(session_id):
            execution = self._contexts.pop(session_id, None)
            if execution is None:
                return
            await execution.close()
        logger.info("context_closed", session_id=session_id, active_contexts=len(self._contexts))

    def _require(self, session_id: str) -> ExecutionContext:
        execution = self._contexts.get(session_id)
        if execution is None or not execution.is_active:
            raise SessionNotFound(session_id)
        return execution

    async def navigate(self, session_id: str, url: str) -> None:
        async with self._locks(session_id):
            await self._require(session_id).navigate(url)

    async def click(self, session_id: str, selector: str) -> None:
        async with self._locks(session_id):
            await self._require(session_id).click(selector)

    async def type_text(self, session_id: str, selector: str, text: str) -> None:
        async with self._locks(session_id):
            await self._require(session_id).fill(selector, text)

    async def wait_for_selector(
        self, session_id: str, selector: str, timeout_ms: Optional[int] = None
    ) -> None:
        async with self._locks(session_id):
            await self._require(session_id).wait_for_selector(selector, timeout_ms)

    async def wait_for_network_idle(self, session_id: str, timeout_ms: int) -> bool:
        async with self._locks(session_id):
            return await self._require(session_id).wait_for_network_idle(timeout_ms)

    async def evaluate(self, session_id: str, expression: str, arg: Any = None) -> Any:
        async with self._locks(session_id):
            return await self._require(session_id).evaluate(expression, arg)

    async def click_variant(self, session_id: str, selector: str, label: str) -> bool:
        """Click the first ``selector`` match whose text contains ``label``.

        Returns:
            True if an element was clicked, False if none matched.
        """
        return bool(await self.evaluate(session_id, VARIANT_SCRIPT, [selector, label]))

    async def get_cookies(self, session_id: str) -> list[dict[str, Any]]:
        async with self._locks(session_id):
            return await self._require(session_id).cookies()

    async def get_current_url(self, session_id: str) -> str:
        async with self._locks(session_id):
            return self._require(session_id).url()

    async def get_snapshot(self, session_id: str) -> str:
        async with self._locks(session_id):
            return await self._require(session_id).content()
