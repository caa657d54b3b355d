"""Session state machine driving login, OTP and cart building.

UNAUTHENTICATED -> OTP_PENDING -> AUTHENTICATED -> CART_BUILDING -> CART_READY,
with FAILED reachable from any of them. Every browser command goes through the
BrowserSessionRegistry; session state goes through the SessionRepository.
"""
import asyncio
import functools
import uuid
from typing import Any, Optional

import structlog
from playwright.async_api import Error as PlaywrightError

from .browser_session import BrowserSessionRegistry, KeyedLock
from .errors import (
    CartBuildingError,
    GroceryCompareError,
    LoginInitiationError,
    OtpSubmissionError,
    RegistryCapacityError,
    SessionNotAuthenticated,
    SessionNotFound,
    ValidationError,
)
from .models import AutomationConfig, CartDetails, Platform, PlatformConfig, SessionData, SessionState
from .pages.cart_page import extract_cart, product_id_from_url
from .platforms import PlatformRegistry
from .session_store import SessionRepository
from .validation import is_valid_phone

logger = structlog.get_logger()

# Failures inside a browser sequence that mark the session FAILED
STEP_ERRORS = (GroceryCompareError, PlaywrightError)


def mask_phone(phone_number: str) -> str:
    """Keep the first two and last two digits for log correlation."""
    if len(phone_number) <= 4:
        return "*" * len(phone_number)
    return phone_number[:2] + "*" * (len(phone_number) - 4) + phone_number[-2:]


def variant_for(variants: Optional[dict[str, str]], product_id: str, index: int) -> Optional[str]:
    """Look up the desired variant by product id, then by URL position."""
    if not variants:
        return None
    return variants.get(product_id) or variants.get(str(index)) or None


class BaseAutomation:
    """Session bookkeeping shared by the browser-backed and demo flows."""

    def __init__(self, repository: SessionRepository, platforms: PlatformRegistry) -> None:
        self.repository = repository
        self.platforms = platforms
        self._operation_locks = KeyedLock()

    def _new_session(self, phone_number: str, platform: Any, prefix: str = "") -> tuple[SessionData, PlatformConfig]:
        if not is_valid_phone(phone_number):
            raise ValidationError("Invalid phone number format")
        platform_config = self.platforms.resolve(platform)
        session = SessionData(
            id=f"{prefix}{uuid.uuid4().hex}",
            phone_number=phone_number,
            platform=platform_config.name,
        )
        return session, platform_config

    async def _load(self, session_id: str) -> SessionData:
        session = await self.repository.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def get_session(self, session_id: str) -> SessionData:
        """Return the stored session.

        Raises:
            SessionNotFound: If neither cache nor store holds it.
        """
        return await self._load(session_id)


class GroceryAutomation(BaseAutomation):
    """Drives one grocery platform per session through a shared browser.

    Operations on the same session are serialized; different sessions run
    concurrently, each in its own browser context.
    """

    def __init__(
        self,
        registry: BrowserSessionRegistry,
        repository: SessionRepository,
        platforms: PlatformRegistry,
        config: AutomationConfig,
    ) -> None:
        super().__init__(repository, platforms)
        self.registry = registry
        self.config = config

    async def _settle(self, session_id: str, fallback_ms: int) -> None:
        """Wait for network idle; sleep the fallback delay only without an idle signal."""
        if await self.registry.wait_for_network_idle(session_id, self.config.network_idle_timeout_ms):
            return
        logger.debug("settle_fallback", session_id=session_id, delay_ms=fallback_ms)
        await asyncio.sleep(fallback_ms / 1000)

    async def _capture(self, session_id: str) -> dict[str, Any]:
        return {
            "cookies": await self.registry.get_cookies(session_id),
            "current_url": await self.registry.get_current_url(session_id),
            "dom_snapshot": await self.registry.get_snapshot(session_id),
        }

    async def _mark_failed(self, session: SessionData, step: str, cause: BaseException) -> None:
        """Record FAILED on the last committed record; nothing captured mid-sequence is kept."""
        failed = session.evolve(state=SessionState.FAILED, failure_reason=f"{step}: {cause}")
        try:
            await self.repository.save(failed)
        except (OSError, ValueError) as e:
            logger.error("session_failure_not_persisted", session_id=session.id, step=step, error=str(e))

    async def initiate_login(self, phone_number: str, platform: Platform | str) -> str:
        """Start a login and leave the session waiting for the OTP.

        Args:
            phone_number: 10-digit mobile number.
            platform: Platform name.

        Returns:
            The new session id.

        Raises:
            ValidationError: If the phone number is malformed. No session is created.
            UnsupportedPlatform: If the platform is not configured.
            LoginInitiationError: If any browser step fails.
        """
        session, platform_config = self._new_session(phone_number, platform)
        selectors = platform_config.selectors
        session_id = session.id
        await self.repository.save(session)

        logger.info(
            "login_started",
            session_id=session_id,
            platform=str(platform_config.name),
            phone=mask_phone(phone_number),
        )

        async with self._operation_locks(session_id):
            step = "open_context"
            try:
                await self.registry.restore_or_create(session_id, session)

                step = "navigate"
                await self.registry.navigate(session_id, platform_config.base_url)

                step = "login_button"
                await self.registry.wait_for_selector(session_id, selectors.login_button)
                await self.registry.click(session_id, selectors.login_button)

                step = "phone_input"
                await self.registry.wait_for_selector(session_id, selectors.phone_input)
                await self.registry.type_text(session_id, selectors.phone_input, phone_number)

                step = "submit"
                await self.registry.click(session_id, selectors.submit_button)

                step = "settle"
                await self._settle(session_id, self.config.login_settle_ms)

                step = "capture_state"
                captured = await self._capture(session_id)
            except RegistryCapacityError as e:
                await self._mark_failed(session, step, e)
                raise
            except STEP_ERRORS as e:
                logger.error("login_failed", session_id=session_id, step=step, error=str(e))
                await self._mark_failed(session, step, e)
                await self.registry.close(session_id)
                raise LoginInitiationError(session_id, step, e) from e

            session = session.evolve(**captured, state=SessionState.OTP_PENDING)
            await self.repository.save(session)

        logger.info("otp_requested", session_id=session_id, platform=str(platform_config.name))
        return session_id

    async def submit_otp(self, session_id: str, otp: str) -> SessionData:
        """Enter the OTP and mark the session authenticated.

        Raises:
            SessionNotFound: If the session is unknown.
            OtpSubmissionError: If any browser step fails.
        """
        async with self._operation_locks(session_id):
            session = await self._load(session_id)
            selectors = self.platforms.resolve(session.platform).selectors

            step = "restore_context"
            try:
                await self.registry.restore_or_create(session_id, session)

                step = "otp_input"
                await self.registry.wait_for_selector(session_id, selectors.otp_input)
                await self.registry.type_text(session_id, selectors.otp_input, otp)

                step = "otp_submit"
                await self.registry.click(session_id, selectors.otp_submit_button)

                step = "settle"
                await self._settle(session_id, self.config.otp_settle_ms)

                step = "capture_state"
                captured = await self._capture(session_id)
            except RegistryCapacityError as e:
                await self._mark_failed(session, step, e)
                raise
            except STEP_ERRORS as e:
                logger.error("otp_submission_failed", session_id=session_id, step=step, error=str(e))
                await self._mark_failed(session, step, e)
                raise OtpSubmissionError(session_id, step, e) from e

            session = session.evolve(
                **captured,
                is_authenticated=True,
                state=SessionState.AUTHENTICATED,
                failure_reason=None,
            )
            await self.repository.save(session)

        logger.info("otp_accepted", session_id=session_id, platform=str(session.platform))
        return session

    async def add_products_to_cart(
        self,
        session_id: str,
        product_urls: list[str],
        variants: Optional[dict[str, str]] = None,
    ) -> CartDetails:
        """Add each product to the cart in order, then scrape the cart.

        Args:
            session_id: An authenticated session.
            product_urls: Product page URLs, processed strictly in order.
            variants: Desired variant label keyed by product id, or by the
                URL's position as a string.

        Returns:
            The normalized cart.

        Raises:
            SessionNotFound: If the session is unknown.
            SessionNotAuthenticated: If the OTP step has not completed.
            CartBuildingError: If any browser step or the extraction fails.
        """
        async with self._operation_locks(session_id):
            session = await self._load(session_id)
            if not session.is_authenticated:
                raise SessionNotAuthenticated(session_id)

            selectors = self.platforms.resolve(session.platform).selectors
            session = session.evolve(state=SessionState.CART_BUILDING, failure_reason=None)
            await self.repository.save(session)
            logger.info("cart_building_started", session_id=session_id, url_count=len(product_urls))

            step = "restore_context"
            try:
                await self.registry.restore_or_create(session_id, session)

                for index, url in enumerate(product_urls):
                    product_id = product_id_from_url(url)

                    step = f"navigate[{index}]"
                    await self.registry.navigate(session_id, url)

                    variant = variant_for(variants, product_id, index)
                    if variant:
                        step = f"variant[{index}]"
                        await self.registry.wait_for_selector(session_id, selectors.variant_selector)
                        clicked = await self.registry.click_variant(
                            session_id, selectors.variant_selector, variant
                        )
                        if not clicked:
                            logger.info(
                                "variant_not_found",
                                session_id=session_id,
                                product_id=product_id,
                                variant=variant,
                            )

                    step = f"add_to_cart[{index}]"
                    await self.registry.wait_for_selector(session_id, selectors.add_to_cart_button)
                    await self.registry.click(session_id, selectors.add_to_cart_button)
                    await self._settle(session_id, self.config.add_to_cart_settle_ms)
                    logger.info("product_added", session_id=session_id, product_id=product_id, index=index)

                step = "open_cart"
                await self.registry.click(session_id, selectors.cart_button)
                await self._settle(session_id, self.config.cart_settle_ms)

                step = "extract_cart"
                cart = await extract_cart(
                    functools.partial(self.registry.evaluate, session_id),
                    currency=self.config.currency,
                )

                step = "capture_state"
                captured = await self._capture(session_id)
            except RegistryCapacityError as e:
                await self._mark_failed(session, step, e)
                raise
            except STEP_ERRORS as e:
                logger.error("add_products_failed", session_id=session_id, step=step, error=str(e))
                await self._mark_failed(session, step, e)
                raise CartBuildingError(session_id, step, e) from e

            session = session.evolve(**captured, state=SessionState.CART_READY)
            await self.repository.save(session)

        logger.info(
            "cart_ready",
            session_id=session_id,
            item_count=len(cart.items),
            total=str(cart.total),
            complete=cart.is_complete,
        )
        return cart

    async def cleanup_session(self, session_id: str) -> None:
        """Close the context and drop the session everywhere. Never raises."""
        async with self._operation_locks(session_id):
            for step, action in (
                ("close_context", self.registry.close),
                ("evict_cache", self.repository.evict),
                ("delete_record", self.repository.delete),
            ):
                try:
                    await action(session_id)
                except Exception as e:
                    logger.warning("cleanup_step_failed", session_id=session_id, step=step, error=str(e))
        logger.info("session_cleaned_up", session_id=session_id)

    async def shutdown(self) -> None:
        await self.registry.shutdown()
