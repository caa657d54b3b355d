"""Browser-free automation for demos and local development.

Sessions are persisted exactly like the real flow, but carts are built from the
product URLs alone: prices are a stable checksum of the product id, so the same
URL always yields the same cart.
"""
import zlib
from decimal import ROUND_FLOOR, Decimal
from typing import Optional
from urllib.parse import unquote

import structlog

from .automation import BaseAutomation, mask_phone, variant_for
from .errors import SessionNotAuthenticated
from .models import CartDetails, CartItem, Platform, SessionData, SessionState
from .pages.cart_page import product_id_from_url
from .platforms import PlatformRegistry
from .session_store import SessionRepository

logger = structlog.get_logger()

DEMO_OTP = "123456"
DEMO_DELIVERY_FEE = Decimal("25")
DEMO_TAX_RATE = Decimal("0.05")
DEFAULT_VARIANT = "Standard"


def demo_price(product_id: str) -> Decimal:
    """Deterministic price in the 20-119 range."""
    return Decimal(zlib.crc32(product_id.encode("utf-8")) % 100 + 20)


def demo_item(url: str, variant: Optional[str]) -> CartItem:
    product_id = product_id_from_url(url) or "unknown-product"
    name = unquote(product_id.replace("-", " ").replace("_", " "))
    return CartItem(
        product_id=product_id,
        name=name,
        price=demo_price(product_id),
        quantity=1,
        weight=variant or DEFAULT_VARIANT,
    )


def build_demo_cart(product_urls: list[str], variants: Optional[dict[str, str]] = None) -> CartDetails:
    items = [
        demo_item(url, variant_for(variants, product_id_from_url(url), index))
        for index, url in enumerate(product_urls)
    ]
    subtotal = sum((item.price * item.quantity for item in items), Decimal("0"))
    taxes = (subtotal * DEMO_TAX_RATE).to_integral_value(rounding=ROUND_FLOOR)
    return CartDetails(
        items=items,
        subtotal=subtotal,
        delivery_fee=DEMO_DELIVERY_FEE,
        taxes=taxes,
        currency="INR",
    )


class DemoAutomation(BaseAutomation):
    """Same operations as GroceryAutomation, with no browser behind them.

    The OTP is not checked here; the web layer rejects anything but
    ``DEMO_OTP`` before calling ``submit_otp``.
    """

    def __init__(self, repository: SessionRepository, platforms: PlatformRegistry) -> None:
        super().__init__(repository, platforms)

    async def initiate_login(self, phone_number: str, platform: Platform | str) -> str:
        session, platform_config = self._new_session(phone_number, platform, prefix="demo-")
        session = session.evolve(current_url=platform_config.base_url, state=SessionState.OTP_PENDING)
        await self.repository.save(session)
        logger.info(
            "demo_login_started",
            session_id=session.id,
            platform=str(platform_config.name),
            phone=mask_phone(phone_number),
        )
        return session.id

    async def submit_otp(self, session_id: str, otp: str) -> SessionData:
        async with self._operation_locks(session_id):
            session = await self._load(session_id)
            session = session.evolve(is_authenticated=True, state=SessionState.AUTHENTICATED)
            await self.repository.save(session)
        logger.info("demo_otp_accepted", session_id=session_id)
        return session

    async def add_products_to_cart(
        self,
        session_id: str,
        product_urls: list[str],
        variants: Optional[dict[str, str]] = None,
    ) -> CartDetails:
        async with self._operation_locks(session_id):
            session = await self._load(session_id)
            if not session.is_authenticated:
                raise SessionNotAuthenticated(session_id)

            cart = build_demo_cart(product_urls, variants)
            current_url = product_urls[-1] if product_urls else session.current_url
            session = session.evolve(current_url=current_url, state=SessionState.CART_READY)
            await self.repository.save(session)

        logger.info("demo_cart_ready", session_id=session_id, item_count=len(cart.items), total=str(cart.total))
        return cart

    async def cleanup_session(self, session_id: str) -> None:
        """Drop the session from cache and store. Never raises."""
        async with self._operation_locks(session_id):
            for step, action in (("evict_cache", self.repository.evict), ("delete_record", self.repository.delete)):
                try:
                    await action(session_id)
                except Exception as e:
                    logger.warning("cleanup_step_failed", session_id=session_id, step=step, error=str(e))

    async def shutdown(self) -> None:
        logger.debug("demo_shutdown")
