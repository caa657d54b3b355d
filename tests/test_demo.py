"""Tests for the browser-free demo automation."""
from decimal import Decimal

import pytest

from grocery_compare.demo import DEMO_OTP, DemoAutomation, build_demo_cart, demo_price
from grocery_compare.errors import SessionNotAuthenticated, SessionNotFound, ValidationError
from grocery_compare.models import SessionState
from grocery_compare.platforms import default_registry


@pytest.fixture
def demo(repository):
    return DemoAutomation(repository, default_registry())


class TestDemoCart:
    """Tests for deterministic demo carts."""

    def test_price_is_stable_and_in_range(self):
        """Test the same product id always gets the same price in 20-119."""
        assert demo_price("amul-milk") == demo_price("amul-milk")
        for product_id in ("a", "b", "onion", "12345", "x" * 50):
            assert Decimal("20") <= demo_price(product_id) <= Decimal("119")

    def test_breakdown(self):
        """Test delivery fee, taxes and total of a demo cart."""
        cart = build_demo_cart(["https://blinkit.com/prn/amul_taaza-milk"], {"0": "1kg"})

        item = cart.items[0]
        assert item.name == "amul taaza milk"
        assert item.weight == "1kg"
        assert cart.delivery_fee == Decimal("25")
        assert cart.taxes == (cart.subtotal * Decimal("0.05")).to_integral_value(rounding="ROUND_FLOOR")
        assert cart.total == cart.subtotal + Decimal("25") + cart.taxes

    def test_variant_by_product_id(self):
        """Test product-id keys and the Standard default."""
        cart = build_demo_cart(
            ["https://zepto.in/p/onion", "https://zepto.in/p/potato"],
            {"onion": "2 kg"},
        )

        assert [i.weight for i in cart.items] == ["2 kg", "Standard"]

    def test_url_without_path(self):
        """Test a URL without a path still yields an item."""
        cart = build_demo_cart(["https://zepto.in/"])

        assert cart.items[0].product_id == "unknown-product"


class TestDemoAutomation:
    """Tests for the demo session flow."""

    @pytest.mark.asyncio
    async def test_full_flow(self, demo, repository):
        """Test login, OTP and add-products persist state like the real flow."""
        session_id = await demo.initiate_login("9876543210", "blinkit")
        assert session_id.startswith("demo-")
        assert (await repository.load(session_id)).state == SessionState.OTP_PENDING

        session = await demo.submit_otp(session_id, DEMO_OTP)
        assert session.is_authenticated

        cart = await demo.add_products_to_cart(session_id, ["https://blinkit.com/prn/milk/prid/1"], {"0": "1kg"})
        assert len(cart.items) == 1
        assert (await repository.load(session_id)).state == SessionState.CART_READY

    @pytest.mark.asyncio
    async def test_invalid_phone(self, demo):
        """Test phone validation applies in demo mode too."""
        with pytest.raises(ValidationError):
            await demo.initiate_login("12345", "blinkit")

    @pytest.mark.asyncio
    async def test_requires_authentication(self, demo):
        """Test add-products needs a verified session."""
        session_id = await demo.initiate_login("9876543210", "zepto")

        with pytest.raises(SessionNotAuthenticated):
            await demo.add_products_to_cart(session_id, ["https://zepto.in/p/1"], {"0": "x"})

    @pytest.mark.asyncio
    async def test_cleanup(self, demo):
        """Test cleanup removes the session."""
        session_id = await demo.initiate_login("9876543210", "instamart")

        await demo.cleanup_session(session_id)

        with pytest.raises(SessionNotFound):
            await demo.get_session(session_id)
