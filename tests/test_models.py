"""Tests for data models."""
from decimal import Decimal

import pytest

from grocery_compare.models import (
    CartDetails,
    CartItem,
    ExtractionWarning,
    Platform,
    SessionData,
    SessionState,
)


class TestSessionData:
    """Tests for the persisted session record."""

    def test_defaults(self):
        """Test a new session starts unauthenticated."""
        session = SessionData(id="abc", phone_number="9876543210", platform=Platform.BLINKIT)

        assert session.state == SessionState.UNAUTHENTICATED
        assert session.is_authenticated is False
        assert session.cookies == []
        assert session.failure_reason is None

    def test_record_round_trip(self):
        """Test to_dict/from_dict preserve every field."""
        session = SessionData(
            id="abc",
            phone_number="9876543210",
            platform=Platform.ZEPTO,
            cookies=[{"name": "a", "value": "1", "domain": ".zepto.in"}],
            current_url="https://zepto.in/cart",
            dom_snapshot="<html></html>",
            is_authenticated=True,
            state=SessionState.AUTHENTICATED,
        )

        restored = SessionData.from_dict(session.to_dict())

        assert restored == session

    def test_record_uses_camel_case(self):
        """Test persisted keys match the stored record shape."""
        record = SessionData(id="abc", phone_number="9876543210", platform=Platform.BLINKIT).to_dict()

        assert record["phoneNumber"] == "9876543210"
        assert record["platform"] == "blinkit"
        assert record["isAuthenticated"] is False
        assert record["state"] == "UNAUTHENTICATED"
        assert "createdAt" in record and "updatedAt" in record
        assert "failureReason" not in record

    def test_snapshot_can_be_omitted(self):
        """Test include_snapshot=False drops the DOM snapshot."""
        session = SessionData(
            id="abc", phone_number="9876543210", platform=Platform.BLINKIT, dom_snapshot="<html/>"
        )

        assert "domSnapshot" in session.to_dict()
        assert "domSnapshot" not in session.to_dict(include_snapshot=False)

    def test_evolve_refreshes_updated_at(self):
        """Test evolve returns a new record with a newer timestamp."""
        session = SessionData(id="abc", phone_number="9876543210", platform=Platform.BLINKIT)

        evolved = session.evolve(state=SessionState.OTP_PENDING)

        assert evolved.state == SessionState.OTP_PENDING
        assert session.state == SessionState.UNAUTHENTICATED
        assert evolved.updated_at >= session.updated_at
        assert evolved.created_at == session.created_at

    def test_platform_is_immutable(self):
        """Test evolve refuses to change the platform."""
        session = SessionData(id="abc", phone_number="9876543210", platform=Platform.BLINKIT)

        with pytest.raises(ValueError, match="platform"):
            session.evolve(platform=Platform.ZEPTO)


class TestCartDetails:
    """Tests for the cart breakdown."""

    def test_total_is_sum_of_parts(self):
        """Test total = subtotal + delivery fee + taxes."""
        cart = CartDetails(
            items=[],
            subtotal=Decimal("120.50"),
            delivery_fee=Decimal("25"),
            taxes=Decimal("6"),
        )

        assert cart.total == Decimal("151.50")

    def test_is_complete_without_warnings(self):
        """Test completeness tracks extraction warnings."""
        cart = CartDetails(items=[], subtotal=Decimal("0"), delivery_fee=Decimal("0"))
        assert cart.is_complete

        cart.warnings.append(ExtractionWarning(field="subtotal", raw_text="--", message="unparseable amount"))
        assert not cart.is_complete

    def test_to_dict(self):
        """Test the JSON shape of a cart."""
        cart = CartDetails(
            items=[CartItem(product_id="milk-1", name="Milk", price=Decimal("32"), weight="500ml")],
            subtotal=Decimal("32"),
            delivery_fee=Decimal("25"),
            taxes=Decimal("1"),
        )

        data = cart.to_dict()

        assert data["total"] == 58.0
        assert data["deliveryFee"] == 25.0
        assert data["currency"] == "INR"
        assert data["items"] == [
            {"productId": "milk-1", "name": "Milk", "price": 32.0, "quantity": 1, "weight": "500ml"}
        ]
        assert data["warnings"] == []
