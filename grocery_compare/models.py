"""Data contracts for sessions, platforms and carts."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any, Optional


class Platform(StrEnum):
    """Supported grocery platforms."""

    BLINKIT = "blinkit"
    ZEPTO = "zepto"
    INSTAMART = "instamart"


class SessionState(StrEnum):
    """Lifecycle of a logical session."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    OTP_PENDING = "OTP_PENDING"
    AUTHENTICATED = "AUTHENTICATED"
    CART_BUILDING = "CART_BUILDING"
    CART_READY = "CART_READY"
    FAILED = "FAILED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlatformSelectors:
    """Named DOM selectors for every interaction point on a platform."""

    login_button: str
    phone_input: str
    submit_button: str
    otp_input: str
    otp_submit_button: str
    add_to_cart_button: str
    cart_button: str
    price_selector: str
    variant_selector: str

    def as_dict(self) -> dict[str, str]:
        return {
            "login_button": self.login_button,
            "phone_input": self.phone_input,
            "submit_button": self.submit_button,
            "otp_input": self.otp_input,
            "otp_submit_button": self.otp_submit_button,
            "add_to_cart_button": self.add_to_cart_button,
            "cart_button": self.cart_button,
            "price_selector": self.price_selector,
            "variant_selector": self.variant_selector,
        }


@dataclass(frozen=True)
class PlatformConfig:
    """Immutable base URL and selector set for one platform."""

    name: Platform
    base_url: str
    selectors: PlatformSelectors


@dataclass(frozen=True)
class AutomationConfig:
    """Configuration for browser automation."""

    headless: bool = True
    timeout_ms: int = 30000
    navigation_timeout_ms: int = 30000
    login_settle_ms: int = 2000
    otp_settle_ms: int = 3000
    add_to_cart_settle_ms: int = 2000
    cart_settle_ms: int = 2000
    network_idle_timeout_ms: int = 5000
    max_contexts: Optional[int] = None  # None = not enforced
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    currency: str = "INR"


@dataclass
class SessionData:
    """Durable record of one user's authentication and browsing progress."""

    id: str
    phone_number: str
    platform: Platform
    cookies: list[dict[str, Any]] = field(default_factory=list)
    current_url: str = ""
    dom_snapshot: Optional[str] = None
    is_authenticated: bool = False
    state: SessionState = SessionState.UNAUTHENTICATED
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def evolve(self, **changes: Any) -> "SessionData":
        """Return a copy with ``changes`` applied and ``updated_at`` refreshed.

        The platform is fixed for the lifetime of a session.
        """
        if "platform" in changes and changes["platform"] != self.platform:
            raise ValueError("A session's platform cannot change")
        changes.setdefault("updated_at", utcnow())
        return replace(self, **changes)

    def to_dict(self, include_snapshot: bool = True) -> dict[str, Any]:
        """Convert to the persisted record shape."""
        record: dict[str, Any] = {
            "id": self.id,
            "phoneNumber": self.phone_number,
            "platform": str(self.platform),
            "cookies": [dict(c) for c in self.cookies],
            "currentUrl": self.current_url,
            "isAuthenticated": self.is_authenticated,
            "state": str(self.state),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if include_snapshot and self.dom_snapshot is not None:
            record["domSnapshot"] = self.dom_snapshot
        if self.failure_reason is not None:
            record["failureReason"] = self.failure_reason
        return record

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> "SessionData":
        """Build a session from a persisted record."""
        return cls(
            id=record["id"],
            phone_number=record["phoneNumber"],
            platform=Platform(record["platform"]),
            cookies=list(record.get("cookies") or []),
            current_url=record.get("currentUrl") or "",
            dom_snapshot=record.get("domSnapshot"),
            is_authenticated=bool(record.get("isAuthenticated", False)),
            state=SessionState(record.get("state", SessionState.UNAUTHENTICATED)),
            failure_reason=record.get("failureReason"),
            created_at=datetime.fromisoformat(record["createdAt"]),
            updated_at=datetime.fromisoformat(record["updatedAt"]),
        )


@dataclass(frozen=True)
class CartItem:
    """A single line in a scraped cart."""

    product_id: str
    name: str
    price: Decimal
    quantity: int = 1
    weight: str = ""
    image: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "productId": self.product_id,
            "name": self.name,
            "price": float(self.price),
            "quantity": self.quantity,
            "weight": self.weight,
        }
        if self.image:
            record["image"] = self.image
        return record


@dataclass(frozen=True)
class ExtractionWarning:
    """A scraped value that could not be parsed and was degraded to a default."""

    field: str
    raw_text: Optional[str]
    message: str
    item_index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "rawText": self.raw_text,
            "message": self.message,
            "itemIndex": self.item_index,
        }


@dataclass
class CartDetails:
    """Normalized cart price breakdown."""

    items: list[CartItem]
    subtotal: Decimal
    delivery_fee: Decimal
    taxes: Decimal = Decimal("0")
    currency: str = "INR"
    warnings: list[ExtractionWarning] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        """Always derived from its inputs so it cannot drift."""
        return self.subtotal + self.delivery_fee + self.taxes

    @property
    def is_complete(self) -> bool:
        return not self.warnings

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "subtotal": float(self.subtotal),
            "deliveryFee": float(self.delivery_fee),
            "taxes": float(self.taxes),
            "total": float(self.total),
            "currency": self.currency,
            "warnings": [w.to_dict() for w in self.warnings],
        }
