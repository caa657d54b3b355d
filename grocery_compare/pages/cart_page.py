"""Cart view extraction.

The in-page script only collects raw text for a fixed set of cart nodes;
parsing and normalization happen here in Python so that every value that could
not be read is reported as an ``ExtractionWarning`` instead of silently
becoming zero.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

import structlog

from ..errors import ExtractionError
from ..models import CartDetails, CartItem, ExtractionWarning

logger = structlog.get_logger()

TOTAL_TOLERANCE = Decimal("0.01")

CART_SELECTORS = {
    "item": '.cart-item, [data-testid="cart-item"]',
    "item_name": '.product-name, [data-testid="product-name"]',
    "item_price": '.product-price, [data-testid="product-price"]',
    "item_quantity": '.quantity, [data-testid="quantity"]',
    "item_weight": '.weight, .variant, [data-testid="weight"]',
    "subtotal": '.subtotal, [data-testid="subtotal"]',
    "delivery_fee": '.delivery-fee, [data-testid="delivery-fee"]',
    "total": '.total, [data-testid="total"]',
}

CART_SCRIPT = """
(sel) => {
  const text = (root, s) => {
    const el = root.querySelector(s);
    return el ? (el.textContent || '').trim() : null;
  };
  const items = Array.from(document.querySelectorAll(sel.item)).map((el) => {
    const link = el.querySelector('a[href]');
    const img = el.querySelector('img');
    return {
      name: text(el, sel.item_name),
      price: text(el, sel.item_price),
      quantity: text(el, sel.item_quantity),
      weight: text(el, sel.item_weight),
      href: link ? link.href : null,
      image: img ? img.src : null,
    };
  });
  return {
    items,
    subtotal: text(document, sel.subtotal),
    deliveryFee: text(document, sel.delivery_fee),
    total: text(document, sel.total),
  };
}
"""

_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_FREE = re.compile(r"\bfree\b", re.IGNORECASE)


def parse_amount(text: Optional[str]) -> Optional[Decimal]:
    """Parse a price string to Decimal.

    Handles formats:
    - "₹45" / "Rs. 45.50"
    - "₹1,299.00" (thousands separators)
    - "FREE" (delivery fee waived)

    Args:
        text: Raw price string.

    Returns:
        Parsed Decimal value, or None if no amount can be read.
    """
    if not text:
        return None

    cleaned = text.replace(",", "")
    match = _NUMBER.search(cleaned)
    if match:
        try:
            return Decimal(match.group(0))
        except InvalidOperation:
            return None

    if _FREE.search(cleaned):
        return Decimal("0")
    return None


def product_id_from_url(url: Optional[str]) -> str:
    """Final non-empty path segment of ``url`` (tolerates a trailing slash)."""
    if not url:
        return ""
    segments = [s for s in urlparse(url).path.split("/") if s]
    return segments[-1] if segments else ""


def _read_amount(
    text: Optional[str],
    field: str,
    warnings: list[ExtractionWarning],
    item_index: Optional[int] = None,
) -> Decimal:
    value = parse_amount(text)
    if value is None:
        warnings.append(
            ExtractionWarning(
                field=field,
                raw_text=text,
                message="missing" if text is None else "unparseable amount",
                item_index=item_index,
            )
        )
        return Decimal("0")
    return value


def _read_quantity(text: Optional[str], warnings: list[ExtractionWarning], item_index: int) -> int:
    if text is None or not text.strip():
        return 1
    match = re.search(r"\d+", text)
    if not match or int(match.group(0)) < 1:
        warnings.append(
            ExtractionWarning(
                field="quantity",
                raw_text=text,
                message="unparseable quantity",
                item_index=item_index,
            )
        )
        return 1
    return int(match.group(0))


def parse_cart(raw: Any, currency: str = "INR") -> CartDetails:
    """Normalize the raw cart script result.

    Args:
        raw: Mapping returned by ``CART_SCRIPT``.
        currency: Currency code for the cart.

    Returns:
        CartDetails with taxes at zero and the total derived from
        subtotal and delivery fee.

    Raises:
        ExtractionError: If ``raw`` is not shaped like a cart at all.
    """
    if not isinstance(raw, dict):
        raise ExtractionError(f"Cart script returned {type(raw).__name__}, expected an object")

    raw_items = raw.get("items") or []
    if not isinstance(raw_items, list):
        raise ExtractionError("Cart script returned a non-list 'items' field")

    warnings: list[ExtractionWarning] = []
    items: list[CartItem] = []

    for index, entry in enumerate(raw_items):
        if not isinstance(entry, dict):
            warnings.append(
                ExtractionWarning(field="item", raw_text=None, message="unreadable item", item_index=index)
            )
            continue

        items.append(
            CartItem(
                product_id=product_id_from_url(entry.get("href")),
                name=(entry.get("name") or "").strip(),
                price=_read_amount(entry.get("price"), "price", warnings, index),
                quantity=_read_quantity(entry.get("quantity"), warnings, index),
                weight=(entry.get("weight") or "").strip(),
                image=entry.get("image") or None,
            )
        )

    cart = CartDetails(
        items=items,
        subtotal=_read_amount(raw.get("subtotal"), "subtotal", warnings),
        delivery_fee=_read_amount(raw.get("deliveryFee"), "deliveryFee", warnings),
        taxes=Decimal("0"),
        currency=currency,
        warnings=warnings,
    )

    # The scraped total is only used as a cross-check
    total_text = raw.get("total")
    if total_text is not None:
        scraped_total = parse_amount(total_text)
        if scraped_total is None:
            warnings.append(
                ExtractionWarning(field="total", raw_text=total_text, message="unparseable amount")
            )
        elif abs(scraped_total - cart.total) > TOTAL_TOLERANCE:
            warnings.append(
                ExtractionWarning(
                    field="total",
                    raw_text=total_text,
                    message=f"total_mismatch: scraped {scraped_total}, computed {cart.total}",
                )
            )

    return cart


async def extract_cart(
    evaluate: Callable[[str, Any], Awaitable[Any]],
    currency: str = "INR",
) -> CartDetails:
    """Run the cart script through ``evaluate`` and normalize the result."""
    raw = await evaluate(CART_SCRIPT, CART_SELECTORS)
    cart = parse_cart(raw, currency=currency)

    if cart.warnings:
        logger.warning(
            "cart_extraction_degraded",
            warnings=[f"{w.field}:{w.message}" for w in cart.warnings],
            item_count=len(cart.items),
        )
    else:
        logger.info("cart_extracted", item_count=len(cart.items), total=str(cart.total))
    return cart
