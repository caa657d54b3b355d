"""Page-level helpers for browser automation."""
from .cart_page import CART_SELECTORS, extract_cart, parse_amount, parse_cart
from .execution_context import ExecutionContext

__all__ = ['CART_SELECTORS', 'ExecutionContext', 'extract_cart', 'parse_amount', 'parse_cart']
