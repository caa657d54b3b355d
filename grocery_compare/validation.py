"""Request validation shared by the web app and the CLI."""
import re
from typing import Any
from urllib.parse import urlparse

from .errors import ValidationError
from .models import Platform

# Indian mobile numbers: 10 digits starting 6-9
PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")


def is_valid_phone(phone_number: Any) -> bool:
    return isinstance(phone_number, str) and PHONE_PATTERN.fullmatch(phone_number) is not None


def is_valid_product_url(url: Any) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_login(phone_number: Any, platform: Any) -> None:
    """Validate a login request.

    Raises:
        ValidationError: If a field is missing, the phone number is malformed
            or the platform is not supported.
    """
    if not phone_number or not platform:
        raise ValidationError("Phone number and platform are required")

    if not is_valid_phone(phone_number):
        raise ValidationError("Invalid phone number format")

    if not isinstance(platform, str) or platform not in {p.value for p in Platform}:
        raise ValidationError(f"Unsupported platform: {platform}")


def validate_otp(otp: Any, session_id: Any) -> None:
    if not otp or not session_id:
        raise ValidationError("OTP and session ID are required")
    if not isinstance(otp, str) or not isinstance(session_id, str):
        raise ValidationError("OTP and session ID must be strings")


def validate_add_products(session_id: Any, product_urls: Any, variants: Any) -> None:
    """Validate an add-products request.

    Raises:
        ValidationError: On missing or non-string fields, an empty URL list,
            empty variants or any URL that is not an absolute http(s) URL.
    """
    if not session_id or product_urls is None or variants is None:
        raise ValidationError("Session ID, product URLs, and variants are required")

    if not isinstance(session_id, str):
        raise ValidationError("Session ID must be a string")

    if not isinstance(product_urls, list) or not product_urls:
        raise ValidationError("Product URLs must be a non-empty array")

    if not isinstance(variants, dict) or not variants:
        raise ValidationError("Variants must be a non-empty object")

    if not all(isinstance(label, str) for label in variants.values()):
        raise ValidationError("Variant labels must be strings")

    for url in product_urls:
        if not is_valid_product_url(url):
            raise ValidationError(f"Invalid URL: {url}")
