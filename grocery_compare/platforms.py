"""Platform registry: base URLs and DOM selectors per grocery platform."""
from types import MappingProxyType
from typing import Mapping, Union

from .errors import UnsupportedPlatform
from .models import Platform, PlatformConfig, PlatformSelectors


# Selectors list several alternatives; Playwright matches the first visible hit.
# ":has-text()" is Playwright's text pseudo-class.
DEFAULT_PLATFORM_CONFIGS: dict[Platform, PlatformConfig] = {
    Platform.BLINKIT: PlatformConfig(
        name=Platform.BLINKIT,
        base_url="https://blinkit.com",
        selectors=PlatformSelectors(
            login_button='[data-testid="login-button"], .login-btn, button[aria-label*="login"]',
            phone_input='input[type="tel"], input[name="phone"], input[placeholder*="phone"]',
            submit_button='button[type="submit"], .submit-btn, button:has-text("Send OTP")',
            otp_input='input[name="otp"], input[placeholder*="OTP"], input[type="text"]',
            otp_submit_button='button[type="submit"], .verify-btn, button:has-text("Verify")',
            add_to_cart_button='button[aria-label*="add to cart"], .add-to-cart, button:has-text("Add")',
            cart_button='[data-testid="cart"], .cart-icon, a[href*="cart"]',
            price_selector='.price, [data-testid="price"], .product-price',
            variant_selector='.variant-option, [data-testid="variant"], .weight-option',
        ),
    ),
    Platform.ZEPTO: PlatformConfig(
        name=Platform.ZEPTO,
        base_url="https://zepto.in",
        selectors=PlatformSelectors(
            login_button='[data-testid="login"], .login-button, button:has-text("Login")',
            phone_input='input[type="tel"], input[name="mobile"], input[placeholder*="mobile"]',
            submit_button='button[type="submit"], .send-otp, button:has-text("Send OTP")',
            otp_input='input[name="otp"], input[placeholder*="OTP"], input[type="text"]',
            otp_submit_button='button[type="submit"], .verify-otp, button:has-text("Verify")',
            add_to_cart_button='button[aria-label*="add"], .add-btn, button:has-text("Add")',
            cart_button='[data-testid="cart"], .cart, a[href*="cart"]',
            price_selector='.price, [data-testid="price"], .product-price',
            variant_selector='.variant, [data-testid="variant"], .size-option',
        ),
    ),
    Platform.INSTAMART: PlatformConfig(
        name=Platform.INSTAMART,
        base_url="https://www.instamart.in",
        selectors=PlatformSelectors(
            login_button='[data-testid="login"], .login-btn, button:has-text("Login")',
            phone_input='input[type="tel"], input[name="phone"], input[placeholder*="phone"]',
            submit_button='button[type="submit"], .send-otp, button:has-text("Send OTP")',
            otp_input='input[name="otp"], input[placeholder*="OTP"], input[type="text"]',
            otp_submit_button='button[type="submit"], .verify-otp, button:has-text("Verify")',
            add_to_cart_button='button[aria-label*="add"], .add-to-cart, button:has-text("Add")',
            cart_button='[data-testid="cart"], .cart-icon, a[href*="cart"]',
            price_selector='.price, [data-testid="price"], .product-price',
            variant_selector='.variant, [data-testid="variant"], .weight-option',
        ),
    ),
}


class PlatformRegistry:
    """Read-only lookup from platform name to its configuration."""

    def __init__(self, configs: Mapping[Platform, PlatformConfig]) -> None:
        self._configs = MappingProxyType(dict(configs))

    def resolve(self, name: Union[str, Platform]) -> PlatformConfig:
        """Get the configuration for ``name``.

        Raises:
            UnsupportedPlatform: If ``name`` is not a configured platform.
        """
        try:
            platform = Platform(name)
        except ValueError:
            raise UnsupportedPlatform(str(name)) from None

        config = self._configs.get(platform)
        if config is None:
            raise UnsupportedPlatform(str(name))
        return config

    def names(self) -> list[str]:
        return [str(p) for p in self._configs]

    def __contains__(self, name: object) -> bool:
        try:
            self.resolve(name)  # type: ignore[arg-type]
        except UnsupportedPlatform:
            return False
        return True

    def __iter__(self):
        return iter(self._configs.values())


def default_registry() -> PlatformRegistry:
    """Registry built from the bundled platform table."""
    return PlatformRegistry(DEFAULT_PLATFORM_CONFIGS)
