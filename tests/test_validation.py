"""Tests for request validation."""
import pytest

from grocery_compare.errors import ValidationError
from grocery_compare.validation import (
    is_valid_phone,
    is_valid_product_url,
    validate_add_products,
    validate_login,
    validate_otp,
)


class TestPhoneNumbers:
    """Tests for the mobile number format."""

    @pytest.mark.parametrize("phone", ["9876543210", "6000000000", "7978219600"])
    def test_valid(self, phone):
        """Test 10 digits starting 6-9 are accepted."""
        assert is_valid_phone(phone)

    @pytest.mark.parametrize("phone", ["5876543210", "987654321", "98765432100", "+919876543210", None, 9876543210])
    def test_invalid(self, phone):
        """Test everything else is rejected."""
        assert not is_valid_phone(phone)


class TestValidateLogin:
    """Tests for login request validation."""

    def test_valid(self):
        """Test a well-formed request passes."""
        validate_login("9876543210", "blinkit")

    def test_missing_fields(self):
        """Test both fields are required."""
        with pytest.raises(ValidationError, match="required"):
            validate_login("", "blinkit")
        with pytest.raises(ValidationError, match="required"):
            validate_login("9876543210", None)

    def test_bad_phone(self):
        """Test the phone format is enforced."""
        with pytest.raises(ValidationError, match="phone number format"):
            validate_login("12345", "blinkit")

    def test_unknown_platform(self):
        """Test unsupported platforms are rejected."""
        with pytest.raises(ValidationError, match="Unsupported platform"):
            validate_login("9876543210", "bigbasket")

    @pytest.mark.parametrize("platform", [["blinkit"], {"name": "blinkit"}, 1])
    def test_platform_must_be_string(self, platform):
        """Test unhashable and non-string platforms are rejected."""
        with pytest.raises(ValidationError, match="Unsupported platform"):
            validate_login("9876543210", platform)


class TestValidateOtp:
    """Tests for OTP request validation."""

    def test_required(self):
        """Test OTP and session id are required."""
        validate_otp("123456", "sess-1")
        with pytest.raises(ValidationError):
            validate_otp("", "sess-1")
        with pytest.raises(ValidationError):
            validate_otp("123456", None)

    def test_types(self):
        """Test non-string values are rejected."""
        with pytest.raises(ValidationError):
            validate_otp(123456, "sess-1")


class TestValidateAddProducts:
    """Tests for add-products request validation."""

    def test_valid(self):
        """Test a well-formed request passes."""
        validate_add_products("sess-1", ["https://blinkit.com/prn/x/prid/1"], {"0": "1kg"})

    def test_missing_fields(self):
        """Test every field is required."""
        with pytest.raises(ValidationError, match="required"):
            validate_add_products(None, ["https://a.com/x"], {"0": "1kg"})

    def test_empty_urls(self):
        """Test an empty URL list is rejected."""
        with pytest.raises(ValidationError, match="non-empty array"):
            validate_add_products("sess-1", [], {"0": "1kg"})

    def test_empty_variants(self):
        """Test empty variants are rejected."""
        with pytest.raises(ValidationError, match="non-empty object"):
            validate_add_products("sess-1", ["https://a.com/x"], {})

    @pytest.mark.parametrize("url", ["not a url", "ftp://blinkit.com/x", "https://", "/relative/path"])
    def test_malformed_url(self, url):
        """Test only absolute http(s) URLs are accepted."""
        assert not is_valid_product_url(url)
        with pytest.raises(ValidationError, match="Invalid URL"):
            validate_add_products("sess-1", [url], {"0": "1kg"})

    @pytest.mark.parametrize(
        "session_id, variants",
        [(123, {"0": "1kg"}), (["sess-1"], {"0": "1kg"}), ("sess-1", {"0": 1}), ("sess-1", {"0": ["1kg"]})],
    )
    def test_wrong_types(self, session_id, variants):
        """Test non-string session ids and variant labels are rejected."""
        with pytest.raises(ValidationError):
            validate_add_products(session_id, ["https://a.com/x"], variants)
