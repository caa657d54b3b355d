"""Error taxonomy for the automation core and its boundary."""
from typing import Optional


class GroceryCompareError(Exception):
    """Base class for all expected failures.

    ``public_message`` is safe to return to API callers; ``str(exc)`` may carry
    internal detail (selectors, URLs) and belongs in logs only.
    """

    code = "INTERNAL"
    public_message = "Internal error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)


class ValidationError(GroceryCompareError):
    """Malformed input caught at the boundary."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.public_message = message


class UnsupportedPlatform(GroceryCompareError):
    code = "UNSUPPORTED_PLATFORM"

    def __init__(self, platform: str) -> None:
        super().__init__(f"Unsupported platform: {platform}")
        self.platform = platform
        self.public_message = f"Unsupported platform: {platform}"


class SessionNotFound(GroceryCompareError):
    code = "SESSION_NOT_FOUND"
    public_message = "Session not found"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionNotAuthenticated(GroceryCompareError):
    code = "SESSION_NOT_AUTHENTICATED"
    public_message = "Session not authenticated"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not authenticated")
        self.session_id = session_id


class NavigationError(GroceryCompareError):
    code = "NAVIGATION_FAILED"
    public_message = "Navigation failed"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Navigation to {url} failed: {reason}")
        self.url = url
        self.reason = reason


class SelectorTimeout(GroceryCompareError):
    """A selector did not appear in time; usually platform DOM drift."""

    code = "SELECTOR_TIMEOUT"
    public_message = "Page element did not appear in time"

    def __init__(self, selector: str, elapsed_ms: int, timeout_ms: int) -> None:
        super().__init__(
            f"Selector {selector!r} not found after {elapsed_ms}ms (timeout {timeout_ms}ms)"
        )
        self.selector = selector
        self.elapsed_ms = elapsed_ms
        self.timeout_ms = timeout_ms


class ExtractionError(GroceryCompareError):
    code = "EXTRACTION_FAILED"
    public_message = "Could not read cart data"


class InternalError(GroceryCompareError):
    code = "INTERNAL"


class RegistryCapacityError(GroceryCompareError):
    code = "CAPACITY_EXCEEDED"
    public_message = "Too many active browser sessions. Please retry later."

    def __init__(self, limit: int) -> None:
        super().__init__(f"Browser context limit reached ({limit})")
        self.limit = limit


class AutomationStepError(GroceryCompareError):
    """A multi-step browser sequence aborted at ``step``."""

    operation = "automation"

    def __init__(self, session_id: str, step: str, cause: BaseException) -> None:
        super().__init__(f"Failed to {self.operation} at step '{step}': {cause}")
        self.session_id = session_id
        self.step = step
        self.cause = cause


class LoginInitiationError(AutomationStepError):
    code = "LOGIN_FAILED"
    operation = "initiate login"
    public_message = "Failed to initiate login"


class OtpSubmissionError(AutomationStepError):
    code = "OTP_SUBMISSION_FAILED"
    operation = "submit OTP"
    public_message = "Failed to submit OTP"


class CartBuildingError(AutomationStepError):
    code = "ADD_PRODUCTS_FAILED"
    operation = "add products"
    public_message = "Failed to add products"
