"""FastAPI application exposing login, OTP and add-products endpoints."""
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader

from .. import __version__
from ..config_loader import load_settings
from ..demo import DEMO_OTP
from ..errors import (
    GroceryCompareError,
    RegistryCapacityError,
    SessionNotAuthenticated,
    SessionNotFound,
    UnsupportedPlatform,
    ValidationError,
)
from ..factory import build_automation, load_platform_registry
from ..validation import validate_add_products, validate_login, validate_otp

logger = structlog.get_logger()

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"

# Exception type -> HTTP status; anything else is a 500
ERROR_STATUS = (
    (ValidationError, 400),
    (UnsupportedPlatform, 400),
    (SessionNotAuthenticated, 403),
    (SessionNotFound, 404),
    (RegistryCapacityError, 503),
)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for mutating endpoints."""
    expected_key = os.getenv("GROCERY_API_KEY")
    if not expected_key:
        # No key configured = auth disabled (for local dev)
        return None
    if api_key != expected_key:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")
    return api_key


def status_for(exc: GroceryCompareError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def error_response(message: str, status_code: int, code: Optional[str] = None) -> JSONResponse:
    body: dict[str, Any] = {"status": "ERROR", "message": message}
    if code:
        body["code"] = code
    return JSONResponse(body, status_code=status_code)


async def read_json_body(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def create_app(settings: Optional[dict[str, Any]] = None, automation=None) -> FastAPI:
    """Build the API app.

    Args:
        settings: Loaded settings; read from ``config/settings.yaml`` when None.
        automation: GroceryAutomation or DemoAutomation; built from settings
            when None.

    Returns:
        Configured FastAPI application. The automation is shut down with the app.
    """
    if settings is None:
        settings_path = CONFIG_DIR / "settings.yaml"
        settings = load_settings(settings_path if settings_path.exists() else None)
    if automation is None:
        automation = build_automation(settings, load_platform_registry(CONFIG_DIR / "platforms.yaml"))

    demo_mode = bool(settings.get("demo_mode"))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("api_started", demo_mode=demo_mode, version=__version__)
        yield
        await automation.shutdown()
        logger.info("api_stopped")

    app = FastAPI(title="Grocery Price Comparator", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.automation = automation

    # CORS configuration
    allowed_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    @app.exception_handler(GroceryCompareError)
    async def handle_known_error(request: Request, exc: GroceryCompareError):
        status_code = status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log("request_failed", path=request.url.path, code=exc.code, status=status_code, error=str(exc))
        return error_response(exc.public_message, status_code, exc.code)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("request_crashed", path=request.url.path, error=str(exc))
        return error_response("Internal server error", 500, "INTERNAL")

    @app.post("/api/login")
    async def login(request: Request, user: str = Depends(verify_api_key)):
        """Start a login; the platform sends an OTP to the phone."""
        body = await read_json_body(request)
        phone_number = body.get("phoneNumber")
        platform = body.get("platform")
        validate_login(phone_number, platform)

        session_id = await automation.initiate_login(phone_number, platform)
        message = f"Demo OTP '{DEMO_OTP}' has been sent." if demo_mode else "OTP sent to your phone"
        return {"status": "OTP_SENT", "message": message, "sessionId": session_id}

    @app.post("/api/submit-otp")
    async def submit_otp(request: Request, user: str = Depends(verify_api_key)):
        """Submit the OTP for a pending login."""
        body = await read_json_body(request)
        otp = body.get("otp")
        session_id = body.get("sessionId")
        validate_otp(otp, session_id)

        if demo_mode and otp != DEMO_OTP:
            return error_response(f"Invalid OTP. Try '{DEMO_OTP}'", 401, "INVALID_OTP")

        session = await automation.submit_otp(session_id, otp)
        return {
            "status": "SUCCESS",
            "message": "OTP verified successfully",
            "sessionData": session.to_dict(include_snapshot=False),
        }

    @app.post("/api/add-products")
    async def add_products(request: Request, user: str = Depends(verify_api_key)):
        """Add products to the session's cart and return the price breakdown."""
        body = await read_json_body(request)
        session_id = body.get("sessionId")
        product_urls = body.get("productUrls")
        variants = body.get("variants")
        validate_add_products(session_id, product_urls, variants)

        cart = await automation.add_products_to_cart(session_id, product_urls, variants)
        response: dict[str, Any] = {
            "status": "SUCCESS",
            "cartDetails": cart.to_dict(),
            "finalPrice": float(cart.total),
        }
        if not cart.is_complete:
            response["message"] = "Some cart values could not be read"
        return response

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str, user: str = Depends(verify_api_key)):
        """Close the session's browser context and delete its record."""
        await automation.cleanup_session(session_id)
        return {"status": "SUCCESS", "message": "Session cleaned up"}

    @app.get("/api/platforms")
    async def list_platforms():
        return {
            "platforms": [
                {"name": str(config.name), "baseUrl": config.base_url}
                for config in automation.platforms
            ]
        }

    @app.get("/api/health")
    async def health():
        """Report store and cache connectivity."""
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            checks = await automation.repository.health()
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            return JSONResponse(
                {
                    "status": "unhealthy",
                    "timestamp": timestamp,
                    "version": __version__,
                    "services": {"store": "unknown", "cache": "unknown"},
                },
                status_code=500,
            )

        healthy = all(checks.values())
        return JSONResponse(
            {
                "status": "healthy" if healthy else "degraded",
                "timestamp": timestamp,
                "version": __version__,
                "services": {
                    name: "connected" if ok else "error" for name, ok in checks.items()
                },
                "environment": {
                    "demoMode": demo_mode,
                    "headless": bool(settings.get("headless", True)),
                },
            },
            status_code=200 if healthy else 503,
        )

    return app
