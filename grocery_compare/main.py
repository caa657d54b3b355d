"""Grocery Price Comparator - Main Entry Point."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

import structlog

from .automation import mask_phone
from .comparison import cart_to_frames, compare_carts, compare_items
from .config_loader import load_settings
from .demo import DEMO_OTP
from .errors import GroceryCompareError, UnsupportedPlatform, ValidationError
from .excel_handler import save_cart_report
from .factory import build_automation, load_platform_registry
from .models import CartDetails
from .validation import is_valid_product_url, validate_login


def run_web_server(host: str = "0.0.0.0", port: int = 8080, settings: Optional[dict] = None):
    """Start the API server."""
    import uvicorn
    from .web.app import create_app

    print(f"\n{'=' * 60}")
    print("GROCERY PRICE COMPARATOR - API")
    print(f"{'=' * 60}")
    print(f"Starting web server on http://{host}:{port}")
    print(f"{'=' * 60}\n")

    uvicorn.run(create_app(settings), host=host, port=port, log_level="info")


def configure_logging(verbose: bool = False) -> None:
    """Configure structured logging.

    Args:
        verbose: Enable debug level logging if True.
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        stream=sys.stdout,
    )


def parse_variants(pairs: Optional[list[str]]) -> dict[str, str]:
    """Parse ``productId=label`` pairs.

    Raises:
        ValueError: If a pair has no '=' or an empty side.
    """
    variants = {}
    for pair in pairs or []:
        key, sep, label = pair.partition("=")
        if not sep or not key.strip() or not label.strip():
            raise ValueError(f"Invalid --variant '{pair}', expected productId=label")
        variants[key.strip()] = label.strip()
    return variants


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Grocery Price Comparator - cart prices across quick-commerce platforms",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Compare one product on two platforms
  python -m grocery_compare.main --phone 9876543210 -p blinkit -p zepto \\
      -u https://blinkit.com/prn/amul-taaza-milk/prid/12345

  # Pick a variant for a product id
  python -m grocery_compare.main --phone 9876543210 -p blinkit \\
      -u https://blinkit.com/prn/onion/prid/777 --variant 777=1kg

  # Try it without a browser
  python -m grocery_compare.main --demo --phone 9876543210 -p blinkit -u https://blinkit.com/prn/x/prid/1

  # Serve the API
  python -m grocery_compare.main --web --port 8080
        """,
    )
    parser.add_argument("--phone", help="10-digit mobile number used to log in")
    parser.add_argument(
        "--platform",
        "-p",
        action="append",
        help="Platform to compare (repeatable): blinkit, zepto, instamart",
    )
    parser.add_argument(
        "--url",
        "-u",
        action="append",
        help="Product page URL (repeatable, processed in order)",
    )
    parser.add_argument(
        "--variant",
        action="append",
        help="Variant to select as productId=label (repeatable)",
    )
    parser.add_argument(
        "--output",
        "-o",
        default="./output",
        type=Path,
        help="Output directory for the report (default: ./output)",
    )
    parser.add_argument(
        "--settings",
        "-s",
        type=Path,
        default=Path("config/settings.yaml"),
        help="Path to settings.yaml configuration file",
    )
    parser.add_argument(
        "--platforms",
        type=Path,
        default=Path("config/platforms.yaml"),
        help="Path to platforms.yaml (default: config/platforms.yaml, built-in table if missing)",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help=f"Use demo mode: no browser, OTP is {DEMO_OTP}",
    )
    parser.add_argument(
        "--visible",
        action="store_true",
        help="Run browser with visible window (for debugging)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--web",
        action="store_true",
        help="Start the API server instead of CLI",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for web server (default: 8080)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host for web server (default: 0.0.0.0)",
    )

    return parser.parse_args(argv)


async def collect_carts(
    automation,
    phone_number: str,
    platforms: list[str],
    product_urls: list[str],
    variants: dict[str, str],
    otp_provider: Callable[[str], str],
    demo_mode: bool = False,
) -> dict[str, CartDetails]:
    """Log in, build the cart and clean up, one platform at a time.

    Args:
        automation: GroceryAutomation or DemoAutomation.
        otp_provider: Called with a prompt, returns the OTP the user received.

    Returns:
        Cart per platform name.
    """
    logger = structlog.get_logger()
    carts: dict[str, CartDetails] = {}

    try:
        for platform in platforms:
            session_id = await automation.initiate_login(phone_number, platform)
            try:
                prompt = f"Enter the OTP sent to {mask_phone(phone_number)} for {platform}: "
                otp = (await asyncio.to_thread(otp_provider, prompt)).strip()
                if demo_mode and otp != DEMO_OTP:
                    raise ValidationError(f"Invalid OTP. Try '{DEMO_OTP}'")

                await automation.submit_otp(session_id, otp)
                carts[platform] = await automation.add_products_to_cart(session_id, product_urls, variants)
                logger.info("platform_cart_collected", platform=platform, total=str(carts[platform].total))
            finally:
                await automation.cleanup_session(session_id)
    finally:
        await automation.shutdown()

    return carts


def print_comparison(comparison: dict) -> None:
    summary = comparison["summary"]
    print(f"\n{'=' * 60}")
    print("CART COMPARISON")
    print(f"{'=' * 60}")
    for row in comparison["summary_df"].itertuples(index=False):
        marker = "  <- cheapest" if row.cheapest else ""
        flag = "" if row.complete else f" ({row.warning_count} unreadable values)"
        print(f"{row.platform:<12} {row.currency} {row.total:>10.2f}{flag}{marker}")
    if summary["platforms_compared"] > 1:
        print(f"Max saving: {summary['max_saving']:.2f}")
    print(f"{'=' * 60}")


def main(argv: Optional[list[str]] = None, otp_provider: Callable[[str], str] = input) -> int:
    """Run the cart comparison workflow.

    Returns:
        Exit code: 0 on success, 2 for usage or validation errors,
        3 for automation failures, 130 if interrupted, 4 otherwise.
    """
    args = parse_args(argv)

    configure_logging(args.verbose)
    logger = structlog.get_logger()

    try:
        settings = load_settings(args.settings if args.settings.exists() else None)
        if args.demo:
            settings["demo_mode"] = True
        if args.visible:
            settings["headless"] = False

        # Web UI mode
        if args.web:
            run_web_server(host=args.host, port=args.port, settings=settings)
            return 0

        if not args.phone or not args.platform or not args.url:
            print("Error: --phone, --platform and --url are required for CLI mode", file=sys.stderr)
            print("Use --web to start the API server instead", file=sys.stderr)
            return 2

        for platform in args.platform:
            validate_login(args.phone, platform)
        for url in args.url:
            if not is_valid_product_url(url):
                raise ValidationError(f"Invalid URL: {url}")
        variants = parse_variants(args.variant)

        platforms = load_platform_registry(args.platforms)
        automation = build_automation(settings, platforms)

        logger.info(
            "starting_comparison",
            platforms=args.platform,
            url_count=len(args.url),
            demo_mode=bool(settings.get("demo_mode")),
        )

        carts = asyncio.run(
            collect_carts(
                automation,
                args.phone,
                args.platform,
                args.url,
                variants,
                otp_provider,
                demo_mode=bool(settings.get("demo_mode")),
            )
        )

        comparison = compare_carts(carts)
        frames = {platform: cart_to_frames(cart, platform) for platform, cart in carts.items()}
        output_path = save_cart_report(comparison, frames, args.output, item_matrix=compare_items(carts))

        logger.info("comparison_complete", summary=comparison["summary"], output_file=str(output_path))
        print_comparison(comparison)
        print(f"Results saved to: {output_path}\n")
        return 0

    except (ValidationError, UnsupportedPlatform) as e:
        logger.error("validation_error", error=str(e))
        print(f"Validation Error: {e.public_message}", file=sys.stderr)
        return 2

    except (FileNotFoundError, ValueError) as e:
        logger.error("configuration_error", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2

    except GroceryCompareError as e:
        logger.error("automation_failed", code=e.code, error=str(e))
        print(f"Automation Error: {e}", file=sys.stderr)
        return 3

    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
        print("\nComparison interrupted by user.", file=sys.stderr)
        return 130

    except Exception as e:
        logger.exception("unexpected_error", error=str(e))
        print(f"Unexpected Error: {e}", file=sys.stderr)
        return 4


if __name__ == "__main__":
    sys.exit(main())
