"""Wiring of repository, registry and automation from loaded settings."""
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import structlog

from .automation import GroceryAutomation
from .browser_session import BrowserSessionRegistry
from .config_loader import build_automation_config, load_platforms
from .demo import DemoAutomation
from .platforms import PlatformRegistry, default_registry
from .session_store import InMemorySessionCache, JsonFileSessionStore, SessionRepository

logger = structlog.get_logger()


def build_repository(settings: Mapping[str, Any]) -> SessionRepository:
    store = JsonFileSessionStore(Path(settings["store_dir"]))
    cache = InMemorySessionCache(ttl_seconds=int(settings["cache_ttl_seconds"]))
    return SessionRepository(store, cache)


def load_platform_registry(platforms_path: Optional[Path] = None) -> PlatformRegistry:
    """Platforms from YAML when the file exists, the built-in table otherwise."""
    if platforms_path is not None and platforms_path.exists():
        return load_platforms(platforms_path)
    return default_registry()


def build_automation(
    settings: Mapping[str, Any],
    platforms: Optional[PlatformRegistry] = None,
) -> Union[GroceryAutomation, DemoAutomation]:
    """Create the automation selected by ``settings['demo_mode']``."""
    platforms = platforms or default_registry()
    repository = build_repository(settings)

    if settings.get("demo_mode"):
        logger.info("demo_mode_enabled", store_dir=str(settings["store_dir"]))
        return DemoAutomation(repository, platforms)

    config = build_automation_config(settings)
    logger.info("automation_configured", headless=config.headless, max_contexts=config.max_contexts)
    return GroceryAutomation(BrowserSessionRegistry(config), repository, platforms, config)
