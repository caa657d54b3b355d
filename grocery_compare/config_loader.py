"""Configuration loading with YAML security."""
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .models import AutomationConfig, Platform, PlatformConfig, PlatformSelectors
from .platforms import PlatformRegistry


SETTINGS_DEFAULTS: dict[str, Any] = {
    "headless": True,
    "timeout_ms": 30000,
    "navigation_timeout_ms": 30000,
    "login_settle_ms": 2000,
    "otp_settle_ms": 3000,
    "add_to_cart_settle_ms": 2000,
    "cart_settle_ms": 2000,
    "network_idle_timeout_ms": 5000,
    "max_contexts": None,
    "currency": "INR",
    "demo_mode": False,
    "store_dir": "data/sessions",
    "cache_ttl_seconds": 1800,
}

# Environment variable -> (settings key, converter)
ENV_OVERRIDES = {
    "HEADLESS_BROWSER": ("headless", "bool"),
    "BROWSER_TIMEOUT": ("timeout_ms", "int"),
    "USE_MOCK_DATA": ("demo_mode", "bool"),
    "SESSION_STORE_DIR": ("store_dir", "str"),
    "SESSION_CACHE_TTL": ("cache_ttl_seconds", "int"),
    "MAX_BROWSER_CONTEXTS": ("max_contexts", "int"),
}


def load_config_secure(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration with security hardening.

    CRITICAL: Uses safe_load() to prevent code execution attacks.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary containing the configuration.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config is not a valid dictionary.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        raise ValueError("Configuration must be a dictionary")

    return config


def _convert_env(raw: str, kind: str) -> Any:
    if kind == "bool":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if kind == "int":
        return int(raw)
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """Load settings from YAML, apply defaults, then environment overrides.

    Args:
        config_path: Path to the settings YAML file. Defaults only when None.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Dictionary containing settings with defaults applied.

    Raises:
        ValueError: If an environment override cannot be converted.
    """
    config = load_config_secure(config_path) if config_path is not None else {}

    for key, value in SETTINGS_DEFAULTS.items():
        config.setdefault(key, value)

    environ = os.environ if environ is None else environ
    for env_name, (key, kind) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            config[key] = _convert_env(raw, kind)
        except ValueError:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}") from None

    return config


def build_automation_config(settings: Mapping[str, Any]) -> AutomationConfig:
    """Create an AutomationConfig from a settings dictionary."""
    fields = AutomationConfig.__dataclass_fields__
    return AutomationConfig(**{k: v for k, v in settings.items() if k in fields})


def _parse_platform(name: str, entry: Any) -> PlatformConfig:
    if not isinstance(entry, dict):
        raise ValueError(f"Platform '{name}' must be a mapping")

    try:
        platform = Platform(name)
    except ValueError:
        raise ValueError(f"Unknown platform '{name}'") from None

    base_url = str(entry.get("base_url") or "").strip()
    if not base_url:
        raise ValueError(f"Platform '{name}' is missing base_url")

    selectors = entry.get("selectors")
    if not isinstance(selectors, dict):
        raise ValueError(f"Platform '{name}' is missing selectors")

    required = PlatformSelectors.__dataclass_fields__
    missing = [key for key in required if not str(selectors.get(key) or "").strip()]
    if missing:
        raise ValueError(f"Platform '{name}' has missing or empty selectors: {missing}")

    return PlatformConfig(
        name=platform,
        base_url=base_url,
        selectors=PlatformSelectors(**{key: str(selectors[key]).strip() for key in required}),
    )


def load_platforms(config_path: Path) -> PlatformRegistry:
    """Load platform configurations from YAML file.

    Args:
        config_path: Path to the platforms YAML file.

    Returns:
        PlatformRegistry holding every configured platform.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If the platforms section is missing or invalid.
    """
    config = load_config_secure(config_path)

    if "platforms" not in config or not isinstance(config["platforms"], dict):
        raise ValueError("Configuration must contain 'platforms' section")

    configs = {}
    for name, entry in config["platforms"].items():
        parsed = _parse_platform(str(name), entry)
        configs[parsed.name] = parsed

    return PlatformRegistry(configs)
