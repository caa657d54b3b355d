"""Tests for configuration loader module."""
from pathlib import Path

import pytest
import yaml

from grocery_compare.config_loader import (
    build_automation_config,
    load_config_secure,
    load_platforms,
    load_settings,
)
from grocery_compare.factory import load_platform_registry
from grocery_compare.models import AutomationConfig, Platform
from grocery_compare.platforms import DEFAULT_PLATFORM_CONFIGS

CONFIG_DIR = Path(__file__).parent.parent / "config"


class TestLoadConfigSecure:
    """Tests for secure YAML loading."""

    def test_load_valid_yaml(self, tmp_path):
        """Test loading a valid YAML file."""
        yaml_content = """
key1: value1
key2: 123
nested:
  inner: true
"""
        filepath = tmp_path / "config.yaml"
        filepath.write_text(yaml_content)

        config = load_config_secure(filepath)

        assert config["key1"] == "value1"
        assert config["key2"] == 123
        assert config["nested"]["inner"] is True

    def test_file_not_found(self, tmp_path):
        """Test FileNotFoundError for missing file."""
        with pytest.raises(FileNotFoundError):
            load_config_secure(tmp_path / "nonexistent.yaml")

    def test_invalid_yaml_structure(self, tmp_path):
        """Test ValueError for non-dictionary YAML."""
        filepath = tmp_path / "list.yaml"
        filepath.write_text("- item1\n- item2\n- item3")

        with pytest.raises(ValueError, match="must be a dictionary"):
            load_config_secure(filepath)

    def test_safe_load_prevents_code_execution(self, tmp_path):
        """Test that python object tags are rejected rather than executed."""
        dangerous_yaml = """
!!python/object/apply:os.system
args: ['echo HACKED']
"""
        filepath = tmp_path / "dangerous.yaml"
        filepath.write_text(dangerous_yaml)

        with pytest.raises(Exception):
            load_config_secure(filepath)


class TestLoadSettings:
    """Tests for settings loading, defaults and environment overrides."""

    def test_defaults_without_file(self):
        """Test defaults when no settings file is given."""
        settings = load_settings(environ={})

        assert settings["timeout_ms"] == 30000
        assert settings["headless"] is True
        assert settings["demo_mode"] is False
        assert settings["cache_ttl_seconds"] == 1800
        assert settings["otp_settle_ms"] == 3000
        assert settings["max_contexts"] is None

    def test_file_values_override_defaults(self, tmp_path):
        """Test that explicit values override defaults and extras are kept."""
        filepath = tmp_path / "settings.yaml"
        filepath.write_text("timeout_ms: 60000\nheadless: false\ncustom_setting: x\n")

        settings = load_settings(filepath, environ={})

        assert settings["timeout_ms"] == 60000
        assert settings["headless"] is False
        assert settings["custom_setting"] == "x"
        assert settings["login_settle_ms"] == 2000

    def test_environment_overrides(self, tmp_path):
        """Test environment variables win over the file."""
        filepath = tmp_path / "settings.yaml"
        filepath.write_text("headless: true\ntimeout_ms: 1000\n")

        settings = load_settings(
            filepath,
            environ={
                "HEADLESS_BROWSER": "false",
                "BROWSER_TIMEOUT": "45000",
                "USE_MOCK_DATA": "true",
                "SESSION_STORE_DIR": "/tmp/sessions",
                "MAX_BROWSER_CONTEXTS": "3",
            },
        )

        assert settings["headless"] is False
        assert settings["timeout_ms"] == 45000
        assert settings["demo_mode"] is True
        assert settings["store_dir"] == "/tmp/sessions"
        assert settings["max_contexts"] == 3

    def test_empty_environment_value_ignored(self):
        """Test blank environment variables do not override."""
        settings = load_settings(environ={"BROWSER_TIMEOUT": ""})

        assert settings["timeout_ms"] == 30000

    def test_invalid_environment_value(self):
        """Test ValueError names the offending variable."""
        with pytest.raises(ValueError, match="BROWSER_TIMEOUT"):
            load_settings(environ={"BROWSER_TIMEOUT": "soon"})

    def test_shipped_settings_file(self):
        """Test the bundled settings file loads."""
        settings = load_settings(CONFIG_DIR / "settings.yaml", environ={})

        assert settings["currency"] == "INR"
        assert settings["max_contexts"] == 20


class TestBuildAutomationConfig:
    """Tests for building AutomationConfig from settings."""

    def test_unknown_keys_ignored(self):
        """Test settings outside AutomationConfig are dropped."""
        settings = load_settings(environ={})
        settings["timeout_ms"] = 5000

        config = build_automation_config(settings)

        assert isinstance(config, AutomationConfig)
        assert config.timeout_ms == 5000
        assert config.otp_settle_ms == 3000
        assert not hasattr(config, "store_dir")


class TestLoadPlatforms:
    """Tests for platform configuration loading."""

    def test_override_file(self, tmp_path):
        """Test a platforms file replaces the built-in table, and its absence keeps it."""
        entries = {
            str(platform): {"base_url": config.base_url, "selectors": config.selectors.as_dict()}
            for platform, config in DEFAULT_PLATFORM_CONFIGS.items()
        }
        entries["zepto"]["base_url"] = "https://www.zeptonow.com"
        filepath = tmp_path / "platforms.yaml"
        filepath.write_text(yaml.safe_dump({"platforms": entries}))

        registry = load_platform_registry(filepath)

        assert registry.resolve("zepto").base_url == "https://www.zeptonow.com"
        assert registry.resolve("blinkit") == DEFAULT_PLATFORM_CONFIGS[Platform.BLINKIT]
        assert load_platform_registry(tmp_path / "missing.yaml").resolve("zepto").base_url == "https://zepto.in"
        assert load_platform_registry(None).resolve("zepto").base_url == "https://zepto.in"

    def test_missing_platforms_section(self, tmp_path):
        """Test ValueError when platforms section is missing."""
        filepath = tmp_path / "platforms.yaml"
        filepath.write_text("other: 1\n")

        with pytest.raises(ValueError, match="platforms"):
            load_platforms(filepath)

    def test_unknown_platform_rejected(self, tmp_path):
        """Test names outside the enumeration are rejected."""
        filepath = tmp_path / "platforms.yaml"
        filepath.write_text("platforms:\n  bigbasket:\n    base_url: https://bigbasket.com\n    selectors: {}\n")

        with pytest.raises(ValueError, match="Unknown platform 'bigbasket'"):
            load_platforms(filepath)

    def test_empty_selector_rejected(self, tmp_path):
        """Test a blank selector fails validation."""
        selectors = DEFAULT_PLATFORM_CONFIGS[Platform.BLINKIT].selectors.as_dict()
        selectors["cart_button"] = "  "
        lines = ["platforms:", "  blinkit:", "    base_url: https://blinkit.com", "    selectors:"]
        lines += [f"      {key}: '{value}'" for key, value in selectors.items()]
        filepath = tmp_path / "platforms.yaml"
        filepath.write_text("\n".join(lines) + "\n")

        with pytest.raises(ValueError, match="cart_button"):
            load_platforms(filepath)

    def test_missing_base_url_rejected(self, tmp_path):
        """Test an empty base URL fails validation."""
        filepath = tmp_path / "platforms.yaml"
        filepath.write_text("platforms:\n  zepto:\n    base_url: ''\n    selectors: {}\n")

        with pytest.raises(ValueError, match="base_url"):
            load_platforms(filepath)
