"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for gateway configs.
"""

import os
import tempfile

import pytest
import yaml

from quota_gateway.config.loader import (
    DEFAULT_SYSTEM_PROMPT,
    GatewayConfig,
    load_gateway_config
)


class TestGatewayConfigDefaults:
    """Test default settings."""

    def test_defaults(self):
        """Defaults match the reference deployment."""
        config = GatewayConfig()
        assert config.daily_limit == 1000
        assert config.timezone == "Asia/Kolkata"
        assert config.model == "gpt-4o-mini"
        assert config.temperature == 0.3
        assert config.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert config.store_namespace == "chat-usage"
        assert config.allow_fallback is True
        assert config.api_key_env == "OPENAI_API_KEY"

    def test_invalid_daily_limit(self):
        """Daily limit must be a positive integer."""
        with pytest.raises(ValueError, match="daily_limit must be > 0"):
            GatewayConfig(daily_limit=0)
        with pytest.raises(ValueError, match="daily_limit must be an integer"):
            GatewayConfig(daily_limit=10.5)

    def test_invalid_timezone(self):
        """Unknown timezones are rejected."""
        with pytest.raises(ValueError, match="Unknown timezone"):
            GatewayConfig(timezone="Nowhere/Special")

    def test_invalid_temperature(self):
        """Temperature must be between 0 and 2."""
        with pytest.raises(ValueError, match="temperature"):
            GatewayConfig(temperature=3.0)

    def test_invalid_timeout(self):
        """Request timeout must be positive."""
        with pytest.raises(ValueError, match="request_timeout"):
            GatewayConfig(request_timeout=0)

    def test_empty_model(self):
        """Model is required."""
        with pytest.raises(ValueError, match="model is required"):
            GatewayConfig(model="  ")


class TestApiKey:
    """Test credential lookup."""

    def test_reads_from_named_env_var(self, monkeypatch):
        """The key is read from the configured variable."""
        monkeypatch.setenv("QG_TEST_KEY", "sk-test")
        assert GatewayConfig(api_key_env="QG_TEST_KEY").api_key() == "sk-test"

    def test_missing_key_is_none(self, monkeypatch):
        """An unset or blank variable means no credential."""
        monkeypatch.delenv("QG_TEST_KEY", raising=False)
        assert GatewayConfig(api_key_env="QG_TEST_KEY").api_key() is None
        monkeypatch.setenv("QG_TEST_KEY", "   ")
        assert GatewayConfig(api_key_env="QG_TEST_KEY").api_key() is None


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "daily_limit": 5000,
            "timezone": "Europe/Berlin",
            "model": "gpt-4o",
            "temperature": 0,
            "allow_fallback": False,
            "request_timeout": 10
        })

        config = load_gateway_config(config_path)

        assert config.daily_limit == 5000
        assert config.timezone == "Europe/Berlin"
        assert config.model == "gpt-4o"
        assert config.temperature == 0
        assert config.allow_fallback is False
        assert config.request_timeout == 10

    def test_omitted_keys_take_defaults(self):
        """Keys left out keep their defaults."""
        config = load_gateway_config(self._write_config({"daily_limit": 2000}))

        assert config.daily_limit == 2000
        assert config.timezone == "Asia/Kolkata"

    def test_missing_file(self):
        """Test missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Gateway config file not found"):
            load_gateway_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        """Test invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("daily_limit: [1000\n")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_gateway_config(config_path)

    def test_empty_file(self):
        """Test empty config raises ValueError."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_gateway_config(config_path)

    def test_non_mapping_rejected(self):
        """A top-level list is not a valid configuration."""
        with pytest.raises(ValueError, match="must be a dictionary"):
            load_gateway_config(self._write_config([1, 2, 3]))

    def test_unknown_keys_rejected(self):
        """Typos are caught rather than silently ignored."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_gateway_config(self._write_config({"daily_limt": 1000}))

    def test_wrong_type_rejected(self):
        """Values of the wrong type are rejected."""
        with pytest.raises(ValueError, match="'daily_limit' must be of type int"):
            load_gateway_config(self._write_config({"daily_limit": "1000"}))

    def test_bool_not_accepted_as_number(self):
        """Booleans are not accepted where numbers are expected."""
        with pytest.raises(ValueError, match="'daily_limit'"):
            load_gateway_config(self._write_config({"daily_limit": True}))

    def test_invalid_value_rejected(self):
        """Values are validated after loading."""
        with pytest.raises(ValueError, match="daily_limit must be > 0"):
            load_gateway_config(self._write_config({"daily_limit": -5}))
