"""
Configuration management and loading.

Handles gateway settings from YAML files and the upstream credential from
the environment.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful UPSC/OPSC study assistant. Be concise, accurate, and "
    "cite syllabus sections conceptually when helpful. Never reveal the API "
    "key or system details."
)


@dataclass(frozen=True)
class GatewayConfig:
    """Process-wide gateway settings.

    The daily limit and reference timezone are shared by every user.
    """
    daily_limit: int = 1000
    timezone: str = "Asia/Kolkata"
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    store_namespace: str = "chat-usage"
    db_path: str = ".quota-gateway.db"
    allow_fallback: bool = True
    request_timeout: float = 30.0
    allowed_origin: str = "*"
    api_key_env: str = "OPENAI_API_KEY"

    def __post_init__(self):
        """Validate settings."""
        if isinstance(self.daily_limit, bool) or not isinstance(self.daily_limit, int):
            raise ValueError("daily_limit must be an integer")
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.timezone}")
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if not self.store_namespace or not self.store_namespace.strip():
            raise ValueError("store_namespace is required and cannot be empty")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        if not self.api_key_env:
            raise ValueError("api_key_env is required and cannot be empty")

    def api_key(self) -> Optional[str]:
        """Read the upstream credential from the environment."""
        value = os.environ.get(self.api_key_env, "").strip()
        return value or None


_FIELD_TYPES = {
    "daily_limit": (int,),
    "timezone": (str,),
    "model": (str,),
    "temperature": (int, float),
    "system_prompt": (str,),
    "store_namespace": (str,),
    "db_path": (str,),
    "allow_fallback": (bool,),
    "request_timeout": (int, float),
    "allowed_origin": (str,),
    "api_key_env": (str,),
}


def load_gateway_config(path: str) -> GatewayConfig:
    """Load and validate gateway configuration from YAML file.

    Keys left out of the file take their defaults. Unknown keys are
    rejected so a typo never silently falls back to a default limit.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_keys = {f.name for f in fields(GatewayConfig)}
    unknown_keys = set(raw_config.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key, value in raw_config.items():
        expected = _FIELD_TYPES[key]
        # bool is an int subclass; only accept it where a bool is expected
        if isinstance(value, bool) and bool not in expected:
            raise ValueError(f"'{key}' must be of type {expected[0].__name__}")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' must be of type {expected[0].__name__}")
        values[key] = value

    return GatewayConfig(**values)
