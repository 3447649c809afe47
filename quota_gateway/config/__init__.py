"""Configuration loading for Quota Gateway."""

from .loader import GatewayConfig, load_gateway_config

__all__ = ["GatewayConfig", "load_gateway_config"]
