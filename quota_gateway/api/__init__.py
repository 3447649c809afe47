"""
Request handling for Quota Gateway.

Framework-neutral request handler plus a small WSGI adapter.
"""

from .handler import GatewayResponse, RequestHandler

__all__ = ["GatewayResponse", "RequestHandler"]
