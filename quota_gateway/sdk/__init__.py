"""
SDK for Quota Gateway.

Provides the upstream completion client used by the request handler.
"""

from .openai_client import CompletionGateway, CompletionResult

__all__ = ["CompletionGateway", "CompletionResult"]
