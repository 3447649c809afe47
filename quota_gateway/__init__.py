"""
Quota Gateway.

Mediates access to a chat-completion API on behalf of many users while
enforcing a per-user daily token quota.
"""

__version__ = "0.1.0"
