"""
Storage layer for Quota Gateway.

Persists per-user daily usage records in a durable SQLite store, with an
in-process fallback when the durable store cannot be opened.
"""
