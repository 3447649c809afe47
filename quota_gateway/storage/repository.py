"""
Repository pattern for usage data access.

Two interchangeable key/value backends hold usage records: a durable SQLite
store namespaced per deployment, and an in-process fallback used when the
durable store cannot be opened. Both support conditional writes keyed on
the record version so concurrent commits merge instead of overwriting.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .db import get_connection
from .models import UsageRecord
from ..config.loader import GatewayConfig
from ..core.errors import ConfigurationError, StorageError
from ..log import get_logger

logger = get_logger(__name__)


class StorageBackend(Enum):
    """Which backend is serving usage records."""
    DURABLE = "durable"
    FALLBACK = "fallback"


def usage_key(user: str, day_key: str) -> str:
    """Build the store key for one user on one day."""
    return f"{user}:{day_key}"


class UsageStore(ABC):
    """Key/value store for usage records."""

    @abstractmethod
    def get(self, key: str) -> UsageRecord:
        """Return the record stored at key, or a zeroed record if absent."""

    @abstractmethod
    def set(
        self,
        key: str,
        record: UsageRecord,
        expected_version: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        """Store record at key.

        With expected_version None the write is unconditional. Otherwise it
        only lands if the stored version still equals expected_version.

        Returns:
            True if the write landed, False on a version conflict
        """

    @abstractmethod
    def list_day(self, day_key: str) -> List[Tuple[str, UsageRecord]]:
        """Return (user, record) pairs stored for the given day."""


class InMemoryUsageStore(UsageStore):
    """Process-local fallback store.

    Data is lost on restart and never shared between processes.
    """

    def __init__(self):
        self._records: Dict[str, Tuple[str, UsageRecord]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> UsageRecord:
        with self._lock:
            entry = self._records.get(key)
        if entry is None:
            return UsageRecord.zero()
        return entry[1]

    def set(
        self,
        key: str,
        record: UsageRecord,
        expected_version: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        with self._lock:
            current = self._records.get(key)
            current_version = current[1].version if current else 0
            if expected_version is not None and expected_version != current_version:
                return False
            user = (metadata or {}).get("email") or key.rsplit(":", 1)[0]
            self._records[key] = (user, replace(record, version=current_version + 1))
            return True

    def list_day(self, day_key: str) -> List[Tuple[str, UsageRecord]]:
        suffix = f":{day_key}"
        with self._lock:
            items = [entry for key, entry in self._records.items() if key.endswith(suffix)]
        return sorted(items, key=lambda item: item[0])


class SQLiteUsageStore(UsageStore):
    """Durable usage store backed by a SQLite table.

    Records are namespaced so several deployments can share one database
    file without seeing each other's usage.
    """

    def __init__(self, db_path: str = ".quota-gateway.db", namespace: str = "chat-usage"):
        """Open the database and make sure the schema exists.

        Args:
            db_path: Path to SQLite database file
            namespace: Store namespace records are kept under

        Raises:
            sqlite3.Error: If the database cannot be opened or initialized
        """
        self.db_path = db_path
        self.namespace = namespace
        self._conn = get_connection(db_path)
        self._lock = threading.Lock()
        try:
            initialize_schema(self._conn)
        except sqlite3.Error:
            self._conn.close()
            raise

    def get(self, key: str) -> UsageRecord:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value, version FROM usage_record WHERE namespace = ? AND key = ?",
                    (self.namespace, key)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error("Failed to read usage record %s: %s", key, e)
            raise StorageError("Usage storage is unavailable") from e

        if row is None:
            return UsageRecord.zero()
        return _decode(key, row[0], row[1])

    def set(
        self,
        key: str,
        record: UsageRecord,
        expected_version: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        params = (
            record.to_json(),
            json.dumps(metadata or {}),
            datetime.now(timezone.utc).isoformat()
        )
        try:
            with self._lock:
                if expected_version is None:
                    cursor = self._conn.execute("""
                        INSERT INTO usage_record
                        (namespace, key, value, metadata, version, updated_at)
                        VALUES (?, ?, ?, ?, 1, ?)
                        ON CONFLICT(namespace, key) DO UPDATE SET
                            value = excluded.value,
                            metadata = excluded.metadata,
                            version = usage_record.version + 1,
                            updated_at = excluded.updated_at
                    """, (self.namespace, key) + params)
                elif expected_version == 0:
                    cursor = self._conn.execute("""
                        INSERT INTO usage_record
                        (namespace, key, value, metadata, version, updated_at)
                        VALUES (?, ?, ?, ?, 1, ?)
                        ON CONFLICT(namespace, key) DO NOTHING
                    """, (self.namespace, key) + params)
                else:
                    cursor = self._conn.execute("""
                        UPDATE usage_record
                        SET value = ?, metadata = ?, updated_at = ?, version = version + 1
                        WHERE namespace = ? AND key = ? AND version = ?
                    """, params + (self.namespace, key, expected_version))
                self._conn.commit()
                return cursor.rowcount == 1
        except sqlite3.Error as e:
            logger.error("Failed to write usage record %s: %s", key, e)
            raise StorageError("Usage storage is unavailable") from e

    def list_day(self, day_key: str) -> List[Tuple[str, UsageRecord]]:
        try:
            with self._lock:
                rows = self._conn.execute("""
                    SELECT key, value, version FROM usage_record
                    WHERE namespace = ? AND key LIKE ?
                    ORDER BY key
                """, (self.namespace, f"%:{day_key}")).fetchall()
        except sqlite3.Error as e:
            raise StorageError("Usage storage is unavailable") from e
        return [
            (key.rsplit(":", 1)[0], _decode(key, value, version))
            for key, value, version in rows
        ]

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()


def _decode(key: str, raw: str, version: int) -> UsageRecord:
    """Parse a stored row, reporting corrupt data as a storage failure."""
    try:
        return UsageRecord.from_json(raw, version=version)
    except ValueError as e:
        logger.error("Corrupt usage record %s: %s", key, e)
        raise StorageError(f"Corrupt usage record for {key}") from e


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create the usage_record table if it doesn't exist.

    Args:
        conn: Open SQLite connection
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS usage_record (
            namespace TEXT NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            metadata TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (namespace, key)
        )
    """)
    conn.commit()


@dataclass(frozen=True)
class StorageHandle:
    """The usage store selected for this process and which backend it is."""
    store: UsageStore
    backend: StorageBackend

    @property
    def degraded(self) -> bool:
        """True when quota tracking is process-local only."""
        return self.backend == StorageBackend.FALLBACK


def open_usage_store(config: GatewayConfig) -> StorageHandle:
    """Select the usage store for this process.

    The durable store is tried once. If it cannot be opened the in-memory
    fallback is used for the rest of the process lifetime; the durable store
    is not retried per request.

    Args:
        config: Gateway configuration

    Returns:
        StorageHandle owning the selected store

    Raises:
        ConfigurationError: If the durable store fails and fallback is disabled
    """
    try:
        store = SQLiteUsageStore(config.db_path, config.store_namespace)
    except (sqlite3.Error, OSError) as e:
        if not config.allow_fallback:
            logger.error("Durable usage store unavailable and fallback disabled: %s", e)
            raise ConfigurationError("Usage storage is not configured") from e
        logger.warning(
            "Durable usage store unavailable (%s); using in-memory fallback. "
            "Quota tracking is per-process and lost on restart.", e
        )
        return StorageHandle(InMemoryUsageStore(), StorageBackend.FALLBACK)

    logger.info("Using durable usage store at %s (namespace %s)",
                config.db_path, config.store_namespace)
    return StorageHandle(store, StorageBackend.DURABLE)
