"""
SQLite storage backend and partition catalog.

SQLite has no declarative partitioning, so a partition is emulated as a
standalone table with the parent's columns (``CREATE TABLE child AS SELECT *
FROM parent WHERE 0``). All sqlite3 work runs in a worker thread, one
connection per call.
"""

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

from ..partitions.partition_errors import PartitionOperationError, StorageUnavailableError
from ..partitions.partition_models import (
    PartitionConfig, PartitionMetadata, PartitionRange, PartitionStats
)
from ..partitions.partition_naming import parse_partition_name
from .interfaces import CatalogStore, StorageBackend, validate_identifier

logger = logging.getLogger(__name__)

# Used when the dbstat virtual table is not compiled into SQLite.
ESTIMATED_ROW_BYTES = 100

# PRAGMA auto_vacuum value for INCREMENTAL mode.
AUTO_VACUUM_INCREMENTAL = 2

# sqlite3.OperationalError messages that mean the database itself is gone.
_UNAVAILABLE_MESSAGES = (
    "unable to open database file",
    "disk i/o error",
    "database disk image is malformed",
    "file is not a database",
)

CATALOG_SCHEMA = """
CREATE TABLE IF NOT EXISTS partition_config (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL UNIQUE,
    retention_months INTEGER NOT NULL DEFAULT 12,
    future_partitions INTEGER NOT NULL DEFAULT 6,
    is_enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS partition_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_table TEXT NOT NULL,
    partition_name TEXT NOT NULL UNIQUE,
    partition_date TEXT NOT NULL,
    row_count INTEGER NOT NULL DEFAULT 0,
    size_bytes INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_analyzed_at TEXT,
    last_vacuumed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_partition_metadata_parent
    ON partition_metadata (parent_table, partition_date);
"""


def _is_unavailable(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _UNAVAILABLE_MESSAGES)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class _SQLiteDatabase:
    """Connection handling shared by the backend and the catalog."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self, autocommit: bool = False):
        try:
            conn = sqlite3.connect(self.db_path, isolation_level=None if autocommit else "")
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _call(self, func: Callable[..., Any], args: tuple, autocommit: bool) -> Any:
        with self._connect(autocommit) as conn:
            return func(conn, *args)

    async def _run(self, func: Callable[..., Any], *args, partition_name: Optional[str] = None,
                   autocommit: bool = False) -> Any:
        """Run ``func(conn, *args)`` in a worker thread and translate driver errors."""
        try:
            return await asyncio.to_thread(self._call, func, args, autocommit)
        except sqlite3.Error as e:
            if _is_unavailable(e):
                raise StorageUnavailableError(f"SQLite database {self.db_path} unavailable: {e}") from e
            if partition_name is not None:
                raise PartitionOperationError(partition_name, str(e)) from e
            raise


class SQLiteStorageBackend(_SQLiteDatabase, StorageBackend):
    """Partition commands against a SQLite database file."""

    async def initialize(self) -> None:
        """Switch the database file to incremental auto-vacuum if it is not already."""
        try:
            converted = await self._run(self._enable_incremental_vacuum, autocommit=True)
        except sqlite3.Error as e:
            raise StorageUnavailableError(
                f"Failed to enable incremental vacuum on {self.db_path}: {e}"
            ) from e
        if converted:
            logger.info(f"Enabled incremental auto-vacuum on {self.db_path}")

    @staticmethod
    def _enable_incremental_vacuum(conn: sqlite3.Connection) -> bool:
        if conn.execute("PRAGMA auto_vacuum").fetchone()[0] == AUTO_VACUUM_INCREMENTAL:
            return False
        conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
        # Existing files only pick up the new mode after a full rebuild.
        conn.execute("VACUUM")
        return True

    async def create_partition(self, partition: PartitionRange) -> bool:
        validate_identifier(partition.parent_table)
        created = await self._run(self._create_partition, partition,
                                  partition_name=partition.partition_name)
        if created:
            logger.info(f"Created partition {partition.partition_name} "
                        f"[{partition.range_start}, {partition.range_end})")
        return created

    @staticmethod
    def _create_partition(conn: sqlite3.Connection, partition: PartitionRange) -> bool:
        name = partition.partition_name
        row = conn.execute("SELECT type FROM sqlite_master WHERE name = ?", (name,)).fetchone()
        if row is not None:
            if row[0] == "table":
                return False
            raise PartitionOperationError(name, f"{name} already exists as a {row[0]}")

        parent = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (partition.parent_table,)
        ).fetchone()
        if parent is None:
            raise PartitionOperationError(name, f"Parent table {partition.parent_table} does not exist")

        conn.execute(f'CREATE TABLE "{name}" AS SELECT * FROM "{partition.parent_table}" WHERE 0')
        return True

    async def drop_partition(self, partition: PartitionRange) -> None:
        await self._run(self._drop_partition, partition.partition_name,
                        partition_name=partition.partition_name)

    @staticmethod
    def _drop_partition(conn: sqlite3.Connection, name: str) -> None:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        if row is None:
            raise PartitionOperationError(name, f"Partition {name} does not exist")
        conn.execute(f'DROP TABLE "{name}"')

    async def list_partitions(self, parent_table: str) -> List[str]:
        validate_identifier(parent_table)
        names = await self._run(self._list_tables)
        return sorted(name for name in names if parse_partition_name(parent_table, name))

    @staticmethod
    def _list_tables(conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        return [row[0] for row in rows]

    async def partition_stats(self, partition_name: str) -> PartitionStats:
        return await self._run(self._partition_stats, partition_name, partition_name=partition_name)

    @staticmethod
    def _partition_stats(conn: sqlite3.Connection, name: str) -> PartitionStats:
        row_count = conn.execute(f'SELECT COUNT(*) FROM "{name}"').fetchone()[0]
        try:
            size = conn.execute("SELECT SUM(pgsize) FROM dbstat WHERE name = ?", (name,)).fetchone()[0]
        except sqlite3.OperationalError:
            size = None
        if size is None:
            size = row_count * ESTIMATED_ROW_BYTES
        return PartitionStats(row_count=row_count, size_bytes=int(size))

    async def analyze_partition(self, partition_name: str) -> None:
        await self._run(self._analyze, partition_name, partition_name=partition_name)

    @staticmethod
    def _analyze(conn: sqlite3.Connection, name: str) -> None:
        SQLiteStorageBackend._require_table(conn, name)
        conn.execute(f'ANALYZE "{name}"')

    async def vacuum_partition(self, partition_name: str, full: bool = False) -> None:
        await self._run(self._vacuum, partition_name, full,
                        partition_name=partition_name, autocommit=True)

    @staticmethod
    def _vacuum(conn: sqlite3.Connection, name: str, full: bool) -> None:
        SQLiteStorageBackend._require_table(conn, name)
        # SQLite reclaims space per database file, not per table.
        if full:
            conn.execute("VACUUM")
            return
        if conn.execute("PRAGMA auto_vacuum").fetchone()[0] != AUTO_VACUUM_INCREMENTAL:
            raise PartitionOperationError(
                name, "Incremental vacuum needs auto_vacuum=INCREMENTAL; initialize the backend "
                      "or run a full vacuum"
            )
        conn.execute("PRAGMA incremental_vacuum").fetchall()

    @staticmethod
    def _require_table(conn: sqlite3.Connection, name: str) -> None:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        if row is None:
            raise PartitionOperationError(name, f"Partition {name} does not exist")


class SQLiteCatalogStore(_SQLiteDatabase, CatalogStore):
    """partition_config and partition_metadata tables in a SQLite file."""

    def __init__(self, db_path: str):
        super().__init__(db_path)
        self._init_schema()

    def _init_schema(self):
        """Create catalog tables if they do not exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._connect() as conn:
                conn.executescript(CATALOG_SCHEMA)
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to initialize catalog in {self.db_path}: {e}") from e

    @staticmethod
    def _config_from_row(row: sqlite3.Row) -> PartitionConfig:
        return PartitionConfig(
            table_name=row["table_name"],
            retention_months=row["retention_months"],
            future_partitions=row["future_partitions"],
            is_enabled=bool(row["is_enabled"]),
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    @staticmethod
    def _metadata_from_row(row: sqlite3.Row) -> PartitionMetadata:
        return PartitionMetadata(
            parent_table=row["parent_table"],
            partition_name=row["partition_name"],
            partition_date=date.fromisoformat(row["partition_date"]),
            row_count=row["row_count"],
            size_bytes=row["size_bytes"],
            last_analyzed_at=_parse_timestamp(row["last_analyzed_at"]),
            created_at=_parse_timestamp(row["created_at"]),
            last_vacuumed_at=_parse_timestamp(row["last_vacuumed_at"]),
        )

    async def list_configs(self, enabled_only: bool = False) -> List[PartitionConfig]:
        def query(conn):
            conn.row_factory = sqlite3.Row
            sql = "SELECT * FROM partition_config"
            if enabled_only:
                sql += " WHERE is_enabled = 1"
            return conn.execute(sql + " ORDER BY table_name").fetchall()

        return [self._config_from_row(row) for row in await self._run(query)]

    async def get_config(self, table_name: str) -> Optional[PartitionConfig]:
        def query(conn):
            conn.row_factory = sqlite3.Row
            return conn.execute(
                "SELECT * FROM partition_config WHERE table_name = ?", (table_name,)
            ).fetchone()

        row = await self._run(query)
        return self._config_from_row(row) if row else None

    async def save_config(self, config: PartitionConfig) -> None:
        config.validate()
        now = datetime.now(timezone.utc).isoformat()

        def upsert(conn):
            conn.execute("""
                INSERT INTO partition_config
                    (table_name, retention_months, future_partitions, is_enabled, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (table_name) DO UPDATE SET
                    retention_months = excluded.retention_months,
                    future_partitions = excluded.future_partitions,
                    is_enabled = excluded.is_enabled,
                    updated_at = excluded.updated_at
            """, (config.table_name, config.retention_months, config.future_partitions,
                  int(config.is_enabled), now, now))

        await self._run(upsert)
        logger.info(f"Saved partition config for {config.table_name}")

    async def seed_configs(self, configs: Iterable[PartitionConfig]) -> int:
        rows = []
        now = datetime.now(timezone.utc).isoformat()
        for config in configs:
            config.validate()
            rows.append((config.table_name, config.retention_months, config.future_partitions,
                         int(config.is_enabled), now, now))

        def insert(conn):
            before = conn.total_changes
            conn.executemany("""
                INSERT INTO partition_config
                    (table_name, retention_months, future_partitions, is_enabled, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (table_name) DO NOTHING
            """, rows)
            return conn.total_changes - before

        return await self._run(insert)

    async def list_metadata(self, parent_table: Optional[str] = None) -> List[PartitionMetadata]:
        def query(conn):
            conn.row_factory = sqlite3.Row
            if parent_table is None:
                return conn.execute(
                    "SELECT * FROM partition_metadata ORDER BY partition_date DESC, parent_table"
                ).fetchall()
            return conn.execute(
                "SELECT * FROM partition_metadata WHERE parent_table = ? "
                "ORDER BY partition_date DESC, parent_table",
                (parent_table,)
            ).fetchall()

        return [self._metadata_from_row(row) for row in await self._run(query)]

    async def get_metadata(self, partition_name: str) -> Optional[PartitionMetadata]:
        def query(conn):
            conn.row_factory = sqlite3.Row
            return conn.execute(
                "SELECT * FROM partition_metadata WHERE partition_name = ?", (partition_name,)
            ).fetchone()

        row = await self._run(query)
        return self._metadata_from_row(row) if row else None

    async def ensure_metadata(self, parent_table: str, partition_name: str,
                              partition_date: date, created_at: datetime) -> bool:
        def insert(conn):
            cursor = conn.execute("""
                INSERT INTO partition_metadata (parent_table, partition_name, partition_date, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (partition_name) DO NOTHING
            """, (parent_table, partition_name, partition_date.isoformat(), created_at.isoformat()))
            return cursor.rowcount == 1

        return await self._run(insert, partition_name=partition_name)

    async def update_statistics(self, parent_table: str, partition_name: str, partition_date: date,
                                row_count: int, size_bytes: int, analyzed_at: datetime) -> None:
        def upsert(conn):
            conn.execute("""
                INSERT INTO partition_metadata
                    (parent_table, partition_name, partition_date, row_count, size_bytes,
                     created_at, last_analyzed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (partition_name) DO UPDATE SET
                    row_count = excluded.row_count,
                    size_bytes = excluded.size_bytes,
                    last_analyzed_at = excluded.last_analyzed_at
            """, (parent_table, partition_name, partition_date.isoformat(), row_count, size_bytes,
                  analyzed_at.isoformat(), analyzed_at.isoformat()))

        await self._run(upsert, partition_name=partition_name)

    async def mark_vacuumed(self, partition_name: str, vacuumed_at: datetime) -> None:
        def update(conn):
            conn.execute(
                "UPDATE partition_metadata SET last_vacuumed_at = ? WHERE partition_name = ?",
                (vacuumed_at.isoformat(), partition_name)
            )

        await self._run(update, partition_name=partition_name)

    async def delete_metadata(self, partition_name: str) -> None:
        def delete(conn):
            conn.execute("DELETE FROM partition_metadata WHERE partition_name = ?", (partition_name,))

        await self._run(delete, partition_name=partition_name)
