"""
PostgreSQL storage backend and partition catalog.

Uses native declarative range partitioning through an asyncpg pool. The
parent table must already be ``PARTITION BY RANGE`` on its timestamp column;
partitions are attached with ``CREATE TABLE ... PARTITION OF``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Iterable, List, Optional

import asyncpg

from ..partitions.partition_errors import PartitionOperationError, StorageUnavailableError
from ..partitions.partition_models import (
    PartitionConfig, PartitionMetadata, PartitionRange, PartitionStats
)
from ..partitions.partition_naming import parse_partition_name
from .interfaces import CatalogStore, StorageBackend, validate_identifier

logger = logging.getLogger(__name__)

# Driver errors that mean the server cannot be reached at all.
CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionError,
    OSError,
)

CATALOG_SCHEMA = """
CREATE TABLE IF NOT EXISTS {schema}.partition_config (
    id SERIAL PRIMARY KEY,
    table_name VARCHAR(255) NOT NULL UNIQUE,
    retention_months INTEGER NOT NULL DEFAULT 12,
    future_partitions INTEGER NOT NULL DEFAULT 6,
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS {schema}.partition_metadata (
    id SERIAL PRIMARY KEY,
    parent_table VARCHAR(255) NOT NULL,
    partition_name VARCHAR(255) NOT NULL UNIQUE,
    partition_date DATE NOT NULL,
    row_count BIGINT NOT NULL DEFAULT 0,
    size_bytes BIGINT NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_analyzed_at TIMESTAMPTZ,
    last_vacuumed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_partition_metadata_parent
    ON {schema}.partition_metadata (parent_table, partition_date);
"""


class PostgresConnectionManager:
    """Owns the asyncpg pool and translates connectivity failures."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 5):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn, min_size=self.min_size, max_size=self.max_size
            )
        except CONNECTION_ERRORS as e:
            raise StorageUnavailableError(f"Cannot connect to PostgreSQL: {e}") from e
        logger.info(f"PostgreSQL pool created (min={self.min_size}, max={self.max_size})")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def acquire(self, partition_name: Optional[str] = None):
        """
        Yield a pooled connection.

        Connectivity errors become StorageUnavailableError. Other server errors
        become PartitionOperationError when ``partition_name`` is given.
        """
        await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except CONNECTION_ERRORS as e:
            raise StorageUnavailableError(f"PostgreSQL unavailable: {e}") from e
        except asyncpg.PostgresError as e:
            if partition_name is None:
                raise
            raise PartitionOperationError(partition_name, str(e)) from e


class PostgresStorageBackend(StorageBackend):
    """Partition DDL and maintenance against PostgreSQL."""

    def __init__(self, connections: PostgresConnectionManager, schema: str = "public"):
        self.connections = connections
        self.schema = validate_identifier(schema)

    async def initialize(self) -> None:
        await self.connections.initialize()

    async def close(self) -> None:
        await self.connections.close()

    def _qualified(self, name: str) -> str:
        return f'"{self.schema}"."{name}"'

    async def create_partition(self, partition: PartitionRange) -> bool:
        parent = validate_identifier(partition.parent_table)
        name = partition.partition_name

        async with self.connections.acquire(name) as conn:
            existing = await conn.fetchrow("""
                SELECT c.relkind, p.relname AS parent_name
                FROM pg_class c
                JOIN pg_namespace n ON n.oid = c.relnamespace
                LEFT JOIN pg_inherits i ON i.inhrelid = c.oid
                LEFT JOIN pg_class p ON p.oid = i.inhparent
                WHERE n.nspname = $1 AND c.relname = $2
            """, self.schema, name)

            if existing is not None:
                if existing["relkind"] == "r" and existing["parent_name"] == parent:
                    return False
                raise PartitionOperationError(
                    name, f"{name} already exists and is not a partition of {parent}"
                )

            await conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._qualified(name)} "
                f"PARTITION OF {self._qualified(parent)} "
                f"FOR VALUES FROM ('{partition.range_start.isoformat()}') "
                f"TO ('{partition.range_end.isoformat()}')"
            )

        logger.info(f"Created partition {name} [{partition.range_start}, {partition.range_end})")
        return True

    async def drop_partition(self, partition: PartitionRange) -> None:
        parent = validate_identifier(partition.parent_table)
        name = partition.partition_name

        async with self.connections.acquire(name) as conn:
            async with conn.transaction():
                attached = await conn.fetchval("""
                    SELECT EXISTS (
                        SELECT 1 FROM pg_inherits i
                        JOIN pg_class c ON c.oid = i.inhrelid
                        JOIN pg_class p ON p.oid = i.inhparent
                        JOIN pg_namespace n ON n.oid = c.relnamespace
                        WHERE n.nspname = $1 AND c.relname = $2 AND p.relname = $3
                    )
                """, self.schema, name, parent)
                if attached:
                    await conn.execute(
                        f"ALTER TABLE {self._qualified(parent)} DETACH PARTITION {self._qualified(name)}"
                    )
                await conn.execute(f"DROP TABLE {self._qualified(name)}")

    async def list_partitions(self, parent_table: str) -> List[str]:
        parent = validate_identifier(parent_table)
        async with self.connections.acquire() as conn:
            rows = await conn.fetch("""
                SELECT c.relname
                FROM pg_inherits i
                JOIN pg_class c ON c.oid = i.inhrelid
                JOIN pg_class p ON p.oid = i.inhparent
                JOIN pg_namespace n ON n.oid = p.relnamespace
                WHERE n.nspname = $1 AND p.relname = $2
            """, self.schema, parent)
        return sorted(row["relname"] for row in rows if parse_partition_name(parent, row["relname"]))

    async def partition_stats(self, partition_name: str) -> PartitionStats:
        async with self.connections.acquire(partition_name) as conn:
            row_count = await conn.fetchval(f"SELECT COUNT(*) FROM {self._qualified(partition_name)}")
            size_bytes = await conn.fetchval(
                "SELECT pg_total_relation_size($1::text::regclass)", self._qualified(partition_name)
            )
        return PartitionStats(row_count=int(row_count), size_bytes=int(size_bytes or 0))

    async def analyze_partition(self, partition_name: str) -> None:
        async with self.connections.acquire(partition_name) as conn:
            await conn.execute(f"ANALYZE {self._qualified(partition_name)}")

    async def vacuum_partition(self, partition_name: str, full: bool = False) -> None:
        # VACUUM cannot run inside a transaction block; asyncpg executes it in autocommit.
        options = "(FULL) " if full else ""
        async with self.connections.acquire(partition_name) as conn:
            await conn.execute(f"VACUUM {options}{self._qualified(partition_name)}")


class PostgresCatalogStore(CatalogStore):
    """partition_config and partition_metadata tables in PostgreSQL."""

    def __init__(self, connections: PostgresConnectionManager, schema: str = "public"):
        self.connections = connections
        self.schema = validate_identifier(schema)

    async def initialize(self) -> None:
        async with self.connections.acquire() as conn:
            await conn.execute(CATALOG_SCHEMA.format(schema=f'"{self.schema}"'))

    @property
    def _config_table(self) -> str:
        return f'"{self.schema}".partition_config'

    @property
    def _metadata_table(self) -> str:
        return f'"{self.schema}".partition_metadata'

    @staticmethod
    def _config_from_record(record: asyncpg.Record) -> PartitionConfig:
        return PartitionConfig(
            table_name=record["table_name"],
            retention_months=record["retention_months"],
            future_partitions=record["future_partitions"],
            is_enabled=record["is_enabled"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )

    @staticmethod
    def _metadata_from_record(record: asyncpg.Record) -> PartitionMetadata:
        return PartitionMetadata(
            parent_table=record["parent_table"],
            partition_name=record["partition_name"],
            partition_date=record["partition_date"],
            row_count=record["row_count"],
            size_bytes=record["size_bytes"],
            last_analyzed_at=record["last_analyzed_at"],
            created_at=record["created_at"],
            last_vacuumed_at=record["last_vacuumed_at"],
        )

    async def list_configs(self, enabled_only: bool = False) -> List[PartitionConfig]:
        query = f"SELECT * FROM {self._config_table}"
        if enabled_only:
            query += " WHERE is_enabled"
        async with self.connections.acquire() as conn:
            records = await conn.fetch(query + " ORDER BY table_name")
        return [self._config_from_record(record) for record in records]

    async def get_config(self, table_name: str) -> Optional[PartitionConfig]:
        async with self.connections.acquire() as conn:
            record = await conn.fetchrow(
                f"SELECT * FROM {self._config_table} WHERE table_name = $1", table_name
            )
        return self._config_from_record(record) if record else None

    async def save_config(self, config: PartitionConfig) -> None:
        config.validate()
        async with self.connections.acquire() as conn:
            await conn.execute(f"""
                INSERT INTO {self._config_table}
                    (table_name, retention_months, future_partitions, is_enabled)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (table_name) DO UPDATE SET
                    retention_months = EXCLUDED.retention_months,
                    future_partitions = EXCLUDED.future_partitions,
                    is_enabled = EXCLUDED.is_enabled,
                    updated_at = NOW()
            """, config.table_name, config.retention_months, config.future_partitions,
                config.is_enabled)
        logger.info(f"Saved partition config for {config.table_name}")

    async def seed_configs(self, configs: Iterable[PartitionConfig]) -> int:
        inserted = 0
        async with self.connections.acquire() as conn:
            async with conn.transaction():
                for config in configs:
                    config.validate()
                    result = await conn.fetchval(f"""
                        INSERT INTO {self._config_table}
                            (table_name, retention_months, future_partitions, is_enabled)
                        VALUES ($1, $2, $3, $4)
                        ON CONFLICT (table_name) DO NOTHING
                        RETURNING id
                    """, config.table_name, config.retention_months, config.future_partitions,
                        config.is_enabled)
                    if result is not None:
                        inserted += 1
        return inserted

    async def list_metadata(self, parent_table: Optional[str] = None) -> List[PartitionMetadata]:
        async with self.connections.acquire() as conn:
            if parent_table is None:
                records = await conn.fetch(
                    f"SELECT * FROM {self._metadata_table} ORDER BY partition_date DESC, parent_table"
                )
            else:
                records = await conn.fetch(
                    f"SELECT * FROM {self._metadata_table} WHERE parent_table = $1 "
                    f"ORDER BY partition_date DESC, parent_table",
                    parent_table
                )
        return [self._metadata_from_record(record) for record in records]

    async def get_metadata(self, partition_name: str) -> Optional[PartitionMetadata]:
        async with self.connections.acquire() as conn:
            record = await conn.fetchrow(
                f"SELECT * FROM {self._metadata_table} WHERE partition_name = $1", partition_name
            )
        return self._metadata_from_record(record) if record else None

    async def ensure_metadata(self, parent_table: str, partition_name: str,
                              partition_date: date, created_at: datetime) -> bool:
        async with self.connections.acquire(partition_name) as conn:
            result = await conn.fetchval(f"""
                INSERT INTO {self._metadata_table} (parent_table, partition_name, partition_date, created_at)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (partition_name) DO NOTHING
                RETURNING id
            """, parent_table, partition_name, partition_date, created_at)
        return result is not None

    async def update_statistics(self, parent_table: str, partition_name: str, partition_date: date,
                                row_count: int, size_bytes: int, analyzed_at: datetime) -> None:
        async with self.connections.acquire(partition_name) as conn:
            await conn.execute(f"""
                INSERT INTO {self._metadata_table}
                    (parent_table, partition_name, partition_date, row_count, size_bytes,
                     created_at, last_analyzed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $6)
                ON CONFLICT (partition_name) DO UPDATE SET
                    row_count = EXCLUDED.row_count,
                    size_bytes = EXCLUDED.size_bytes,
                    last_analyzed_at = EXCLUDED.last_analyzed_at
            """, parent_table, partition_name, partition_date, row_count, size_bytes, analyzed_at)

    async def mark_vacuumed(self, partition_name: str, vacuumed_at: datetime) -> None:
        async with self.connections.acquire(partition_name) as conn:
            await conn.execute(
                f"UPDATE {self._metadata_table} SET last_vacuumed_at = $1 WHERE partition_name = $2",
                vacuumed_at, partition_name
            )

    async def delete_metadata(self, partition_name: str) -> None:
        async with self.connections.acquire(partition_name) as conn:
            await conn.execute(
                f"DELETE FROM {self._metadata_table} WHERE partition_name = $1", partition_name
            )
