"""pgvector-based vector store for aimo.

This module provides the PgVectorStore class, the vector side of the hybrid
store. It holds exactly one embedding row per memo (``memo_id`` primary key)
and answers cosine k-nearest-neighbour queries. It also hosts the
``table_migrations`` bookkeeping table used by the migration executor, since
schema versions are tracked next to the tables they describe.

Rows are decoded into typed models (``aimo.db.row_mapper``) before they leave
this module.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import asyncpg
from pgvector.asyncpg import register_vector

from aimo.db import MEMO_VECTOR_COLUMNS, MEMO_VECTORS_TABLE, MIGRATIONS_TABLE, FilterBuilder
from aimo.db.constants import DEFAULT_EMBEDDING_DIM
from aimo.db.database import mask_url
from aimo.db.row_mapper import row_to_migration_state, row_to_vector_hit, row_to_vector_record
from aimo.models import MemoVectorRecord, TableMigrationState, VectorHit

logger = logging.getLogger(__name__)


class PgVectorStore:
    """PostgreSQL + pgvector based vector store.

    Search is unfiltered by owner: the vector table is not partitioned by user,
    scalar filtering happens afterwards in the relational store.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
        table_name: str = MEMO_VECTORS_TABLE,
    ):
        """Initialize the vector store.

        Args:
            database_url: PostgreSQL connection URL (plain ``postgresql://``)
            pool_size: Connection pool size
            embedding_dim: Fixed embedding length of the table
            table_name: Table holding one row per memo
        """
        if not database_url:
            raise ValueError(
                "Vector database URL required. Set AIMO_VECTOR_DATABASE_URL "
                "or pass database_url parameter."
            )
        self.database_url = database_url
        self.pool_size = pool_size
        self.embedding_dim = embedding_dim
        self.table_name = table_name
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Ensure the pgvector extension exists and initialize the pool."""
        if self._pool is not None:
            return

        # register_vector needs the type to exist before any pooled connection sets up
        conn = await asyncpg.connect(self.database_url)
        try:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        finally:
            await conn.close()

        self._pool = await asyncpg.create_pool(
            self.database_url,
            min_size=1,
            max_size=self.pool_size,
            setup=self._setup_connection,
        )
        logger.info(f"PgVectorStore connected to {mask_url(self.database_url)}")

    async def _setup_connection(self, conn: asyncpg.Connection) -> None:
        """Setup each connection with pgvector extension."""
        await register_vector(conn)

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("PgVectorStore disconnected")

    async def _get_pool(self) -> asyncpg.Pool:
        """Get the connection pool, connecting if needed."""
        if self._pool is None:
            await self.connect()
        return self._pool  # type: ignore

    # =========================================================================
    # Raw SQL (used by migration scripts)
    # =========================================================================

    async def execute(self, query: str, *args: Any) -> str:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    # =========================================================================
    # Memo Vectors
    # =========================================================================

    async def add(self, records: Sequence[MemoVectorRecord]) -> None:
        """Insert embedding rows. Fails on a duplicate ``memo_id``."""
        if not records:
            return
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            await conn.executemany(
                f"INSERT INTO {self.table_name} ({MEMO_VECTOR_COLUMNS}) VALUES ($1, $2)",
                [(r.memo_id, r.embedding) for r in records],
            )
        logger.debug(f"Added {len(records)} vector rows to {self.table_name}")

    async def upsert(self, record: MemoVectorRecord) -> None:
        """Replace the embedding row for a memo, leaving exactly one row."""
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self.table_name} ({MEMO_VECTOR_COLUMNS}) VALUES ($1, $2)
                ON CONFLICT (memo_id) DO UPDATE
                SET embedding = EXCLUDED.embedding, embedded_at = NOW()
                """,
                record.memo_id,
                record.embedding,
            )

    async def delete_by_memo_id(self, memo_id: str) -> bool:
        """Delete the embedding row for a memo. Returns True if a row was removed."""
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                f"DELETE FROM {self.table_name} WHERE memo_id = $1",
                memo_id,
            )
        return result == "DELETE 1"

    async def get(self, memo_id: str) -> MemoVectorRecord | None:
        """Get the embedding row for a memo."""
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {MEMO_VECTOR_COLUMNS} FROM {self.table_name} WHERE memo_id = $1",
                memo_id,
            )
        return row_to_vector_record(row) if row else None

    async def search(
        self,
        query_embedding: list[float],
        limit: int,
        exclude_memo_id: str | None = None,
    ) -> list[VectorHit]:
        """Nearest neighbours by cosine distance, ascending."""
        if limit <= 0:
            return []
        pool = await self._get_pool()

        fb = FilterBuilder(start_idx=3)
        fb.add_if(exclude_memo_id, "memo_id <> ${}", exclude_memo_id)

        query = f"""
            SELECT memo_id, embedding <=> $1 AS distance
            FROM {self.table_name}
            WHERE {fb.build()}
            ORDER BY embedding <=> $1
            LIMIT $2
        """

        async with pool.acquire() as conn:
            rows = await conn.fetch(query, query_embedding, limit, *fb.values)

        return [row_to_vector_hit(row) for row in rows]

    async def existing_memo_ids(self, memo_ids: Sequence[str]) -> set[str]:
        """Subset of ``memo_ids`` that have an embedding row."""
        if not memo_ids:
            return set()
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT memo_id FROM {self.table_name} WHERE memo_id = ANY($1::text[])",
                list(memo_ids),
            )
        return {row["memo_id"] for row in rows}

    async def list_memo_ids(self, after: str | None = None, limit: int = 500) -> list[str]:
        """Page through stored memo ids in key order (keyset pagination)."""
        pool = await self._get_pool()

        fb = FilterBuilder()
        fb.add_if(after, "memo_id > ${}", after)

        query = f"""
            SELECT memo_id FROM {self.table_name}
            WHERE {fb.build()}
            ORDER BY memo_id
            LIMIT ${fb.next_idx}
        """

        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *fb.values, limit)
        return [row["memo_id"] for row in rows]

    async def count(self) -> int:
        return int(await self.fetchval(f"SELECT COUNT(*) FROM {self.table_name}"))

    async def health_check(self) -> bool:
        """Check if the vector database is accessible."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.error(f"Vector store health check failed: {e}")
            return False

    # =========================================================================
    # Migration Metadata
    # =========================================================================

    async def create_migrations_table(self) -> None:
        await self.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                table_name TEXT PRIMARY KEY,
                current_version INTEGER NOT NULL,
                last_migrated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )

    async def fetch_migration_state(self, table_name: str) -> TableMigrationState | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT table_name, current_version, last_migrated_at "
                f"FROM {MIGRATIONS_TABLE} WHERE table_name = $1",
                table_name,
            )
        return row_to_migration_state(row) if row else None

    async def save_migration_state(self, state: TableMigrationState) -> None:
        await self.execute(
            f"""
            INSERT INTO {MIGRATIONS_TABLE} (table_name, current_version, last_migrated_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (table_name) DO UPDATE
            SET current_version = EXCLUDED.current_version,
                last_migrated_at = EXCLUDED.last_migrated_at
            """,
            state.table_name,
            state.current_version,
            state.last_migrated_at,
        )

    async def list_migration_states(self) -> list[TableMigrationState]:
        rows = await self.fetch(
            f"SELECT table_name, current_version, last_migrated_at "
            f"FROM {MIGRATIONS_TABLE} ORDER BY table_name"
        )
        return [row_to_migration_state(row) for row in rows]
