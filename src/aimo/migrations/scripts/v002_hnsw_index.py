"""v2: HNSW index for cosine-distance search."""

from typing import Any

from aimo.migrations.registry import Migration

VERSION = 2
DESCRIPTION = "Add HNSW cosine index on embedding"


def build(table_name: str) -> Migration:
    async def apply(conn: Any) -> None:
        await conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{table_name}_embedding_hnsw
            ON {table_name} USING hnsw (embedding vector_cosine_ops)
            """
        )

    return Migration(VERSION, table_name, DESCRIPTION, apply)
