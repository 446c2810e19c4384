"""v1: create the memo embedding table."""

from typing import Any

from aimo.migrations.registry import Migration

VERSION = 1
DESCRIPTION = "Create memo embedding table"


def build(table_name: str) -> Migration:
    async def apply(conn: Any) -> None:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table_name} (
                memo_id TEXT PRIMARY KEY,
                embedding vector({int(conn.embedding_dim)}) NOT NULL
            )
            """
        )

    return Migration(VERSION, table_name, DESCRIPTION, apply)
