"""v3: record when each embedding was written.

The reconciliation job and operators use ``embedded_at`` to spot stale vectors.
"""

from typing import Any

from aimo.migrations.registry import Migration

VERSION = 3
DESCRIPTION = "Add embedded_at column"


def build(table_name: str) -> Migration:
    async def apply(conn: Any) -> None:
        await conn.execute(
            f"""
            DO $$
            BEGIN
                IF NOT EXISTS (
                    SELECT 1 FROM information_schema.columns
                    WHERE table_name = '{table_name}'
                    AND column_name = 'embedded_at'
                ) THEN
                    ALTER TABLE {table_name}
                        ADD COLUMN embedded_at TIMESTAMPTZ NOT NULL DEFAULT NOW();
                END IF;
            END $$;
            """
        )

    return Migration(VERSION, table_name, DESCRIPTION, apply)
