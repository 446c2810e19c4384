"""Applies migrations to the vector store and records versions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from aimo.errors import MigrationFailure
from aimo.migrations.registry import Migration
from aimo.models import TableMigrationState

logger = logging.getLogger(__name__)


class MigrationMetadata:
    """Handle on the ``table_migrations`` bookkeeping table.

    Wraps the vector-store connection, which owns the actual SQL.
    """

    def __init__(self, connection: Any):
        self._conn = connection

    async def current_version(self, table_name: str) -> int:
        """Recorded version for ``table_name``, 0 if it has never been migrated."""
        state = await self._conn.fetch_migration_state(table_name)
        return state.current_version if state else 0

    async def get_state(self, table_name: str) -> TableMigrationState | None:
        return await self._conn.fetch_migration_state(table_name)

    async def record(self, table_name: str, version: int) -> TableMigrationState:
        state = TableMigrationState(
            table_name=table_name,
            current_version=version,
            last_migrated_at=datetime.now(timezone.utc),
        )
        await self._conn.save_migration_state(state)
        return state

    async def all_states(self) -> list[TableMigrationState]:
        return await self._conn.list_migration_states()


async def ensure_metadata_table(connection: Any) -> MigrationMetadata:
    """Create the bookkeeping table if absent (idempotent) and return its handle."""
    await connection.create_migrations_table()
    return MigrationMetadata(connection)


class MigrationExecutor:
    """Runs one table's pending migrations, strictly ascending.

    After every successful ``apply`` the new version is recorded before the
    next migration starts. The first failure stops the batch; the recorded
    version is then the last one that succeeded.
    """

    def __init__(self, connection: Any, verbose: bool = False):
        self.connection = connection
        self.verbose = verbose

    async def ensure_metadata_table(self) -> MigrationMetadata:
        return await ensure_metadata_table(self.connection)

    async def current_version(self, metadata: MigrationMetadata, table_name: str) -> int:
        return await metadata.current_version(table_name)

    async def apply_migrations(
        self,
        migrations: Sequence[Migration],
        metadata: MigrationMetadata,
    ) -> list[Migration]:
        """Apply ``migrations`` and return the ones that succeeded.

        Raises:
            ValueError: If the batch mixes tables or repeats a version.
            MigrationFailure: If an ``apply`` raises. Later migrations are not run.
        """
        ordered = sorted(migrations, key=lambda m: m.version)
        if len({m.table_name for m in ordered}) > 1:
            raise ValueError("A migration batch must target a single table")
        if len({m.version for m in ordered}) != len(ordered):
            raise ValueError("A migration batch must not repeat a version")

        applied: list[Migration] = []
        for migration in ordered:
            if self.verbose:
                logger.info(f"Applying {migration}")
            try:
                await migration.apply(self.connection)
            except Exception as e:
                logger.error(
                    f"Migration {migration.table_name} v{migration.version} failed: {e}"
                )
                raise MigrationFailure(
                    f"Migration {migration.table_name} v{migration.version} "
                    f"({migration.description}) failed: {e}",
                    table_name=migration.table_name,
                    version=migration.version,
                ) from e

            await metadata.record(migration.table_name, migration.version)
            applied.append(migration)
            logger.info(f"Migrated {migration.table_name} to v{migration.version}")

        return applied
