"""Drives every registered table to its latest migration version."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from aimo.errors import MigrationFailure
from aimo.migrations.executor import MigrationExecutor, MigrationMetadata, ensure_metadata_table
from aimo.migrations.registry import MigrationRegistry

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    """Outcome of one ``initialize`` run."""

    applied: dict[str, list[int]] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    planned: dict[str, list[int]] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def applied_count(self) -> int:
        return sum(len(v) for v in self.applied.values())


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


class MigrationManager:
    """Compares each table's recorded version with the registry and migrates the gap.

    Tables are independent: a failure on one table is logged and the remaining
    tables are still attempted. ``initialize`` then raises a MigrationFailure
    listing every failed table.
    """

    def __init__(
        self,
        connection: Any,
        registry: MigrationRegistry,
        verbose: bool = False,
    ):
        self.connection = connection
        self.registry = registry
        self.verbose = verbose
        self.executor = MigrationExecutor(connection, verbose=verbose)

    async def _metadata(self) -> MigrationMetadata:
        return await ensure_metadata_table(self.connection)

    async def initialize(self, dry_run: bool = False) -> MigrationReport:
        """Bring every registered table to its latest version.

        Raises:
            MigrationFailure: After all tables were attempted, if any failed.
        """
        metadata = await self._metadata()
        report = MigrationReport(dry_run=dry_run)
        failures: list[MigrationFailure] = []

        for table in self.registry.all_table_names():
            current = await metadata.current_version(table)
            target = self.registry.latest_version(table)

            if current >= target:
                report.skipped.append(table)
                if self.verbose:
                    logger.info(f"{table} is up to date (v{current})")
                continue

            pending = self.registry.pending(table, current)
            if dry_run:
                report.planned[table] = [m.version for m in pending]
                for migration in pending:
                    logger.info(f"[dry-run] would apply {migration}")
                continue

            logger.info(f"Migrating {table} from v{current} to v{target}")
            try:
                applied = await self.executor.apply_migrations(pending, metadata)
            except MigrationFailure as e:
                failures.append(e)
                logger.error(f"Migration of {table} stopped at v{e.version - 1}: {e}")
                continue
            report.applied[table] = [m.version for m in applied]

        if failures:
            tables = ", ".join(f"{f.table_name} v{f.version}" for f in failures)
            first = failures[0]
            raise MigrationFailure(
                f"Migrations failed for {tables}",
                table_name=first.table_name,
                version=first.version,
                failures=failures,
            )

        if report.applied_count:
            logger.info(f"Applied {report.applied_count} migration(s)")
        return report

    async def migrate_table(self, table_name: str, dry_run: bool = False) -> list[int]:
        """Migrate a single table; returns applied (or planned) versions."""
        metadata = await self._metadata()
        current = await metadata.current_version(table_name)
        pending = self.registry.pending(table_name, current)
        if dry_run:
            for migration in pending:
                logger.info(f"[dry-run] would apply {migration}")
            return [m.version for m in pending]
        applied = await self.executor.apply_migrations(pending, metadata)
        return [m.version for m in applied]

    async def get_status(self) -> dict[str, int]:
        """Recorded version per registered table (0 when never migrated)."""
        metadata = await self._metadata()
        return {
            table: await metadata.current_version(table)
            for table in self.registry.all_table_names()
        }

    async def validate(self) -> ValidationResult:
        """Tables whose recorded version differs from the latest registered one."""
        status = await self.get_status()
        errors = [
            f"{table}: current v{current}, target v{self.registry.latest_version(table)}"
            for table, current in status.items()
            if current != self.registry.latest_version(table)
        ]
        return ValidationResult(valid=not errors, errors=errors)
