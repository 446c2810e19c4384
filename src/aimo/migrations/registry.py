"""Versioned migration registry for vector-store tables.

Migrations are data: a version, the logical table it targets, a description and
an idempotent ``apply`` coroutine. Each table's versions must run 1, 2, 3, ...
with no gaps, which the registry checks when it is built.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

ApplyFn = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class Migration:
    """One published migration. Never edit a released one; add the next version."""

    version: int
    table_name: str
    description: str
    apply: ApplyFn = field(repr=False, compare=False)

    def __str__(self) -> str:
        return f"{self.table_name} v{self.version}: {self.description}"


class MigrationRegistry:
    """Ordered, per-table list of migrations.

    Tables iterate in order of first registration.
    """

    def __init__(self, migrations: Iterable[Migration] = ()):
        self._by_table: dict[str, list[Migration]] = {}
        for migration in migrations:
            self._by_table.setdefault(migration.table_name, []).append(migration)

        for table, items in self._by_table.items():
            items.sort(key=lambda m: m.version)
            versions = [m.version for m in items]
            if versions != list(range(1, len(items) + 1)):
                raise ValueError(
                    f"Migrations for {table!r} must be contiguous from 1, got {versions}"
                )

    def __len__(self) -> int:
        return sum(len(items) for items in self._by_table.values())

    def migrations_for_table(self, table_name: str) -> list[Migration]:
        return list(self._by_table.get(table_name, []))

    def latest_version(self, table_name: str) -> int:
        """Highest registered version, 0 if the table is unknown."""
        items = self._by_table.get(table_name)
        return items[-1].version if items else 0

    def pending(self, table_name: str, from_version: int) -> list[Migration]:
        """Migrations with ``version > from_version``, ascending."""
        return [m for m in self._by_table.get(table_name, []) if m.version > from_version]

    def all_table_names(self) -> list[str]:
        return list(self._by_table)
