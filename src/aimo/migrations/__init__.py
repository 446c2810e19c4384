"""Versioned schema migrations for the vector store."""

from aimo.migrations.executor import MigrationExecutor, MigrationMetadata, ensure_metadata_table
from aimo.migrations.manager import MigrationManager, MigrationReport, ValidationResult
from aimo.migrations.registry import Migration, MigrationRegistry

__all__ = [
    "Migration",
    "MigrationRegistry",
    "MigrationExecutor",
    "MigrationMetadata",
    "ensure_metadata_table",
    "MigrationManager",
    "MigrationReport",
    "ValidationResult",
]
