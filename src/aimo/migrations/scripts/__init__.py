"""Published vector-store migrations.

Append new scripts as ``vNNN_<name>.py`` with the next version; never edit or
reorder released ones.
"""

from aimo.db.constants import MEMO_VECTORS_TABLE
from aimo.migrations.registry import MigrationRegistry
from aimo.migrations.scripts import v001_create_memo_vectors, v002_hnsw_index, v003_embedded_at

_SCRIPTS = [v001_create_memo_vectors, v002_hnsw_index, v003_embedded_at]


def build_default_registry(table_name: str = MEMO_VECTORS_TABLE) -> MigrationRegistry:
    """Registry of all shipped migrations for the memo embedding table."""
    return MigrationRegistry(script.build(table_name) for script in _SCRIPTS)


DEFAULT_REGISTRY = build_default_registry()

__all__ = ["DEFAULT_REGISTRY", "build_default_registry"]
