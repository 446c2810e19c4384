"""Database utilities for aimo.

This package provides:
- Database: Relational store engine, sessions and transactions
- FilterBuilder: Dynamic WHERE clause construction for the vector store
- Row mappers: Convert store rows to typed models
"""

from aimo.db.constants import (
    MEMO_VECTOR_COLUMNS,
    MEMO_VECTORS_TABLE,
    MIGRATIONS_TABLE,
    UNCATEGORIZED_CATEGORY_ID,
)
from aimo.db.database import Database
from aimo.db.filter_builder import FilterBuilder
from aimo.db.row_mapper import decode_embedding, memo_to_record, tag_to_dto

__all__ = [
    "MEMO_VECTOR_COLUMNS",
    "MEMO_VECTORS_TABLE",
    "MIGRATIONS_TABLE",
    "UNCATEGORIZED_CATEGORY_ID",
    "Database",
    "FilterBuilder",
    "decode_embedding",
    "memo_to_record",
    "tag_to_dto",
]
