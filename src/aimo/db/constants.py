"""Database constants for aimo.

Centralizes table names and SQL fragments shared by the vector store adapter
and the migration scripts.
"""

# Vector store tables
MEMO_VECTORS_TABLE = "memo_vectors"
MIGRATIONS_TABLE = "table_migrations"

# Standard columns for vector SELECT queries
MEMO_VECTOR_COLUMNS = "memo_id, embedding"

# Sentinel category id meaning "memos without a category"
UNCATEGORIZED_CATEGORY_ID = "uncategorized"

# OpenAI text-embedding-3-small
DEFAULT_EMBEDDING_DIM = 1536
