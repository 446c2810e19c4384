"""aimo - hybrid memo storage.

Memos are kept in a relational store (scalar fields) and a pgvector store
(embeddings), with versioned migrations for the vector side and semantic search
across both.
"""

from importlib.metadata import version

from aimo.config import AimoConfig
from aimo.repositories import MemoRepository
from aimo.search import SearchCoordinator
from aimo.storage import StorageContext

__version__ = version("aimo")
__all__ = ["AimoConfig", "MemoRepository", "SearchCoordinator", "StorageContext", "__version__"]
