"""Process-wide storage handles.

A :class:`StorageContext` is built once at startup and passed to every
repository, the search coordinator and the migration manager. Nothing in aimo
keeps module-level connections.
"""

from __future__ import annotations

import logging
from typing import Any

from aimo.config import AimoConfig
from aimo.db.database import Database
from aimo.embedding import AsyncEmbeddingClient, Embedder
from aimo.errors import StoreNotInitializedError
from aimo.migrations import MigrationManager, MigrationRegistry
from aimo.migrations.scripts import build_default_registry
from aimo.vectorstore import PgVectorStore

logger = logging.getLogger(__name__)


class StorageContext:
    """Relational store, vector store and embedder for one process.

    Call :meth:`startup` before use; the ``require_*`` accessors raise
    StoreNotInitializedError until it has completed.
    """

    def __init__(
        self,
        config: AimoConfig,
        database: Database | None,
        vectors: Any | None,
        embedder: Embedder | None,
    ):
        self.config = config
        self.database = database
        self.vectors = vectors
        self.embedder = embedder
        self._ready = False

    @classmethod
    def from_config(
        cls,
        config: AimoConfig | None = None,
        embedder: Embedder | None = None,
    ) -> StorageContext:
        """Build stores from configuration without connecting."""
        config = config or AimoConfig()
        if not config.database_url:
            raise ValueError("Relational store URL required. Set AIMO_DATABASE_URL.")
        vector_url = config.resolved_vector_database_url
        if not vector_url:
            raise ValueError("Vector store URL required. Set AIMO_VECTOR_DATABASE_URL.")

        database = Database(config.database_url)
        vectors = PgVectorStore(
            vector_url,
            pool_size=config.vector_pool_size,
            embedding_dim=config.embedding_dimension,
            table_name=config.vector_table,
        )
        if embedder is None and config.resolved_embedding_api_key:
            embedder = AsyncEmbeddingClient.from_config(config)
        return cls(config, database, vectors, embedder)

    @property
    def ready(self) -> bool:
        return self._ready

    async def startup(
        self,
        migrate: bool | None = None,
        registry: MigrationRegistry | None = None,
    ) -> None:
        """Connect stores and run pending vector-store migrations.

        Migration failures propagate: the process must not serve with a
        half-migrated vector store.
        """
        if self._ready:
            return
        database = self._require(self.database, "relational store")
        vectors = self._require(self.vectors, "vector store")

        await vectors.connect()
        if self.config.create_relational_tables:
            await database.create_tables_async()

        should_migrate = self.config.migrate_on_startup if migrate is None else migrate
        if should_migrate:
            manager = MigrationManager(
                vectors,
                registry or build_default_registry(self.config.vector_table),
                verbose=self.config.migration_verbose,
            )
            await manager.initialize()

        self._ready = True
        logger.info("Storage context ready")

    async def shutdown(self) -> None:
        """Close all connections. Safe to call more than once."""
        self._ready = False
        if self.vectors is not None:
            await self.vectors.close()
        if self.database is not None:
            await self.database.close()
        if self.embedder is not None and hasattr(self.embedder, "close"):
            await self.embedder.close()

    def _require(self, handle: Any, name: str) -> Any:
        if handle is None:
            raise StoreNotInitializedError(f"{name} is not configured")
        return handle

    def _require_ready(self, handle: Any, name: str) -> Any:
        if not self._ready:
            raise StoreNotInitializedError(f"{name} used before StorageContext.startup()")
        return self._require(handle, name)

    def require_database(self) -> Database:
        return self._require_ready(self.database, "relational store")

    def require_vectors(self) -> PgVectorStore:
        return self._require_ready(self.vectors, "vector store")

    def require_embedder(self) -> Embedder:
        return self._require_ready(self.embedder, "embedder")
