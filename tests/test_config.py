"""Tests for aimo configuration and error taxonomy."""

import pytest
from pydantic import ValidationError as SettingsError

from aimo.config import AimoConfig
from aimo.errors import (
    EmbeddingError,
    MigrationFailure,
    NotFoundError,
    StoreNotInitializedError,
    StoreWriteError,
    ValidationError,
)


class TestAimoConfig:
    """Tests for AimoConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = AimoConfig()

        assert config.database_url is None
        assert config.vector_table == "memo_vectors"
        assert config.embedding_dimension == 1536
        assert config.default_search_limit == 20
        assert config.max_search_limit == 100
        assert config.migrate_on_startup is True

    def test_env_prefix(self, monkeypatch):
        """Test settings load from AIMO_* variables."""
        monkeypatch.setenv("AIMO_EMBEDDING_DIMENSION", "768")
        monkeypatch.setenv("AIMO_MIGRATE_ON_STARTUP", "false")

        config = AimoConfig()

        assert config.embedding_dimension == 768
        assert config.migrate_on_startup is False

    def test_vector_url_falls_back_to_postgres_database_url(self):
        config = AimoConfig(database_url="postgresql+asyncpg://u:p@db:5432/aimo")
        assert config.resolved_vector_database_url == "postgresql://u:p@db:5432/aimo"

    def test_vector_url_not_derived_from_sqlite(self):
        config = AimoConfig(database_url="sqlite+aiosqlite:///aimo.db")
        assert config.resolved_vector_database_url is None

    def test_postgres_scheme_normalized(self):
        config = AimoConfig(vector_database_url="postgres://u:p@db/aimo")
        assert config.resolved_vector_database_url == "postgresql://u:p@db/aimo"

    def test_embedding_key_fallback(self, monkeypatch):
        """Test API key falls back to OPENROUTER_API_KEY."""
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        assert AimoConfig().resolved_embedding_api_key == "or-key"
        assert AimoConfig(embedding_api_key="own").resolved_embedding_api_key == "own"

    def test_rejects_bad_limits(self):
        with pytest.raises(SettingsError):
            AimoConfig(default_search_limit=500, max_search_limit=100)

    def test_rejects_non_positive_dimension(self):
        with pytest.raises(SettingsError):
            AimoConfig(embedding_dimension=0)


class TestErrors:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize(
        "error,status",
        [
            (ValidationError("bad"), 400),
            (NotFoundError("missing"), 404),
            (StoreNotInitializedError("early"), 503),
            (EmbeddingError("down"), 502),
            (StoreWriteError("boom", stage="vector", operation="create_memo"), 500),
            (MigrationFailure("boom", table_name="t", version=2), 500),
        ],
    )
    def test_status_codes(self, error, status):
        assert error.status_code == status

    def test_client_errors_keep_message(self):
        response = NotFoundError("Memo m1 not found").to_response()
        assert response == {"error": "NotFoundError", "message": "Memo m1 not found", "status": 404}

    def test_server_errors_hide_detail(self):
        error = StoreWriteError(
            "INSERT failed: password=secret", stage="relational", operation="create_memo"
        )
        response = error.to_response()
        assert response["message"] == "Storage failure"
        assert "secret" not in response["message"]

    def test_migration_failure_lists_itself(self):
        failure = MigrationFailure("boom", table_name="widgets", version=3)
        assert failure.failures == [failure]
