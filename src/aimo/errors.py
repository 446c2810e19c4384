"""Error taxonomy for aimo.

Callers map ``status_code`` onto their transport: 4xx errors carry a message that
is safe to show, 5xx errors expose only ``public_message`` while the detail stays
in the logs.
"""

from typing import Literal


class AimoError(Exception):
    """Base exception for aimo errors."""

    status_code: int = 500
    public_message: str = "Internal error"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    def to_response(self) -> dict[str, object]:
        """Shape used by API layers: client errors keep their message."""
        message = str(self) if self.is_client_error else self.public_message
        return {"error": type(self).__name__, "message": message, "status": self.status_code}


class ValidationError(AimoError):
    """Invalid input (empty content, empty query, bad paging)."""

    status_code = 400
    public_message = "Invalid request"


class NotFoundError(AimoError):
    """Unknown memo id (or memo owned by another user)."""

    status_code = 404
    public_message = "Not found"


class StoreNotInitializedError(AimoError):
    """A store was used before StorageContext.startup() completed."""

    status_code = 503
    public_message = "Service is starting"


class EmbeddingError(AimoError):
    """The embedding service failed or returned an unusable vector."""

    status_code = 502
    public_message = "Embedding service unavailable"


class StoreWriteError(AimoError):
    """A relational or vector store call failed.

    ``stage`` tells callers which side of a hybrid write failed, e.g. a
    ``vector`` failure after the relational commit means the memo exists
    without an embedding until the reconciliation job repairs it.
    """

    public_message = "Storage failure"

    def __init__(
        self,
        message: str,
        stage: Literal["relational", "vector"],
        operation: str,
        memo_id: str | None = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.operation = operation
        self.memo_id = memo_id


class MigrationFailure(AimoError):
    """A migration's apply() raised; carries table/version context."""

    public_message = "Schema migration failed"

    def __init__(
        self,
        message: str,
        table_name: str,
        version: int,
        failures: list["MigrationFailure"] | None = None,
    ):
        super().__init__(message)
        self.table_name = table_name
        self.version = version
        self.failures = failures or [self]
