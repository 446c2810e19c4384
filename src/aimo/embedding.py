"""Embedding clients for aimo.

The hybrid write and read paths only depend on the :class:`Embedder` protocol.
:class:`AsyncEmbeddingClient` is the production implementation and talks to any
OpenAI-compatible ``/embeddings`` endpoint (OpenRouter by default).

Environment Variables:
    OPENROUTER_API_KEY / OPENAI_API_KEY: Used when no key is configured.
    AIMO_EMBEDDING_MODEL: Override the default model (optional).
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Protocol, runtime_checkable

import httpx

from aimo.config import AimoConfig
from aimo.errors import EmbeddingError

logger = logging.getLogger(__name__)


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a fixed-length float vector."""

    dimension: int

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str], batch_size: int = 100) -> list[list[float]]: ...


class AsyncEmbeddingClient:
    """Async client for generating embeddings via an OpenAI-compatible API.

    Example:
        async with AsyncEmbeddingClient(api_key="...") as client:
            embedding = await client.embed("Hello, world!")
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "openai/text-embedding-3-small",
        dimension: int = 1536,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the async embedding client.

        Args:
            api_key: Bearer token for the endpoint.
            model: Embedding model name.
            dimension: Expected vector length; responses of any other length are rejected.
            base_url: API root; ``/embeddings`` is appended.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        if not api_key:
            raise ValueError(
                "Embedding API key required. Set AIMO_EMBEDDING_API_KEY or "
                "OPENROUTER_API_KEY, or pass api_key."
            )
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.url = f"{base_url.rstrip('/')}/embeddings"
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: AimoConfig) -> AsyncEmbeddingClient:
        return cls(
            api_key=config.resolved_embedding_api_key,
            model=config.embedding_model,
            dimension=config.embedding_dimension,
            base_url=config.embedding_base_url,
            timeout=config.embedding_timeout,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "X-Title": "aimo",
                },
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Raises:
            EmbeddingError: On transport errors, non-2xx responses, malformed
                payloads or a vector of the wrong length.
        """
        start_time = time.time()
        result = await self._call_api([text])
        logger.debug(f"Single embed in {time.time() - start_time:.2f}s")
        return result[0]

    async def embed_batch(self, texts: list[str], batch_size: int = 100) -> list[list[float]]:
        """Generate embeddings for multiple texts, ``batch_size`` per request."""
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            all_embeddings.extend(await self._call_api(batch))
            logger.debug(f"Embedded batch {i // batch_size + 1}, {len(batch)} texts")
        return all_embeddings

    async def _call_api(self, texts: list[str]) -> list[list[float]]:
        client = await self._get_client()
        payload: dict[str, Any] = {"model": self.model, "input": texts}

        try:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()

            # OpenAI format: {"data": [{"embedding": [...], "index": 0}, ...]}
            embeddings: list[list[float] | None] = [None] * len(texts)
            for item in data["data"]:
                embeddings[item["index"]] = [float(x) for x in item["embedding"]]
        except httpx.HTTPStatusError as e:
            logger.error(f"Embedding API error: {e.response.status_code} - {e.response.text}")
            raise EmbeddingError(f"Embedding API error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Invalid embedding response: {e}")
            raise EmbeddingError(f"Invalid embedding response: {e}") from e

        if any(e is None for e in embeddings):
            raise EmbeddingError("Missing embeddings in API response")
        for vector in embeddings:
            self._check_vector(vector)  # type: ignore[arg-type]
        return embeddings  # type: ignore[return-value]

    def _check_vector(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise EmbeddingError(
                f"Embedding has dimension {len(vector)}, expected {self.dimension}"
            )
        if not all(math.isfinite(x) for x in vector):
            raise EmbeddingError("Embedding contains non-finite values")

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncEmbeddingClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
