"""Tests for the HTTP embedding client."""

import json

import httpx
import pytest

from aimo.config import AimoConfig
from aimo.embedding import AsyncEmbeddingClient, Embedder
from aimo.errors import EmbeddingError


def make_client(handler, dimension=3):
    return AsyncEmbeddingClient(
        api_key="test-key",
        model="test-model",
        dimension=dimension,
        base_url="https://embeddings.test/v1/",
        transport=httpx.MockTransport(handler),
    )


def ok_response(request: httpx.Request) -> httpx.Response:
    texts = json.loads(request.content)["input"]
    data = [{"index": i, "embedding": [float(i), 0.5, 1.0]} for i in reversed(range(len(texts)))]
    return httpx.Response(200, json={"data": data})


class TestAsyncEmbeddingClient:
    """Tests for AsyncEmbeddingClient."""

    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="API key required"):
            AsyncEmbeddingClient(api_key=None)

    def test_satisfies_protocol(self):
        assert isinstance(make_client(ok_response), Embedder)

    def test_from_config(self):
        config = AimoConfig(embedding_api_key="k", embedding_dimension=768, embedding_model="m")
        client = AsyncEmbeddingClient.from_config(config)
        assert client.dimension == 768
        assert client.model == "m"
        assert client.url == "https://openrouter.ai/api/v1/embeddings"

    @pytest.mark.asyncio
    async def test_embed_sends_openai_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return ok_response(request)

        async with make_client(handler) as client:
            vector = await client.embed("buy milk")

        assert vector == [0.0, 0.5, 1.0]
        assert seen["url"] == "https://embeddings.test/v1/embeddings"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == {"model": "test-model", "input": ["buy milk"]}

    @pytest.mark.asyncio
    async def test_batch_restores_order(self):
        async with make_client(ok_response) as client:
            vectors = await client.embed_batch(["a", "b", "c"], batch_size=2)

        assert [v[0] for v in vectors] == [0.0, 1.0, 0.0]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        async with make_client(ok_response) as client:
            assert await client.embed_batch([]) == []

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = make_client(lambda request: httpx.Response(401, text="bad key"))
        with pytest.raises(EmbeddingError, match="401"):
            await client.embed("x")
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(EmbeddingError, match="request failed"):
            await client.embed("x")
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        client = make_client(lambda request: httpx.Response(200, json={"unexpected": []}))
        with pytest.raises(EmbeddingError, match="Invalid embedding response"):
            await client.embed("x")
        await client.close()

    @pytest.mark.asyncio
    async def test_wrong_dimension(self):
        client = make_client(ok_response, dimension=4)
        with pytest.raises(EmbeddingError, match="dimension 3, expected 4"):
            await client.embed("x")
        await client.close()
