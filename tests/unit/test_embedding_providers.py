"""Unit tests for the OpenAI embedding provider adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from src.config.settings import Settings
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.utils.errors import (
    PermanentProviderError,
    ProviderUnavailableError,
    RateLimitError,
    TransientProviderError,
)

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _response(vectors: list[list[float]], order: list[int] | None = None) -> MagicMock:
    indices = order or list(range(len(vectors)))
    response = MagicMock()
    response.data = [MagicMock(embedding=vectors[i], index=i) for i in indices]
    response.usage = MagicMock(total_tokens=50)
    return response


def _mock_client(response: MagicMock | None = None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(return_value=response, side_effect=error)
    return client


def _status_error(cls: type[openai.APIStatusError], status: int) -> openai.APIStatusError:
    return cls(message="boom", response=httpx.Response(status, request=_REQUEST), body=None)


# ======================================================================
# Construction and metadata
# ======================================================================


class TestProviderMetadata:
    def test_defaults(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(), client=_mock_client())
        assert provider.get_model_name() == "text-embedding-3-small"
        assert provider.get_dimension() == 1536
        assert provider.get_provider_name() == "openai_embedding"
        assert provider.is_available() is True

    def test_unavailable_without_key(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(openai_api_key=""), client=_mock_client())
        assert provider.is_available() is False

    def test_custom_model_dimension(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="text-embedding-3-large"), client=_mock_client()
        )
        assert provider.get_dimension() == 3072

    def test_sdk_client_built_without_retries(self) -> None:
        with patch(
            "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"
        ) as mock_cls:
            provider = OpenAIEmbeddingProvider(_settings(openai_base_url="http://localhost:8080/v1"))
        kwargs = mock_cls.call_args.kwargs
        assert kwargs["max_retries"] == 0
        assert kwargs["base_url"] == "http://localhost:8080/v1"
        assert provider.get_provider_name() == "openai-compatible_embedding"


# ======================================================================
# embed()
# ======================================================================


class TestEmbed:
    @pytest.mark.asyncio
    async def test_embed_success(self) -> None:
        client = _mock_client(_response([[0.1, 0.2], [0.3, 0.4]]))
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        vectors = await provider.embed(["a", "b"])
        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        client.embeddings.create.assert_awaited_once_with(
            input=["a", "b"], model="text-embedding-3-small"
        )

    @pytest.mark.asyncio
    async def test_embed_restores_input_order(self) -> None:
        client = _mock_client(_response([[0.1], [0.2], [0.3]], order=[2, 0, 1]))
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        assert await provider.embed(["a", "b", "c"]) == [[0.1], [0.2], [0.3]]

    @pytest.mark.asyncio
    async def test_embed_empty(self) -> None:
        client = _mock_client()
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        assert await provider.embed([]) == []
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_mismatch_is_permanent(self) -> None:
        client = _mock_client(_response([[0.1]]))
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        with pytest.raises(PermanentProviderError):
            await provider.embed(["a", "b"])


class TestErrorClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected",
        [
            (_status_error(openai.RateLimitError, 429), RateLimitError),
            (_status_error(openai.InternalServerError, 503), TransientProviderError),
            (openai.APITimeoutError(request=_REQUEST), ProviderUnavailableError),
            (openai.APIConnectionError(request=_REQUEST), ProviderUnavailableError),
            (_status_error(openai.BadRequestError, 400), PermanentProviderError),
            (_status_error(openai.AuthenticationError, 401), PermanentProviderError),
        ],
    )
    async def test_sdk_errors_mapped(self, error: Exception, expected: type[Exception]) -> None:
        provider = OpenAIEmbeddingProvider(_settings(), client=_mock_client(error=error))
        with pytest.raises(expected) as exc_info:
            await provider.embed(["a"])
        assert exc_info.value.provider_name == "openai_embedding"
        assert exc_info.value.__cause__ is error
