"""Unit tests for EmbeddingService."""

import pytest
from unittest.mock import AsyncMock, Mock, patch
import openai

from chat_search.services.embedding_service import EmbeddingService
from chat_search.utils.errors import ValidationError, ConfigurationError, EmbeddingError


def _response(*vectors, indexes=None):
    """Build a provider response; indexes default to positional order."""
    indexes = indexes if indexes is not None else range(len(vectors))
    mock_response = Mock()
    mock_response.data = [Mock(index=i, embedding=v) for i, v in zip(indexes, vectors)]
    return mock_response


# ============================================================================
# Initialization Tests
# ============================================================================

def test_init_with_valid_config():
    """Test initialization with valid configuration."""
    service = EmbeddingService(
        api_key="test-key",
        model="text-embedding-3-large",
        dimensions=3072,
        timeout=30,
        max_retries=3,
        batch_size=100
    )

    assert service.model == "text-embedding-3-large"
    assert service.dimensions == 3072
    assert service.max_retries == 3
    assert service.batch_size == 100
    assert service.timeout == 30


def test_init_without_api_key():
    """Test initialization fails without API key."""
    with pytest.raises(ConfigurationError, match="API key is required"):
        EmbeddingService(api_key="", model="text-embedding-3-small")


def test_init_limits_batch_size():
    """Test batch size is capped at OpenAI limit."""
    service = EmbeddingService(
        api_key="test-key",
        batch_size=5000  # Exceeds OpenAI limit
    )
    assert service.batch_size == 2048


def test_init_zero_dims_means_model_default():
    """Test dimensions=0 is treated as unset."""
    service = EmbeddingService(api_key="test-key", dimensions=0)
    assert service.dimensions is None


# ============================================================================
# Single Embedding Tests
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embedding_success(embedding_service):
    """Test successful embedding generation."""
    result = await embedding_service.generate_embedding("test text")

    assert isinstance(result, list)
    assert len(result) == 1536
    assert all(isinstance(x, float) for x in result)
    embedding_service.client.embeddings.create.assert_awaited_once_with(
        input=["test text"], model="text-embedding-3-small", dimensions=1536
    )


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embedding_omits_dimensions_when_unset(mock_openai_client):
    """Test the dimensions parameter is not sent for dims=0."""
    service = EmbeddingService(api_key="test-key", dimensions=0)
    service.client = mock_openai_client

    result = await service.generate_embedding("test")

    assert len(result) == 1536
    kwargs = mock_openai_client.embeddings.create.call_args.kwargs
    assert "dimensions" not in kwargs


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embedding_empty_text(embedding_service):
    """Test embedding generation fails with empty text."""
    with pytest.raises(ValidationError, match="cannot be empty"):
        await embedding_service.generate_embedding("")


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embedding_whitespace_only(embedding_service):
    """Test embedding generation fails with whitespace-only text."""
    with pytest.raises(ValidationError, match="cannot be empty"):
        await embedding_service.generate_embedding("   \n\t  ")

    embedding_service.client.embeddings.create.assert_not_called()


# ============================================================================
# Batch Embedding Tests
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_success(mock_openai_batch_client):
    """Test successful batch embedding generation."""
    service = EmbeddingService(api_key="test-key")
    service.client = mock_openai_batch_client

    texts = ["text 1", "text 2", "text 3"]
    results = await service.generate_embeddings_batch(texts)

    assert len(results) == 3
    assert all(isinstance(emb, list) for emb in results)
    assert all(len(emb) == 1536 for emb in results)
    assert service.client.embeddings.create.await_count == 1


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_empty_list(embedding_service):
    """Test batch generation with empty list."""
    results = await embedding_service.generate_embeddings_batch([])
    assert results == []
    embedding_service.client.embeddings.create.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_with_empty_text(embedding_service):
    """Test batch generation fails if any text is empty."""
    texts = ["valid text", "", "another valid"]

    with pytest.raises(ValidationError, match="at index 1 is empty"):
        await embedding_service.generate_embeddings_batch(texts)


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_splits_large_batches(mock_openai_batch_client):
    """Test batch generation splits large batches correctly."""
    service = EmbeddingService(api_key="test-key", batch_size=10)
    service.client = mock_openai_batch_client

    # 25 texts with batch_size=10 should require 3 API calls
    texts = [f"text {i}" for i in range(25)]
    results = await service.generate_embeddings_batch(texts)

    assert len(results) == 25
    assert service.client.embeddings.create.await_count == 3


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_reorders_by_index(mock_openai_client):
    """Test vectors are matched to inputs by their index field."""
    service = EmbeddingService(api_key="test-key", dimensions=2)
    service.client = mock_openai_client
    mock_openai_client.embeddings.create.return_value = _response(
        [2.0, 2.0], [0.0, 0.0], [1.0, 1.0], indexes=[2, 0, 1]
    )

    results = await service.generate_embeddings_batch(["a", "b", "c"])

    assert results == [[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]]


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_count_mismatch(mock_openai_client):
    """Test a response with the wrong number of vectors is rejected."""
    service = EmbeddingService(api_key="test-key", dimensions=2)
    service.client = mock_openai_client
    mock_openai_client.embeddings.create.return_value = _response([0.1, 0.2])

    with pytest.raises(EmbeddingError, match="count mismatch"):
        await service.generate_embeddings_batch(["a", "b"])


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embeddings_batch_duplicate_indexes(mock_openai_client):
    """Test a response whose indexes do not cover the inputs is rejected."""
    service = EmbeddingService(api_key="test-key", dimensions=2)
    service.client = mock_openai_client
    mock_openai_client.embeddings.create.return_value = _response(
        [0.1, 0.2], [0.3, 0.4], indexes=[0, 0]
    )

    with pytest.raises(EmbeddingError, match="indexes do not match"):
        await service.generate_embeddings_batch(["a", "b"])


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_generate_embedding_wrong_dimensions(mock_openai_client):
    """Test vectors of unexpected length are rejected."""
    service = EmbeddingService(api_key="test-key", dimensions=768)
    service.client = mock_openai_client

    with pytest.raises(EmbeddingError, match="expected 768"):
        await service.generate_embedding("test")


# ============================================================================
# Retry Logic Tests
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_retry_on_rate_limit(mock_openai_client):
    """Test retry logic on rate limit errors."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    # First 2 calls fail with rate limit, 3rd succeeds
    mock_openai_client.embeddings.create.side_effect = [
        openai.RateLimitError("Rate limit exceeded", response=Mock(), body={}),
        openai.RateLimitError("Rate limit exceeded", response=Mock(), body={}),
        _response([0.1] * 1536)
    ]

    with patch("asyncio.sleep", new_callable=AsyncMock):
        result = await service.generate_embedding("test")

    assert len(result) == 1536
    assert mock_openai_client.embeddings.create.await_count == 3


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_no_retry_on_auth_error(mock_openai_client):
    """Test no retry on authentication errors."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = openai.AuthenticationError(
        "Invalid API key", response=Mock(), body={}
    )

    with pytest.raises(ConfigurationError, match="Invalid OpenAI API key"):
        await service.generate_embedding("test")

    assert mock_openai_client.embeddings.create.await_count == 1


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_no_retry_on_bad_request(mock_openai_client):
    """Test no retry on bad request errors."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = openai.BadRequestError(
        "Invalid input", response=Mock(), body={}
    )

    with pytest.raises(ValidationError, match="Invalid input"):
        await service.generate_embedding("test")

    assert mock_openai_client.embeddings.create.await_count == 1


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_retry_on_timeout(mock_openai_client):
    """Test retry logic on timeout errors."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = [
        openai.APITimeoutError(request=Mock()),
        _response([0.1] * 1536)
    ]

    with patch("asyncio.sleep", new_callable=AsyncMock):
        result = await service.generate_embedding("test")

    assert len(result) == 1536
    assert mock_openai_client.embeddings.create.await_count == 2


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_retry_on_connection_error(mock_openai_client):
    """Test retry logic on connection errors."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = [
        openai.APIConnectionError(request=Mock()),
        _response([0.1] * 1536)
    ]

    with patch("asyncio.sleep", new_callable=AsyncMock):
        result = await service.generate_embedding("test")

    assert len(result) == 1536
    assert mock_openai_client.embeddings.create.await_count == 2


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_retry_exhausted(mock_openai_client):
    """Test error raised after max retries exhausted."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = openai.RateLimitError(
        "Rate limit", response=Mock(), body={}
    )

    with patch("asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(EmbeddingError, match="after 3 attempts"):
            await service.generate_embedding("test")

    assert mock_openai_client.embeddings.create.await_count == 3


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_batch_retry_exhausted_wraps_batch_number(mock_openai_batch_client):
    """Test batch failures name the failing provider call."""
    service = EmbeddingService(api_key="test-key", max_retries=2, batch_size=2)
    service.client = mock_openai_batch_client

    mock_openai_batch_client.embeddings.create.side_effect = openai.APITimeoutError(request=Mock())

    with patch("asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(EmbeddingError, match="batch 1"):
            await service.generate_embeddings_batch(["a", "b", "c"])

    assert mock_openai_batch_client.embeddings.create.await_count == 2


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_exponential_backoff(mock_openai_client):
    """Test exponential backoff timing."""
    service = EmbeddingService(api_key="test-key", max_retries=3)
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = openai.RateLimitError(
        "Rate limit", response=Mock(), body={}
    )

    sleep_times = []

    async def mock_sleep(duration):
        sleep_times.append(duration)

    with patch("asyncio.sleep", side_effect=mock_sleep):
        with pytest.raises(EmbeddingError):
            await service.generate_embedding("test")

    # Only 2 sleeps (after 1st and 2nd failure)
    assert sleep_times == [1.0, 2.0]


# ============================================================================
# Model Info and Health Check Tests
# ============================================================================

def test_get_model_info(embedding_service):
    """Test get_model_info returns correct information."""
    info = embedding_service.get_model_info()

    assert info["provider"] == "openai-compatible"
    assert info["base_url"] is None
    assert info["model"] == "text-embedding-3-small"
    assert info["dimensions"] == 1536
    assert info["batch_size"] == 100
    assert info["timeout"] == 30
    assert info["max_retries"] == 3


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_health_check_healthy(embedding_service):
    """Test health check with healthy service."""
    result = await embedding_service.health_check()

    assert result["status"] == "healthy"
    assert result["model"] == "text-embedding-3-small"
    assert result["dimensions"] == 1536
    assert isinstance(result["api_latency_ms"], int)


@pytest.mark.asyncio
@pytest.mark.mock_openai
async def test_health_check_unhealthy(mock_openai_client):
    """Test health check with unhealthy service."""
    service = EmbeddingService(api_key="test-key")
    service.client = mock_openai_client

    mock_openai_client.embeddings.create.side_effect = Exception("API Error")

    result = await service.health_check()

    assert result["status"] == "unhealthy"
    assert result["model"] == "text-embedding-3-small"
    assert "API Error" in result["error"]
