"""OpenAI-compatible embedding generation service with retry logic."""

import asyncio
import logging
import time
from typing import Any, List, Optional

import openai
from openai import AsyncOpenAI

from chat_search.utils.errors import ConfigurationError, EmbeddingError, ValidationError


logger = logging.getLogger("chat-search.embedding")


class EmbeddingService:
    """Batched text-to-vector client for an OpenAI-compatible embeddings endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = 1536,
        timeout: int = 30,
        max_retries: int = 3,
        batch_size: int = 100,
        base_url: Optional[str] = None,
        initial_backoff: float = 1.0
    ):
        """
        Initialize embedding service.

        Args:
            api_key: Provider API key
            model: Embedding model name
            dimensions: Expected vector length; None or 0 uses the model default
            timeout: Request timeout (seconds)
            max_retries: Max attempts for transient failures
            batch_size: Max texts per provider call (≤2048 per OpenAI limit)
            base_url: Alternative OpenAI-compatible endpoint (e.g. Gemini)
            initial_backoff: First retry delay in seconds, doubled per attempt
        """
        if not api_key:
            raise ConfigurationError("OpenAI API key is required")

        # SDK retries are disabled; _call_with_retry owns the policy
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0
        )
        self.model = model
        self.dimensions = dimensions or None
        self.max_retries = max_retries
        self.batch_size = min(batch_size, 2048)  # OpenAI limit
        self.timeout = timeout
        self.base_url = base_url
        self.initial_backoff = initial_backoff

    async def generate_embedding(self, text: str) -> List[float]:
        """
        Generate single embedding with retry logic.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ValidationError: Invalid input (empty)
            ConfigurationError: Invalid API key
            EmbeddingError: Generation failed after retries or bad response
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        try:
            start_time = time.time()

            response = await self._call_with_retry(
                self.client.embeddings.create,
                **self._request_kwargs([text])
            )

            embedding = self._extract_embeddings(response, expected_count=1)[0]
            latency_ms = int((time.time() - start_time) * 1000)

            logger.info(
                f"Generated embedding: model={self.model}, "
                f"dims={len(embedding)}, latency={latency_ms}ms"
            )

            return embedding

        except (ValidationError, ConfigurationError, EmbeddingError):
            raise
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Splits into provider calls of at most batch_size texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors (same order as input)

        Raises:
            ValidationError: Invalid input
            EmbeddingError: Generation failed after retries or bad response
        """
        if not texts:
            return []

        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ValidationError(f"Text at index {i} is empty")

        all_embeddings: List[List[float]] = []
        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            batch_num = i // self.batch_size + 1

            try:
                start_time = time.time()

                response = await self._call_with_retry(
                    self.client.embeddings.create,
                    **self._request_kwargs(batch)
                )

                all_embeddings.extend(
                    self._extract_embeddings(response, expected_count=len(batch))
                )

                latency_ms = int((time.time() - start_time) * 1000)

                logger.info(
                    f"Batch {batch_num}/{total_batches}: "
                    f"generated {len(batch)} embeddings in {latency_ms}ms"
                )

            except (ValidationError, ConfigurationError):
                raise
            except Exception as e:
                logger.error(
                    f"Batch {batch_num}/{total_batches} failed: {e}"
                )
                raise EmbeddingError(
                    f"Failed to generate embeddings for batch {batch_num}: {e}"
                ) from e

        return all_embeddings

    def _request_kwargs(self, texts: List[str]) -> dict:
        kwargs = {"input": texts, "model": self.model}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        return kwargs

    def _extract_embeddings(self, response: Any, expected_count: int) -> List[List[float]]:
        """
        Pull vectors out of a provider response, enforcing the ordering contract.

        Items are re-ordered by their ``index`` field when the provider supplies
        one. Count, index coverage and dimensionality must all match.

        Raises:
            EmbeddingError: If the response does not line up with the inputs
        """
        data = getattr(response, "data", None)
        if data is None:
            raise EmbeddingError("Embedding response has no data")

        if len(data) != expected_count:
            raise EmbeddingError(
                f"Embedding count mismatch: sent {expected_count} texts, "
                f"received {len(data)} vectors"
            )

        positioned = []
        for position, item in enumerate(data):
            index = getattr(item, "index", None)
            if not isinstance(index, int):
                index = position
            positioned.append((index, item.embedding))

        positioned.sort(key=lambda pair: pair[0])
        if [index for index, _ in positioned] != list(range(expected_count)):
            raise EmbeddingError("Embedding response indexes do not match inputs")

        embeddings = [list(embedding) for _, embedding in positioned]

        expected_dims = self.dimensions or len(embeddings[0])
        for index, embedding in enumerate(embeddings):
            if len(embedding) != expected_dims:
                raise EmbeddingError(
                    f"Embedding at index {index} has {len(embedding)} dimensions, "
                    f"expected {expected_dims}"
                )

        return embeddings

    async def _call_with_retry(self, func, *args, **kwargs):
        """
        Execute coroutine function with exponential backoff retry logic.

        Args:
            func: Coroutine function to call
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            ConfigurationError: For auth errors (no retry)
            ValidationError: For invalid input (no retry)
            EmbeddingError: After max retries exceeded
        """
        attempts = 0
        backoff = self.initial_backoff

        while attempts < self.max_retries:
            try:
                return await func(*args, **kwargs)

            except openai.AuthenticationError as e:
                raise ConfigurationError(
                    "Invalid OpenAI API key. Check OPENAI_API_KEY environment variable."
                ) from e

            except openai.BadRequestError as e:
                raise ValidationError(f"Invalid input: {e}") from e

            except openai.RateLimitError as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"Embedding rate limit reached after {attempts} attempts. "
                        "Try again later."
                    ) from e

                logger.warning(
                    f"Rate limit hit (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )
                await asyncio.sleep(backoff)
                backoff *= 2

            except (openai.APITimeoutError, openai.APIConnectionError) as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"Request timeout after {attempts} attempts"
                    ) from e

                logger.warning(
                    f"Timeout (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )
                await asyncio.sleep(backoff)
                backoff *= 2

            except (openai.InternalServerError, openai.APIError) as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"Embedding service error after {attempts} attempts"
                    ) from e

                logger.warning(
                    f"Embedding service error (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )
                await asyncio.sleep(backoff)
                backoff *= 2

        raise EmbeddingError(f"Failed after {self.max_retries} attempts")

    def get_model_info(self) -> dict:
        """
        Return model configuration.

        Returns:
            Dictionary with provider, model, dimensions, batch_size
        """
        return {
            "provider": "openai-compatible",
            "base_url": self.base_url,
            "model": self.model,
            "dimensions": self.dimensions,
            "batch_size": self.batch_size,
            "timeout": self.timeout,
            "max_retries": self.max_retries
        }

    async def health_check(self) -> dict:
        """
        Test API connectivity with small embedding.

        Returns:
            Dictionary with status, latency_ms, and optional error
        """
        try:
            start_time = time.time()
            await self.generate_embedding("test")
            latency_ms = int((time.time() - start_time) * 1000)

            return {
                "status": "healthy",
                "model": self.model,
                "dimensions": self.dimensions,
                "api_latency_ms": latency_ms
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "model": self.model,
                "error": str(e)
            }
