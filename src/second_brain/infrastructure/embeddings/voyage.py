"""Voyage AI embedding service."""

from typing import Any, cast

import voyageai
import voyageai.error

from second_brain.core.base import ErrorLevel, ServiceErrorDetails
from second_brain.core.circuit_breaker import CircuitBreaker, RetryWithCircuitBreaker
from second_brain.core.config import settings
from second_brain.core.decorators import with_error_handling
from second_brain.core.errors import (
    AuthenticationError,
    EmbeddingError,
    InvalidInputError,
    RateLimitError,
    ServiceError,
    TimeoutError,
)
from second_brain.core.logging import get_logger

logger = get_logger(__name__)

MODEL_DIMENSIONS = {
    "voyage-3-large": 1024,
    "voyage-3": 1024,
    "voyage-3-lite": 512,
    "voyage-large-2": 1536,
}


class VoyageEmbeddingService:
    """Voyage AI embedding service implementation.

    Calls go through a circuit breaker; rate limits and timeouts are retried
    with backoff, other provider failures surface as ``EmbeddingError`` so the
    job dispatcher can retry the whole job.
    """

    # voyageai client doesn't expose a public type, so we use Any here
    client: Any  # voyageai.AsyncClient

    def __init__(self, model: str | None = None, api_key: str | None = None) -> None:
        """Initialize the Voyage embedding service.

        Args:
            model: Optional model override (defaults to settings.voyage_model)
            api_key: Optional key override (defaults to settings.voyage_api_key)

        Raises:
            AuthenticationError: If the API key is not configured
        """
        api_key = api_key or settings.voyage_api_key.get_secret_value()
        if not api_key:
            raise AuthenticationError(
                message="Voyage API key not found in settings",
                details=ServiceErrorDetails(
                    source="VoyageEmbeddingService",
                    operation="initialization",
                    service_name="Voyage AI",
                ),
            )

        self.model = model or settings.voyage_model
        self.client = voyageai.AsyncClient(api_key=api_key)

        self._circuit_breaker = CircuitBreaker(
            name="voyage_api",
            failure_threshold=3,
            recovery_timeout=30.0,
            expected_exception_types=(RateLimitError, TimeoutError, ServiceError),
            success_threshold=2,
        )
        self._retry_handler = RetryWithCircuitBreaker(
            circuit_breaker=self._circuit_breaker,
            max_retries=3,
            initial_delay=1.0,
            backoff_factor=2.0,
            max_delay=30.0,
            retryable_exceptions=(RateLimitError, TimeoutError),
        )

    async def _call_voyage_api(self, texts: list[str]) -> list[list[float]]:
        """Single provider call; wrapped by the circuit breaker."""
        try:
            response = await self.client.embed(texts=texts, model=self.model)
        except voyageai.error.VoyageError as e:
            raise self._map_error(e) from e

        embeddings = getattr(response, "embeddings", [])
        if not embeddings or len(embeddings) != len(texts):
            raise EmbeddingError(
                message="Voyage API returned incomplete embeddings",
                details=self._details("embed", status_code=200),
            )
        return [cast("list[float]", emb) for emb in embeddings]

    @with_error_handling(error_level=ErrorLevel.ERROR)
    async def embed_text(self, text: str) -> list[float]:
        """Generate an embedding vector for the provided text."""
        if not text.strip():
            raise InvalidInputError(
                message="Cannot embed empty text",
                details={"source": "voyage_embedding", "operation": "embed_text"},
            )
        embeddings = await self._retry_handler.call_async(self._call_voyage_api, [text])
        logger.debug("Embedded text", model=self.model, text_length=len(text))
        return embeddings[0]

    @with_error_handling(error_level=ErrorLevel.ERROR)
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embedding vectors for a batch of texts.

        Args:
            texts: List of non-empty texts to embed

        Returns:
            List of embedding vectors corresponding to the input texts

        Raises:
            InvalidInputError: If any text is empty
            EmbeddingError: If the provider returned unusable data
            ServiceError: If the circuit is open or service fails
        """
        if not texts:
            return []
        if any(not text.strip() for text in texts):
            raise InvalidInputError(
                message="Batch contains empty texts",
                details={"source": "voyage_embedding", "operation": "embed_batch"},
            )
        return await self._retry_handler.call_async(self._call_voyage_api, texts)

    def _details(self, operation: str, status_code: int | None = None) -> ServiceErrorDetails:
        return ServiceErrorDetails(
            source="VoyageEmbeddingService",
            operation=operation,
            service_name="Voyage AI",
            endpoint="/embeddings",
            status_code=status_code,
        )

    def _map_error(self, e: voyageai.error.VoyageError) -> Exception:
        """Map provider errors to our exception types."""
        if isinstance(e, voyageai.error.RateLimitError):
            return RateLimitError(
                message="Rate limit exceeded for embeddings API",
                details=self._details("embed", status_code=429),
            )
        if isinstance(e, voyageai.error.Timeout | voyageai.error.APIConnectionError):
            return TimeoutError(
                message="Embeddings API request timed out",
                details={"source": "voyage_embedding", "operation": "embed", "original_error": str(e)},
            )
        if isinstance(e, voyageai.error.AuthenticationError):
            return AuthenticationError(
                message="Authentication failed for embeddings API",
                details=self._details("embed", status_code=401),
            )
        if isinstance(e, voyageai.error.InvalidRequestError):
            return InvalidInputError(
                message=f"Embeddings API rejected the request: {e!s}",
                details={"source": "voyage_embedding", "operation": "embed"},
            )
        return EmbeddingError(
            message=f"Failed to generate embeddings: {e!s}",
            details=self._details("embed"),
        )

    def get_model_dimensions(self) -> int:
        """Get the dimensionality of the configured model."""
        return MODEL_DIMENSIONS.get(self.model, 1024)
