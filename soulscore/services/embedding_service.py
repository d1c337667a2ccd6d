# ============================================================================
# soulscore/services/embedding_service.py
# ============================================================================
"""
Embedding Service for SoulScore - OpenAI API Embeddings

Generates the fixed-length content embeddings the originality engine compares.
Each content item is embedded once and the vector stored on the row.

Key Features:
    - Embedding input built from the content text plus its insight texts
    - Input truncated to the configured character budget (8000)
    - Vector length verified against the configured dimensions
    - No client-side retry loops; failures surface to the job queue, whose
      backoff schedules the retry

Usage:
    from soulscore.services.embedding_service import embedding_service

    vector = await embedding_service.get_embedding("Content text...")

Configuration (environment):
    OPENAI_API_KEY, OPENAI_BASE_URL
    OPENAI_EMBEDDING_MODEL=text-embedding-3-small
    OPENAI_EMBEDDING_DIMENSIONS=1536
"""

import asyncio
import logging
from typing import Iterable, List, Optional

import httpx
from openai import OpenAI

from ..config import settings
from ..exceptions import EmbeddingUnavailableError

logger = logging.getLogger("soulscore.embedding_service")


def build_embedding_input(text: str, insight_texts: Iterable[str] = (), max_chars: Optional[int] = None) -> str:
    """
    Build the text sent to the embedding model.

    Joins the content text with its insight texts and truncates to the
    embedding input budget.
    """
    max_chars = max_chars or settings.embedding_max_chars
    parts = [text or ""] + [t for t in insight_texts if t]
    combined = "\n".join(parts).strip()
    return combined[:max_chars]


class EmbeddingService:
    """
    OpenAI API-based embedding generation.

    Thread Safety:
        The service uses the OpenAI sync client with asyncio executor.
    """

    def __init__(self):
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        """
        Get or create the OpenAI client.

        Raises:
            EmbeddingUnavailableError: If no API key is configured
        """
        if self._client is None:
            if not settings.openai_api_key:
                raise EmbeddingUnavailableError(
                    "OPENAI_API_KEY not set. Configure it in the environment or .env."
                )

            http_client = httpx.Client(timeout=settings.openai_timeout)
            self._client = OpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                http_client=http_client,
                max_retries=settings.openai_max_retries,
            )
            logger.info(
                f"OpenAI client initialized for embeddings (model: {self.model_name})"
            )

        return self._client

    def _generate_embedding_sync(self, text: str) -> List[float]:
        client = self._get_client()

        text = text[: settings.embedding_max_chars]
        if not text.strip():
            text = "empty"

        response = client.embeddings.create(
            model=self.model_name,
            input=text,
            dimensions=self.embedding_dim,
        )
        embedding = list(response.data[0].embedding)

        if len(embedding) != self.embedding_dim:
            raise ValueError(
                f"Embedding has {len(embedding)} dimensions, expected {self.embedding_dim}"
            )
        return embedding

    async def get_embedding(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to generate embedding for

        Returns:
            List of floats of length embedding_dim

        Raises:
            EmbeddingUnavailableError: If API key is not configured
            Exception: If API call fails
        """
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._generate_embedding_sync, text)

    @property
    def embedding_dim(self) -> int:
        return settings.openai_embedding_dimensions

    @property
    def model_name(self) -> str:
        return settings.openai_embedding_model

    @property
    def is_available(self) -> bool:
        """Check if the embedding service is configured."""
        return bool(settings.openai_api_key)


# Global service instance
embedding_service = EmbeddingService()
