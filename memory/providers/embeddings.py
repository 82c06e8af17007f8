"""Embedding providers.

OpenAI ``text-embedding-3-small`` (1536-dim) through LangChain, with
exponential backoff on transient failures.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import structlog
from langchain_openai import OpenAIEmbeddings

from api.shared.exceptions import ExternalServiceError

logger = structlog.get_logger("memory.embeddings")

MAX_RETRIES = 3
RETRY_DELAY = 1.0


class EmbeddingProvider(ABC):
    """Turns text into fixed-dimension vectors."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        ...

    @abstractmethod
    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Order-preserving; returns exactly one vector per input text."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = None,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
    ):
        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.embeddings = OpenAIEmbeddings(
            model=model,
            openai_api_key=api_key or None,
            dimensions=dimensions,
        )

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        vectors = await self._embed_with_retry(list(texts))
        if len(vectors) != len(texts):
            raise ExternalServiceError(
                "openai",
                f"expected {len(texts)} embeddings, got {len(vectors)}",
                {"model": self.model},
            )
        return [list(v) for v in vectors]

    async def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings with exponential backoff retry logic."""
        for attempt in range(self.max_retries + 1):
            try:
                return await self.embeddings.aembed_documents(texts)
            except Exception as e:
                if attempt == self.max_retries:
                    logger.error(
                        "embedding_failed_after_retries",
                        model=self.model,
                        error=str(e),
                    )
                    raise ExternalServiceError(
                        "openai", str(e), {"model": self.model}
                    ) from e

                delay = self.retry_delay * (2**attempt)
                logger.warning(
                    "embedding_failed_retrying",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        raise ExternalServiceError("openai", "embedding failed after all retries")
