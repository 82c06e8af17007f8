"""Pytest configuration for chat memory tests.

Everything runs on the in-process backend with stub embedding and generation
providers; no Postgres or OpenAI access is needed.
"""

from __future__ import annotations

import os

# Must be set before core.settings is imported anywhere.
os.environ["MEMORY_BACKEND"] = "memory"
os.environ["EMBEDDING_DIMENSION"] = "3"
os.environ["JSON_LOGS"] = "false"
os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from typing import Callable, Dict, List, Optional, Sequence  # noqa: E402

import pytest  # noqa: E402

from infra.resources import InMemoryDatabase  # noqa: E402
from memory.models import AssembledContext, MemoryConfig  # noqa: E402
from memory.pipeline.context_assembler import ContextAssembler  # noqa: E402
from memory.pipeline.turn_pipeline import TurnPipeline  # noqa: E402
from memory.providers.embeddings import EmbeddingProvider  # noqa: E402
from memory.providers.generator import Generator  # noqa: E402
from memory.stores.in_memory import (  # noqa: E402
    InMemoryConversationRegistry,
    InMemoryMessageStore,
    InMemorySimilarityIndex,
)

DIMENSION = 3
DEFAULT_VECTOR = [1.0, 0.0, 0.0]


class StubEmbeddingProvider(EmbeddingProvider):
    """Looks vectors up by text; unknown text gets ``DEFAULT_VECTOR``."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = dict(vectors or {})
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None
        self.error: Exception = RuntimeError("embedding service unavailable")

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_on is not None and text == self.fail_on:
            raise self.error
        return list(self.vectors.get(text, DEFAULT_VECTOR))

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [await self.embed(t) for t in texts]


class StubGenerator(Generator):
    """Records every context it is given and answers from ``reply_for``."""

    def __init__(self, reply_for: Optional[Callable[[str], str]] = None):
        self.reply_for = reply_for or (lambda question: f"echo: {question}")
        self.contexts: List[AssembledContext] = []
        self.questions: List[str] = []
        self.error: Optional[Exception] = None

    async def generate(self, context: AssembledContext, question: str) -> str:
        self.contexts.append(context)
        self.questions.append(question)
        if self.error is not None:
            raise self.error
        return self.reply_for(question)


@pytest.fixture
def database():
    return InMemoryDatabase()


@pytest.fixture
def message_store(database):
    return InMemoryMessageStore(database)


@pytest.fixture
def registry(database):
    return InMemoryConversationRegistry(database)


@pytest.fixture
def similarity_index(database):
    return InMemorySimilarityIndex(database, dimension=DIMENSION)


@pytest.fixture
def memory_config():
    return MemoryConfig(recent_limit=20, similar_limit=5, similarity_threshold=0.7)


@pytest.fixture
def assembler(message_store, similarity_index, memory_config):
    return ContextAssembler(
        message_store=message_store,
        similarity_index=similarity_index,
        config=memory_config,
    )


@pytest.fixture
def embedding_provider():
    return StubEmbeddingProvider()


@pytest.fixture
def generator():
    return StubGenerator()


@pytest.fixture
def pipeline(message_store, registry, assembler, embedding_provider, generator):
    return TurnPipeline(
        message_store=message_store,
        registry=registry,
        assembler=assembler,
        embedding_provider=embedding_provider,
        generator=generator,
        embedding_dimension=DIMENSION,
    )
