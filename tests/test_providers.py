"""Tests for the OpenAI-backed embedding provider and generator wrappers.

The LangChain clients are swapped for stubs after construction, so no network
access happens.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from api.shared.exceptions import ExternalServiceError
from memory.models import AssembledContext, Role, Turn
from memory.prompts.context_prompt import RECENT_HEADER
from memory.providers.embeddings import OpenAIEmbeddingProvider
from memory.providers.generator import ChatOpenAIGenerator


class FlakyEmbeddings:
    def __init__(self, failures: int, vectors: List[List[float]]):
        self.failures = failures
        self.vectors = vectors
        self.calls = 0

    async def aembed_documents(self, texts):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("rate limited")
        return self.vectors


class RecordingChatModel:
    def __init__(self, reply: str = "Hi there", error: Exception = None):
        self.reply = reply
        self.error = error
        self.messages = None

    async def ainvoke(self, messages):
        self.messages = messages
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.reply)


def _embedding_provider(stub, max_retries=2):
    provider = OpenAIEmbeddingProvider(
        api_key="sk-test", max_retries=max_retries, retry_delay=0
    )
    provider.embeddings = stub
    return provider


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        stub = FlakyEmbeddings(failures=2, vectors=[[0.1, 0.2, 0.3]])

        vector = await _embedding_provider(stub).embed("hello")

        assert vector == [0.1, 0.2, 0.3]
        assert stub.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        stub = FlakyEmbeddings(failures=10, vectors=[[0.1]])

        with pytest.raises(ExternalServiceError):
            await _embedding_provider(stub, max_retries=1).embed("hello")
        assert stub.calls == 2

    @pytest.mark.asyncio
    async def test_batch_must_return_one_vector_per_text(self):
        stub = FlakyEmbeddings(failures=0, vectors=[[0.1]])

        with pytest.raises(ExternalServiceError):
            await _embedding_provider(stub).embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_empty_batch_skips_the_api(self):
        stub = FlakyEmbeddings(failures=0, vectors=[])

        assert await _embedding_provider(stub).embed_batch([]) == []
        assert stub.calls == 0


class TestChatOpenAIGenerator:
    @pytest.mark.asyncio
    async def test_sends_system_prompt_and_rendered_context(self):
        generator = ChatOpenAIGenerator(api_key="sk-test", system_prompt="Be brief.")
        model = RecordingChatModel()
        generator.llm = model
        context = AssembledContext(
            recent=[
                Turn(
                    id=1,
                    conversation_id="c1",
                    role=Role.USER,
                    content="earlier",
                    created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
                )
            ]
        )

        reply = await generator.generate(context, "now?")

        assert reply == "Hi there"
        system, human = model.messages
        assert isinstance(system, SystemMessage) and system.content == "Be brief."
        assert isinstance(human, HumanMessage)
        assert human.content.startswith(RECENT_HEADER)
        assert human.content.endswith("now?")

    @pytest.mark.asyncio
    async def test_model_errors_become_external_service_errors(self):
        generator = ChatOpenAIGenerator(api_key="sk-test")
        generator.llm = RecordingChatModel(error=TimeoutError("timed out"))

        with pytest.raises(ExternalServiceError, match="timed out"):
            await generator.generate(AssembledContext(), "hello")
