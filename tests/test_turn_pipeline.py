"""Tests for the turn pipeline lifecycle and its failure policy."""

from __future__ import annotations

import uuid

import pytest

from api.shared.exceptions import ValidationError
from memory.exceptions import (
    EmbeddingFailure,
    GenerationFailure,
    InvalidConversationIdError,
    PersistenceFailure,
    ReplyEmbeddingFailure,
)
from memory.models import MemoryConfig, NewTurn, Role, Turn
from memory.pipeline.context_assembler import ContextAssembler
from memory.pipeline.turn_pipeline import TurnPipeline
from memory.stores.in_memory import InMemoryMessageStore


class ReplyWriteFailingStore(InMemoryMessageStore):
    """Stores user turns but fails on assistant turns."""

    async def append(self, turn: NewTurn) -> Turn:
        if turn.role is Role.ASSISTANT:
            raise ConnectionError("connection reset by peer")
        return await super().append(turn)


class TouchFailingRegistry:
    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def touch(self, conversation_id: str) -> None:
        raise ConnectionError("connection reset by peer")


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_first_turn_starts_a_new_conversation(
        self, pipeline, generator, message_store, registry
    ):
        result = await pipeline.process_turn("Hello")

        uuid.UUID(result.conversation_id)
        assert result.reply == "echo: Hello"
        assert generator.contexts[0].is_empty
        assert generator.questions == ["Hello"]

        history = await message_store.history(result.conversation_id)
        assert [(t.role, t.content) for t in history] == [
            (Role.USER, "Hello"),
            (Role.ASSISTANT, "echo: Hello"),
        ]
        assert all(t.is_searchable for t in history)

        conversation = await registry.get(result.conversation_id)
        assert conversation is not None
        assert conversation.updated_at >= conversation.created_at

    @pytest.mark.asyncio
    async def test_follow_up_sees_previous_turns_in_order(self, pipeline, generator):
        first = await pipeline.process_turn("My name is Ada", "chat-1")
        await pipeline.process_turn("What is my name?", first.conversation_id)

        context = generator.contexts[-1]
        assert [t.content for t in context.recent] == [
            "My name is Ada",
            "echo: My name is Ada",
        ]
        assert "What is my name?" not in [t.content for t in context.recent]

    @pytest.mark.asyncio
    async def test_user_id_is_recorded_on_creation(self, pipeline, registry):
        await pipeline.process_turn("hi", "chat-1", user_id="u-42")

        conversation = await registry.get("chat-1")
        assert conversation.user_id == "u-42"

    @pytest.mark.asyncio
    async def test_each_completed_turn_bumps_updated_at(self, pipeline, registry):
        await pipeline.process_turn("one", "chat-1")
        before = (await registry.get("chat-1")).updated_at

        await pipeline.process_turn("two", "chat-1")

        assert (await registry.get("chat-1")).updated_at >= before

    @pytest.mark.asyncio
    async def test_older_turns_return_through_similarity(
        self, message_store, registry, similarity_index, embedding_provider, generator
    ):
        assembler = ContextAssembler(
            message_store=message_store,
            similarity_index=similarity_index,
            config=MemoryConfig(recent_limit=2, similar_limit=3, similarity_threshold=0.5),
        )
        pipeline = TurnPipeline(
            message_store=message_store,
            registry=registry,
            assembler=assembler,
            embedding_provider=embedding_provider,
            generator=generator,
            embedding_dimension=3,
        )
        embedding_provider.vectors = {
            "I live in Paris": [0.0, 0.0, 1.0],
            "echo: I live in Paris": [0.0, 1.0, 0.0],
            "Where do I live?": [0.1, 0.0, 1.0],
        }
        await pipeline.process_turn("I live in Paris", "chat-1")
        await pipeline.process_turn("unrelated", "chat-1")

        await pipeline.process_turn("Where do I live?", "chat-1")

        context = generator.contexts[-1]
        assert [t.content for t in context.recent] == ["unrelated", "echo: unrelated"]
        assert [t.content for t in context.similar] == ["I live in Paris"]


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_is_rejected_without_side_effects(
        self, pipeline, database, embedding_provider, text
    ):
        with pytest.raises(ValidationError):
            await pipeline.process_turn(text, "chat-1")

        assert database.messages == []
        assert database.conversations == {}
        assert embedding_provider.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("conversation_id", ["", "has space", "-leading", "x" * 200])
    async def test_malformed_id_is_rejected_without_side_effects(
        self, pipeline, database, conversation_id
    ):
        with pytest.raises(InvalidConversationIdError):
            await pipeline.process_turn("hello", conversation_id)

        assert database.messages == []
        assert database.conversations == {}


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_user_embedding_failure_writes_no_turns(
        self, pipeline, embedding_provider, database
    ):
        embedding_provider.fail_on = "hello"

        with pytest.raises(EmbeddingFailure) as exc_info:
            await pipeline.process_turn("hello", "chat-1")

        assert exc_info.value.retryable is True
        assert exc_info.value.stage == "embedding_user"
        assert database.messages == []

    @pytest.mark.asyncio
    async def test_unusable_embedding_is_an_embedding_failure(
        self, pipeline, embedding_provider, database
    ):
        embedding_provider.vectors["hello"] = [1.0, 0.0]

        with pytest.raises(EmbeddingFailure):
            await pipeline.process_turn("hello", "chat-1")

        assert database.messages == []

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_the_user_turn(
        self, pipeline, generator, message_store
    ):
        generator.error = TimeoutError("model timed out")

        with pytest.raises(GenerationFailure) as exc_info:
            await pipeline.process_turn("hello", "chat-1")

        assert exc_info.value.retryable is True
        assert exc_info.value.details["conversation_id"] == "chat-1"
        history = await message_store.history("chat-1")
        assert [(t.role, t.content) for t in history] == [(Role.USER, "hello")]

    @pytest.mark.asyncio
    async def test_empty_reply_is_a_generation_failure(
        self, pipeline, generator, message_store
    ):
        generator.reply_for = lambda question: "  "

        with pytest.raises(GenerationFailure):
            await pipeline.process_turn("hello", "chat-1")

        assert len(await message_store.history("chat-1")) == 1

    @pytest.mark.asyncio
    async def test_reply_embedding_failure_keeps_the_user_turn(
        self, pipeline, embedding_provider, message_store
    ):
        embedding_provider.fail_on = "echo: hello"

        with pytest.raises(ReplyEmbeddingFailure) as exc_info:
            await pipeline.process_turn("hello", "chat-1")

        assert exc_info.value.stage == "embedding_reply"
        assert exc_info.value.retryable is False
        assert exc_info.value.details["retryable"] is False
        assert len(await message_store.history("chat-1")) == 1

    @pytest.mark.asyncio
    async def test_only_failures_before_the_user_write_are_retryable(
        self, pipeline, embedding_provider, message_store
    ):
        embedding_provider.fail_on = "hello"
        with pytest.raises(EmbeddingFailure) as before_write:
            await pipeline.process_turn("hello", "chat-1")

        embedding_provider.fail_on = "echo: hello"
        with pytest.raises(EmbeddingFailure) as after_write:
            await pipeline.process_turn("hello", "chat-1")

        assert before_write.value.retryable is True
        assert after_write.value.retryable is False
        contents = [t.content for t in await message_store.history("chat-1")]
        assert contents.count("hello") == 1

    @pytest.mark.asyncio
    async def test_reply_write_failure_leaves_an_orphaned_user_turn(
        self, database, registry, similarity_index, memory_config,
        embedding_provider, generator,
    ):
        store = ReplyWriteFailingStore(database)
        pipeline = TurnPipeline(
            message_store=store,
            registry=registry,
            assembler=ContextAssembler(
                message_store=store,
                similarity_index=similarity_index,
                config=memory_config,
            ),
            embedding_provider=embedding_provider,
            generator=generator,
            embedding_dimension=3,
        )

        with pytest.raises(PersistenceFailure) as exc_info:
            await pipeline.process_turn("hello", "chat-1")

        assert exc_info.value.retryable is False
        assert exc_info.value.stage == "persisting_reply"
        history = await store.history("chat-1")
        assert [t.role for t in history] == [Role.USER]

    @pytest.mark.asyncio
    async def test_timestamp_failure_is_a_persistence_failure(
        self, message_store, registry, assembler, embedding_provider, generator
    ):
        pipeline = TurnPipeline(
            message_store=message_store,
            registry=TouchFailingRegistry(registry),
            assembler=assembler,
            embedding_provider=embedding_provider,
            generator=generator,
        )

        with pytest.raises(PersistenceFailure) as exc_info:
            await pipeline.process_turn("hello", "chat-1")

        assert exc_info.value.stage == "updating_timestamp"
        assert len(await message_store.history("chat-1")) == 2


class TestClearConversation:
    @pytest.mark.asyncio
    async def test_clear_removes_everything_and_is_repeatable(
        self, pipeline, message_store, registry
    ):
        await pipeline.process_turn("one", "chat-1")
        await pipeline.process_turn("two", "chat-1")

        assert await pipeline.clear_conversation("chat-1") == 4
        assert await message_store.history("chat-1") == []
        assert await registry.get("chat-1") is None

        assert await pipeline.clear_conversation("chat-1") == 0

    @pytest.mark.asyncio
    async def test_clear_rejects_malformed_id(self, pipeline):
        with pytest.raises(InvalidConversationIdError):
            await pipeline.clear_conversation("not valid")
