"""Turn pipeline: one user message in, one assistant reply out.

Stages, in order:

    REGISTERING -> EMBEDDING_USER -> PERSISTING_USER -> ASSEMBLING -> GENERATING
    -> EMBEDDING_REPLY -> PERSISTING_REPLY -> UPDATING_TIMESTAMP -> DONE

The user turn is stored (with its embedding) before context is assembled and is
then excluded from that context; the generator receives it as the question.
There is no transaction around the whole turn: a failure keeps whatever earlier
stages wrote. In particular a generation failure leaves the stored user turn in
place, and a failed reply embedding or reply write leaves a user turn without a
reply. Reply-side failures are not retryable, since resending the message would
store the user turn twice.

No lock is taken per conversation. Two concurrent turns on one conversation may
interleave; conversations are expected to have a single writer.
"""
from __future__ import annotations

import math
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Type

import structlog

from api.shared.exceptions import ValidationError
from memory.exceptions import (
    EmbeddingFailure,
    GenerationFailure,
    PersistenceFailure,
    ReplyEmbeddingFailure,
    TurnStageError,
)
from memory.models import NewTurn, Role, TurnResult
from memory.pipeline.context_assembler import ContextAssembler
from memory.providers.embeddings import EmbeddingProvider
from memory.providers.generator import Generator
from memory.stores.base import (
    ConversationRegistry,
    MessageStore,
    validate_conversation_id,
)

logger = structlog.get_logger("memory.pipeline")


class TurnStage(str, Enum):
    REGISTERING = "registering"
    EMBEDDING_USER = "embedding_user"
    PERSISTING_USER = "persisting_user"
    ASSEMBLING = "assembling"
    GENERATING = "generating"
    EMBEDDING_REPLY = "embedding_reply"
    PERSISTING_REPLY = "persisting_reply"
    UPDATING_TIMESTAMP = "updating_timestamp"
    DONE = "done"


class TurnPipeline:
    def __init__(
        self,
        *,
        message_store: MessageStore,
        registry: ConversationRegistry,
        assembler: ContextAssembler,
        embedding_provider: EmbeddingProvider,
        generator: Generator,
        embedding_dimension: Optional[int] = None,
    ):
        self.message_store = message_store
        self.registry = registry
        self.assembler = assembler
        self.embedding_provider = embedding_provider
        self.generator = generator
        self.embedding_dimension = embedding_dimension

    async def process_turn(
        self,
        text: str,
        conversation_id: Optional[str] = None,
        *,
        user_id: Optional[str] = None,
    ) -> TurnResult:
        """Run one turn and return the reply with the conversation id.

        A missing ``conversation_id`` starts a new conversation with a fresh
        UUID. Blank text or a malformed id is rejected before anything is written.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text must not be blank", {"field": "text"})
        if conversation_id is None:
            conversation_id = str(uuid.uuid4())
        else:
            validate_conversation_id(conversation_id)

        log = logger.bind(conversation_id=conversation_id)
        log.info("turn_started")

        with self._stage(TurnStage.REGISTERING, conversation_id, PersistenceFailure):
            await self.registry.ensure(conversation_id, user_id=user_id)

        with self._stage(TurnStage.EMBEDDING_USER, conversation_id, EmbeddingFailure):
            user_embedding = self._checked_embedding(
                await self.embedding_provider.embed(text)
            )

        with self._stage(TurnStage.PERSISTING_USER, conversation_id, PersistenceFailure):
            user_turn = await self.message_store.append(
                NewTurn(
                    conversation_id=conversation_id,
                    role=Role.USER,
                    content=text,
                    embedding=user_embedding,
                )
            )

        with self._stage(TurnStage.ASSEMBLING, conversation_id, PersistenceFailure):
            context = await self.assembler.assemble(
                conversation_id, user_embedding, exclude_ids=[user_turn.id]
            )

        with self._stage(TurnStage.GENERATING, conversation_id, GenerationFailure):
            reply = await self.generator.generate(context, text)
            if not isinstance(reply, str) or not reply.strip():
                raise ValueError("generator returned an empty reply")

        with self._stage(
            TurnStage.EMBEDDING_REPLY, conversation_id, ReplyEmbeddingFailure
        ):
            reply_embedding = self._checked_embedding(
                await self.embedding_provider.embed(reply)
            )

        with self._stage(TurnStage.PERSISTING_REPLY, conversation_id, PersistenceFailure):
            reply_turn = await self.message_store.append(
                NewTurn(
                    conversation_id=conversation_id,
                    role=Role.ASSISTANT,
                    content=reply,
                    embedding=reply_embedding,
                )
            )

        with self._stage(
            TurnStage.UPDATING_TIMESTAMP, conversation_id, PersistenceFailure
        ):
            await self.registry.touch(conversation_id)

        log.info(
            "turn_completed",
            stage=TurnStage.DONE.value,
            user_turn_id=user_turn.id,
            reply_turn_id=reply_turn.id,
            similar=len(context.similar),
            recent=len(context.recent),
        )
        return TurnResult(
            reply=reply,
            conversation_id=conversation_id,
            user_turn=user_turn,
            reply_turn=reply_turn,
        )

    async def clear_conversation(self, conversation_id: str) -> int:
        """Delete a conversation and all its turns. Unknown ids return 0."""
        validate_conversation_id(conversation_id)
        deleted = await self.message_store.delete_conversation(conversation_id)
        logger.info(
            "conversation_cleared", conversation_id=conversation_id, turns=deleted
        )
        return deleted

    def _checked_embedding(self, vector: Sequence[float]) -> List[float]:
        values = [float(v) for v in vector]
        if not values:
            raise ValueError("embedding is empty")
        if self.embedding_dimension is not None and len(values) != self.embedding_dimension:
            raise ValueError(
                f"expected {self.embedding_dimension} dimensions, got {len(values)}"
            )
        if not all(math.isfinite(v) for v in values):
            raise ValueError("embedding contains non-finite values")
        return values

    @contextmanager
    def _stage(
        self,
        stage: TurnStage,
        conversation_id: str,
        failure: Type[TurnStageError],
    ) -> Iterator[None]:
        logger.debug("turn_stage", stage=stage.value, conversation_id=conversation_id)
        try:
            yield
        except (ValidationError, TurnStageError):
            raise
        except Exception as e:
            logger.error(
                "turn_stage_failed",
                stage=stage.value,
                conversation_id=conversation_id,
                error=str(e),
            )
            raise failure(
                str(e), stage=stage.value, conversation_id=conversation_id
            ) from e
