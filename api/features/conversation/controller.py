"""Controller for the Conversation feature."""
from typing import Optional

from api.features.chat.dtos import ClearConversationResponse
from api.features.conversation.dtos import (
    ConversationDTO,
    ConversationListResponse,
    MessageDTO,
    MessagesResponse,
)
from api.shared.exceptions import NotFoundError
from api.shared.response import ResponseModel
from memory.models import Conversation, Turn
from memory.pipeline.turn_pipeline import TurnPipeline
from memory.stores.base import (
    ConversationRegistry,
    MessageStore,
    validate_conversation_id,
)


def _to_conversation_dto(conversation: Conversation) -> ConversationDTO:
    return ConversationDTO(
        id=conversation.id,
        title=conversation.title,
        user_id=conversation.user_id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def _to_message_dto(turn: Turn) -> MessageDTO:
    return MessageDTO(
        id=turn.id,
        role=turn.role.value,
        content=turn.content,
        created_at=turn.created_at,
        has_embedding=turn.is_searchable,
        metadata=turn.metadata,
    )


class ConversationController:
    """Controller handling conversation listing, lookup and history."""

    def __init__(
        self,
        registry: ConversationRegistry,
        message_store: MessageStore,
        turn_pipeline: TurnPipeline,
    ) -> None:
        self.registry = registry
        self.message_store = message_store
        self.turn_pipeline = turn_pipeline

    async def list_conversations(
        self, *, user_id: Optional[str], limit: int
    ) -> ResponseModel[ConversationListResponse]:
        conversations = await self.registry.list(user_id=user_id, limit=limit)
        items = [_to_conversation_dto(c) for c in conversations]
        return ResponseModel.success(
            data=ConversationListResponse(items=items, total=len(items)),
            message="Conversations listed",
        )

    async def get_conversation(self, conversation_id: str) -> ResponseModel[ConversationDTO]:
        validate_conversation_id(conversation_id)
        conversation = await self.registry.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return ResponseModel.success(
            data=_to_conversation_dto(conversation), message="Conversation fetched"
        )

    async def get_messages(
        self, conversation_id: str, *, limit: Optional[int]
    ) -> ResponseModel[MessagesResponse]:
        validate_conversation_id(conversation_id)
        if not await self.registry.exists(conversation_id):
            raise NotFoundError("Conversation", conversation_id)
        turns = await self.message_store.history(conversation_id, limit=limit)
        items = [_to_message_dto(t) for t in turns]
        return ResponseModel.success(
            data=MessagesResponse(items=items, total=len(items)),
            message="Messages fetched",
        )

    async def delete_conversation(
        self, conversation_id: str
    ) -> ResponseModel[ClearConversationResponse]:
        deleted = await self.turn_pipeline.clear_conversation(conversation_id)
        return ResponseModel.success(
            data=ClearConversationResponse(
                conversation_id=conversation_id, deleted_messages=deleted
            ),
            message="Conversation deleted",
        )
