"""Controller for the Chat feature."""
import structlog

from api.features.chat.dtos import ChatRequest, ChatResponse, ClearConversationResponse
from api.shared.response import ResponseModel
from memory.pipeline.turn_pipeline import TurnPipeline

logger = structlog.get_logger("api.chat")


class ChatController:
    """Translates chat requests into pipeline turns."""

    def __init__(self, turn_pipeline: TurnPipeline):
        self.turn_pipeline = turn_pipeline

    async def chat(self, request: ChatRequest) -> ResponseModel[ChatResponse]:
        result = await self.turn_pipeline.process_turn(
            request.message,
            request.conversation_id,
            user_id=request.user_id,
        )
        return ResponseModel.success(
            data=ChatResponse(
                response=result.reply,
                conversation_id=result.conversation_id,
                user_message_id=result.user_turn.id,
                assistant_message_id=result.reply_turn.id,
            ),
            message="Reply generated",
        )

    async def clear(self, conversation_id: str) -> ResponseModel[ClearConversationResponse]:
        deleted = await self.turn_pipeline.clear_conversation(conversation_id)
        logger.info("chat_cleared", conversation_id=conversation_id, deleted=deleted)
        return ResponseModel.success(
            data=ClearConversationResponse(
                conversation_id=conversation_id, deleted_messages=deleted
            ),
            message="Conversation cleared",
        )
