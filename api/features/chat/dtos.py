"""DTOs for the Chat feature."""
from typing import Optional

from pydantic import Field

from api.shared.dtos import BaseDTO


class ChatRequest(BaseDTO):
    """A user message, optionally continuing an existing conversation."""

    message: str = Field(min_length=1, description="User message text")
    conversation_id: Optional[str] = Field(
        default=None,
        description="Conversation to continue; a new one is started when omitted",
    )
    user_id: Optional[str] = Field(default=None, description="User identifier")


class ChatResponse(BaseDTO):
    """Assistant reply for one turn."""

    response: str = Field(description="Assistant reply")
    conversation_id: str = Field(description="Conversation the turn belongs to")
    user_message_id: Optional[int] = Field(default=None, description="Stored user turn id")
    assistant_message_id: Optional[int] = Field(
        default=None, description="Stored assistant turn id"
    )


class ClearConversationResponse(BaseDTO):
    """Result of clearing a conversation."""

    conversation_id: str = Field(description="Cleared conversation")
    deleted_messages: int = Field(description="Number of turns removed")
