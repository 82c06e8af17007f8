"""DTOs for the Conversation feature."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from api.shared.dtos import BaseDTO


class ConversationDTO(BaseDTO):
    """Conversation DTO."""

    id: str = Field(description="Conversation identifier")
    title: Optional[str] = Field(default=None, description="Conversation title")
    user_id: Optional[str] = Field(default=None, description="User identifier")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Timestamp of the last completed turn")


class MessageDTO(BaseDTO):
    """Conversation message DTO."""

    id: int = Field(description="Message identifier")
    role: str = Field(description="Message role: USER or ASSISTANT")
    content: str = Field(description="Message content")
    created_at: datetime = Field(description="Creation timestamp")
    has_embedding: bool = Field(description="Whether the message is searchable by similarity")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Message metadata")


class ConversationListResponse(BaseDTO):
    """List conversations response."""

    items: List[ConversationDTO] = Field(description="Conversations, most recently updated first")
    total: int = Field(description="Number of conversations returned")


class MessagesResponse(BaseDTO):
    """Messages list response."""

    items: List[MessageDTO] = Field(description="Messages in chronological order")
    total: int = Field(description="Total messages returned")
