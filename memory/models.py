"""Domain models for conversational memory."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Author of a turn."""

    USER = "USER"
    ASSISTANT = "ASSISTANT"


class SearchScope(str, Enum):
    """Partition a similarity query runs over."""

    CONVERSATION = "conversation"
    GLOBAL = "global"


class NewTurn(BaseModel):
    """A turn that has not been persisted yet (no id, no timestamp)."""

    conversation_id: str = Field(description="Owning conversation identifier")
    role: Role = Field(description="Turn author")
    content: str = Field(description="Turn text")
    embedding: Optional[List[float]] = Field(default=None, description="Embedding vector")
    tool_call_id: Optional[str] = Field(default=None, description="Tool call identifier")
    tool_name: Optional[str] = Field(default=None, description="Tool name")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")


class Turn(BaseModel):
    """A persisted turn. Immutable; only appended or bulk-deleted."""

    id: int = Field(description="Store-assigned identifier, increasing")
    conversation_id: str = Field(description="Owning conversation identifier")
    role: Role = Field(description="Turn author")
    content: str = Field(description="Turn text")
    embedding: Optional[List[float]] = Field(default=None, description="Embedding vector")
    created_at: datetime = Field(description="Creation timestamp")
    tool_call_id: Optional[str] = Field(default=None, description="Tool call identifier")
    tool_name: Optional[str] = Field(default=None, description="Tool name")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")

    class Config:
        frozen = True

    @property
    def is_searchable(self) -> bool:
        return self.embedding is not None

    def sort_key(self) -> Tuple[datetime, int]:
        """Canonical chronological order: created_at, then id."""
        return (self.created_at, self.id)


class Conversation(BaseModel):
    """Conversation record owned by the registry."""

    id: str = Field(description="Conversation identifier")
    user_id: Optional[str] = Field(default=None, description="Owning user identifier")
    title: Optional[str] = Field(default=None, description="Conversation title")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last turn timestamp")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")


class SimilarTurn(NamedTuple):
    turn: Turn
    distance: float


class AssembledContext(BaseModel):
    """Deduplicated retrieval result handed to the generator.

    ``similar`` holds background turns ordered by ascending distance; ``recent``
    holds the recency window oldest-first. No turn id appears in both.
    """

    similar: List[Turn] = Field(default_factory=list)
    recent: List[Turn] = Field(default_factory=list)
    distances: Dict[int, float] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.similar and not self.recent


class MemoryConfig(BaseModel):
    """Retrieval window sizes and similarity cutoff.

    ``similarity_threshold`` of ``None`` or ``0`` disables the distance cutoff.
    """

    recent_limit: int = Field(default=20, ge=0)
    similar_limit: int = Field(default=5, ge=0)
    similarity_threshold: Optional[float] = Field(default=0.7, ge=0.0)

    @classmethod
    def from_settings(cls, memory_settings: Any) -> "MemoryConfig":
        return cls(
            recent_limit=memory_settings.MEMORY_RECENT_LIMIT,
            similar_limit=memory_settings.MEMORY_SIMILAR_LIMIT,
            similarity_threshold=memory_settings.MEMORY_SIMILARITY_THRESHOLD,
        )


class TurnResult(BaseModel):
    """Outcome of one processed turn."""

    reply: str
    conversation_id: str
    user_turn: Turn
    reply_turn: Turn
