"""Storage contracts for conversational memory.

Each primitive (append, recent_window, search, delete) is atomic on its own;
nothing here spans more than one call, and no implementation may hold a
connection or lock between calls.
"""
from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import structlog

from memory.exceptions import (
    InvalidConversationIdError,
    InvalidQueryVectorError,
    SimilaritySearchError,
)
from memory.models import Conversation, NewTurn, SearchScope, SimilarTurn, Turn

logger = structlog.get_logger("memory.similarity")

_CONVERSATION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:\-]{0,127}$")


def validate_conversation_id(conversation_id: str) -> str:
    """Return the id unchanged or raise :class:`InvalidConversationIdError`."""
    if not isinstance(conversation_id, str) or not _CONVERSATION_ID_RE.match(
        conversation_id
    ):
        raise InvalidConversationIdError(str(conversation_id))
    return conversation_id


class MessageStore(ABC):
    """Append-only, per-conversation ordered log of turns."""

    @abstractmethod
    async def append(self, turn: NewTurn) -> Turn:
        """Persist a turn and return it with its id and timestamp.

        The conversation must already be registered.
        """

    @abstractmethod
    async def recent_window(self, conversation_id: str, limit: int) -> List[Turn]:
        """Return up to ``limit`` most recent turns, NEWEST FIRST.

        Callers that need chronological order reverse the result themselves.
        """

    @abstractmethod
    async def history(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[Turn]:
        """Return turns oldest-first, optionally only the first ``limit``."""

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> int:
        """Remove all turns and the conversation record together.

        Returns the number of turns removed; 0 for unknown conversations.
        """


class ConversationRegistry(ABC):
    """Owns conversation records."""

    @abstractmethod
    async def ensure(
        self,
        conversation_id: str,
        *,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> bool:
        """Create the conversation if missing. Returns True when created."""

    @abstractmethod
    async def touch(self, conversation_id: str) -> None:
        """Bump ``updated_at``; never moves it backwards."""

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def list(
        self, *, user_id: Optional[str] = None, limit: int = 50
    ) -> List[Conversation]:
        """Most recently updated first."""

    async def exists(self, conversation_id: str) -> bool:
        return await self.get(conversation_id) is not None


class SimilarityIndex(ABC):
    """Nearest-neighbour lookup over stored turn embeddings (cosine distance).

    ``search`` is the public entry point. It validates the query, then calls
    the backend's ``_query``. A backend that is unreachable or lacks vector
    support raises :class:`SimilaritySearchError`, which ``search`` turns into
    an empty result so that callers fall back to recency-only context.
    """

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension

    async def search(
        self,
        scope: SearchScope,
        query_vector: Sequence[float],
        top_k: int,
        max_distance: Optional[float] = None,
        *,
        conversation_id: Optional[str] = None,
    ) -> List[SimilarTurn]:
        """Return turns by ascending distance, ties broken by creation order.

        Turns without an embedding never match. With ``max_distance`` only
        turns strictly closer than it are returned.
        """
        if scope == SearchScope.CONVERSATION:
            if conversation_id is None:
                raise ValueError("conversation scope requires a conversation_id")
            validate_conversation_id(conversation_id)
        vector = self._check_query_vector(query_vector)
        if top_k <= 0:
            return []

        try:
            results = await self._query(
                vector,
                top_k=top_k,
                max_distance=max_distance,
                conversation_id=(
                    conversation_id if scope == SearchScope.CONVERSATION else None
                ),
            )
        except SimilaritySearchError as e:
            logger.warning(
                "similarity_search_unavailable",
                scope=scope.value,
                conversation_id=conversation_id,
                error=e.message,
            )
            return []

        logger.debug(
            "similarity_search_completed",
            scope=scope.value,
            conversation_id=conversation_id,
            count=len(results),
        )
        return results

    def _check_query_vector(self, query_vector: Sequence[float]) -> List[float]:
        try:
            vector = [float(v) for v in query_vector]
        except (TypeError, ValueError):
            raise InvalidQueryVectorError("values must be numbers")
        if not vector:
            raise InvalidQueryVectorError("vector is empty")
        if self.dimension is not None and len(vector) != self.dimension:
            raise InvalidQueryVectorError(
                "dimension mismatch",
                {"expected": self.dimension, "actual": len(vector)},
            )
        if not all(math.isfinite(v) for v in vector):
            raise InvalidQueryVectorError("vector contains non-finite values")
        return vector

    @abstractmethod
    async def _query(
        self,
        vector: List[float],
        *,
        top_k: int,
        max_distance: Optional[float],
        conversation_id: Optional[str],
    ) -> List[SimilarTurn]:
        """Backend lookup; ``conversation_id`` of None means global scope."""
