"""In-process stores over :class:`infra.resources.InMemoryDatabase`.

Used for local runs without Postgres (``MEMORY_BACKEND=memory``) and by the
test-suite. Semantics match the Postgres stores, including cosine distance
(``1 - cos``) and ordering rules.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import structlog

from api.shared.exceptions import NotFoundError
from infra.resources import InMemoryDatabase
from memory.models import Conversation, NewTurn, SimilarTurn, Turn
from memory.stores.base import ConversationRegistry, MessageStore, SimilarityIndex

logger = structlog.get_logger("memory.stores.in_memory")


def _cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return float("nan")
    return 1.0 - float(np.dot(a, b)) / denom


class InMemoryMessageStore(MessageStore):
    def __init__(self, database: InMemoryDatabase):
        self.database = database

    def _turns(self, conversation_id: str) -> List[Turn]:
        return [
            Turn(**row)
            for row in self.database.messages
            if row["conversation_id"] == conversation_id
        ]

    async def append(self, turn: NewTurn) -> Turn:
        # Mirrors fk_message_conversation_id on the message table.
        if turn.conversation_id not in self.database.conversations:
            raise NotFoundError("Conversation", turn.conversation_id)
        row: Dict[str, Any] = turn.model_dump()
        row["embedding"] = list(turn.embedding) if turn.embedding is not None else None
        row["id"] = self.database.next_id()
        row["created_at"] = self.database.now()
        self.database.messages.append(row)
        return Turn(**row)

    async def recent_window(self, conversation_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        turns = sorted(self._turns(conversation_id), key=Turn.sort_key, reverse=True)
        return turns[:limit]

    async def history(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[Turn]:
        turns = sorted(self._turns(conversation_id), key=Turn.sort_key)
        return turns if limit is None else turns[:limit]

    async def delete_conversation(self, conversation_id: str) -> int:
        kept = [
            row
            for row in self.database.messages
            if row["conversation_id"] != conversation_id
        ]
        deleted = len(self.database.messages) - len(kept)
        self.database.messages[:] = kept
        self.database.conversations.pop(conversation_id, None)
        logger.info(
            "conversation_deleted", conversation_id=conversation_id, turns=deleted
        )
        return deleted


class InMemoryConversationRegistry(ConversationRegistry):
    def __init__(self, database: InMemoryDatabase):
        self.database = database

    async def ensure(
        self,
        conversation_id: str,
        *,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> bool:
        if conversation_id in self.database.conversations:
            return False
        now = self.database.now()
        self.database.conversations[conversation_id] = {
            "id": conversation_id,
            "user_id": user_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
            "metadata": {},
        }
        logger.info("conversation_created", conversation_id=conversation_id)
        return True

    async def touch(self, conversation_id: str) -> None:
        row = self.database.conversations.get(conversation_id)
        if row is None:
            logger.warning(
                "conversation_missing_on_touch", conversation_id=conversation_id
            )
            await self.ensure(conversation_id)
            return
        row["updated_at"] = max(row["updated_at"], self.database.now())

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        row = self.database.conversations.get(conversation_id)
        return Conversation(**row) if row else None

    async def list(
        self, *, user_id: Optional[str] = None, limit: int = 50
    ) -> List[Conversation]:
        rows = [
            row
            for row in self.database.conversations.values()
            if not user_id or row["user_id"] == user_id
        ]
        rows.sort(key=lambda r: r["updated_at"], reverse=True)
        return [Conversation(**row) for row in rows[:limit]]


class InMemorySimilarityIndex(SimilarityIndex):
    def __init__(self, database: InMemoryDatabase, dimension: Optional[int] = None):
        super().__init__(dimension=dimension)
        self.database = database

    async def _query(
        self,
        vector: List[float],
        *,
        top_k: int,
        max_distance: Optional[float],
        conversation_id: Optional[str],
    ) -> List[SimilarTurn]:
        query = np.asarray(vector, dtype=np.float64)
        matches: List[SimilarTurn] = []
        for row in self.database.messages:
            if row["embedding"] is None:
                continue
            if conversation_id is not None and row["conversation_id"] != conversation_id:
                continue
            stored = np.asarray(row["embedding"], dtype=np.float64)
            if stored.shape != query.shape:
                continue
            distance = _cosine_distance(stored, query)
            if np.isnan(distance):
                continue
            if max_distance is not None and not distance < max_distance:
                continue
            matches.append(SimilarTurn(Turn(**row), distance))

        matches.sort(key=lambda m: (m.distance, m.turn.created_at, m.turn.id))
        return matches[:top_k]
