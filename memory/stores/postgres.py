"""Postgres/pgvector backed stores.

Raw SQL via SQLAlchemy AsyncSession, matching the schema created by the Alembic
revision for ``conversation`` and ``message``. Every public method opens its
own session and commits before returning, so no connection is held while the
caller talks to the embedding provider or the generator.
"""
from __future__ import annotations

import json
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from infra.resources import DatabaseResource
from memory.codec import VectorCodec
from memory.exceptions import SimilaritySearchError
from memory.models import Conversation, NewTurn, Role, SimilarTurn, Turn
from memory.stores.base import ConversationRegistry, MessageStore, SimilarityIndex

logger = structlog.get_logger("memory.stores.postgres")

TURN_COLUMNS = """
    id, conversation_id, role, content, tool_call_id, tool_name,
    metadata::text AS metadata, embedding::text AS embedding, created_at
"""

CONVERSATION_COLUMNS = """
    id, user_id, title, metadata::text AS metadata, created_at, updated_at
"""


def _load_metadata(raw: Optional[str]) -> dict:
    return json.loads(raw) if raw else {}


def row_to_turn(row: Mapping[str, Any], codec: VectorCodec) -> Turn:
    return Turn(
        id=int(row["id"]),
        conversation_id=row["conversation_id"],
        role=Role(str(row["role"]).upper()),
        content=row["content"],
        embedding=codec.decode(row["embedding"]),
        created_at=row["created_at"],
        tool_call_id=row.get("tool_call_id"),
        tool_name=row.get("tool_name"),
        metadata=_load_metadata(row.get("metadata")),
    )


def row_to_conversation(row: Mapping[str, Any]) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row.get("user_id"),
        title=row.get("title"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        metadata=_load_metadata(row.get("metadata")),
    )


class PgMessageStore(MessageStore):
    """Message log in the ``message`` table."""

    def __init__(self, database: DatabaseResource, codec: VectorCodec):
        self.database = database
        self.codec = codec

    async def append(self, turn: NewTurn) -> Turn:
        sql = text(
            f"""
            INSERT INTO message
                (conversation_id, role, content, tool_call_id, tool_name, metadata, embedding)
            VALUES
                (:conversation_id, :role, :content, :tool_call_id, :tool_name,
                 CAST(:metadata AS JSONB), CAST(:embedding AS vector))
            RETURNING {TURN_COLUMNS}
            """
        )
        params = {
            "conversation_id": turn.conversation_id,
            "role": turn.role.value,
            "content": turn.content,
            "tool_call_id": turn.tool_call_id,
            "tool_name": turn.tool_name,
            "metadata": json.dumps(turn.metadata),
            "embedding": (
                self.codec.encode(turn.embedding) if turn.embedding is not None else None
            ),
        }
        async with self.database.get_session() as session:
            res = await session.execute(sql, params)
            row = res.mappings().one()
            await session.commit()
        return row_to_turn(row, self.codec)

    async def recent_window(self, conversation_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        sql = text(
            f"""
            SELECT {TURN_COLUMNS}
            FROM message
            WHERE conversation_id = :conversation_id
            ORDER BY created_at DESC, id DESC
            LIMIT :limit
            """
        )
        async with self.database.get_session() as session:
            res = await session.execute(
                sql, {"conversation_id": conversation_id, "limit": limit}
            )
            rows = res.mappings().all()
        # Newest first; reversing is the caller's job.
        return [row_to_turn(r, self.codec) for r in rows]

    async def history(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[Turn]:
        sql = f"""
            SELECT {TURN_COLUMNS}
            FROM message
            WHERE conversation_id = :conversation_id
            ORDER BY created_at ASC, id ASC
        """
        params: dict = {"conversation_id": conversation_id}
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        async with self.database.get_session() as session:
            res = await session.execute(text(sql), params)
            rows = res.mappings().all()
        return [row_to_turn(r, self.codec) for r in rows]

    async def delete_conversation(self, conversation_id: str) -> int:
        async with self.database.get_session() as session:
            async with session.begin():
                res = await session.execute(
                    text("DELETE FROM message WHERE conversation_id = :id"),
                    {"id": conversation_id},
                )
                deleted = res.rowcount or 0
                await session.execute(
                    text("DELETE FROM conversation WHERE id = :id"),
                    {"id": conversation_id},
                )
        logger.info(
            "conversation_deleted", conversation_id=conversation_id, turns=deleted
        )
        return deleted


class PgConversationRegistry(ConversationRegistry):
    """Conversation records in the ``conversation`` table."""

    def __init__(self, database: DatabaseResource):
        self.database = database

    async def ensure(
        self,
        conversation_id: str,
        *,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> bool:
        sql = text(
            """
            INSERT INTO conversation (id, user_id, title)
            VALUES (:id, :user_id, :title)
            ON CONFLICT (id) DO NOTHING
            RETURNING id
            """
        )
        async with self.database.get_session() as session:
            res = await session.execute(
                sql, {"id": conversation_id, "user_id": user_id, "title": title}
            )
            created = res.first() is not None
            await session.commit()
        if created:
            logger.info("conversation_created", conversation_id=conversation_id)
        return created

    async def touch(self, conversation_id: str) -> None:
        sql = text(
            """
            UPDATE conversation
            SET updated_at = GREATEST(updated_at, NOW())
            WHERE id = :id
            """
        )
        async with self.database.get_session() as session:
            res = await session.execute(sql, {"id": conversation_id})
            await session.commit()
        if not res.rowcount:
            logger.warning(
                "conversation_missing_on_touch", conversation_id=conversation_id
            )
            await self.ensure(conversation_id)

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        sql = text(
            f"""
            SELECT {CONVERSATION_COLUMNS}
            FROM conversation
            WHERE id = :id
            """
        )
        async with self.database.get_session() as session:
            res = await session.execute(sql, {"id": conversation_id})
            row = res.mappings().first()
        return row_to_conversation(row) if row else None

    async def list(
        self, *, user_id: Optional[str] = None, limit: int = 50
    ) -> List[Conversation]:
        if user_id:
            sql = text(
                f"""
                SELECT {CONVERSATION_COLUMNS}
                FROM conversation
                WHERE user_id = :user_id
                ORDER BY updated_at DESC
                LIMIT :limit
                """
            )
            params = {"user_id": user_id, "limit": limit}
        else:
            sql = text(
                f"""
                SELECT {CONVERSATION_COLUMNS}
                FROM conversation
                ORDER BY updated_at DESC
                LIMIT :limit
                """
            )
            params = {"limit": limit}
        async with self.database.get_session() as session:
            res = await session.execute(sql, params)
            rows = res.mappings().all()
        return [row_to_conversation(r) for r in rows]


class PgSimilarityIndex(SimilarityIndex):
    """Cosine-distance search using pgvector's ``<=>`` operator."""

    def __init__(self, database: DatabaseResource, codec: VectorCodec):
        super().__init__(dimension=codec.dimension)
        self.database = database
        self.codec = codec

    async def _query(
        self,
        vector: List[float],
        *,
        top_k: int,
        max_distance: Optional[float],
        conversation_id: Optional[str],
    ) -> List[SimilarTurn]:
        conditions = ["embedding IS NOT NULL"]
        params: dict = {"query": self.codec.encode(vector), "top_k": top_k}
        if conversation_id is not None:
            conditions.append("conversation_id = :conversation_id")
            params["conversation_id"] = conversation_id
        if max_distance is not None:
            conditions.append(
                "(embedding <=> CAST(:query AS vector)) < :max_distance"
            )
            params["max_distance"] = max_distance

        sql = text(
            f"""
            SELECT {TURN_COLUMNS},
                   embedding <=> CAST(:query AS vector) AS distance
            FROM message
            WHERE {" AND ".join(conditions)}
            ORDER BY distance ASC, created_at ASC, id ASC
            LIMIT :top_k
            """
        )
        try:
            async with self.database.get_session() as session:
                res = await session.execute(sql, params)
                rows = res.mappings().all()
        except (SQLAlchemyError, OSError) as e:
            # Connection refused, pgvector missing, statement timeout...
            raise SimilaritySearchError(str(e), {"backend": "pgvector"}) from e
        return [
            SimilarTurn(row_to_turn(r, self.codec), float(r["distance"])) for r in rows
        ]
