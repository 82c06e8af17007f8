"""Context assembly: recency window + conversation-local similarity search.

The result has two blocks:

- ``recent``: the last ``recent_limit`` turns of the conversation, oldest first.
  The store returns them newest first; the reversal happens here.
- ``similar``: up to ``similar_limit`` turns from the same conversation whose
  embeddings are closest to the query, minus anything already in ``recent``
  (compared by turn id, not content).

If the similarity backend is down the index yields nothing and the context is
recency-only.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import structlog

from memory.models import AssembledContext, MemoryConfig, SearchScope, Turn
from memory.stores.base import MessageStore, SimilarityIndex

logger = structlog.get_logger("memory.assembler")


class ContextAssembler:
    """Stateless: holds collaborators and defaults, nothing per call."""

    def __init__(
        self,
        *,
        message_store: MessageStore,
        similarity_index: SimilarityIndex,
        config: MemoryConfig,
    ):
        self.message_store = message_store
        self.similarity_index = similarity_index
        self.config = config

    async def assemble(
        self,
        conversation_id: str,
        query_vector: Sequence[float],
        *,
        recent_limit: Optional[int] = None,
        similar_limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        exclude_ids: Iterable[int] = (),
    ) -> AssembledContext:
        """Build the deduplicated context for one turn.

        Limits left as ``None`` come from the configured :class:`MemoryConfig`.
        A threshold of ``0`` (given or configured) means no distance cutoff.
        Turns in ``exclude_ids`` (the message being answered) appear in neither
        block and do not count against ``recent_limit``.
        """
        if recent_limit is None:
            recent_limit = self.config.recent_limit
        if similar_limit is None:
            similar_limit = self.config.similar_limit
        if similarity_threshold is None:
            similarity_threshold = self.config.similarity_threshold

        # Excluded turns reach the generator only as the question, so the newest
        # turn is not visible in ``recent`` and the prompt does not repeat it.
        excluded = set(exclude_ids)
        newest_first = await self.message_store.recent_window(
            conversation_id, recent_limit + len(excluded) if recent_limit > 0 else 0
        )
        kept = [turn for turn in newest_first if turn.id not in excluded]
        recent: List[Turn] = list(reversed(kept[:recent_limit]))

        candidates = await self.similarity_index.search(
            SearchScope.CONVERSATION,
            query_vector,
            similar_limit + len(excluded) if similar_limit > 0 else 0,
            similarity_threshold or None,
            conversation_id=conversation_id,
        )

        seen = {turn.id for turn in recent} | excluded
        similar: List[Turn] = []
        distances = {}
        for candidate in candidates:
            if len(similar) >= similar_limit:
                break
            if candidate.turn.id in seen:
                continue
            seen.add(candidate.turn.id)
            similar.append(candidate.turn)
            distances[candidate.turn.id] = candidate.distance

        logger.debug(
            "context_assembled",
            conversation_id=conversation_id,
            recent=len(recent),
            candidates=len(candidates),
            similar=len(similar),
        )
        return AssembledContext(similar=similar, recent=recent, distances=distances)
