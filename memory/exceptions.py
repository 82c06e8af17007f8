"""Exceptions raised by the conversational memory layer."""
from typing import Any, Dict, Optional

from api.shared.exceptions import ChatMemoryException, ValidationError


class InvalidConversationIdError(ValidationError):
    """Raised when a conversation identifier is blank or malformed."""

    def __init__(self, conversation_id: str):
        super().__init__(
            f"Invalid conversation id: '{conversation_id}'",
            {"conversation_id": conversation_id},
            error_code="INVALID_CONVERSATION_ID",
        )


class InvalidQueryVectorError(ValidationError):
    """Raised when a similarity query vector cannot be searched with."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Invalid query vector: {reason}",
            details,
            error_code="INVALID_QUERY_VECTOR",
        )


class SimilaritySearchError(ChatMemoryException):
    """Raised by a similarity backend that is unreachable or unsupported.

    Never leaves :class:`memory.stores.base.SimilarityIndex.search`; the index
    degrades to an empty result instead.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SIMILARITY_SEARCH_ERROR", details)


class TurnStageError(ChatMemoryException):
    """Base for failures that abort a turn at a given lifecycle stage."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str,
        *,
        stage: str,
        conversation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.stage = stage
        self.conversation_id = conversation_id
        error_details: Dict[str, Any] = {
            "stage": stage,
            "conversation_id": conversation_id,
            "retryable": self.retryable,
        }
        if details:
            error_details.update(details)
        super().__init__(message, error_code, error_details)


class EmbeddingFailure(TurnStageError):
    """Embedding provider failed or returned an unusable vector."""

    retryable = True

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(f"Embedding failed: {message}", "EMBEDDING_FAILURE", **kwargs)


class ReplyEmbeddingFailure(EmbeddingFailure):
    """The reply could not be embedded; the user turn is already stored.

    Resending the message would store the user turn a second time.
    """

    retryable = False


class GenerationFailure(TurnStageError):
    """Generator failed; the user turn is already stored."""

    retryable = True

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(f"Generation failed: {message}", "GENERATION_FAILURE", **kwargs)


class PersistenceFailure(TurnStageError):
    """A store write failed."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(f"Persistence failed: {message}", "PERSISTENCE_FAILURE", **kwargs)
