from __future__ import annotations

import threading
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from promptgraph.graph.errors import StateError
from promptgraph.graph.state import MergeStrategy, StateField, StateSchema
from promptgraph.logging import get_logger
from promptgraph.service.errors import ServiceError, ValidationError

logger = get_logger(__name__)

_ACTIONS = ("get", "update", "clear")


class Preferences(BaseModel):
    language: str = "en"
    tone: Literal["formal", "casual", "professional"] = "professional"
    interests: List[str] = Field(default_factory=list)


class ConversationTurn(BaseModel):
    timestamp: str
    message: str
    response: str


class UserContext(BaseModel):
    """Per-user record; serialized with camelCase keys on the wire."""

    user_id: str = Field(alias="userId")
    preferences: Preferences = Field(default_factory=Preferences)
    conversation_history: List[ConversationTurn] = Field(
        default_factory=list, alias="conversationHistory"
    )

    model_config = ConfigDict(populate_by_name=True)


class ContextUpdate(BaseModel):
    """Partial record accepted by ``update``; the user id itself never changes."""

    preferences: Optional[Dict[str, Any]] = None
    conversation_history: Optional[List[ConversationTurn]] = Field(
        default=None, alias="conversationHistory"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ContextRequest(BaseModel):
    user_id: str = Field(alias="userId")
    action: str
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)


class ContextResponse(BaseModel):
    success: bool
    message: str
    data: Optional[UserContext] = None


# Top-level fields overwrite; preferences merge key by key
_RECORD_SCHEMA = StateSchema(
    StateField("user_id", str),
    StateField("preferences", dict, merge=MergeStrategy.NESTED_MERGE),
    StateField("conversation_history", list, default_factory=list),
)


class ContextStore:
    """In-process key-value store of per-user context records.

    Thread-safe; each instance owns its records, so callers create one per
    application or test and inject it where it is needed.
    """

    def __init__(self) -> None:
        self._records: Dict[str, UserContext] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @staticmethod
    def default_context(user_id: str) -> UserContext:
        return UserContext(user_id=user_id)

    def get(self, user_id: str) -> UserContext:
        """Return the stored record, or a default record for unknown users."""
        self._check_user_id(user_id)
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                return self.default_context(user_id)
            return record.model_copy(deep=True)

    def update(
        self, user_id: str, data: Optional[Mapping[str, Any]] = None
    ) -> UserContext:
        """Apply a partial update; ``preferences`` keys absent from ``data`` are kept."""
        self._check_user_id(user_id)
        try:
            changes = ContextUpdate.model_validate(dict(data or {}))
        except PydanticValidationError as exc:
            raise ValidationError(
                "invalid context update", detail={"errors": exc.errors()}
            ) from exc
        partial = changes.model_dump(exclude_none=True)

        with self._lock:
            existing = self._records.get(user_id) or self.default_context(user_id)
            try:
                merged = _RECORD_SCHEMA.merge(existing.model_dump(), partial)
                updated = UserContext.model_validate(merged)
            except (StateError, PydanticValidationError) as exc:
                raise ValidationError(
                    f"invalid context update: {exc}", detail={"user_id": user_id}
                ) from exc
            self._records[user_id] = updated
            logger.info(
                "context_updated", user_id=user_id, fields=sorted(partial.keys())
            )
            return updated.model_copy(deep=True)

    def clear(self, user_id: str) -> bool:
        """Drop the record; returns whether one existed."""
        self._check_user_id(user_id)
        with self._lock:
            existed = self._records.pop(user_id, None) is not None
        logger.info("context_cleared", user_id=user_id, existed=existed)
        return existed

    def handle_request(self, request: ContextRequest) -> ContextResponse:
        """Dispatch a get/update/clear request; failures become unsuccessful responses."""
        if request.action not in _ACTIONS:
            logger.warning("context_invalid_action", action=request.action)
            return ContextResponse(success=False, message="Invalid action")
        try:
            if request.action == "get":
                return ContextResponse(
                    success=True,
                    message="Context retrieved successfully",
                    data=self.get(request.user_id),
                )
            if request.action == "update":
                return ContextResponse(
                    success=True,
                    message="Context updated successfully",
                    data=self.update(request.user_id, request.data),
                )
            self.clear(request.user_id)
            return ContextResponse(success=True, message="Context cleared successfully")
        except ServiceError as exc:
            logger.warning(
                "context_request_failed", action=request.action, error=exc.message
            )
            return ContextResponse(
                success=False, message=f"Error processing request: {exc.message}"
            )

    def _check_user_id(self, user_id: str) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id must be a non-empty string")


__all__ = [
    "Preferences",
    "ConversationTurn",
    "UserContext",
    "ContextUpdate",
    "ContextRequest",
    "ContextResponse",
    "ContextStore",
]
