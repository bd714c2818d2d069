"""Domain models for idempotent request tracking."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class IdempotencyStatus(str, Enum):
    """Lifecycle status of an idempotency key."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class IdempotencyRecord(BaseModel):
    """Outcome recorded for one ``(actor, route, key)`` triple."""

    actor_id: str
    route_name: str
    key: str
    status: IdempotencyStatus = IdempotencyStatus.IN_PROGRESS
    response_status: Optional[int] = None
    response_body: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_completed(self) -> bool:
        return self.status == IdempotencyStatus.COMPLETED


@dataclass(frozen=True)
class IdempotencyClaim:
    """Result of :meth:`IdempotencyRepository.begin`.

    ``fresh`` is ``True`` when the caller now owns the key (new, or retried
    after a failure). Otherwise ``existing`` holds the stored record.
    """

    fresh: bool
    record: IdempotencyRecord

    @property
    def existing(self) -> Optional[IdempotencyRecord]:
        return None if self.fresh else self.record


@dataclass(frozen=True)
class MutationResult:
    """Response produced by a unit of work, replayable verbatim."""

    status_code: int
    body: Dict[str, Any]
    replayed: bool = False


__all__ = ["IdempotencyClaim", "IdempotencyRecord", "IdempotencyStatus", "MutationResult"]
