"""Idempotency store and mutation orchestrator."""

from .models import IdempotencyClaim, IdempotencyRecord, IdempotencyStatus, MutationResult
from .repository import IdempotencyRepository, PostgresIdempotencyRepository
from .service import MutationOrchestrator, UnitOfWork

__all__ = [
    "IdempotencyClaim",
    "IdempotencyRecord",
    "IdempotencyRepository",
    "IdempotencyStatus",
    "MutationOrchestrator",
    "MutationResult",
    "PostgresIdempotencyRepository",
    "UnitOfWork",
]
