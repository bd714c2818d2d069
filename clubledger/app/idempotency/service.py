"""Mutation orchestrator applying each idempotency key's unit of work at most once."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..feature_gates.exceptions import LedgerError, RequestInProgress, ValidationError
from ..storage.session import LedgerSession, LedgerStore
from .models import MutationResult

logger = logging.getLogger("billing.idempotency")

MAX_KEY_LENGTH = 255

UnitOfWork = Callable[[LedgerSession], MutationResult]


class MutationOrchestrator:
    """Wraps ledger mutations with the idempotency store.

    The key is claimed in its own short transaction so concurrent duplicates
    observe it immediately. The unit of work then runs in a second transaction
    together with the completion write, so either both persist or neither does.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run(
        self,
        actor_id: str,
        route_name: str,
        key: Optional[str],
        unit_of_work: UnitOfWork,
    ) -> MutationResult:
        """Execute ``unit_of_work`` once per ``(actor_id, route_name, key)``."""

        normalized_key = _normalize_key(key)

        with self._store.transaction() as session:
            claim = session.idempotency.begin(actor_id, route_name, normalized_key, now=self._clock())

        if not claim.fresh:
            record = claim.record
            if record.is_completed:
                logger.info(
                    "Replaying stored response actor=%s route=%s key=%s status=%s",
                    actor_id,
                    route_name,
                    normalized_key,
                    record.response_status,
                )
                return MutationResult(
                    status_code=record.response_status or 200,
                    body=dict(record.response_body or {}),
                    replayed=True,
                )
            logger.warning(
                "Request already in progress actor=%s route=%s key=%s",
                actor_id,
                route_name,
                normalized_key,
            )
            raise RequestInProgress(
                "A request with this idempotency key is already in progress",
                detail={"idempotencyKey": normalized_key, "route": route_name},
            )

        try:
            with self._store.transaction() as session:
                result = unit_of_work(session)
                session.idempotency.complete(
                    actor_id,
                    route_name,
                    normalized_key,
                    response_status=result.status_code,
                    response_body=result.body,
                    now=self._clock(),
                )
        except LedgerError as exc:
            logger.info(
                "Mutation rejected actor=%s route=%s key=%s error=%s",
                actor_id,
                route_name,
                normalized_key,
                exc.code,
            )
            self._mark_failed(actor_id, route_name, normalized_key)
            raise
        except Exception:
            logger.exception(
                "Mutation failed actor=%s route=%s key=%s",
                actor_id,
                route_name,
                normalized_key,
            )
            self._mark_failed(actor_id, route_name, normalized_key)
            raise
        return result

    def _mark_failed(self, actor_id: str, route_name: str, key: str) -> None:
        try:
            with self._store.transaction() as session:
                session.idempotency.fail(actor_id, route_name, key, now=self._clock())
        except Exception:
            # The original error is re-raised by the caller.
            logger.exception("Could not mark idempotency key %s/%s as failed", route_name, key)


def _normalize_key(key: Optional[str]) -> str:
    normalized = (key or "").strip()
    if not normalized:
        raise ValidationError("Idempotency-Key header is required for this operation")
    if len(normalized) > MAX_KEY_LENGTH:
        raise ValidationError(f"Idempotency key must be at most {MAX_KEY_LENGTH} characters")
    return normalized


__all__ = ["MAX_KEY_LENGTH", "MutationOrchestrator", "UnitOfWork"]
