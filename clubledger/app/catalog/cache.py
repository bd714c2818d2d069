"""Cached access to the plan and product catalog."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .models import CatalogSnapshot
from .static import STATIC_CATALOG, load_static_catalog

logger = logging.getLogger("billing.catalog")

CatalogLoader = Callable[[], CatalogSnapshot]


@dataclass
class _CacheEntry:
    value: CatalogSnapshot
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class CachedPlanCatalog:
    """Read-through cache over a catalog loader.

    The catalog is a non-critical read path: when the loader fails the last
    good snapshot is served (or the static catalog when nothing was loaded
    yet) and a warning is logged.
    """

    def __init__(
        self,
        loader: Optional[CatalogLoader] = None,
        *,
        ttl_seconds: int = 300,
        clock: Optional[Callable[[], datetime]] = None,
        fallback: CatalogSnapshot = STATIC_CATALOG,
    ) -> None:
        self._loader = loader or load_static_catalog
        self._ttl = timedelta(seconds=max(ttl_seconds, 0))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._fallback = fallback
        self._entry: Optional[_CacheEntry] = None
        self._lock = threading.Lock()

    def get(self) -> CatalogSnapshot:
        now = self._clock()
        with self._lock:
            entry = self._entry
            if entry and not entry.is_expired(now):
                return entry.value
            try:
                snapshot = self._loader()
            except Exception:
                stale = entry.value if entry else self._fallback
                logger.warning(
                    "Catalog loader failed; serving %s catalog",
                    "stale" if entry else "static",
                    exc_info=True,
                )
                return stale
            self._entry = _CacheEntry(value=snapshot, expires_at=now + self._ttl)
            return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None


__all__ = ["CachedPlanCatalog", "CatalogLoader"]
