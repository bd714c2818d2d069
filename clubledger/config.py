"""Ledger configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

PAYWALL_MODE_HARD = "hard"
PAYWALL_MODE_SOFT_BETA_STRICT = "soft_beta_strict"
_PAYWALL_MODES = {PAYWALL_MODE_HARD, PAYWALL_MODE_SOFT_BETA_STRICT}
_STORAGE_BACKENDS = {"postgres", "memory"}


@dataclass(frozen=True)
class LedgerConfig:
    """Runtime configuration for the billing ledger service."""

    app_env: str
    storage_backend: str
    database_url: Optional[str]
    paywall_mode: str
    default_currency: str
    payment_provider: str
    subscription_period_days: int
    grace_period_days: int
    catalog_cache_ttl_seconds: int
    admin_api_token: Optional[str]
    log_level: str

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def beta_grants_enabled(self) -> bool:
        return self.paywall_mode == PAYWALL_MODE_SOFT_BETA_STRICT


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _choice(value: Optional[str], *, allowed: set, default: str, name: str) -> str:
    normalized = (value or "").strip().lower() or default
    if normalized not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}, got {value!r}")
    return normalized


def _database_url(env_mapping: Mapping[str, str]) -> Optional[str]:
    explicit = env_mapping.get("DATABASE_URL")
    if explicit:
        return explicit
    host = env_mapping.get("DB_HOST")
    if not host:
        return None
    port = _to_int(env_mapping.get("DB_PORT"), default=5432)
    name = env_mapping.get("DB_NAME", "clubledger")
    user = env_mapping.get("DB_USER", "postgres")
    password = env_mapping.get("DB_PASSWORD", "")
    return f"host={host} port={port} dbname={name} user={user} password={password}"


def load_ledger_config(env: Optional[Mapping[str, str]] = None) -> LedgerConfig:
    """Load :class:`LedgerConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    app_env = (env_mapping.get("APP_ENV") or "development").strip().lower() or "development"
    storage_backend = _choice(
        env_mapping.get("LEDGER_STORAGE"),
        allowed=_STORAGE_BACKENDS,
        default="postgres",
        name="LEDGER_STORAGE",
    )
    paywall_mode = _choice(
        env_mapping.get("PAYWALL_MODE"),
        allowed=_PAYWALL_MODES,
        default=PAYWALL_MODE_HARD,
        name="PAYWALL_MODE",
    )

    default_currency = (env_mapping.get("BILLING_DEFAULT_CURRENCY") or "KZT").strip().upper()
    if len(default_currency) != 3:
        raise ValueError(f"BILLING_DEFAULT_CURRENCY must be a 3-letter code, got {default_currency!r}")

    payment_provider = (env_mapping.get("BILLING_PAYMENT_PROVIDER") or "kaspi").strip().lower()

    subscription_period_days = max(1, _to_int(env_mapping.get("SUBSCRIPTION_PERIOD_DAYS"), default=30))
    grace_period_days = max(0, _to_int(env_mapping.get("SUBSCRIPTION_GRACE_DAYS"), default=7))
    catalog_cache_ttl_seconds = max(0, _to_int(env_mapping.get("CATALOG_CACHE_TTL_SECONDS"), default=300))

    default_level = "DEBUG" if _to_bool(env_mapping.get("DEBUG"), default=False) else "INFO"
    log_level = (env_mapping.get("LOG_LEVEL") or default_level).strip().upper()

    return LedgerConfig(
        app_env=app_env,
        storage_backend=storage_backend,
        database_url=_database_url(env_mapping),
        paywall_mode=paywall_mode,
        default_currency=default_currency,
        payment_provider=payment_provider or "kaspi",
        subscription_period_days=subscription_period_days,
        grace_period_days=grace_period_days,
        catalog_cache_ttl_seconds=catalog_cache_ttl_seconds,
        admin_api_token=env_mapping.get("ADMIN_API_TOKEN") or None,
        log_level=log_level,
    )


__all__ = [
    "LedgerConfig",
    "PAYWALL_MODE_HARD",
    "PAYWALL_MODE_SOFT_BETA_STRICT",
    "load_ledger_config",
]
