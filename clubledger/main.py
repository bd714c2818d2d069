"""FastAPI application exposing the club billing ledger."""
from __future__ import annotations

import logging
import os
from types import SimpleNamespace
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from clubledger import app_context
from clubledger.app.routes import admin as admin_routes
from clubledger.app.routes import billing as billing_routes
from clubledger.app.routes import entitlements as entitlement_routes
from clubledger.app.routes.dependencies import get_services
from clubledger.app.services.billing import LedgerServices, build_ledger_services
from clubledger.app.storage.postgres import PostgresLedgerStore
from clubledger.config import LedgerConfig, load_ledger_config

logger = logging.getLogger("billing")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_logging_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _logging_configured

    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    _logging_configured = True


def get_current_user(user_id: Optional[str] = None) -> SimpleNamespace:
    """Resolve the caller from the identity header set by the auth gateway."""

    if not user_id or not user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return SimpleNamespace(id=user_id.strip())


def _allowed_origins() -> list:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(
    config: Optional[LedgerConfig] = None,
    services: Optional[LedgerServices] = None,
) -> FastAPI:
    load_dotenv()
    config = config or load_ledger_config()
    configure_logging(config.log_level)

    def get_conn():
        if not config.database_url:
            raise RuntimeError("DATABASE_URL or DB_HOST must be set for postgres storage")
        return psycopg2.connect(config.database_url, connect_timeout=5)

    app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

    services = services or build_ledger_services(config)

    app = FastAPI(title="Club Ledger API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.dependency_overrides[get_services] = lambda: services
    app.include_router(billing_routes.router)
    app.include_router(entitlement_routes.router)
    app.include_router(admin_routes.router)

    @app.on_event("startup")
    def _startup() -> None:
        if isinstance(services.store, PostgresLedgerStore):
            services.store.ensure_schema()
        logger.info(
            "Ledger API started env=%s storage=%s paywall=%s",
            config.app_env,
            config.storage_backend,
            config.paywall_mode,
        )

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app_context.reset()

    return app


app = create_app()
