"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_get_current_user: Optional[Callable[..., Any]] = None


def configure(
    *,
    get_conn: Optional[Callable[[], Any]] = None,
    get_current_user: Optional[Callable[..., Any]] = None,
) -> None:
    """Register process-wide dependencies used by repositories and routers."""

    global _get_conn
    global _get_current_user

    if get_conn is not None:
        _get_conn = get_conn
    if get_current_user is not None:
        _get_current_user = get_current_user


def reset() -> None:
    """Forget registered dependencies (used when an application shuts down)."""

    global _get_conn
    global _get_current_user

    _get_conn = None
    _get_current_user = None


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_current_user(*args: Any, **kwargs: Any) -> Any:
    dependency = _require(_get_current_user, "get_current_user")
    return dependency(*args, **kwargs)
