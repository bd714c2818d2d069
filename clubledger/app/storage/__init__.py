"""Storage primitives shared by the ledger repositories."""

from .connection import PostgresRepository, managed_connection

__all__ = ["PostgresRepository", "managed_connection"]
