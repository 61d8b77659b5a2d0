"""
Canonical store implementations.

Usage:
    from laxstats.repositories import get_store

    store = await get_store()           # PostgreSQL when DATABASE_URL is set
    store = await get_store(memory=True)
"""

from ..core.config import Settings, get_settings
from .base import CanonicalStore
from .memory import InMemoryStore

__all__ = [
    "CanonicalStore",
    "InMemoryStore",
    "get_store",
]


async def get_store(settings: Settings | None = None, memory: bool = False) -> CanonicalStore:
    """
    Open the configured canonical store.

    Args:
        settings: Settings to read the database URL and pool size from
        memory: Use the in-process store regardless of configuration

    Returns:
        An initialized CanonicalStore

    Raises:
        ValueError: If no database is configured and memory is False
    """
    if memory:
        return InMemoryStore()

    settings = settings or get_settings()
    if not settings.database_url:
        raise ValueError("DATABASE_URL is not set (use --dry-run for an in-memory store)")

    from ..pg_async import AsyncPostgresDB
    from .postgres import PostgresStore

    store = PostgresStore(
        AsyncPostgresDB(settings.database_url, max_pool_size=settings.database_pool_size)
    )
    await store.initialize()
    return store
