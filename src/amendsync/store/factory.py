"""Document store factory.

Provides a factory function to get the configured store backend
(PostgreSQL or in-memory).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from amendsync.config import get_settings

if TYPE_CHECKING:
    from amendsync.store.protocol import DocumentStoreProtocol


# Cached instance so every session in the process shares one hub
_store_instance: DocumentStoreProtocol | None = None


def get_document_store() -> DocumentStoreProtocol:
    """Get the document store selected by STORE__BACKEND.

    Returns:
        A store implementing DocumentStoreProtocol.

    Raises:
        ValueError: If the SQL backend is selected without DATABASE__URL.
    """
    global _store_instance  # noqa: PLW0603
    if _store_instance is not None:
        return _store_instance

    settings = get_settings()
    if settings.store.backend == "memory":
        from amendsync.store.memory import InMemoryDocumentStore

        _store_instance = InMemoryDocumentStore(
            latency=settings.store.latency_seconds
        )
        return _store_instance

    if not settings.database.url:
        msg = (
            "DATABASE__URL is required when STORE__BACKEND is 'sql'. "
            "Set DATABASE__URL or use STORE__BACKEND=memory."
        )
        raise ValueError(msg)

    from amendsync.store.sql import SqlDocumentStore

    _store_instance = SqlDocumentStore()
    return _store_instance


def clear_store_cache() -> None:
    """Clear the configuration and store caches."""
    global _store_instance  # noqa: PLW0603
    get_settings.cache_clear()
    _store_instance = None
