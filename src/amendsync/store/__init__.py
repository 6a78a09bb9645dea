"""Remote document store backends."""

from amendsync.store.factory import clear_store_cache, get_document_store
from amendsync.store.hub import Subscription, SubscriptionHub
from amendsync.store.memory import InMemoryDocumentStore
from amendsync.store.protocol import DocumentStoreProtocol

__all__ = [
    "DocumentStoreProtocol",
    "InMemoryDocumentStore",
    "Subscription",
    "SubscriptionHub",
    "clear_store_cache",
    "get_document_store",
]
