from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from maharat.config import settings
from maharat.store.change_feed import ChangeFeed
from maharat.store.document_store import BatchOperation, DocumentStore, Query, Watch
from maharat.store.indexes import REQUIRED_INDEXES, IndexDefinition, IndexRegistry
from maharat.store.transforms import SERVER_TIMESTAMP, ArrayUnion

__all__ = [
    'SERVER_TIMESTAMP',
    'ArrayUnion',
    'BatchOperation',
    'ChangeFeed',
    'DocumentStore',
    'IndexDefinition',
    'IndexRegistry',
    'Query',
    'REQUIRED_INDEXES',
    'Watch',
    'build_store',
    'get_store',
    'set_store',
]


_store: DocumentStore | None = None


def build_store(session_factory: sessionmaker, *, index_build_seconds: int | None = None) -> DocumentStore:
    build_seconds = settings.store_index_build_seconds if index_build_seconds is None else index_build_seconds
    indexes = IndexRegistry(session_factory, build_seconds=build_seconds)
    return DocumentStore(session_factory, indexes=indexes, feed=ChangeFeed())


def set_store(store: DocumentStore) -> None:
    global _store
    _store = store


def get_store() -> DocumentStore:
    if _store is None:
        from maharat.db import SessionLocal

        set_store(build_store(SessionLocal))
    return _store
