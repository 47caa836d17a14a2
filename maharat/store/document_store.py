from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from maharat.core.time_provider import TimeProvider, default_time_provider
from maharat.errors import NotFound, PlatformError, StoreUnavailable
from maharat.models import DocumentRecord
from maharat.store.change_feed import ChangeFeed
from maharat.store.indexes import IndexRegistry
from maharat.store.transforms import get_path, merge_document, resolve_document, set_path


logger = logging.getLogger(__name__)

Filter = tuple[str, str, Any]
OrderBy = tuple[str, str]
SnapshotCallback = Callable[[list[dict[str, Any]]], None]
DocumentCallback = Callable[[dict[str, Any] | None], None]
ErrorCallback = Callable[[Exception], None]

_OPERATORS = {'==', 'array-contains', 'in'}


def _matches(data: dict[str, Any], filters: Sequence[Filter]) -> bool:
    for field_path, op, expected in filters:
        actual = get_path(data, field_path)
        if op == '==':
            if actual != expected:
                return False
        elif op == 'array-contains':
            if not isinstance(actual, list) or expected not in actual:
                return False
        elif op == 'in':
            if actual not in expected:
                return False
    return True


def _to_dict(record: DocumentRecord) -> dict[str, Any]:
    doc = copy.deepcopy(record.data or {})
    doc['id'] = record.doc_id
    return doc


@dataclass
class BatchOperation:
    kind: str
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False

    @classmethod
    def set(cls, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> 'BatchOperation':
        return cls('set', collection, doc_id, data, merge)

    @classmethod
    def update(cls, collection: str, doc_id: str, fields: dict[str, Any]) -> 'BatchOperation':
        return cls('update', collection, doc_id, fields)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> 'BatchOperation':
        return cls('delete', collection, doc_id)


class Watch:
    """Handle for a standing snapshot listener."""

    def __init__(self, feed: ChangeFeed | None, collection: str, handler_id: int | None) -> None:
        self._feed = feed
        self._collection = collection
        self._handler_id = handler_id
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._handler_id is not None

    def unsubscribe(self) -> None:
        with self._lock:
            handler_id, self._handler_id = self._handler_id, None
        if handler_id is not None and self._feed is not None:
            self._feed.unsubscribe(self._collection, handler_id)


def _report_error(on_error: ErrorCallback | None, exc: Exception, collection: str) -> None:
    if on_error is None:
        logger.warning('snapshot_listener_error collection=%s error=%s', collection, exc)
        return
    on_error(exc)


class Query:
    def __init__(
        self,
        store: 'DocumentStore',
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> None:
        for _, op, _ in filters:
            if op not in _OPERATORS:
                raise ValueError(f'Unsupported filter operator: {op}')
        for _, direction in order_by:
            if direction not in ('asc', 'desc'):
                raise ValueError(f'Unsupported sort direction: {direction}')
        self._store = store
        self.collection = collection
        self.filters = tuple(filters)
        self.order_by = tuple(order_by)

    def _check_index(self) -> None:
        if self._store.indexes is not None:
            self._store.indexes.require(self.collection, self.filters, self.order_by)

    def _run(self) -> list[dict[str, Any]]:
        docs = [doc for doc in self._store.list_collection(self.collection) if _matches(doc, self.filters)]
        # Documents lacking an order-by field are excluded, as hosted stores do.
        for field_path, _ in self.order_by:
            docs = [doc for doc in docs if get_path(doc, field_path) is not None]
        for field_path, direction in reversed(self.order_by):
            docs.sort(key=lambda doc, path=field_path: get_path(doc, path), reverse=direction == 'desc')
        return docs

    def get(self) -> list[dict[str, Any]]:
        self._check_index()
        return self._run()

    def on_snapshot(self, callback: SnapshotCallback, on_error: ErrorCallback | None = None) -> Watch:
        try:
            self._check_index()
        except PlatformError as exc:
            _report_error(on_error, exc, self.collection)
            return Watch(None, self.collection, None)

        # Read and deliver under one lock so a watch never sees an older state after a newer one.
        delivery = threading.RLock()

        def handle(_collection: str) -> None:
            with delivery:
                try:
                    docs = self._run()
                except PlatformError as exc:
                    _report_error(on_error, exc, self.collection)
                    return
                callback(docs)

        feed = self._store.feed
        watch = Watch(feed, self.collection, feed.subscribe(self.collection, handle))
        handle(self.collection)
        return watch


class DocumentStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        indexes: IndexRegistry | None = None,
        feed: ChangeFeed | None = None,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self._session_factory = session_factory
        self.indexes = indexes
        self.feed = feed or ChangeFeed()
        self._time_provider = time_provider
        self._write_lock = threading.RLock()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def _now(self) -> str:
        return self._time_provider.server_timestamp()

    @contextmanager
    def _session(self):
        db: Session = self._session_factory()
        try:
            yield db
            db.commit()
        except PlatformError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('document_store_failure')
            raise StoreUnavailable('The document store is unavailable, please try again') from exc
        finally:
            db.close()

    @staticmethod
    def _record(db: Session, collection: str, doc_id: str) -> DocumentRecord | None:
        return (
            db.query(DocumentRecord)
            .filter(DocumentRecord.collection == collection, DocumentRecord.doc_id == doc_id)
            .first()
        )

    def find_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._session() as db:
            record = self._record(db, collection, doc_id)
            return _to_dict(record) if record else None

    def get_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        doc = self.find_document(collection, doc_id)
        if doc is None:
            raise NotFound(f'{collection}/{doc_id} not found')
        return doc

    def list_collection(self, collection: str) -> list[dict[str, Any]]:
        with self._session() as db:
            records = (
                db.query(DocumentRecord)
                .filter(DocumentRecord.collection == collection)
                .order_by(DocumentRecord.seq.asc())
                .all()
            )
            return [_to_dict(record) for record in records]

    def query(self, collection: str, filters: Sequence[Filter] = (), order_by: Sequence[OrderBy] = ()) -> Query:
        return Query(self, collection, filters, order_by)

    def _apply(self, db: Session, op: BatchOperation) -> None:
        record = self._record(db, op.collection, op.doc_id)
        if op.kind == 'delete':
            if record is not None:
                db.delete(record)
            return
        if op.kind == 'update':
            if record is None:
                raise NotFound(f'{op.collection}/{op.doc_id} not found')
            data = copy.deepcopy(record.data or {})
            for field_path, value in op.data.items():
                set_path(data, field_path, value, self._now)
            record.data = data
            return
        if op.kind == 'set':
            if record is None:
                db.add(DocumentRecord(collection=op.collection, doc_id=op.doc_id, data=resolve_document(op.data, self._now)))
            elif op.merge:
                record.data = merge_document(record.data or {}, op.data, self._now)
            else:
                record.data = resolve_document(op.data, self._now)
            return
        raise ValueError(f'Unknown batch operation: {op.kind}')

    def _write(self, operations: Iterable[BatchOperation]) -> None:
        operations = list(operations)
        with self._write_lock:
            with self._session() as db:
                for op in operations:
                    self._apply(db, op)
        self.feed.publish(op.collection for op in operations)

    def add_document(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = self.new_id()
        self._write([BatchOperation.set(collection, doc_id, data)])
        return doc_id

    def set_document(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._write([BatchOperation.set(collection, doc_id, data, merge)])

    def update_fields(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._write([BatchOperation.update(collection, doc_id, fields)])

    def delete_document(self, collection: str, doc_id: str) -> None:
        self._write([BatchOperation.delete(collection, doc_id)])

    def atomic_batch(self, operations: Iterable[BatchOperation]) -> None:
        """Commit every operation in one transaction, or none of them."""
        self._write(operations)

    def watch_document(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: ErrorCallback | None = None,
    ) -> Watch:
        delivery = threading.RLock()

        def handle(_collection: str) -> None:
            with delivery:
                try:
                    doc = self.find_document(collection, doc_id)
                except PlatformError as exc:
                    _report_error(on_error, exc, collection)
                    return
                callback(doc)

        watch = Watch(self.feed, collection, self.feed.subscribe(collection, handle))
        handle(collection)
        return watch
