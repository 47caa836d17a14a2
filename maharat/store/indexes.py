from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

from maharat.core.time_provider import TimeProvider, default_time_provider
from maharat.errors import IndexNotReady
from maharat.models import IndexState, StoreIndex


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexDefinition:
    collection: str
    filter_fields: tuple[str, ...]
    order_by: tuple[tuple[str, str], ...]

    @property
    def name(self) -> str:
        return index_name(self.collection, self.filter_fields, self.order_by)


def index_name(collection: str, filter_fields, order_by) -> str:
    parts = [collection, *sorted(filter_fields)]
    parts.extend(f'{field}_{direction}' for field, direction in order_by)
    return '__'.join(parts)


def required_index_name(collection: str, filters, order_by) -> str | None:
    """Name of the composite index a query needs, or None when single-field indexes suffice."""
    if not filters or not order_by:
        return None
    filter_fields = {field for field, _, _ in filters}
    if all(field in filter_fields for field, _ in order_by):
        return None
    return index_name(collection, filter_fields, order_by)


REQUIRED_INDEXES = (
    IndexDefinition('messages', ('participants',), (('timestamp', 'asc'),)),
)


class IndexRegistry:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        build_seconds: int = 0,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self._session_factory = session_factory
        self._build_seconds = max(0, int(build_seconds))
        self._time_provider = time_provider

    def _now(self):
        return self._time_provider.utc_now().replace(tzinfo=None)

    def declare(self, definitions=REQUIRED_INDEXES) -> list[str]:
        created: list[str] = []
        db: Session = self._session_factory()
        try:
            existing = {row.name for row in db.query(StoreIndex).all()}
            for definition in definitions:
                if definition.name in existing:
                    continue
                db.add(
                    StoreIndex(
                        name=definition.name,
                        collection=definition.collection,
                        state=IndexState.BUILDING.value,
                        build_started_at=self._now(),
                    )
                )
                created.append(definition.name)
            db.commit()
        finally:
            db.close()
        for name in created:
            logger.info('store_index_declared name=%s build_seconds=%s', name, self._build_seconds)
        return created

    def rebuild(self, name: str) -> None:
        db: Session = self._session_factory()
        try:
            row = db.query(StoreIndex).filter(StoreIndex.name == name).first()
            if not row:
                raise ValueError(f'Unknown index {name}')
            row.state = IndexState.BUILDING.value
            row.build_started_at = self._now()
            row.ready_at = None
            db.commit()
        finally:
            db.close()
        logger.info('store_index_rebuild_started name=%s', name)

    def refresh(self) -> list[str]:
        promoted: list[str] = []
        now = self._now()
        db: Session = self._session_factory()
        try:
            rows = db.query(StoreIndex).filter(StoreIndex.state == IndexState.BUILDING.value).all()
            for row in rows:
                if row.build_started_at + timedelta(seconds=self._build_seconds) > now:
                    continue
                row.state = IndexState.READY.value
                row.ready_at = now
                promoted.append(row.name)
            db.commit()
        finally:
            db.close()
        for name in promoted:
            logger.info('store_index_ready name=%s', name)
        return promoted

    def state(self, name: str) -> IndexState | None:
        db: Session = self._session_factory()
        try:
            row = db.query(StoreIndex).filter(StoreIndex.name == name).first()
            return IndexState(row.state) if row else None
        finally:
            db.close()

    def require(self, collection: str, filters, order_by) -> None:
        name = required_index_name(collection, filters, order_by)
        if name is None:
            return
        state = self.state(name)
        if state == IndexState.READY:
            return
        if state is None:
            raise IndexNotReady(name, f'The query requires index {name}, which has not been created')
        raise IndexNotReady(name, f'Index {name} is still building')
