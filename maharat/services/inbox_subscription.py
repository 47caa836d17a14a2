from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import threading
from collections.abc import Callable

from maharat.config import settings
from maharat.errors import IndexNotReady
from maharat.services.messaging_service import inbox_query
from maharat.store import DocumentStore, Watch


logger = logging.getLogger(__name__)

SnapshotListener = Callable[[list[dict]], None]
NoticeListener = Callable[[str, str], None]


class SubscriptionState(str, enum.Enum):
    UNSUBSCRIBED = 'unsubscribed'
    SUBSCRIBING = 'subscribing'
    ACTIVE = 'active'
    DEGRADED = 'degraded'
    CLOSED = 'closed'


_VISIBLE_STATES = (SubscriptionState.ACTIVE, SubscriptionState.DEGRADED)


class InboxSubscription:
    """Live view of every message a user participates in.

    Snapshots arrive from store threads and are coalesced onto the event loop:
    only the latest pending snapshot is delivered. While the messages index is
    still building the subscription sits in DEGRADED and re-subscribes every
    ``retry_seconds`` until it succeeds. Use it with ``async with`` so the
    store watch and the retry task are released on every exit path.
    """

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        *,
        on_snapshot: SnapshotListener | None = None,
        on_notice: NoticeListener | None = None,
        retry_seconds: float | None = None,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self._on_snapshot = on_snapshot
        self._on_notice = on_notice
        self.retry_seconds = settings.messages_index_retry_seconds if retry_seconds is None else retry_seconds
        self.state = SubscriptionState.UNSUBSCRIBED
        self.messages: list[dict] = []
        self.version = 0
        self.attempts = 0
        self._emitted_version = 0
        self._pending: list[dict] | None = None
        self._pending_lock = threading.Lock()
        self._setup_errors: list[Exception] = []
        self._watch: Watch | None = None
        self._retry_task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._updated: asyncio.Event | None = None

    async def __aenter__(self) -> 'InboxSubscription':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def ready(self) -> bool:
        return self.state == SubscriptionState.ACTIVE

    async def open(self) -> None:
        if self.state != SubscriptionState.UNSUBSCRIBED:
            raise RuntimeError(f'Subscription already {self.state.value}')
        self._loop = asyncio.get_running_loop()
        self._updated = asyncio.Event()
        await self._subscribe()

    async def close(self) -> None:
        if self.state == SubscriptionState.CLOSED:
            return
        self.state = SubscriptionState.CLOSED
        task, self._retry_task = self._retry_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        watch, self._watch = self._watch, None
        if watch is not None:
            watch.unsubscribe()
        if self._updated is not None:
            self._updated.set()
        logger.info('inbox_subscription_closed user=%s', self.user_id)

    async def _subscribe(self) -> None:
        self.state = SubscriptionState.SUBSCRIBING
        self.attempts += 1
        self._setup_errors = []
        watch = await asyncio.to_thread(inbox_query(self._store, self.user_id).on_snapshot, self._receive, self._receive_error)
        errors, self._setup_errors = self._setup_errors, []
        if self.state == SubscriptionState.CLOSED:
            watch.unsubscribe()
            return

        index_error = next((exc for exc in errors if isinstance(exc, IndexNotReady)), None)
        if index_error is not None:
            watch.unsubscribe()
            self._degrade(index_error)
            return
        for exc in errors:
            logger.warning('inbox_snapshot_failed user=%s error=%s', self.user_id, exc)

        self._watch = watch
        self.state = SubscriptionState.ACTIVE
        logger.info('inbox_subscription_active user=%s attempts=%s', self.user_id, self.attempts)
        if self.attempts > 1:
            self._notify('success', 'Messaging is available again')
        if self.version > self._emitted_version:
            self._emit()

    def _degrade(self, exc: IndexNotReady) -> None:
        self.state = SubscriptionState.DEGRADED
        logger.warning(
            'inbox_index_not_ready user=%s index=%s retry_in=%s attempts=%s',
            self.user_id,
            exc.index_name,
            self.retry_seconds,
            self.attempts,
        )
        self._notify('warning', f'Messaging is being prepared, retrying in {self.retry_seconds:g} seconds')
        self._retry_task = asyncio.create_task(self._retry_later())

    async def _retry_later(self) -> None:
        await asyncio.sleep(self.retry_seconds)
        if self.state == SubscriptionState.DEGRADED:
            self._retry_task = None
            await self._subscribe()

    def _receive(self, docs: list[dict]) -> None:
        # Runs on store threads; hand the latest snapshot to the loop.
        with self._pending_lock:
            already_scheduled = self._pending is not None
            self._pending = docs
        if already_scheduled or self._loop is None:
            return
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._flush)

    def _receive_error(self, exc: Exception) -> None:
        if self.state == SubscriptionState.SUBSCRIBING:
            self._setup_errors.append(exc)
            return
        logger.warning('inbox_snapshot_failed user=%s error=%s', self.user_id, exc)

    def _flush(self) -> None:
        with self._pending_lock:
            docs, self._pending = self._pending, None
        if docs is None or self.state == SubscriptionState.CLOSED:
            return
        self.messages = docs
        self.version += 1
        if self.state in _VISIBLE_STATES:
            self._emit()

    def _emit(self) -> None:
        self._emitted_version = self.version
        if self._on_snapshot is not None:
            try:
                self._on_snapshot(self.messages)
            except Exception:
                logger.exception('inbox_listener_failed user=%s', self.user_id)
        event, self._updated = self._updated, asyncio.Event()
        if event is not None:
            event.set()

    def _notify(self, kind: str, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(kind, message)

    async def wait_for_update(self, after_version: int, timeout: float | None = None) -> int:
        """Wait until a snapshot newer than ``after_version`` has been delivered."""
        while self._emitted_version <= after_version and self.state != SubscriptionState.CLOSED:
            await asyncio.wait_for(self._updated.wait(), timeout)
        return self._emitted_version
