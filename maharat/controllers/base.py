from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack
from dataclasses import asdict, dataclass
from typing import Any

from maharat.core.time_provider import default_time_provider
from maharat.errors import PlatformError
from maharat.services.inbox_subscription import InboxSubscription
from maharat.store import DocumentStore, Watch


logger = logging.getLogger(__name__)

MAX_NOTICES = 10


@dataclass
class Notice:
    kind: str
    message: str
    created_at: str


class DashboardController:
    """Owns one user's dashboard: reference data, live watches and notices.

    ``async with`` mounts the controller and releases every watch on exit.
    Store callbacks fire on worker threads and are marshalled onto the loop.
    """

    role: str = ''

    def __init__(self, store: DocumentStore, user_id: str, *, retry_seconds: float | None = None) -> None:
        self.store = store
        self.user_id = user_id
        self.retry_seconds = retry_seconds
        self.user: dict = {}
        self.messages: list[dict] = []
        self.notices: deque[Notice] = deque(maxlen=MAX_NOTICES)
        self.inbox: InboxSubscription | None = None
        self.mounted = False
        self.closed = False
        self._stack: AsyncExitStack | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._changed: asyncio.Event | None = None

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    async def mount(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._changed = asyncio.Event()
        stack = AsyncExitStack()
        try:
            await self._load(stack)
            self.inbox = await stack.enter_async_context(
                InboxSubscription(
                    self.store,
                    self.user_id,
                    on_snapshot=self._on_messages,
                    on_notice=self.push_notice,
                    retry_seconds=self.retry_seconds,
                )
            )
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        self.mounted = True
        self._mark_changed()
        logger.info('dashboard_mounted role=%s user=%s', self.role, self.user_id)

    async def unmount(self) -> None:
        stack, self._stack = self._stack, None
        self.mounted = False
        self.closed = True
        if stack is not None:
            await stack.aclose()
            logger.info('dashboard_unmounted role=%s user=%s', self.role, self.user_id)
        if self._changed is not None:
            self._changed.set()

    async def _load(self, stack: AsyncExitStack) -> None:
        raise NotImplementedError

    async def run(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        return await asyncio.to_thread(func, *args, **kwargs)

    def on_loop(self, handler: Callable[[Any], None]) -> Callable[[Any], None]:
        """Wrap ``handler`` so store threads schedule it on the controller's loop."""

        def deliver(value: Any) -> None:
            if self._loop is None:
                return
            with contextlib.suppress(RuntimeError):
                self._loop.call_soon_threadsafe(self._apply, handler, value)

        return deliver

    def _apply(self, handler: Callable[[Any], None], value: Any) -> None:
        if self.closed:
            return
        handler(value)
        self._mark_changed()

    async def watch(self, stack: AsyncExitStack, open_watch: Callable[..., Watch], *args) -> Watch:
        watch = await self.run(open_watch, *args)
        stack.callback(watch.unsubscribe)
        return watch

    def _on_background_error(self, exc: Exception) -> None:
        logger.warning('dashboard_watch_error role=%s user=%s error=%s', self.role, self.user_id, exc)

    def _on_messages(self, messages: list[dict]) -> None:
        self.messages = messages
        self._mark_changed()

    def push_notice(self, kind: str, message: str) -> None:
        self.notices.append(Notice(kind, message, default_time_provider.server_timestamp()))
        self._mark_changed()

    def _mark_changed(self) -> None:
        if self._changed is not None:
            self._changed.set()

    async def perform(self, label: str, func: Callable[..., Any], *args, success: str | None = None, **kwargs) -> Any:
        """Run a user action and turn its outcome into a notice."""
        try:
            result = await self.run(func, *args, **kwargs)
        except PlatformError as exc:
            logger.warning('dashboard_action_failed action=%s user=%s error=%s', label, self.user_id, exc)
            self.push_notice('error', str(exc))
            raise
        if success:
            self.push_notice('success', success)
        return result

    @property
    def messaging_ready(self) -> bool:
        return bool(self.inbox and self.inbox.ready)

    def notice_rows(self) -> list[dict]:
        return [asdict(notice) for notice in self.notices]

    def view(self) -> dict:
        raise NotImplementedError

    async def updates(self) -> AsyncIterator[dict]:
        """Yield the current view, then a fresh view after each batch of changes."""
        while self.mounted:
            await self._changed.wait()
            self._changed.clear()
            if not self.mounted:
                return
            yield self.view()
