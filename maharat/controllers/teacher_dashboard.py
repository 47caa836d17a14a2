from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from dataclasses import asdict, dataclass, field

from maharat.controllers.base import DashboardController
from maharat.errors import AuthError, MassSendPartialFailure, PlatformError
from maharat.models import Collection, Role
from maharat.services import messaging_service, progress_service
from maharat.services.lesson_service import list_lessons
from maharat.services.settings_service import SETTINGS_DOC_ID, get_platform_settings, save_platform_settings, with_defaults
from maharat.services.student_service import list_students


logger = logging.getLogger(__name__)


@dataclass
class TeacherDashboardView:
    user: dict
    lessons: list[dict]
    students: list[dict]
    progress_overview: dict
    settings: dict
    messages: list[dict]
    unread_count: int
    threads: list[dict]
    notifications: list[dict]
    messaging_ready: bool
    messaging_state: str
    notices: list[dict] = field(default_factory=list)


class TeacherDashboard(DashboardController):
    role = Role.TEACHER.value

    def __init__(self, store, user_id: str, *, retry_seconds: float | None = None) -> None:
        super().__init__(store, user_id, retry_seconds=retry_seconds)
        self.lessons: list[dict] = []
        self.students: list[dict] = []
        self.progress_docs: list[dict] = []
        self.settings: dict = with_defaults(None)

    async def _load(self, stack: AsyncExitStack) -> None:
        self.user = await self.run(self.store.get_document, Collection.USERS.value, self.user_id)
        if self.user.get('role') != Role.TEACHER.value:
            raise AuthError('Teacher access required')
        await self.refresh_reference_data()
        self.settings = await self.run(get_platform_settings, self.store)
        progress_query = self.store.query(Collection.STUDENT_PROGRESS.value)
        await self.watch(stack, progress_query.on_snapshot, self.on_loop(self._on_progress), self._on_background_error)
        await self.watch(
            stack,
            self.store.watch_document,
            Collection.PLATFORM_SETTINGS.value,
            SETTINGS_DOC_ID,
            self.on_loop(self._on_settings),
            self._on_background_error,
        )

    async def refresh_reference_data(self) -> None:
        self.lessons = await self.run(list_lessons, self.store)
        self.students = await self.run(list_students, self.store)
        self._mark_changed()

    def _on_progress(self, docs: list[dict]) -> None:
        self.progress_docs = docs

    def _on_settings(self, doc: dict | None) -> None:
        self.settings = with_defaults(doc)

    def view(self) -> dict:
        return asdict(
            TeacherDashboardView(
                user={'id': self.user_id, 'name': self.user.get('name', ''), 'email': self.user.get('email', '')},
                lessons=self.lessons,
                students=self.students,
                progress_overview=progress_service.progress_overview(self.students, self.progress_docs, self.lessons),
                settings=self.settings,
                messages=self.messages,
                unread_count=messaging_service.unread_count(self.user_id, self.messages),
                threads=messaging_service.conversation_threads(self.messages, self.user_id),
                notifications=messaging_service.notification_feed(self.messages, self.user_id, unread_only=True),
                messaging_ready=self.messaging_ready,
                messaging_state=self.inbox.state.value if self.inbox else 'unsubscribed',
                notices=self.notice_rows(),
            )
        )

    async def send_message(self, student_id: str, text: str) -> str:
        return await self.perform(
            'send_message',
            messaging_service.send_message,
            self.store,
            self.user_id,
            student_id,
            text,
            success='Message sent',
        )

    async def send_mass(self, text: str, student_ids: list[str] | None = None) -> dict[str, str]:
        receivers = student_ids if student_ids else [student['id'] for student in self.students]
        try:
            sent = await messaging_service.send_mass(self.store, self.user_id, receivers, text)
        except MassSendPartialFailure as exc:
            self.push_notice('warning', f'Sent to {len(exc.sent)} students, failed for {len(exc.failed)}')
            raise
        except PlatformError as exc:
            logger.warning('dashboard_action_failed action=send_mass user=%s error=%s', self.user_id, exc)
            self.push_notice('error', str(exc))
            raise
        self.push_notice('success', f'Message sent to {len(sent)} students')
        return sent

    async def open_chat(self, student_id: str) -> dict:
        return await self.perform('mark_conversation_read', messaging_service.mark_conversation_read, self.store, self.user_id, student_id)

    def chat_messages(self, student_id: str) -> list[dict]:
        return messaging_service.conversation(self.messages, self.user_id, student_id)

    async def delete_messages(self, message_ids: list[str]) -> int:
        return await self.perform(
            'delete_messages',
            messaging_service.delete_selected,
            self.store,
            message_ids,
            user_id=self.user_id,
            success='Selected messages deleted',
        )

    async def save_settings(self, changes: dict) -> dict:
        return await self.perform('save_settings', save_platform_settings, self.store, changes, success='Settings saved')
