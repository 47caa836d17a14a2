from __future__ import annotations

from contextlib import AsyncExitStack
from dataclasses import asdict, dataclass, field

from maharat.controllers.base import DashboardController
from maharat.errors import AuthError, ValidationError
from maharat.models import Collection, Role
from maharat.services import messaging_service, progress_service, resource_service
from maharat.services.lesson_service import list_lessons
from maharat.services.registration_service import find_teacher
from maharat.services.settings_service import SETTINGS_DOC_ID, get_platform_settings, with_defaults


@dataclass
class StudentDashboardView:
    user: dict
    teacher: dict | None
    lessons: list[dict]
    completed_lessons: list[str]
    completed_count: int
    total_lessons: int
    progress: int
    site_name: str
    ai_tools_url: str
    final_exams: list[dict]
    meeting_rooms: list[dict]
    messages: list[dict]
    unread_count: int
    notifications: list[dict]
    messaging_ready: bool
    messaging_state: str
    notices: list[dict] = field(default_factory=list)


class StudentDashboard(DashboardController):
    role = Role.STUDENT.value

    def __init__(self, store, user_id: str, *, retry_seconds: float | None = None) -> None:
        super().__init__(store, user_id, retry_seconds=retry_seconds)
        self.teacher: dict | None = None
        self.lessons: list[dict] = []
        self.progress: dict = {}
        self.settings: dict = with_defaults(None)

    async def _load(self, stack: AsyncExitStack) -> None:
        self.user = await self.run(self.store.get_document, Collection.USERS.value, self.user_id)
        if self.user.get('role') != Role.STUDENT.value:
            raise AuthError('Student access required')
        self.lessons = await self.run(list_lessons, self.store)
        self.teacher = await self.run(find_teacher, self.store)
        self.progress = await self.run(progress_service.ensure_progress, self.store, self.user_id, self.user.get('name'))
        self.settings = await self.run(get_platform_settings, self.store)
        await self.watch(
            stack,
            self.store.watch_document,
            Collection.STUDENT_PROGRESS.value,
            self.user_id,
            self.on_loop(self._on_progress),
            self._on_background_error,
        )
        await self.watch(
            stack,
            self.store.watch_document,
            Collection.PLATFORM_SETTINGS.value,
            SETTINGS_DOC_ID,
            self.on_loop(self._on_settings),
            self._on_background_error,
        )

    def _on_progress(self, doc: dict | None) -> None:
        if doc is not None:
            self.progress = doc

    def _on_settings(self, doc: dict | None) -> None:
        self.settings = with_defaults(doc)

    def view(self) -> dict:
        lesson_ids = [lesson['id'] for lesson in self.lessons]
        completed = progress_service.completed_lesson_ids(self.progress, lesson_ids)
        teacher = None
        if self.teacher:
            teacher = {'id': self.teacher['id'], 'name': self.teacher.get('name', '')}
        return asdict(
            StudentDashboardView(
                user={'id': self.user_id, 'name': self.user.get('name', ''), 'email': self.user.get('email', '')},
                teacher=teacher,
                lessons=self.lessons,
                completed_lessons=completed,
                completed_count=len(completed),
                total_lessons=len(lesson_ids),
                progress=progress_service.compute_progress(len(lesson_ids), len(completed)),
                site_name=self.settings.get('siteName', ''),
                ai_tools_url=self.settings.get('studentAiToolsUrl', ''),
                final_exams=list(self.settings.get('finalExamsList') or []),
                meeting_rooms=list(self.settings.get('meetingRoomsList') or []),
                messages=self.messages,
                unread_count=messaging_service.unread_count(self.user_id, self.messages),
                notifications=messaging_service.notification_feed(self.messages, self.user_id, unread_only=False),
                messaging_ready=self.messaging_ready,
                messaging_state=self.inbox.state.value if self.inbox else 'unsubscribed',
                notices=self.notice_rows(),
            )
        )

    async def mark_lesson_complete(self, lesson_id: str) -> dict:
        result = await self.perform('mark_lesson_complete', progress_service.mark_lesson_complete, self.store, self.user_id, lesson_id)
        if result['status'] == 'already_completed':
            self.push_notice('info', 'You have already completed this lesson')
        else:
            self.push_notice('success', 'Lesson marked as complete')
        return result

    def _teacher_id(self) -> str:
        if not self.teacher:
            self.push_notice('error', 'No teacher is registered yet')
            raise ValidationError('No teacher is registered yet')
        return self.teacher['id']

    async def send_to_teacher(self, text: str) -> str:
        return await self.perform(
            'send_message',
            messaging_service.send_message,
            self.store,
            self.user_id,
            self._teacher_id(),
            text,
            success='Message sent',
        )

    async def open_chat(self) -> dict:
        return await self.perform('mark_conversation_read', messaging_service.mark_conversation_read, self.store, self.user_id, self._teacher_id())

    def chat_messages(self) -> list[dict]:
        if not self.teacher:
            return []
        return messaging_service.conversation(self.messages, self.user_id, self.teacher['id'])

    async def open_resource(self, kind: str, *, lesson_id: str | None = None, link_id: str | None = None) -> dict:
        resource_kind = resource_service.parse_kind(kind)
        if lesson_id:
            resource = await self.perform('open_resource', resource_service.lesson_resource, self.store, lesson_id, resource_kind)
        else:
            resource = await self.perform('open_resource', resource_service.settings_resource, self.store, resource_kind, link_id or '')
        return resource.to_dict()
