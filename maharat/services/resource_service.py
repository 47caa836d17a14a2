from __future__ import annotations

import enum
from dataclasses import dataclass
from urllib.parse import quote

from maharat.errors import NotFound, ValidationError
from maharat.services.lesson_service import get_lesson
from maharat.services.settings_service import FINAL_EXAMS_FIELD, MEETING_ROOMS_FIELD, list_links
from maharat.store import DocumentStore


DRIVE_FILE_MARKER = 'drive.google.com/file/d/'
GOOGLE_VIEWER_URL = 'https://docs.google.com/gview?url={url}&embedded=true'


class ResourceKind(str, enum.Enum):
    VIDEO = 'video'
    PDF = 'pdf'
    QUIZ = 'quiz'
    EXAM = 'finalExam'
    MEETING = 'meeting'


@dataclass(frozen=True)
class Resource:
    kind: ResourceKind
    title: str
    url: str

    @property
    def external(self) -> bool:
        return False

    def display_url(self) -> str:
        return self.url

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'title': self.title,
            'url': self.url,
            'display_url': self.display_url(),
            'external': self.external,
        }


@dataclass(frozen=True)
class VideoResource(Resource):
    pass


@dataclass(frozen=True)
class PdfResource(Resource):
    def display_url(self) -> str:
        if not (self.url.endswith('.pdf') or DRIVE_FILE_MARKER in self.url):
            return self.url
        source = self.url
        if DRIVE_FILE_MARKER in self.url:
            source = drive_preview_url(self.url)
        return GOOGLE_VIEWER_URL.format(url=quote(source, safe=''))


@dataclass(frozen=True)
class ExternalResource(Resource):
    @property
    def external(self) -> bool:
        return True


@dataclass(frozen=True)
class QuizResource(ExternalResource):
    pass


@dataclass(frozen=True)
class ExamResource(ExternalResource):
    pass


@dataclass(frozen=True)
class MeetingResource(ExternalResource):
    pass


_RESOURCE_TYPES: dict[ResourceKind, type[Resource]] = {
    ResourceKind.VIDEO: VideoResource,
    ResourceKind.PDF: PdfResource,
    ResourceKind.QUIZ: QuizResource,
    ResourceKind.EXAM: ExamResource,
    ResourceKind.MEETING: MeetingResource,
}

_LESSON_URL_FIELDS = {
    ResourceKind.VIDEO: 'videoUrl',
    ResourceKind.PDF: 'pdfUrl',
    ResourceKind.QUIZ: 'quizUrl',
}

_LINK_LIST_FIELDS = {
    ResourceKind.EXAM: FINAL_EXAMS_FIELD,
    ResourceKind.MEETING: MEETING_ROOMS_FIELD,
}


def drive_preview_url(url: str) -> str:
    cleaned = url.replace('/view?usp=sharing', '').replace('/edit?usp=sharing', '')
    if '/preview' in cleaned:
        return cleaned
    _, _, tail = url.partition(DRIVE_FILE_MARKER)
    file_id = tail.split('/', 1)[0].split('?', 1)[0]
    if not file_id:
        return cleaned
    return f'https://drive.google.com/file/d/{file_id}/preview'


def parse_kind(value: str) -> ResourceKind:
    try:
        return ResourceKind(value)
    except ValueError as exc:
        raise ValidationError(f'Unknown resource type: {value}') from exc


def make_resource(kind: ResourceKind, title: str, url: str | None) -> Resource:
    clean_url = (url or '').strip()
    if not clean_url:
        raise NotFound('This link is not available yet')
    return _RESOURCE_TYPES[kind](kind=kind, title=title, url=clean_url)


def lesson_resource(store: DocumentStore, lesson_id: str, kind: ResourceKind) -> Resource:
    field = _LESSON_URL_FIELDS.get(kind)
    if field is None:
        raise ValidationError(f'Lessons have no {kind.value} link')
    lesson = get_lesson(store, lesson_id)
    return make_resource(kind, lesson.get('title') or '', lesson.get(field))


def settings_resource(store: DocumentStore, kind: ResourceKind, link_id: str) -> Resource:
    field = _LINK_LIST_FIELDS.get(kind)
    if field is None:
        raise ValidationError(f'{kind.value} links are attached to lessons')
    for link in list_links(store, field):
        if str(link.get('id')) == link_id:
            return make_resource(kind, link.get('name') or '', link.get('url'))
    raise NotFound('Link not found')
