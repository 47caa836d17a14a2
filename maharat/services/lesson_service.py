from __future__ import annotations

import logging

from maharat.errors import NotFound, ValidationError
from maharat.models import Collection
from maharat.store import SERVER_TIMESTAMP, DocumentStore


logger = logging.getLogger(__name__)


def _lesson_number(lesson: dict) -> int:
    try:
        return int(lesson.get('lessonNumber') or 0)
    except (TypeError, ValueError):
        return 0


def sort_lessons(lessons: list[dict]) -> list[dict]:
    return sorted(lessons, key=_lesson_number)


def list_lessons(store: DocumentStore) -> list[dict]:
    return sort_lessons(store.list_collection(Collection.LESSONS.value))


def get_lesson(store: DocumentStore, lesson_id: str) -> dict:
    lesson = store.find_document(Collection.LESSONS.value, lesson_id)
    if not lesson:
        raise NotFound('Lesson not found')
    return lesson


def _lesson_fields(lesson_number, title: str, video_url: str, pdf_url: str, quiz_url: str) -> dict:
    clean_title = (title or '').strip()
    if not clean_title or lesson_number in (None, ''):
        raise ValidationError('Lesson number and title are required')
    try:
        number = int(lesson_number)
    except (TypeError, ValueError) as exc:
        raise ValidationError('Lesson number must be a whole number') from exc
    return {
        'lessonNumber': number,
        'title': clean_title,
        'videoUrl': (video_url or '').strip(),
        'pdfUrl': (pdf_url or '').strip(),
        'quizUrl': (quiz_url or '').strip(),
    }


def create_lesson(
    store: DocumentStore,
    lesson_number,
    title: str,
    video_url: str = '',
    pdf_url: str = '',
    quiz_url: str = '',
) -> dict:
    fields = _lesson_fields(lesson_number, title, video_url, pdf_url, quiz_url)
    lesson_id = store.add_document(Collection.LESSONS.value, {**fields, 'createdAt': SERVER_TIMESTAMP})
    logger.info('lesson_created lesson_id=%s lesson_number=%s', lesson_id, fields['lessonNumber'])
    return get_lesson(store, lesson_id)


def update_lesson(
    store: DocumentStore,
    lesson_id: str,
    lesson_number,
    title: str,
    video_url: str = '',
    pdf_url: str = '',
    quiz_url: str = '',
) -> dict:
    fields = _lesson_fields(lesson_number, title, video_url, pdf_url, quiz_url)
    store.update_fields(Collection.LESSONS.value, lesson_id, {**fields, 'updatedAt': SERVER_TIMESTAMP})
    logger.info('lesson_updated lesson_id=%s', lesson_id)
    return get_lesson(store, lesson_id)


def delete_lesson(store: DocumentStore, lesson_id: str) -> None:
    get_lesson(store, lesson_id)
    store.delete_document(Collection.LESSONS.value, lesson_id)
    logger.info('lesson_deleted lesson_id=%s', lesson_id)
