from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from maharat.config import settings
from maharat.errors import NotFound, ValidationError
from maharat.models import Collection
from maharat.services.lesson_service import list_lessons
from maharat.services.student_service import list_students
from maharat.store import ArrayUnion, DocumentStore


logger = logging.getLogger(__name__)

HIGH_PROGRESS_THRESHOLD = 70
MEDIUM_PROGRESS_THRESHOLD = 30


def _round_half_up(value: Decimal, places: str = '1') -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def compute_progress(lesson_count: int, completed_count: int) -> int:
    if lesson_count <= 0:
        return 0
    completed = max(0, min(int(completed_count), int(lesson_count)))
    value = int(_round_half_up(Decimal(completed) * 100 / Decimal(lesson_count)))
    # 100 is reserved for a fully completed catalogue.
    if completed < lesson_count:
        return min(value, 99)
    return value


def progress_percentage(lesson_count: int, completed_count: int) -> float:
    if lesson_count <= 0:
        return 0.0
    completed = max(0, min(int(completed_count), int(lesson_count)))
    return float(_round_half_up(Decimal(completed) * 100 / Decimal(lesson_count), '0.1'))


def progress_tier(percent: float) -> str:
    if percent >= HIGH_PROGRESS_THRESHOLD:
        return 'high'
    if percent >= MEDIUM_PROGRESS_THRESHOLD:
        return 'medium'
    return 'low'


def completed_lesson_ids(progress: dict | None, lesson_ids: Iterable[str] | None = None) -> list[str]:
    completed = list(dict.fromkeys((progress or {}).get('completedLessons') or []))
    if lesson_ids is None:
        return completed
    known = set(lesson_ids)
    return [lesson_id for lesson_id in completed if lesson_id in known]


def ensure_progress(store: DocumentStore, student_id: str, student_name: str | None = None) -> dict:
    progress = store.find_document(Collection.STUDENT_PROGRESS.value, student_id)
    if progress is not None:
        return progress
    record = {
        'completedLessons': [],
        'studentName': (student_name or '').strip() or settings.default_student_name,
    }
    store.set_document(Collection.STUDENT_PROGRESS.value, student_id, record)
    logger.info('student_progress_created student_id=%s', student_id)
    return {**record, 'id': student_id}


def mark_lesson_complete(store: DocumentStore, student_id: str, lesson_id: str) -> dict:
    """Add ``lesson_id`` to the student's completion set.

    The write is an array-union on the single field, never a rewrite of the
    whole set, so concurrent sessions marking different lessons cannot lose
    each other's updates. Returns ``{'status': 'already_completed'}`` without
    writing when the lesson is already in the set.
    """
    if not lesson_id:
        raise ValidationError('Lesson id is required')
    if store.find_document(Collection.LESSONS.value, lesson_id) is None:
        raise NotFound('Lesson not found')

    progress = store.find_document(Collection.STUDENT_PROGRESS.value, student_id)
    if progress is not None and lesson_id in (progress.get('completedLessons') or []):
        logger.info('lesson_already_completed student_id=%s lesson_id=%s', student_id, lesson_id)
        return {'status': 'already_completed', 'lesson_id': lesson_id}

    if progress is None:
        store.set_document(
            Collection.STUDENT_PROGRESS.value,
            student_id,
            {'completedLessons': ArrayUnion([lesson_id])},
            merge=True,
        )
    else:
        store.update_fields(Collection.STUDENT_PROGRESS.value, student_id, {'completedLessons': ArrayUnion([lesson_id])})
    logger.info('lesson_completed student_id=%s lesson_id=%s', student_id, lesson_id)
    return {'status': 'completed', 'lesson_id': lesson_id}


def student_summary(student: dict, progress: dict | None, lesson_ids: list[str]) -> dict:
    completed = completed_lesson_ids(progress, lesson_ids)
    total = len(lesson_ids)
    percentage = progress_percentage(total, len(completed))
    return {
        'student_id': student.get('id'),
        'name': student.get('name') or (progress or {}).get('studentName') or settings.default_student_name,
        'email': student.get('email', ''),
        'completed_count': len(completed),
        'total_lessons': total,
        'progress': compute_progress(total, len(completed)),
        'percentage': percentage,
        'tier': progress_tier(percentage),
    }


def progress_overview(students: list[dict], progress_docs: Iterable[dict], lessons: list[dict]) -> dict:
    by_student = {doc.get('id'): doc for doc in progress_docs}
    lesson_ids = [lesson['id'] for lesson in lessons]
    rows = [student_summary(student, by_student.get(student.get('id')), lesson_ids) for student in students]
    rows.sort(key=lambda row: (-row['percentage'], row['name']))
    average = 0.0
    if rows:
        total_percentage = sum(Decimal(str(row['percentage'])) for row in rows)
        average = float(_round_half_up(total_percentage / len(rows), '0.1'))
    return {
        'students': rows,
        'total_students': len(rows),
        'total_lessons': len(lesson_ids),
        'average_percentage': average,
        'completed_all': sum(1 for row in rows if lesson_ids and row['completed_count'] == len(lesson_ids)),
    }


def load_progress_overview(store: DocumentStore) -> dict:
    return progress_overview(
        list_students(store),
        store.list_collection(Collection.STUDENT_PROGRESS.value),
        list_lessons(store),
    )
