from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from maharat.core.router_guard import http_error, require_student, require_teacher
from maharat.errors import PlatformError
from maharat.models import Collection
from maharat.services import progress_service
from maharat.services.lesson_service import list_lessons
from maharat.store import DocumentStore, get_store


router = APIRouter(prefix='/api/progress', tags=['Progress'])


def _student_progress(store: DocumentStore, student_id: str) -> dict:
    user = store.get_document(Collection.USERS.value, student_id)
    progress = progress_service.ensure_progress(store, student_id, user.get('name'))
    lesson_ids = [lesson['id'] for lesson in list_lessons(store)]
    completed = progress_service.completed_lesson_ids(progress, lesson_ids)
    return {
        'student_id': student_id,
        'completed_lessons': completed,
        'completed_count': len(completed),
        'total_lessons': len(lesson_ids),
        'progress': progress_service.compute_progress(len(lesson_ids), len(completed)),
    }


@router.get('/me')
def progress_me(request: Request, store: DocumentStore = Depends(get_store)):
    user = require_student(request)
    try:
        return _student_progress(store, user['user_id'])
    except PlatformError as exc:
        raise http_error(exc) from exc


@router.post('/me/lessons/{lesson_id}/complete')
def progress_complete_lesson(lesson_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_student(request)
    try:
        result = progress_service.mark_lesson_complete(store, user['user_id'], lesson_id)
        summary = _student_progress(store, user['user_id'])
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, **result, 'summary': summary}


@router.get('/overview')
def progress_overview(request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    try:
        return progress_service.load_progress_overview(store)
    except PlatformError as exc:
        raise http_error(exc) from exc
