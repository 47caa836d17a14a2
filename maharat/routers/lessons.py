from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from maharat.core.router_guard import http_error, require_auth_user, require_teacher
from maharat.errors import PlatformError
from maharat.services import lesson_service, resource_service
from maharat.store import DocumentStore, get_store


router = APIRouter(prefix='/api/lessons', tags=['Lessons'])


class LessonPayload(BaseModel):
    lesson_number: int | str | None = None
    title: str = ''
    video_url: str = ''
    pdf_url: str = ''
    quiz_url: str = ''


@router.get('')
def lessons_list(request: Request, store: DocumentStore = Depends(get_store)):
    require_auth_user(request)
    try:
        return {'items': lesson_service.list_lessons(store)}
    except PlatformError as exc:
        raise http_error(exc) from exc


@router.post('', status_code=201)
def lessons_create(payload: LessonPayload, request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    try:
        lesson = lesson_service.create_lesson(
            store,
            payload.lesson_number,
            payload.title,
            payload.video_url,
            payload.pdf_url,
            payload.quiz_url,
        )
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'lesson': lesson}


@router.get('/{lesson_id}')
def lessons_get(lesson_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    require_auth_user(request)
    try:
        return lesson_service.get_lesson(store, lesson_id)
    except PlatformError as exc:
        raise http_error(exc) from exc


@router.put('/{lesson_id}')
def lessons_update(lesson_id: str, payload: LessonPayload, request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    try:
        lesson = lesson_service.update_lesson(
            store,
            lesson_id,
            payload.lesson_number,
            payload.title,
            payload.video_url,
            payload.pdf_url,
            payload.quiz_url,
        )
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'lesson': lesson}


@router.delete('/{lesson_id}')
def lessons_delete(lesson_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    try:
        lesson_service.delete_lesson(store, lesson_id)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True}


@router.get('/{lesson_id}/resources/{kind}')
def lessons_resource(lesson_id: str, kind: str, request: Request, store: DocumentStore = Depends(get_store)):
    require_auth_user(request)
    try:
        resource = resource_service.lesson_resource(store, lesson_id, resource_service.parse_kind(kind))
    except PlatformError as exc:
        raise http_error(exc) from exc
    return resource.to_dict()
