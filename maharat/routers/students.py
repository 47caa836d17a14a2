from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from maharat.core.router_guard import http_error, require_teacher
from maharat.errors import PlatformError
from maharat.services import student_service
from maharat.services.identity_service import IdentityService, get_identity_service
from maharat.store import DocumentStore, get_store


router = APIRouter(prefix='/api/students', tags=['Students'])


class StudentCreatePayload(BaseModel):
    name: str = ''
    email: str = ''
    password: str = ''


class StudentUpdatePayload(BaseModel):
    name: str = ''
    email: str = ''


@router.get('')
def students_list(request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    try:
        return {'items': student_service.list_students(store)}
    except PlatformError as exc:
        raise http_error(exc) from exc


@router.post('', status_code=201)
def students_add(
    payload: StudentCreatePayload,
    request: Request,
    store: DocumentStore = Depends(get_store),
    identity: IdentityService = Depends(get_identity_service),
):
    require_teacher(request)
    try:
        student = student_service.add_student(store, identity, payload.name, payload.email, payload.password)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'student': student}


@router.put('/{student_id}')
def students_update(
    student_id: str,
    payload: StudentUpdatePayload,
    request: Request,
    store: DocumentStore = Depends(get_store),
    identity: IdentityService = Depends(get_identity_service),
):
    require_teacher(request)
    try:
        student = student_service.update_student(store, identity, student_id, payload.name, payload.email)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'student': student}


@router.delete('/{student_id}')
def students_delete(
    student_id: str,
    request: Request,
    store: DocumentStore = Depends(get_store),
    identity: IdentityService = Depends(get_identity_service),
):
    require_teacher(request)
    try:
        student_service.delete_student(store, identity, student_id)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True}
