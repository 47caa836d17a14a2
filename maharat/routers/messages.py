from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from maharat.core.router_guard import http_error, require_auth_user, require_teacher
from maharat.errors import MassSendPartialFailure, PlatformError, ValidationError
from maharat.models import Role
from maharat.services import messaging_service
from maharat.services.registration_service import find_teacher
from maharat.services.student_service import get_student, list_students
from maharat.store import DocumentStore, get_store


router = APIRouter(prefix='/api/messages', tags=['Messages'])


class SendPayload(BaseModel):
    text: str = ''
    receiver_id: str | None = None


class MassSendPayload(BaseModel):
    text: str = ''
    student_ids: list[str] = Field(default_factory=list)


class MessageIdsPayload(BaseModel):
    message_ids: list[str] = Field(default_factory=list)


@router.get('')
def messages_inbox(request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    user_id = user['user_id']
    try:
        messages = messaging_service.load_inbox(store, user_id)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {
        'items': messages,
        'unread_count': messaging_service.unread_count(user_id, messages),
        'threads': messaging_service.conversation_threads(messages, user_id),
        'notifications': messaging_service.notification_feed(
            messages,
            user_id,
            unread_only=user['role'] == Role.TEACHER.value,
        ),
    }


@router.get('/conversation/{other_id}')
def messages_conversation(other_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        messages = messaging_service.load_inbox(store, user['user_id'])
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'items': messaging_service.conversation(messages, user['user_id'], other_id)}


@router.post('/conversation/{other_id}/read')
def messages_conversation_read(other_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        result = messaging_service.mark_conversation_read(store, user['user_id'], other_id)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': not result['failed'], **result}


def _resolve_receiver(store: DocumentStore, user: dict, receiver_id: str | None) -> str:
    if user['role'] == Role.STUDENT.value:
        teacher = find_teacher(store)
        if teacher is None:
            raise ValidationError('No teacher is registered yet')
        if receiver_id and receiver_id != teacher['id']:
            raise HTTPException(status_code=403, detail='Students can only message the teacher')
        return teacher['id']
    if not receiver_id:
        raise ValidationError('Choose someone else to message')
    return get_student(store, receiver_id)['id']


@router.post('', status_code=201)
def messages_send(payload: SendPayload, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        receiver_id = _resolve_receiver(store, user, payload.receiver_id)
        message_id = messaging_service.send_message(store, user['user_id'], receiver_id, payload.text)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'message_id': message_id}


@router.post('/mass')
async def messages_send_mass(payload: MassSendPayload, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_teacher(request)
    try:
        receivers = payload.student_ids
        if not receivers:
            receivers = [student['id'] for student in await asyncio.to_thread(list_students, store)]
        sent = await messaging_service.send_mass(store, user['user_id'], receivers, payload.text)
    except MassSendPartialFailure as exc:
        return JSONResponse(
            {'ok': False, 'detail': str(exc), 'sent': exc.sent, 'failed_ids': exc.failed_ids},
            status_code=207,
        )
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'sent': sent}


@router.post('/read')
def messages_mark_read(payload: MessageIdsPayload, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    if not payload.message_ids:
        raise HTTPException(status_code=400, detail='Select at least one message')
    result = messaging_service.mark_read(store, user['user_id'], payload.message_ids)
    return {'ok': not result['failed'], **result}


@router.post('/delete')
def messages_delete(payload: MessageIdsPayload, request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        deleted = messaging_service.delete_selected(store, payload.message_ids, user_id=user['user_id'])
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'deleted': deleted}
