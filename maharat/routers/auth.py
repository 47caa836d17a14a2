from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from maharat.config import settings
from maharat.core.router_guard import SESSION_COOKIE, http_error, require_auth_user, resolve_token
from maharat.errors import PlatformError
from maharat.models import Collection
from maharat.services.identity_service import IdentityService, get_identity_service
from maharat.services.registration_service import login, logout, register, teacher_exists
from maharat.store import DocumentStore, get_store


router = APIRouter(tags=['Auth'])


class RegisterPayload(BaseModel):
    email: str
    password: str
    name: str
    role: str = 'student'


class LoginPayload(BaseModel):
    email: str
    password: str


def _session_cookie_response(data: dict, status_code: int = 200) -> JSONResponse:
    response = JSONResponse(
        {
            'ok': True,
            'token': data['token'],
            'user_id': data['user_id'],
            'role': data['role'],
            'expires_at': data['expires_at'],
        },
        status_code=status_code,
    )
    response.set_cookie(
        key=SESSION_COOKIE,
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=False,
        max_age=60 * 60 * settings.auth_session_expiry_hours,
    )
    return response


@router.post('/auth/register')
def auth_register(
    payload: RegisterPayload,
    store: DocumentStore = Depends(get_store),
    identity: IdentityService = Depends(get_identity_service),
):
    try:
        data = register(store, identity, payload.email, payload.password, payload.role, payload.name)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return _session_cookie_response(data, status_code=201)


@router.post('/auth/login')
def auth_login(
    payload: LoginPayload,
    store: DocumentStore = Depends(get_store),
    identity: IdentityService = Depends(get_identity_service),
):
    try:
        data = login(store, identity, payload.email, payload.password)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return _session_cookie_response(data)


@router.post('/auth/logout')
def auth_logout(request: Request):
    logout(resolve_token(request))
    response = JSONResponse({'ok': True})
    response.delete_cookie(SESSION_COOKIE)
    return response


@router.get('/auth/me')
def auth_me(request: Request, store: DocumentStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        profile = store.get_document(Collection.USERS.value, user['user_id'])
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'user': profile}


@router.get('/auth/teacher-status')
def auth_teacher_status(store: DocumentStore = Depends(get_store)):
    try:
        exists = teacher_exists(store)
    except PlatformError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {'teacher_exists': exists}
