from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, Request

from maharat.errors import (
    AuthError,
    EmailInUse,
    IndexNotReady,
    NotFound,
    PlatformError,
    StoreUnavailable,
    TeacherAlreadyExists,
    ValidationError,
)
from maharat.services.identity_service import validate_session_token


SESSION_COOKIE = 'auth_session'


def resolve_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_auth_user(request: Request) -> dict:
    session = validate_session_token(resolve_token(request))
    if not session or not session.get('user_id'):
        raise HTTPException(status_code=401, detail='Unauthorized')
    return {
        'user_id': str(session['user_id']),
        'role': str(session.get('role') or '').strip().lower(),
        'email': str(session.get('email') or ''),
    }


def require_role(user: dict, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        raise HTTPException(status_code=403, detail='Forbidden')


def require_teacher(request: Request) -> dict:
    user = require_auth_user(request)
    require_role(user, {'teacher'})
    return user


def require_student(request: Request) -> dict:
    user = require_auth_user(request)
    require_role(user, {'student'})
    return user


def http_error(exc: PlatformError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, EmailInUse):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, TeacherAlreadyExists):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (StoreUnavailable, IndexNotReady)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail='Internal error')
