from __future__ import annotations

import logging

from maharat.errors import AuthError, TeacherAlreadyExists, ValidationError
from maharat.models import Collection, Role
from maharat.services.identity_service import IdentityService, clear_session_token, issue_session_token, normalize_email
from maharat.store import SERVER_TIMESTAMP, DocumentStore


logger = logging.getLogger(__name__)

TEACHER_FLAG_ID = 'teacher'


def _require_name(name: str) -> str:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValidationError('Name is required')
    return clean_name


def _create_user_record(store: DocumentStore, uid: str, email: str, name: str, role: Role) -> dict:
    record = {
        'email': email,
        'role': role.value,
        'name': name,
        'createdAt': SERVER_TIMESTAMP,
    }
    store.set_document(Collection.USERS.value, uid, record)
    return {**record, 'id': uid}


def teacher_exists(store: DocumentStore) -> bool:
    flag = store.find_document(Collection.SETTINGS.value, TEACHER_FLAG_ID)
    return bool(flag and flag.get('exists'))


def register_teacher(store: DocumentStore, identity: IdentityService, email: str, password: str, name: str) -> dict:
    clean_name = _require_name(name)
    # Check-then-write, not a transaction: two concurrent registrations can both pass this check.
    if teacher_exists(store):
        logger.warning('teacher_registration_rejected reason=teacher_exists')
        raise TeacherAlreadyExists('A teacher is already registered on this platform')

    uid = identity.create_account(email, password)
    user = _create_user_record(store, uid, normalize_email(email), clean_name, Role.TEACHER)
    store.set_document(Collection.SETTINGS.value, TEACHER_FLAG_ID, {'exists': True, 'teacherId': uid})
    logger.info('teacher_registered uid=%s', uid)
    return user


def register_student(store: DocumentStore, identity: IdentityService, email: str, password: str, name: str) -> dict:
    clean_name = _require_name(name)
    uid = identity.create_account(email, password)
    user = _create_user_record(store, uid, normalize_email(email), clean_name, Role.STUDENT)
    logger.info('student_registered uid=%s', uid)
    return user


def register(
    store: DocumentStore,
    identity: IdentityService,
    email: str,
    password: str,
    role: str,
    name: str,
) -> dict:
    role_value = (role or '').strip().lower()
    if role_value == Role.TEACHER.value:
        user = register_teacher(store, identity, email, password, name)
    elif role_value == Role.STUDENT.value:
        user = register_student(store, identity, email, password, name)
    else:
        raise ValidationError('Role must be one of: teacher, student')
    return issue_session_token(user['id'], user['email'], user['role'])


def login(store: DocumentStore, identity: IdentityService, email: str, password: str) -> dict:
    uid = identity.authenticate(email, password)
    user = store.find_document(Collection.USERS.value, uid)
    if not user:
        logger.warning('login_without_profile uid=%s', uid)
        raise AuthError('No platform profile exists for this account')
    logger.info('login_success uid=%s role=%s', uid, user.get('role'))
    return issue_session_token(uid, user.get('email', ''), user.get('role', ''))


def logout(token: str | None) -> None:
    clear_session_token(token)


def find_teacher(store: DocumentStore) -> dict | None:
    teachers = store.query(Collection.USERS.value, [('role', '==', Role.TEACHER.value)]).get()
    return teachers[0] if teachers else None
