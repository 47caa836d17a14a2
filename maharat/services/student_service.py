from __future__ import annotations

import logging

from maharat.errors import NotFound, ValidationError
from maharat.models import Collection, Role
from maharat.services.identity_service import IdentityService
from maharat.services.registration_service import register_student
from maharat.store import DocumentStore


logger = logging.getLogger(__name__)


def list_students(store: DocumentStore) -> list[dict]:
    return store.query(Collection.USERS.value, [('role', '==', Role.STUDENT.value)]).get()


def get_student(store: DocumentStore, student_id: str) -> dict:
    user = store.find_document(Collection.USERS.value, student_id)
    if not user or user.get('role') != Role.STUDENT.value:
        raise NotFound('Student not found')
    return user


def add_student(store: DocumentStore, identity: IdentityService, name: str, email: str, password: str) -> dict:
    if not (name or '').strip() or not (email or '').strip() or not password:
        raise ValidationError('Name, email and password are required')
    return register_student(store, identity, email, password, name)


def update_student(store: DocumentStore, identity: IdentityService, student_id: str, name: str, email: str) -> dict:
    clean_name = (name or '').strip()
    if not clean_name or not (email or '').strip():
        raise ValidationError('Name and email are required')
    get_student(store, student_id)
    clean_email = identity.change_email(student_id, email)
    store.update_fields(Collection.USERS.value, student_id, {'name': clean_name, 'email': clean_email})
    logger.info('student_updated uid=%s', student_id)
    return get_student(store, student_id)


def delete_student(store: DocumentStore, identity: IdentityService, student_id: str) -> None:
    get_student(store, student_id)
    store.delete_document(Collection.USERS.value, student_id)
    store.delete_document(Collection.STUDENT_PROGRESS.value, student_id)
    identity.delete_account(student_id)
    logger.info('student_deleted uid=%s', student_id)
