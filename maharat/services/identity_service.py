"""Email/password identities and signed session tokens.

Accounts live in the ``identity_accounts`` table, separate from the user
profile documents. Sessions are HS256 tokens signed with ``AUTH_SECRET``;
signing out adds the token to an in-process revocation set.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
import uuid
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from maharat.config import settings
from maharat.core.time_provider import TimeProvider, default_time_provider
from maharat.errors import EmailInUse, InvalidCredentials, NotFound, StoreUnavailable, ValidationError
from maharat.models import IdentityAccount


logger = logging.getLogger(__name__)

PASSWORD_SCHEME = 'pbkdf2_sha256'
PASSWORD_ITERATIONS = 120000

_revoked_tokens: set[str] = set()
_revoked_lock = threading.Lock()


def normalize_email(email: str) -> str:
    clean = (email or '').strip().lower()
    local, _, domain = clean.partition('@')
    if not local or '.' not in domain or domain.startswith('.') or domain.endswith('.'):
        raise ValidationError('A valid email address is required')
    return clean


def _mask_email(email: str) -> str:
    local, _, domain = (email or '').partition('@')
    if not domain:
        return '***'
    return f'{local[:1]}***@{domain}'


def _derive_key(password: str, salt: str, iterations: int) -> str:
    return hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()


def hash_password(password: str) -> str:
    if len(password or '') < settings.auth_min_password_length:
        raise ValidationError(f'Password must be at least {settings.auth_min_password_length} characters')
    salt = secrets.token_hex(16)
    return '$'.join((PASSWORD_SCHEME, str(PASSWORD_ITERATIONS), salt, _derive_key(password, salt, PASSWORD_ITERATIONS)))


def verify_password(password: str, stored: str) -> bool:
    parts = (stored or '').split('$', 3)
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME or not parts[1].isdigit():
        return False
    _, iterations, salt, digest = parts
    return hmac.compare_digest(_derive_key(password, salt, int(iterations)), digest)


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + '=' * (-len(text) % 4))


def _json_segment(obj: dict) -> str:
    return _b64(json.dumps(obj, separators=(',', ':')).encode('utf-8'))


_TOKEN_HEADER = _json_segment({'alg': 'HS256', 'typ': 'JWT'})


def _signature(body: str) -> bytes:
    return hmac.new(settings.auth_secret.encode('utf-8'), body.encode('ascii'), hashlib.sha256).digest()


def _encode_token(claims: dict) -> str:
    body = f'{_TOKEN_HEADER}.{_json_segment(claims)}'
    return f'{body}.{_b64(_signature(body))}'


def _decode_token(token: str) -> dict | None:
    body, _, signature = token.rpartition('.')
    if body.count('.') != 1:
        return None
    try:
        if not hmac.compare_digest(_unb64(signature), _signature(body)):
            return None
        claims = json.loads(_unb64(body.split('.', 1)[1]))
    except ValueError:
        return None
    return claims if isinstance(claims, dict) else None


def issue_session_token(
    uid: str,
    email: str,
    role: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    issued_at = time_provider.utc_now()
    expires_at = issued_at + timedelta(hours=settings.auth_session_expiry_hours)
    claims = {
        'sub': uid,
        'email': email,
        'role': role,
        'iat': int(issued_at.timestamp()),
        'exp': int(expires_at.timestamp()),
        'jti': uuid.uuid4().hex,
    }
    return {
        'token': _encode_token(claims),
        'user_id': uid,
        'email': email,
        'role': role,
        'expires_at': expires_at.isoformat(),
    }


def validate_session_token(token: str | None, *, time_provider: TimeProvider = default_time_provider) -> dict | None:
    """Return the session identity for ``token``, or None if it is unusable."""
    if not token:
        return None
    with _revoked_lock:
        if token in _revoked_tokens:
            return None
    claims = _decode_token(token)
    if not claims or not claims.get('sub') or not claims.get('role'):
        return None
    if int(claims.get('exp') or 0) < int(time_provider.utc_now().timestamp()):
        return None
    return {
        'user_id': str(claims['sub']),
        'email': str(claims.get('email') or ''),
        'role': str(claims['role']),
    }


def clear_session_token(token: str | None) -> None:
    if token:
        with _revoked_lock:
            _revoked_tokens.add(token)


class IdentityService:
    def __init__(self, session_factory: sessionmaker, *, time_provider: TimeProvider = default_time_provider) -> None:
        self._session_factory = session_factory
        self._time_provider = time_provider

    def _account(self, db: Session, email: str) -> IdentityAccount | None:
        return db.query(IdentityAccount).filter(IdentityAccount.email == email).first()

    def create_account(self, email: str, password: str) -> str:
        clean_email = normalize_email(email)
        password_hash = hash_password(password)
        db: Session = self._session_factory()
        try:
            if self._account(db, clean_email):
                raise EmailInUse('This email address is already in use')
            account = IdentityAccount(uid=uuid.uuid4().hex, email=clean_email, password_hash=password_hash)
            db.add(account)
            db.commit()
            uid = account.uid
        except IntegrityError as exc:
            db.rollback()
            raise EmailInUse('This email address is already in use') from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('identity_create_failed email=%s', _mask_email(clean_email))
            raise StoreUnavailable('The identity service is unavailable') from exc
        finally:
            db.close()
        logger.info('identity_account_created uid=%s email=%s', uid, _mask_email(clean_email))
        return uid

    def authenticate(self, email: str, password: str) -> str:
        try:
            clean_email = normalize_email(email)
        except ValidationError as exc:
            raise InvalidCredentials('Invalid email or password') from exc
        db: Session = self._session_factory()
        try:
            account = self._account(db, clean_email)
            if not account or not verify_password(password, account.password_hash):
                logger.warning('identity_login_failed email=%s', _mask_email(clean_email))
                raise InvalidCredentials('Invalid email or password')
            account.last_login_at = self._time_provider.utc_now().replace(tzinfo=None)
            db.commit()
            return account.uid
        finally:
            db.close()

    def change_email(self, uid: str, email: str) -> str:
        clean_email = normalize_email(email)
        db: Session = self._session_factory()
        try:
            account = db.query(IdentityAccount).filter(IdentityAccount.uid == uid).first()
            if not account:
                raise NotFound('Account not found')
            if account.email == clean_email:
                return clean_email
            if self._account(db, clean_email):
                raise EmailInUse('This email address is already in use')
            account.email = clean_email
            db.commit()
            return clean_email
        finally:
            db.close()

    def delete_account(self, uid: str) -> bool:
        db: Session = self._session_factory()
        try:
            deleted = db.query(IdentityAccount).filter(IdentityAccount.uid == uid).delete()
            db.commit()
        finally:
            db.close()
        if deleted:
            logger.info('identity_account_deleted uid=%s', uid)
        return bool(deleted)


IdentityListener = Callable[[dict | None], None]


class IdentityWatcher:
    """Tracks the signed-in identity of one client and notifies listeners on change."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token
        self._identity = validate_session_token(token)
        self._listeners: list[IdentityListener] = []
        self._lock = threading.RLock()

    @property
    def identity(self) -> dict | None:
        return self._identity

    def on_identity_change(self, callback: IdentityListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)
        callback(self._identity)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(self._identity)

    def sign_in(self, token: str) -> dict | None:
        self._token = token
        self._identity = validate_session_token(token)
        self._notify()
        return self._identity

    def sign_out(self) -> None:
        clear_session_token(self._token)
        self._token = None
        self._identity = None
        self._notify()


_identity_service: IdentityService | None = None


def set_identity_service(service: IdentityService) -> None:
    global _identity_service
    _identity_service = service


def get_identity_service() -> IdentityService:
    if _identity_service is None:
        from maharat.db import SessionLocal

        set_identity_service(IdentityService(SessionLocal))
    return _identity_service
