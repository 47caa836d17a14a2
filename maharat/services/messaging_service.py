from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from maharat.config import settings
from maharat.errors import MassSendPartialFailure, NotFound, PlatformError, ValidationError
from maharat.models import Collection
from maharat.store import SERVER_TIMESTAMP, BatchOperation, DocumentStore, Query


logger = logging.getLogger(__name__)


def inbox_query(store: DocumentStore, user_id: str) -> Query:
    return store.query(
        Collection.MESSAGES.value,
        [('participants', 'array-contains', user_id)],
        [('timestamp', 'asc')],
    )


def load_inbox(store: DocumentStore, user_id: str) -> list[dict]:
    return inbox_query(store, user_id).get()


def _clean_text(text: str) -> str:
    clean = (text or '').strip()
    if not clean:
        raise ValidationError('Message text must not be empty')
    return clean


def _message_document(sender_id: str, receiver_id: str, text: str, *, mass: bool) -> dict:
    doc = {
        'participants': sorted([sender_id, receiver_id]),
        'senderId': sender_id,
        'receiverId': receiver_id,
        'message': text,
        'timestamp': SERVER_TIMESTAMP,
        'readBy': {sender_id: True, receiver_id: False},
    }
    if mass:
        doc['isMassMessage'] = True
    return doc


def send_message(store: DocumentStore, sender_id: str, receiver_id: str, text: str, *, mass: bool = False) -> str:
    clean = _clean_text(text)
    if not receiver_id or receiver_id == sender_id:
        raise ValidationError('Choose someone else to message')
    message_id = store.add_document(
        Collection.MESSAGES.value,
        _message_document(sender_id, receiver_id, clean, mass=mass),
    )
    logger.info('message_sent message_id=%s sender=%s receiver=%s mass=%s', message_id, sender_id, receiver_id, mass)
    return message_id


async def send_mass(store: DocumentStore, sender_id: str, receiver_ids: Iterable[str], text: str) -> dict[str, str]:
    """Send one independent message per receiver.

    Writes run concurrently and are awaited together. A failed receiver never
    blocks the others; if any fail, MassSendPartialFailure carries both the
    persisted message ids and the failures.
    """
    clean = _clean_text(text)
    receivers = list(dict.fromkeys(rid for rid in receiver_ids if rid))
    if not receivers:
        raise ValidationError('Select at least one student')

    results = await asyncio.gather(
        *(asyncio.to_thread(send_message, store, sender_id, rid, clean, mass=True) for rid in receivers),
        return_exceptions=True,
    )
    sent: dict[str, str] = {}
    failed: dict[str, str] = {}
    for receiver_id, result in zip(receivers, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning('mass_send_failed sender=%s receiver=%s error=%s', sender_id, receiver_id, result)
            failed[receiver_id] = str(result)
        else:
            sent[receiver_id] = result
    logger.info('mass_send_complete sender=%s sent=%s failed=%s', sender_id, len(sent), len(failed))
    if failed:
        raise MassSendPartialFailure(sent, failed)
    return sent


def _is_unread_for(message: dict, user_id: str) -> bool:
    return message.get('receiverId') == user_id and not (message.get('readBy') or {}).get(user_id)


def mark_read(store: DocumentStore, user_id: str, message_ids: Iterable[str]) -> dict:
    marked: list[str] = []
    failed: list[str] = []
    for message_id in message_ids:
        try:
            message = store.find_document(Collection.MESSAGES.value, message_id)
            if not message or not _is_unread_for(message, user_id):
                continue
            store.update_fields(Collection.MESSAGES.value, message_id, {f'readBy.{user_id}': True})
            marked.append(message_id)
        except PlatformError as exc:
            logger.warning('mark_read_failed message_id=%s user=%s error=%s', message_id, user_id, exc)
            failed.append(message_id)
    return {'marked': marked, 'failed': failed}


def mark_conversation_read(store: DocumentStore, user_id: str, other_id: str) -> dict:
    unread_ids = [
        message['id']
        for message in load_inbox(store, user_id)
        if message.get('senderId') == other_id and _is_unread_for(message, user_id)
    ]
    return mark_read(store, user_id, unread_ids)


def delete_selected(store: DocumentStore, message_ids: Iterable[str], *, user_id: str | None = None) -> int:
    ids = list(dict.fromkeys(message_ids))
    if not ids:
        raise ValidationError('Select at least one message')
    if user_id is not None:
        for message_id in ids:
            message = store.find_document(Collection.MESSAGES.value, message_id)
            if not message or user_id not in (message.get('participants') or []):
                raise NotFound('Message not found')
    store.atomic_batch(BatchOperation.delete(Collection.MESSAGES.value, message_id) for message_id in ids)
    logger.info('messages_deleted count=%s user=%s', len(ids), user_id)
    return len(ids)


def unread_count(user_id: str, messages: Iterable[dict]) -> int:
    return sum(1 for message in messages if _is_unread_for(message, user_id))


def conversation(messages: Iterable[dict], user_id: str, other_id: str) -> list[dict]:
    return [
        message
        for message in messages
        if other_id in (message.get('participants') or []) and user_id in (message.get('participants') or [])
    ]


def conversation_threads(messages: Iterable[dict], user_id: str) -> list[dict]:
    threads: dict[str, dict] = {}
    for message in messages:
        participants = message.get('participants') or []
        others = [pid for pid in participants if pid != user_id]
        if not others:
            continue
        other_id = others[0]
        thread = threads.setdefault(
            other_id,
            {'participantId': other_id, 'messageCount': 0, 'unreadCount': 0, 'lastMessage': None},
        )
        thread['messageCount'] += 1
        if _is_unread_for(message, user_id):
            thread['unreadCount'] += 1
        thread['lastMessage'] = message
    return sorted(
        threads.values(),
        key=lambda row: (row['lastMessage'] or {}).get('timestamp') or '',
        reverse=True,
    )


def notification_feed(
    messages: Iterable[dict],
    user_id: str,
    *,
    unread_only: bool,
    limit: int | None = None,
) -> list[dict]:
    limit = settings.notification_feed_limit if limit is None else limit
    if unread_only:
        rows = [message for message in messages if _is_unread_for(message, user_id)]
    else:
        rows = [message for message in messages if user_id in (message.get('participants') or [])]
    rows.reverse()
    return rows[:limit]
