from __future__ import annotations

import logging
import uuid

from maharat.config import settings
from maharat.errors import NotFound, ValidationError
from maharat.models import Collection
from maharat.store import DocumentStore


logger = logging.getLogger(__name__)

SETTINGS_DOC_ID = 'main'
FINAL_EXAMS_FIELD = 'finalExamsList'
MEETING_ROOMS_FIELD = 'meetingRoomsList'
LINK_LIST_FIELDS = (FINAL_EXAMS_FIELD, MEETING_ROOMS_FIELD)
EDITABLE_FIELDS = ('siteName', 'teacherAiToolsUrl', 'studentAiToolsUrl')


def default_settings() -> dict:
    return {
        'siteName': settings.default_site_name,
        'teacherAiToolsUrl': settings.default_ai_tools_url,
        'studentAiToolsUrl': settings.default_ai_tools_url,
        FINAL_EXAMS_FIELD: [],
        MEETING_ROOMS_FIELD: [],
    }


def with_defaults(doc: dict | None) -> dict:
    """Fill any missing settings key with its default, without writing."""
    merged = default_settings()
    for key, value in (doc or {}).items():
        if value not in (None, ''):
            merged[key] = value
    merged['id'] = SETTINGS_DOC_ID
    return merged


def get_platform_settings(store: DocumentStore) -> dict:
    doc = store.find_document(Collection.PLATFORM_SETTINGS.value, SETTINGS_DOC_ID)
    if doc is None:
        store.set_document(Collection.PLATFORM_SETTINGS.value, SETTINGS_DOC_ID, default_settings())
        logger.info('platform_settings_created doc_id=%s', SETTINGS_DOC_ID)
    return with_defaults(doc)


def save_platform_settings(store: DocumentStore, changes: dict) -> dict:
    fields = {key: (value or '').strip() for key, value in changes.items() if key in EDITABLE_FIELDS and value is not None}
    if 'siteName' in fields and not fields['siteName']:
        raise ValidationError('Site name is required')
    if not fields:
        raise ValidationError('No settings to save')
    store.set_document(Collection.PLATFORM_SETTINGS.value, SETTINGS_DOC_ID, fields, merge=True)
    logger.info('platform_settings_saved fields=%s', ','.join(sorted(fields)))
    return get_platform_settings(store)


def _check_list_field(field: str) -> None:
    if field not in LINK_LIST_FIELDS:
        raise ValueError(f'Unknown link list: {field}')


def _clean_link(name: str, url: str) -> tuple[str, str]:
    clean_name = (name or '').strip()
    clean_url = (url or '').strip()
    if not clean_name or not clean_url:
        raise ValidationError('Name and link are required')
    return clean_name, clean_url


def list_links(store: DocumentStore, field: str) -> list[dict]:
    _check_list_field(field)
    return list(get_platform_settings(store).get(field) or [])


def _save_links(store: DocumentStore, field: str, links: list[dict]) -> None:
    store.set_document(Collection.PLATFORM_SETTINGS.value, SETTINGS_DOC_ID, {field: links}, merge=True)


def add_link(store: DocumentStore, field: str, name: str, url: str) -> dict:
    _check_list_field(field)
    clean_name, clean_url = _clean_link(name, url)
    links = list_links(store, field)
    link = {'id': uuid.uuid4().hex, 'name': clean_name, 'url': clean_url}
    links.append(link)
    _save_links(store, field, links)
    logger.info('settings_link_added list=%s link_id=%s', field, link['id'])
    return link


def update_link(store: DocumentStore, field: str, link_id: str, name: str, url: str) -> dict:
    _check_list_field(field)
    clean_name, clean_url = _clean_link(name, url)
    links = list_links(store, field)
    for link in links:
        if str(link.get('id')) == link_id:
            link.update({'name': clean_name, 'url': clean_url})
            _save_links(store, field, links)
            logger.info('settings_link_updated list=%s link_id=%s', field, link_id)
            return link
    raise NotFound('Link not found')


def delete_link(store: DocumentStore, field: str, link_id: str) -> None:
    _check_list_field(field)
    links = list_links(store, field)
    remaining = [link for link in links if str(link.get('id')) != link_id]
    if len(remaining) == len(links):
        raise NotFound('Link not found')
    _save_links(store, field, remaining)
    logger.info('settings_link_deleted list=%s link_id=%s', field, link_id)
