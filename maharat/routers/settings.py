from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from maharat.core.router_guard import http_error, require_auth_user, require_teacher
from maharat.errors import PlatformError
from maharat.services import resource_service, settings_service
from maharat.store import DocumentStore, get_store


router = APIRouter(prefix='/api/settings', tags=['Settings'])

_LINK_LISTS = {
    'final-exams': (settings_service.FINAL_EXAMS_FIELD, resource_service.ResourceKind.EXAM),
    'meeting-rooms': (settings_service.MEETING_ROOMS_FIELD, resource_service.ResourceKind.MEETING),
}


class SettingsPayload(BaseModel):
    site_name: str | None = None
    teacher_ai_tools_url: str | None = None
    student_ai_tools_url: str | None = None


class LinkPayload(BaseModel):
    name: str = ''
    url: str = ''


def _link_list(list_name: str) -> tuple[str, resource_service.ResourceKind]:
    entry = _LINK_LISTS.get(list_name)
    if entry is None:
        raise HTTPException(status_code=404, detail='Unknown link list')
    return entry


@router.get('')
def settings_get(request: Request, store: DocumentStore = Depends(get_store)):
    require_auth_user(request)
    try:
        return settings_service.get_platform_settings(store)
    except PlatformError as exc:
        raise http_error(exc) from exc


@router.put('')
def settings_save(payload: SettingsPayload, request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    changes = {
        'siteName': payload.site_name,
        'teacherAiToolsUrl': payload.teacher_ai_tools_url,
        'studentAiToolsUrl': payload.student_ai_tools_url,
    }
    try:
        saved = settings_service.save_platform_settings(store, changes)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'settings': saved}


@router.get('/{list_name}')
def links_list(list_name: str, request: Request, store: DocumentStore = Depends(get_store)):
    require_auth_user(request)
    field, _ = _link_list(list_name)
    try:
        return {'items': settings_service.list_links(store, field)}
    except PlatformError as exc:
        raise http_error(exc) from exc


@router.post('/{list_name}', status_code=201)
def links_add(list_name: str, payload: LinkPayload, request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    field, _ = _link_list(list_name)
    try:
        link = settings_service.add_link(store, field, payload.name, payload.url)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'link': link}


@router.put('/{list_name}/{link_id}')
def links_update(
    list_name: str,
    link_id: str,
    payload: LinkPayload,
    request: Request,
    store: DocumentStore = Depends(get_store),
):
    require_teacher(request)
    field, _ = _link_list(list_name)
    try:
        link = settings_service.update_link(store, field, link_id, payload.name, payload.url)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True, 'link': link}


@router.delete('/{list_name}/{link_id}')
def links_delete(list_name: str, link_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    require_teacher(request)
    field, _ = _link_list(list_name)
    try:
        settings_service.delete_link(store, field, link_id)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return {'ok': True}


@router.get('/{list_name}/{link_id}/resource')
def links_resource(list_name: str, link_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    require_auth_user(request)
    _, kind = _link_list(list_name)
    try:
        resource = resource_service.settings_resource(store, kind, link_id)
    except PlatformError as exc:
        raise http_error(exc) from exc
    return resource.to_dict()
