from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from maharat.controllers.base import DashboardController
from maharat.controllers.student_dashboard import StudentDashboard
from maharat.controllers.teacher_dashboard import TeacherDashboard
from maharat.core.router_guard import SESSION_COOKIE
from maharat.errors import MassSendPartialFailure, PlatformError
from maharat.services.identity_service import IdentityWatcher
from maharat.store import DocumentStore, get_store


router = APIRouter(tags=['Dashboard'])
logger = logging.getLogger(__name__)

_CONTROLLERS: dict[str, type[DashboardController]] = {
    'student': StudentDashboard,
    'teacher': TeacherDashboard,
}


async def _dispatch(controller: DashboardController, action: str, data: dict):
    if isinstance(controller, StudentDashboard):
        if action == 'mark_lesson_complete':
            return await controller.mark_lesson_complete(str(data.get('lesson_id') or ''))
        if action == 'send_message':
            return await controller.send_to_teacher(str(data.get('text') or ''))
        if action == 'open_chat':
            result = await controller.open_chat()
            return {**result, 'messages': controller.chat_messages()}
        if action == 'open_resource':
            return await controller.open_resource(
                str(data.get('kind') or ''),
                lesson_id=data.get('lesson_id'),
                link_id=data.get('link_id'),
            )
    if isinstance(controller, TeacherDashboard):
        if action == 'send_message':
            return await controller.send_message(str(data.get('student_id') or ''), str(data.get('text') or ''))
        if action == 'send_mass':
            return await controller.send_mass(str(data.get('text') or ''), list(data.get('student_ids') or []))
        if action == 'open_chat':
            student_id = str(data.get('student_id') or '')
            result = await controller.open_chat(student_id)
            return {**result, 'messages': controller.chat_messages(student_id)}
        if action == 'delete_messages':
            return await controller.delete_messages(list(data.get('message_ids') or []))
        if action == 'save_settings':
            return await controller.save_settings(dict(data.get('settings') or {}))
        if action == 'refresh':
            await controller.refresh_reference_data()
            return {'ok': True}
    raise ValueError(f'Unknown action: {action}')


class _DashboardSession:
    def __init__(self, websocket: WebSocket, controller: DashboardController, watcher: IdentityWatcher) -> None:
        self.websocket = websocket
        self.controller = controller
        self.watcher = watcher
        self._send_lock = asyncio.Lock()

    async def send(self, payload: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(payload)

    async def push_views(self) -> None:
        async for view in self.controller.updates():
            await self.send({'type': 'view', 'data': view})

    async def handle_actions(self) -> None:
        while True:
            try:
                message = await self.websocket.receive_json()
            except WebSocketDisconnect:
                return
            action = str(message.get('action') or '')
            if action == 'logout':
                self.watcher.sign_out()
                return
            try:
                result = await _dispatch(self.controller, action, message)
            except MassSendPartialFailure as exc:
                await self.send({'type': 'action_error', 'action': action, 'detail': str(exc), 'failed_ids': exc.failed_ids})
            except (PlatformError, ValueError) as exc:
                await self.send({'type': 'action_error', 'action': action, 'detail': str(exc)})
            else:
                await self.send({'type': 'action_result', 'action': action, 'result': result})


@router.websocket('/ws/dashboard')
async def dashboard_socket(websocket: WebSocket, token: str | None = None, store: DocumentStore = Depends(get_store)):
    await websocket.accept()
    watcher = IdentityWatcher(token or websocket.cookies.get(SESSION_COOKIE))
    signed_out = asyncio.Event()

    def on_identity(identity: dict | None) -> None:
        if identity is None:
            signed_out.set()

    unsubscribe = watcher.on_identity_change(on_identity)
    try:
        identity = watcher.identity
        controller_cls = _CONTROLLERS.get(identity['role']) if identity else None
        if controller_cls is None:
            await websocket.send_json({'type': 'error', 'detail': 'Unauthorized'})
            await websocket.close(code=4401)
            return

        try:
            async with controller_cls(store, identity['user_id']) as controller:
                session = _DashboardSession(websocket, controller, watcher)
                tasks = {
                    asyncio.create_task(session.push_views()),
                    asyncio.create_task(session.handle_actions()),
                    asyncio.create_task(signed_out.wait()),
                }
                done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                for task in done:
                    if not task.cancelled() and task.exception() is not None:
                        logger.warning('dashboard_socket_task_failed user=%s error=%s', identity['user_id'], task.exception())
        except PlatformError as exc:
            logger.warning('dashboard_socket_mount_failed user=%s error=%s', identity['user_id'], exc)
            await websocket.send_json({'type': 'error', 'detail': str(exc)})
            await websocket.close(code=4403)
            return

        if signed_out.is_set():
            await websocket.send_json({'type': 'signed_out'})
            await websocket.close(code=1000)
    finally:
        unsubscribe()
