from __future__ import annotations

import asyncio
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ebm_sync.auth import Principal, get_current_principal, get_websocket_principal
from ebm_sync.config import settings
from ebm_sync.db import get_db
from ebm_sync.dependencies import get_notification_hub
from ebm_sync.realtime import NotificationHub
from ebm_sync.services.notification_service import (
    count_unread,
    delete_notification,
    list_user_notifications,
    mark_all_as_read,
    mark_as_read,
    serialize_notification,
)

router = APIRouter(tags=['notifications'])


class RelayEvent(BaseModel):
    room: str
    event: str
    payload: dict


@router.get('/notifications')
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    rows = list_user_notifications(db, principal.id, limit=limit, offset=offset)
    return {'success': True, 'data': [serialize_notification(row) for row in rows]}


@router.get('/notifications/unread-count')
def unread_count(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {'success': True, 'count': count_unread(db, principal.id)}


@router.post('/notifications/read-all')
def read_all(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    updated = mark_all_as_read(db, principal.id)
    db.commit()
    return {'success': True, 'updated': updated}


@router.post('/notifications/{notification_id}/read')
def read_one(
    notification_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if not mark_as_read(db, notification_id=notification_id, user_id=principal.id):
        raise HTTPException(status_code=404, detail='Notification not found')
    db.commit()
    return {'success': True}


@router.delete('/notifications/{notification_id}')
def remove(
    notification_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if not delete_notification(db, notification_id=notification_id, user_id=principal.id):
        raise HTTPException(status_code=404, detail='Notification not found')
    db.commit()
    return {'success': True}


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket('/ws/notifications')
async def notifications_socket(
    websocket: WebSocket,
    principal: Principal | None = Depends(get_websocket_principal),
    hub: NotificationHub | None = Depends(get_notification_hub),
):
    if principal is None or hub is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue = hub.subscribe(principal.id)
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            next_message = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({next_message, disconnected}, return_when=asyncio.FIRST_COMPLETED)
            if next_message not in done:
                next_message.cancel()
                break
            await websocket.send_json(next_message.result())
    finally:
        disconnected.cancel()
        hub.unsubscribe(principal.id, queue)


@router.post('/internal/realtime/emit', include_in_schema=False)
def relay_emit(
    body: RelayEvent,
    x_relay_token: str | None = Header(default=None),
    hub: NotificationHub | None = Depends(get_notification_hub),
):
    expected = settings.realtime_relay_token
    if not expected or not x_relay_token or not secrets.compare_digest(x_relay_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    if hub is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail='Realtime hub not available')
    return {'success': True, 'delivered': hub.emit(body.room, body.event, body.payload)}
