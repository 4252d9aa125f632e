import logging
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from auction_engine.api.deps import get_db, get_runtime
from auction_engine.auth import get_current_user_id, verify_token
from auction_engine.db import crud
from auction_engine.schemas.notification import (
    NotificationResponse, UnreadCountResponse, DeviceTokenRequest, MarkAllReadResponse,
)
from auction_engine.services.runtime import AuctionRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
ws_router = APIRouter(tags=["live"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await crud.get_notifications(db, user_id, unread_only=unread_only)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    return UnreadCountResponse(count=await crud.count_unread(db, user_id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    notification = await crud.mark_notification_read(db, user_id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    # Other open tabs of the same user drop their unread marker
    if runtime.connections.is_connected(user_id):
        try:
            await runtime.connections.send(
                user_id, {"type": "notification_read", "notification_id": notification_id}
            )
        except ConnectionError as e:
            logger.warning(f"Read-status broadcast failed: {e}")
    return notification


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    updated = await crud.mark_all_notifications_read(db, user_id)
    logger.info(f"Marked {updated} notifications read for user {user_id}")
    return MarkAllReadResponse(updated=updated)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not await crud.delete_notification(db, user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"deleted": True}


@router.post("/device-tokens", status_code=201)
async def register_device_token(
    request: DeviceTokenRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await crud.add_device_token(db, user_id, request.token)
    return {"registered": True}


@ws_router.websocket("/ws/notifications")
async def live_notifications(websocket: WebSocket, token: str = ""):
    user_id = verify_token(token) if token else None
    if user_id is None:
        await websocket.close(code=1008, reason="Invalid token")
        return

    runtime: AuctionRuntime = websocket.app.state.runtime
    await websocket.accept()
    runtime.connections.add(user_id, websocket)
    try:
        async with runtime.session_factory() as db:
            unread = await crud.count_unread(db, user_id)
        await websocket.send_json({"type": "connection_confirmed", "message": "WebSocket connection established"})
        await websocket.send_json({"type": "unread_count", "count": unread})

        while True:
            # Clients only listen; anything they send is treated as a keepalive
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"[Live] User {user_id} disconnected")
    finally:
        runtime.connections.remove(user_id, websocket)
