from typing import List

from fastapi import APIRouter, Depends, WebSocket

from app.database.connection import mongo_db_dependency
from app.schemas.notification import Notification
from app.services.notification_service import NotificationService
from app.services.session_service import UserSession
from app.utils.dependencies import authenticate_websocket, feed_dependency, get_current_session, get_notification_service
from app.utils.websocket_manager import snapshot_sender, stream_view
from app.views.notifications import NotificationFeed


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[Notification])
async def list_notifications(current_user: UserSession = Depends(get_current_session), service: NotificationService = Depends(get_notification_service)):
    return await service.list_notifications(current_user.user_id)


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, current_user: UserSession = Depends(get_current_session), service: NotificationService = Depends(get_notification_service)):
    await service.delete_notification(notification_id, current_user.user_id)
    return {"deleted": True}


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, service: NotificationService = Depends(get_notification_service), bus=Depends(feed_dependency), db=Depends(mongo_db_dependency)):
    session = await authenticate_websocket(websocket, db)
    if session is None:
        return
    await websocket.accept()
    await stream_view(websocket, NotificationFeed(session, service, bus, on_change=snapshot_sender(websocket)))
