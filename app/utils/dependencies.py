import logging
from typing import Optional

from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.errors import NotAuthenticatedError
from app.database.connection import mongo_db_dependency
from app.repositories.message_repository import MessageRepository
from app.repositories.notification_repository import NotificationRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.profile_repository import ProfileRepository
from app.services.chat_service import ChatService
from app.services.notification_service import NotificationService
from app.services.session_service import SessionManager, UserSession
from app.utils.realtime_bus import InMemoryBus, get_bus


logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def feed_dependency() -> InMemoryBus:
    return await get_bus()


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_chat_service(db=Depends(mongo_db_dependency), bus: InMemoryBus = Depends(feed_dependency)) -> ChatService:
    return ChatService(MessageRepository(db, bus), ProfileRepository(db))


def get_notification_service(
    db=Depends(mongo_db_dependency), bus: InMemoryBus = Depends(feed_dependency)
) -> NotificationService:
    return NotificationService(NotificationRepository(db, bus), ProductRepository(db), ProfileRepository(db))


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionManager = Depends(get_session_manager),
    db=Depends(mongo_db_dependency),
) -> UserSession:
    if credentials is None:
        raise NotAuthenticatedError()
    return await sessions.resolve(credentials.credentials, ProfileRepository(db))


async def authenticate_websocket(websocket: WebSocket, db) -> Optional[UserSession]:
    """Resolve the session from ``?token=``; closes the socket with 4401 on failure."""
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return None
    try:
        return await websocket.app.state.sessions.resolve(token, ProfileRepository(db))
    except NotAuthenticatedError:
        await websocket.close(code=4401)
        return None
