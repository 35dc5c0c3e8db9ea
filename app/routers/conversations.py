from typing import List

from fastapi import APIRouter, Depends, WebSocket

from app.database.connection import mongo_db_dependency
from app.schemas.message import ConversationSummary
from app.services.chat_service import ChatService
from app.services.session_service import UserSession
from app.utils.dependencies import authenticate_websocket, feed_dependency, get_chat_service, get_current_session
from app.utils.websocket_manager import snapshot_sender, stream_view
from app.views.inbox import InboxView


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(current_user: UserSession = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    return await service.list_conversations(current_user.user_id)


@router.websocket("/ws")
async def inbox_socket(websocket: WebSocket, service: ChatService = Depends(get_chat_service), bus=Depends(feed_dependency), db=Depends(mongo_db_dependency)):
    session = await authenticate_websocket(websocket, db)
    if session is None:
        return
    await websocket.accept()
    await stream_view(websocket, InboxView(session, service, bus, on_change=snapshot_sender(websocket)))
