from fastapi import APIRouter, Depends, WebSocket

from app.database.connection import mongo_db_dependency
from app.schemas.message import MessageSend, SendResult, StartConversationResult, ThreadSnapshot, UnreadState
from app.services.chat_service import ChatService
from app.services.session_service import UserSession
from app.utils.dependencies import authenticate_websocket, feed_dependency, get_chat_service, get_current_session
from app.utils.websocket_manager import snapshot_sender, stream_view
from app.views.thread import ThreadView
from app.views.unread import UnreadTracker


router = APIRouter(prefix="/messages", tags=["chat"])


@router.websocket("/ws/unread")
async def unread_socket(websocket: WebSocket, service: ChatService = Depends(get_chat_service), bus=Depends(feed_dependency), db=Depends(mongo_db_dependency)):
    session = await authenticate_websocket(websocket, db)
    if session is None:
        return
    await websocket.accept()
    await stream_view(websocket, UnreadTracker(session, service, bus, on_change=snapshot_sender(websocket)))


@router.websocket("/ws/{conversation_id}")
async def thread_socket(websocket: WebSocket, conversation_id: str, service: ChatService = Depends(get_chat_service), bus=Depends(feed_dependency), db=Depends(mongo_db_dependency)):
    session = await authenticate_websocket(websocket, db)
    if session is None:
        return
    await websocket.accept()
    view = ThreadView(session, conversation_id, service, bus, on_change=snapshot_sender(websocket))

    async def handle(msg: dict) -> None:
        # {"type": "send", "body": str}
        if msg.get("type") == "send":
            await view.send(str(msg.get("body") or ""))

    await stream_view(websocket, view, on_message=handle)


@router.get("/unread", response_model=UnreadState)
async def get_unread(current_user: UserSession = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    return await service.get_unread_state(current_user.user_id)


@router.post("/start/{peer_id}", response_model=StartConversationResult)
async def start_conversation(peer_id: str, current_user: UserSession = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    return await service.start_conversation(current_user.user_id, peer_id)


@router.get("/{conversation_id}", response_model=ThreadSnapshot)
async def open_thread(conversation_id: str, current_user: UserSession = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    return await service.read_thread(conversation_id, current_user.user_id)


@router.post("/{conversation_id}", response_model=SendResult)
async def send_message(conversation_id: str, payload: MessageSend, current_user: UserSession = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    message = await service.reply(conversation_id, current_user.user_id, payload.body)
    return SendResult(sent=message is not None, message=message)


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: UserSession = Depends(get_current_session), service: ChatService = Depends(get_chat_service)):
    count = await service.mark_conversation_read(conversation_id, current_user.user_id)
    return {"updated": count}
