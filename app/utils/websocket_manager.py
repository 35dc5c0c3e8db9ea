import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from app.core.errors import AppError, NotAuthenticatedError, NotFoundError, UnauthorizedError
from app.views.base import LiveView


logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]

CLOSE_SESSION_ENDED = 4401
CLOSE_UNAUTHORIZED = 4403
CLOSE_NOT_FOUND = 4404


def snapshot_sender(websocket: WebSocket) -> Callable[[LiveView], Awaitable[None]]:
    async def _send(view: LiveView) -> None:
        await websocket.send_json(view.snapshot())
    return _send


async def _receive_loop(websocket: WebSocket, on_message: Optional[MessageHandler]) -> None:
    while True:
        data = await websocket.receive_text()
        try:
            msg = json.loads(data)
        except ValueError:
            await websocket.send_json({"type": "error", "detail": "Invalid message payload"})
            continue
        if on_message is None or not isinstance(msg, dict):
            continue
        try:
            await on_message(msg)
        except (AppError, ValueError) as exc:
            await websocket.send_json({"type": "error", "detail": str(exc)})


async def stream_view(websocket: WebSocket, view: LiveView, on_message: Optional[MessageHandler] = None) -> None:
    """Serve one live view over an accepted WebSocket until either side goes away.

    The view is opened for the lifetime of the socket and closed on every exit
    path, which releases its change feed subscriptions.
    """
    try:
        async with view:
            await websocket.send_json(view.snapshot())
            receiver = asyncio.create_task(_receive_loop(websocket, on_message))
            closer = asyncio.create_task(view.wait_closed())
            done, pending = await asyncio.wait({receiver, closer}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            if receiver in done:
                receiver.result()
            else:
                # session ended underneath the socket
                await websocket.close(code=CLOSE_SESSION_ENDED)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", extra={"extra_data": {"user_id": view.self_id, "view": type(view).__name__}})
    except NotFoundError:
        await websocket.close(code=CLOSE_NOT_FOUND)
    except UnauthorizedError:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
    except NotAuthenticatedError:
        await websocket.close(code=CLOSE_SESSION_ENDED)
    except AppError as exc:
        logger.error("Live view failed: %s", exc.message)
        await websocket.close(code=1011)
