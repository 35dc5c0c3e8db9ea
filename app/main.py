import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import AppError
from app.core.logging import setup_logging
from app.database.connection import close_mongo_connection, connect_to_mongo, get_database
from app.repositories.message_repository import MessageRepository
from app.repositories.notification_repository import NotificationRepository
from app.routers.chat import router as chat_router
from app.routers.conversations import router as conversations_router
from app.routers.notifications import router as notifications_router
from app.routers.products import router as products_router
from app.routers.session import router as session_router
from app.services.session_service import SessionManager
from app.utils.realtime_bus import close_bus, get_bus


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    db = get_database()
    await MessageRepository(db).ensure_indexes()
    await NotificationRepository(db).ensure_indexes()
    await get_bus()
    logger.info("Application started")
    try:
        yield
    finally:
        await app.state.sessions.close_all()
        await close_bus()
        await close_mongo_connection()
        logger.info("Application stopped")


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "bad_request"})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong", "code": "unexpected"})


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.sessions = SessionManager()

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(session_router)
    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(notifications_router)
    app.include_router(products_router)
    return app


app = create_app()


@app.get("/")
async def root():

    return {"message": f"{get_settings().app_name} is running"}
