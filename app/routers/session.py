from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials

from app.core.errors import NotAuthenticatedError
from app.schemas.user import SessionPublic
from app.services.session_service import SessionManager, UserSession
from app.utils.dependencies import bearer_scheme, get_current_session, get_session_manager


router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=SessionPublic)
async def current_session(session: UserSession = Depends(get_current_session)):
    return session.to_public()


@router.delete("")
async def sign_out(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionManager = Depends(get_session_manager),
):
    if credentials is None:
        raise NotAuthenticatedError()
    closed = await sessions.sign_out(credentials.credentials)
    return {"signed_out": closed}
