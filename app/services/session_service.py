import logging
import time
from typing import TYPE_CHECKING, Callable, Dict, Optional, Set

from app.core.errors import NotAuthenticatedError
from app.repositories.profile_repository import ProfileRepository
from app.schemas.user import SessionPublic
from app.utils.security import decode_access_token

if TYPE_CHECKING:
    from app.views.base import LiveView


logger = logging.getLogger(__name__)


class UserSession:
    """Signed-in user shared by reference with every view opened on its behalf."""

    def __init__(self, user_id: str, display_name: str, role: Optional[str] = None) -> None:
        self.user_id = user_id
        self.display_name = display_name
        self.role = role
        self.active = True
        self._views: Set["LiveView"] = set()

    @property
    def views(self) -> Set["LiveView"]:
        return set(self._views)

    def attach(self, view: "LiveView") -> None:
        if not self.active:
            raise NotAuthenticatedError("Session has been closed")
        self._views.add(view)

    def detach(self, view: "LiveView") -> None:
        self._views.discard(view)

    async def close(self) -> None:
        self.active = False
        for view in list(self._views):
            await view.close()
        self._views.clear()

    def to_public(self) -> SessionPublic:
        return SessionPublic(user_id=self.user_id, display_name=self.display_name, role=self.role)


class SessionManager:
    """Opens a UserSession on the first authenticated request of a token and
    tears it down on sign-out, expiry or when the token stops validating."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._sessions: Dict[str, UserSession] = {}
        self._expiry: Dict[str, float] = {}
        self._clock = clock

    async def resolve(self, token: str, profile_repo: ProfileRepository) -> UserSession:
        await self.evict_expired()
        try:
            payload = decode_access_token(token)
        except NotAuthenticatedError:
            await self.sign_out(token)
            raise
        session = self._sessions.get(token)
        if session is not None and session.active:
            return session
        user_id = payload["sub"]
        profile = await profile_repo.get_profile(user_id) or {}
        # a concurrent request with the same token may have opened it meanwhile
        session = self._sessions.get(token)
        if session is not None and session.active:
            return session
        session = UserSession(user_id, profile.get("name") or user_id, profile.get("role"))
        self._sessions[token] = session
        if payload.get("exp") is not None:
            self._expiry[token] = float(payload["exp"])
        logger.info("Session opened", extra={"extra_data": {"user_id": user_id}})
        return session

    async def evict_expired(self) -> int:
        now = self._clock()
        expired = [token for token, exp in self._expiry.items() if exp <= now]
        for token in expired:
            await self.sign_out(token)
        return len(expired)

    async def sign_out(self, token: str) -> bool:
        self._expiry.pop(token, None)
        session = self._sessions.pop(token, None)
        if session is None:
            return False
        await session.close()
        logger.info("Session closed", extra={"extra_data": {"user_id": session.user_id}})
        return True

    async def close_all(self) -> None:
        for token in list(self._sessions):
            await self.sign_out(token)

    def __len__(self) -> int:
        return len(self._sessions)
