# cws/electrons/authenticator.py
import logging
from typing import Awaitable, Callable

from cws.electrons.base import BaseElectron
from cws.nucleus.protocol import AuthResponseRequest, AuthResult, ErrorFrame, Request
from cws.nucleus.session import Session
from cws.security.auth import AuthService

logger = logging.getLogger(__name__)


class AuthenticationElectron(BaseElectron):
    """
    Drives the per-session authentication state machine.

    `authResponse` frames are consumed here. Any other request on a session
    that has not authenticated is answered with "authentication required"
    and a fresh challenge, and never reaches the router.
    """
    def __init__(self, auth: AuthService):
        self._auth = auth
        logger.info("AuthenticationElectron initialized.")

    async def process(
        self,
        request: Request,
        session: Session,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        if request.type == "authResponse":
            await self._handle_auth_response(AuthResponseRequest.model_validate(request.model_dump()), session)
            return

        if not session.is_authenticated:
            logger.debug(f"[Auth] Rejected '{request.type}' from unauthenticated session {session.session_id}.")
            async with session.lock:
                if session.is_closed:
                    return
                await session.send(ErrorFrame(message="authentication required", id=request.id))
                await self._auth.send_challenge(session)
            return

        await next_electron()

    async def _handle_auth_response(self, request: AuthResponseRequest, session: Session) -> None:
        async with session.lock:
            if session.is_closed:
                return

            if await self._auth.authenticate(session, request.nonce, request.signature):
                session.mark_authenticated()
                await session.send(AuthResult(status="success", id=request.id))
                logger.info(f"[Auth] Session {session.session_id} authenticated from {session.remote_address}.")
                return

            logger.warning(f"[Auth] Authentication failed for session {session.session_id}.")
            await session.send(AuthResult(status="failed", message="authentication failed", id=request.id))
            await self._auth.send_challenge(session)
