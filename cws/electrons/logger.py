# cws/electrons/logger.py
import logging
from typing import Awaitable, Callable

from cws.electrons.base import BaseElectron
from cws.nucleus.protocol import Request
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)


class LoggerElectron(BaseElectron):
    """
    A simple electron that logs key information about each incoming request.
    """

    async def process(
        self,
        request: Request,
        session: Session,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        logger.debug(
            f"[LoggerElectron] Received '{request.type}' (id: {request.id}) "
            f"on session {session.session_id} ({session.state.value}) from {session.remote_address}"
        )
        await next_electron()
