# cws/nucleus/session.py
import asyncio
import logging
import uuid
from enum import Enum
from typing import Callable, Optional

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from cws.nucleus.protocol import Frame
from cws.utils.encoding import now_ms

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """Generates a new unique session ID in the format 'ses_hex'."""
    return f"ses_{uuid.uuid4().hex}"


class SessionState(str, Enum):
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Session:
    """
    One accepted WebSocket connection and its authentication state.

    State changes happen under `lock`; handlers only ever use `send()`,
    which is a silent no-op once the connection is gone.
    """

    def __init__(self, websocket: ServerConnection, clock: Callable[[], int] = now_ms):
        self.session_id = new_session_id()
        self.state = SessionState.PENDING
        self.connected_at_ms = clock()
        self.last_challenge_nonce: Optional[str] = None
        self.lock = asyncio.Lock()
        self._websocket = websocket

    def __repr__(self) -> str:
        return f"<Session {self.session_id} {self.state.value}>"

    @property
    def remote_address(self):
        return getattr(self._websocket, "remote_address", None)

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def is_pending(self) -> bool:
        return self.state is SessionState.PENDING

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def age_ms(self, now: int) -> int:
        return now - self.connected_at_ms

    def mark_authenticated(self) -> None:
        if self.state is SessionState.PENDING:
            self.state = SessionState.AUTHENTICATED

    def mark_closed(self) -> None:
        self.state = SessionState.CLOSED
        self.last_challenge_nonce = None

    async def send(self, frame: Frame) -> bool:
        """Sends a frame; returns False if the session is already closed."""
        if self.state is SessionState.CLOSED:
            logger.debug(f"Dropping {frame.type} for closed session {self.session_id}.")
            return False
        try:
            await self._websocket.send(frame.to_json())
            return True
        except ConnectionClosed:
            logger.debug(f"Dropping {frame.type} for session {self.session_id}: connection closed.")
            return False

    async def close(self, code: int, reason: str) -> None:
        self.mark_closed()
        try:
            await self._websocket.close(code, reason)
        except ConnectionClosed:
            pass
