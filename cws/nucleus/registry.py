# cws/nucleus/registry.py
import logging
from typing import Dict, List, Optional

from cws.nucleus.session import Session, SessionState

logger = logging.getLogger(__name__)


class SessionRegistry:
    """The gateway's single map of session_id -> Session."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        logger.info("SessionRegistry initialized.")

    def __len__(self) -> int:
        return len(self._sessions)

    def register(self, session: Session):
        self._sessions[session.session_id] = session
        logger.debug(f"[Registry] Session '{session.session_id}' registered.")

    def unregister(self, session: Session) -> Optional[Session]:
        # Make sure we are removing the same session instance
        if self._sessions.get(session.session_id) is session:
            logger.debug(f"[Registry] Session '{session.session_id}' unregistered.")
            return self._sessions.pop(session.session_id)
        return None

    def pending(self) -> List[Session]:
        """Snapshot of sessions still waiting to authenticate."""
        return [s for s in self._sessions.values() if s.state is SessionState.PENDING]

    def authenticated(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.state is SessionState.AUTHENTICATED]

    def clear(self):
        for session in self._sessions.values():
            session.mark_closed()
        self._sessions.clear()
