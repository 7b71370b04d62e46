# cws/security/auth.py
import logging

from cws.nucleus.protocol import AuthChallenge
from cws.nucleus.session import Session
from cws.security.keystore import KeyStore
from cws.security.nonces import BaseNonceRegistry

logger = logging.getLogger(__name__)


class AuthService:
    """
    Challenge/response authentication for gateway sessions.

    Every challenge is recorded as the session's last challenge; a response
    is accepted only for that nonce, only once, and only if it carries a
    valid signature by the gateway's own key pair.
    """

    def __init__(self, keystore: KeyStore, nonces: BaseNonceRegistry):
        self._keystore = keystore
        self._nonces = nonces
        logger.info("AuthService initialized.")

    @property
    def nonces(self) -> BaseNonceRegistry:
        return self._nonces

    async def send_challenge(self, session: Session) -> str:
        nonce = await self._nonces.issue_nonce()
        session.last_challenge_nonce = nonce
        await session.send(AuthChallenge(nonce=nonce, public_key=self._keystore.public_key_base64()))
        logger.debug(f"[Auth] Challenge sent to {session.session_id}.")
        return nonce

    async def authenticate(self, session: Session, nonce, signature) -> bool:
        if not isinstance(nonce, str) or not isinstance(signature, str):
            logger.debug(f"[Auth] {session.session_id}: nonce or signature missing.")
            return False

        if nonce != session.last_challenge_nonce:
            logger.debug(f"[Auth] {session.session_id}: nonce was not issued to this session.")
            return False

        if not await self._nonces.verify_and_consume(nonce):
            logger.debug(f"[Auth] {session.session_id}: nonce unknown, expired or already used.")
            return False

        if not self._keystore.verify(nonce, signature):
            logger.debug(f"[Auth] {session.session_id}: signature verification failed.")
            return False

        session.last_challenge_nonce = None
        return True
