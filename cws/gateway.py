# cws/gateway.py
import asyncio
import logging
from http import HTTPStatus
from typing import Callable, Optional
from urllib.parse import urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import CloseCode
from websockets.http11 import Request as HTTPRequest

from cws.engine import PipelineEngine
from cws.handlers.base import MainThreadBridge
from cws.nucleus.protocol import ErrorFrame
from cws.nucleus.registry import SessionRegistry
from cws.nucleus.session import Session
from cws.security.auth import AuthService
from cws.utils.encoding import now_ms

logger = logging.getLogger(__name__)

AUTH_TIMEOUT_MESSAGE = "auth timeout"


class ClientGateway:
    """
    The entry point for external clients. It accepts WebSocket upgrades on
    a single path, challenges every new session, funnels frames into the
    pipeline engine and reaps sessions that never authenticate.
    """
    def __init__(
        self,
        registry: SessionRegistry,
        pipeline: PipelineEngine,
        auth: AuthService,
        bridge: MainThreadBridge,
        host: str = "0.0.0.0",
        port: int = 8080,
        path: str = "/cwebsender",
        connection_timeout_ms: int = 300_000,
        reap_interval: float = 60.0,
        clock: Callable[[], int] = now_ms,
    ):
        self._registry = registry
        self._pipeline = pipeline
        self._auth = auth
        self._bridge = bridge
        self.host = host
        self.port = port
        self.path = path
        self.connection_timeout_ms = connection_timeout_ms
        self.reap_interval = reap_interval
        self._clock = clock
        self._server: Optional[Server] = None
        self._reaper_task: Optional[asyncio.Task] = None
        logger.info("ClientGateway initialized.")

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> Optional[int]:
        """The port actually listened on (differs from `port` when it was 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "port": self.bound_port or self.port,
            "pending": len(self._registry.pending()),
            "authenticated": len(self._registry.authenticated()),
        }

    async def start(self):
        """Starts the WebSocket server and the pending-connection reaper."""
        if self._server is not None:
            return
        logger.info(f"ClientGateway starting on {self.host}:{self.port}{self.path}")
        self._server = await serve(
            self.handle_connection,
            self.host,
            self.port,
            process_request=self._process_request,
        )
        self._reaper_task = asyncio.create_task(self._reap_loop())
        logger.info(f"ClientGateway listening on port {self.bound_port}.")

    async def stop(self):
        """
        Stops the reaper, closes the listener (every session gets 1001) and
        forgets all per-session and nonce state.
        """
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        if self._server is not None:
            self._server.close(close_connections=True)
            await self._server.wait_closed()
            self._server = None

        await self._bridge.drain()
        self._registry.clear()
        await self._auth.nonces.clear()
        logger.info("ClientGateway stopped.")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def _process_request(self, connection: ServerConnection, request: HTTPRequest):
        if urlsplit(request.path).path != self.path:
            logger.debug(f"Rejecting upgrade for unknown path '{request.path}'.")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def handle_connection(self, websocket: ServerConnection):
        """
        Manages a single client connection: register the session, send the
        initial challenge before reading anything, then process frames in
        arrival order until the peer goes away.
        """
        session = Session(websocket, clock=self._clock)
        self._registry.register(session)
        logger.debug(f"New connection {session.session_id} from {websocket.remote_address}")
        try:
            async with session.lock:
                await self._auth.send_challenge(session)

            async for message in websocket:
                await self._pipeline.process_message(message, session)

        except ConnectionClosed as e:
            logger.debug(f"Connection {session.session_id} closed (code: {e.code}).")
        except Exception as e:
            logger.error(f"An unexpected error occurred in connection handler: {e}", exc_info=True)
        finally:
            session.mark_closed()
            self._registry.unregister(session)
            logger.debug(f"Client {session.session_id} disconnected.")

    async def _reap_loop(self):
        while True:
            await asyncio.sleep(self.reap_interval)
            try:
                await self.reap_pending()
            except Exception as e:
                logger.error(f"[Reaper] Tick failed: {e}", exc_info=True)

    async def reap_pending(self) -> int:
        """
        One reaper tick: closes every session that has been pending for
        longer than the connection timeout. Returns how many were closed.
        """
        now = self._clock()
        expired = [s for s in self._registry.pending() if s.age_ms(now) > self.connection_timeout_ms]
        reaped = await asyncio.gather(*(self._reap(session) for session in expired))
        return sum(reaped)

    async def _reap(self, session: Session) -> bool:
        async with session.lock:
            # The session may have authenticated while we were waiting for the lock.
            if not session.is_pending:
                return False
            logger.warning(f"[Reaper] Session {session.session_id} did not authenticate in time. Closing.")
            await session.send(ErrorFrame(message=AUTH_TIMEOUT_MESSAGE))
            await session.close(CloseCode.GOING_AWAY, AUTH_TIMEOUT_MESSAGE)
        return True
