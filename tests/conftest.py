# tests/conftest.py
import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from websockets.exceptions import ConnectionClosed

from cws.handlers.base import MainThreadBridge
from cws.host.memory import InMemoryHost
from cws.main import build_pipeline, build_router
from cws.nucleus.session import Session
from cws.security.auth import AuthService
from cws.security.keystore import KeyStore
from cws.security.nonces import InMemoryNonceRegistry


class FakeWebSocket:
    """Stands in for a server connection: records what the gateway sends."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.close_code = None
        self.close_reason = None
        self.remote_address = ("127.0.0.1", 50000)

    async def send(self, message: str) -> None:
        if self.close_code is not None:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason

    def of_type(self, frame_type: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == frame_type]


@pytest.fixture(scope="session")
def keystore(tmp_path_factory):
    """One RSA key pair for the whole run; generating 2048-bit keys is slow."""
    store = KeyStore(tmp_path_factory.mktemp("gateway-data"))
    store.initialize()
    return store


@pytest.fixture
def host():
    host = InMemoryHost(players=["Steve", "Alex"])
    yield host
    host.close()


@pytest.fixture
def stack(keystore, host):
    nonces = InMemoryNonceRegistry()
    auth = AuthService(keystore, nonces)
    bridge = MainThreadBridge(host)
    pipeline = build_pipeline(auth, build_router(bridge))
    return SimpleNamespace(nonces=nonces, auth=auth, bridge=bridge, pipeline=pipeline, host=host)


@pytest.fixture
def open_session(stack, keystore):
    """Factory for sessions that have received their challenge, optionally authenticated."""
    async def _open(authenticated: bool = True):
        ws = FakeWebSocket()
        session = Session(ws)
        nonce = await stack.auth.send_challenge(session)
        if authenticated:
            await stack.pipeline.process_message(json.dumps({
                "type": "authResponse",
                "nonce": nonce,
                "signature": keystore.sign(nonce),
            }), session)
            assert session.is_authenticated
            ws.sent.clear()
        return session, ws
    return _open
