# cws/client.py
"""
Async client for the cws control channel.

    async with GatewayClient("ws://host:8080/cwebsender", private_key_path="keys/private.key") as client:
        players = await client.get_online_players()
        await client.broadcast("Server restarts in 5 minutes")

The client proves itself by signing each challenge nonce with the gateway's
private key, which operators copy from `<data-dir>/keys/private.key`.
"""
import asyncio
import itertools
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from cws.errors import AuthenticationFailed, ClientError, RequestFailed
from cws.security.signing import load_private_key_der, rsa_sign

logger = logging.getLogger(__name__)


class GatewayClient:

    def __init__(
        self,
        uri: str,
        private_key_path: Optional[Union[str, Path]] = None,
        private_key: Optional[rsa.RSAPrivateKey] = None,
        timeout: float = 30.0,
        ping_interval: Optional[float] = 30.0,
    ):
        if private_key is None:
            if private_key_path is None:
                raise ValueError("either private_key or private_key_path is required")
            private_key = load_private_key_der(Path(private_key_path).read_bytes())
        self.uri = uri
        self.timeout = timeout
        self.ping_interval = ping_interval
        self.server_public_key: Optional[str] = None
        self._private_key = private_key
        self._ws: Optional[ClientConnection] = None
        self._ids = itertools.count(1)
        self._pending: Dict[str, asyncio.Future] = {}
        self._pongs: List[asyncio.Future] = []
        self._reader_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        """Opens the connection and completes the challenge/response handshake."""
        self._ws = await connect(self.uri, open_timeout=self.timeout)
        try:
            await asyncio.wait_for(self._authenticate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await self._ws.close()
            raise AuthenticationFailed("timed out waiting for authentication") from e
        except (AuthenticationFailed, ConnectionClosed):
            await self._ws.close()
            raise

        self._reader_task = asyncio.create_task(self._read_loop())
        if self.ping_interval:
            self._ping_task = asyncio.create_task(self._ping_loop())
        logger.info(f"Connected and authenticated to {self.uri}")

    async def _authenticate(self) -> None:
        while True:
            frame = await self._recv_frame()
            if frame.get("type") != "authChallenge":
                continue
            nonce = frame.get("nonce")
            if not isinstance(nonce, str) or not nonce:
                raise AuthenticationFailed("malformed challenge: nonce missing")
            self.server_public_key = frame.get("publicKey")
            await self._ws.send(json.dumps({
                "type": "authResponse",
                "nonce": nonce,
                "signature": rsa_sign(self._private_key, nonce),
            }))
            # The result precedes any new challenge on the same connection.
            while True:
                result = await self._recv_frame()
                if result.get("type") == "authResponse":
                    break
            if result.get("status") == "success":
                return
            raise AuthenticationFailed(result.get("message") or "authentication failed")

    async def _recv_frame(self) -> Dict[str, Any]:
        try:
            frame = json.loads(await self._ws.recv())
        except ValueError as e:
            raise AuthenticationFailed("gateway sent non-JSON data during authentication") from e
        if not isinstance(frame, dict):
            raise AuthenticationFailed("gateway sent a non-object frame during authentication")
        return frame

    async def close(self) -> None:
        for task in (self._ping_task, self._reader_task):
            if task is not None:
                task.cancel()
        self._ping_task = None
        self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._fail_pending(ClientError("connection closed"))

    async def request(self, message_type: str, **fields: Any) -> Dict[str, Any]:
        """Sends a request and waits for the response carrying the same id."""
        if not self.is_connected:
            raise ClientError("not connected")
        request_id = f"req-{next(self._ids)}"
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps({"type": message_type, "id": request_id, **fields}))
            response = await asyncio.wait_for(future, timeout=self.timeout)
        finally:
            self._pending.pop(request_id, None)
        if response.get("type") == "error":
            raise RequestFailed(response.get("message", "request failed"), request_id)
        return response

    async def ping(self) -> None:
        if not self.is_connected:
            raise ClientError("not connected")
        future = asyncio.get_running_loop().create_future()
        self._pongs.append(future)
        await self._ws.send(json.dumps({"type": "ping"}))
        await asyncio.wait_for(future, timeout=self.timeout)

    async def execute_command(self, command: str) -> bool:
        response = await self.request("command", command=command)
        return bool(response.get("success"))

    async def get_placeholder(self, placeholder: str, player: str) -> str:
        response = await self.request("placeholder", placeholder=placeholder, player=player)
        return response["result"]

    async def is_player_online(self, player: str) -> bool:
        response = await self.request("isPlayerOnline", player=player)
        return bool(response.get("online"))

    async def get_online_players(self) -> List[str]:
        response = await self.request("getOnlinePlayers")
        return list(response.get("players", []))

    async def broadcast(self, message: str) -> bool:
        response = await self.request("broadcast", message=message)
        return bool(response.get("success"))

    async def send_player_message(self, player: str, message: str) -> bool:
        response = await self.request("playerMessage", player=player, message=message)
        return bool(response.get("success"))

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Gateway sent non-JSON data.")
                    continue
                self._handle_frame(frame)
        except ConnectionClosed as e:
            logger.info(f"Connection to {self.uri} closed (code: {e.code}).")
        finally:
            self._fail_pending(ClientError("connection closed"))

    def _handle_frame(self, frame: Dict[str, Any]) -> None:
        request_id = frame.get("id")
        if request_id is not None and request_id in self._pending:
            future = self._pending.pop(request_id)
            if not future.done():
                future.set_result(frame)
            return

        frame_type = frame.get("type")
        if frame_type == "pong":
            while self._pongs:
                future = self._pongs.pop(0)
                if not future.done():
                    future.set_result(frame)
                    break
        elif frame_type == "error":
            logger.warning(f"Gateway error: {frame.get('message')}")
        else:
            logger.debug(f"Ignoring unsolicited '{frame_type}' frame.")

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await self.ping()
            except (asyncio.TimeoutError, ConnectionClosed, ClientError) as e:
                logger.warning(f"Keepalive ping failed: {e!r}")
                return

    def _fail_pending(self, error: Exception) -> None:
        for future in list(self._pending.values()) + self._pongs:
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._pongs.clear()
