# tests/test_gateway.py
import asyncio
import base64
import json
import os

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from cws.client import GatewayClient
from cws.errors import AuthenticationFailed, RequestFailed
from cws.main import build_gateway
from cws.nucleus.config import GatewayConfig, WebsocketConfig
from cws.security.auth import AuthService
from cws.security.nonces import InMemoryNonceRegistry

TIMEOUT = 5


async def recv_json(ws):
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=TIMEOUT))


async def sign_in(ws, keystore):
    challenge = await recv_json(ws)
    assert challenge["type"] == "authChallenge"
    nonce = challenge["nonce"]
    signature = keystore.sign(nonce)
    await ws.send(json.dumps({"type": "authResponse", "nonce": nonce, "signature": signature}))
    return nonce, signature, await recv_json(ws)


def make_gateway(keystore, host, connection_timeout_seconds=300, reap_interval=60.0):
    config = GatewayConfig(
        websocket_port=0,
        websocket=WebsocketConfig(connection_timeout_seconds=connection_timeout_seconds),
    )
    auth = AuthService(keystore, InMemoryNonceRegistry(config.nonce_expiration_ms))
    return build_gateway(config, auth, host, server_host="127.0.0.1", reap_interval=reap_interval)


@pytest_asyncio.fixture
async def gateway(keystore, host):
    gw = make_gateway(keystore, host)
    await gw.start()
    yield gw
    await gw.stop()


@pytest.fixture
def url(gateway):
    return f"ws://127.0.0.1:{gateway.bound_port}/cwebsender"


@pytest.mark.asyncio
async def test_happy_path_auth(gateway, url, keystore):
    async with connect(url) as ws:
        _, _, result = await sign_in(ws, keystore)

        assert result == {"type": "authResponse", "status": "success"}
        assert gateway.status()["authenticated"] == 1
        assert gateway.status()["pending"] == 0


@pytest.mark.asyncio
async def test_challenge_carries_public_key(url, keystore):
    async with connect(url) as ws:
        challenge = await recv_json(ws)

    assert challenge["publicKey"] == keystore.public_key_base64()
    assert len(challenge["nonce"]) == 36


@pytest.mark.asyncio
async def test_replayed_response_is_rejected(url, keystore):
    async with connect(url) as ws:
        nonce, signature, result = await sign_in(ws, keystore)
        assert result["status"] == "success"

    async with connect(url) as ws:
        await recv_json(ws)
        await ws.send(json.dumps({"type": "authResponse", "nonce": nonce, "signature": signature}))

        failed = await recv_json(ws)
        fresh = await recv_json(ws)

    assert failed["type"] == "authResponse"
    assert failed["status"] == "failed"
    assert fresh["type"] == "authChallenge"
    assert fresh["nonce"] != nonce


@pytest.mark.asyncio
async def test_bad_signature_then_retry(url, keystore):
    async with connect(url) as ws:
        challenge = await recv_json(ws)
        garbage = base64.b64encode(os.urandom(256)).decode()
        await ws.send(json.dumps({"type": "authResponse", "nonce": challenge["nonce"], "signature": garbage}))

        assert (await recv_json(ws))["status"] == "failed"
        retry = await recv_json(ws)
        assert retry["type"] == "authChallenge"

        await ws.send(json.dumps({
            "type": "authResponse",
            "nonce": retry["nonce"],
            "signature": keystore.sign(retry["nonce"]),
        }))
        assert await recv_json(ws) == {"type": "authResponse", "status": "success"}


@pytest.mark.asyncio
async def test_unauthenticated_request_keeps_connection_open(url, keystore):
    async with connect(url) as ws:
        await recv_json(ws)
        await ws.send(json.dumps({"type": "getOnlinePlayers", "id": "early"}))

        assert await recv_json(ws) == {"type": "error", "message": "authentication required", "id": "early"}
        assert (await recv_json(ws))["type"] == "authChallenge"

        await ws.send(json.dumps({"type": "ping"}))
        assert await recv_json(ws) == {"type": "pong"}


@pytest.mark.asyncio
async def test_auth_timeout_closes_with_going_away(keystore, host):
    gw = make_gateway(keystore, host, connection_timeout_seconds=0.2, reap_interval=0.1)
    async with gw:
        async with connect(f"ws://127.0.0.1:{gw.bound_port}/cwebsender") as ws:
            assert (await recv_json(ws))["type"] == "authChallenge"

            assert await recv_json(ws) == {"type": "error", "message": "auth timeout"}
            with pytest.raises(ConnectionClosed) as closed:
                await recv_json(ws)

    assert closed.value.rcvd.code == 1001


@pytest.mark.asyncio
async def test_reaper_spares_authenticated_sessions(keystore, host):
    gw = make_gateway(keystore, host, connection_timeout_seconds=0.2, reap_interval=0.1)
    async with gw:
        async with connect(f"ws://127.0.0.1:{gw.bound_port}/cwebsender") as ws:
            await sign_in(ws, keystore)
            await asyncio.sleep(0.5)

            await ws.send(json.dumps({"type": "ping"}))
            assert await recv_json(ws) == {"type": "pong"}


@pytest.mark.asyncio
async def test_reap_pending_only_closes_old_sessions(gateway, url):
    async with connect(url) as ws:
        await recv_json(ws)
        assert await gateway.reap_pending() == 0

        gateway.connection_timeout_ms = -1
        assert await gateway.reap_pending() == 1
        assert await recv_json(ws) == {"type": "error", "message": "auth timeout"}


@pytest.mark.asyncio
async def test_id_correlation(url, keystore):
    async with connect(url) as ws:
        await sign_in(ws, keystore)
        await ws.send(json.dumps({"type": "getOnlinePlayers", "id": "req-42"}))

        response = await recv_json(ws)

    assert response == {"type": "onlinePlayersResponse", "players": ["Alex", "Steve"], "count": 2, "id": "req-42"}


@pytest.mark.asyncio
async def test_blocked_command(url, keystore, host):
    async with connect(url) as ws:
        await sign_in(ws, keystore)
        await ws.send(json.dumps({"type": "command", "command": "stop now", "id": "x"}))

        response = await recv_json(ws)

    assert response["type"] == "error"
    assert response["id"] == "x"
    assert response["message"].endswith("stop now")
    assert host.executed == []


@pytest.mark.asyncio
async def test_other_paths_are_not_upgraded(gateway):
    with pytest.raises(InvalidStatus) as rejected:
        async with connect(f"ws://127.0.0.1:{gateway.bound_port}/elsewhere"):
            pass

    assert rejected.value.response.status_code == 404


@pytest.mark.asyncio
async def test_query_string_is_ignored_for_routing(gateway, keystore):
    async with connect(f"ws://127.0.0.1:{gateway.bound_port}/cwebsender?client=panel") as ws:
        assert (await recv_json(ws))["type"] == "authChallenge"


@pytest.mark.asyncio
async def test_stop_closes_sessions_and_clears_state(keystore, host):
    gw = make_gateway(keystore, host)
    await gw.start()
    async with connect(f"ws://127.0.0.1:{gw.bound_port}/cwebsender") as ws:
        await sign_in(ws, keystore)
        await gw.stop()

        with pytest.raises(ConnectionClosed) as closed:
            await recv_json(ws)

    assert closed.value.rcvd.code == 1001
    assert gw.status() == {"running": False, "port": 0, "pending": 0, "authenticated": 0}

    # A restarted gateway starts with fresh per-session state.
    await gw.start()
    try:
        async with connect(f"ws://127.0.0.1:{gw.bound_port}/cwebsender") as ws:
            _, _, result = await sign_in(ws, keystore)
            assert result["status"] == "success"
    finally:
        await gw.stop()


# --- GatewayClient against a live gateway ---

@pytest.mark.asyncio
async def test_client_round_trip(url, keystore, host):
    host.register_template("rank", lambda name: "admin")
    async with GatewayClient(url, private_key_path=keystore.private_key_path, ping_interval=None) as client:
        assert client.server_public_key == keystore.public_key_base64()
        await client.ping()
        assert await client.get_online_players() == ["Alex", "Steve"]
        assert await client.is_player_online("Steve") is True
        assert await client.is_player_online("Notch") is False
        assert await client.get_placeholder("%player_name% is %rank%", "alex") == "Alex is admin"
        assert await client.execute_command("say ready") is True
        assert await client.broadcast("hello all") is True
        assert await client.send_player_message("Alex", "psst") is True
        assert await client.send_player_message("Notch", "psst") is False

    assert host.broadcasts == ["ready", "hello all"]
    assert host.inbox == {"Alex": ["psst"]}


@pytest.mark.asyncio
async def test_client_concurrent_requests(url, keystore):
    async with GatewayClient(url, private_key_path=keystore.private_key_path, ping_interval=None) as client:
        results = await asyncio.gather(*(client.is_player_online(name) for name in ["Steve", "Alex", "Notch"] * 5))

    assert results == [True, True, False] * 5


@pytest.mark.asyncio
async def test_client_surfaces_errors(url, keystore):
    async with GatewayClient(url, private_key_path=keystore.private_key_path, ping_interval=None) as client:
        with pytest.raises(RequestFailed) as failed:
            await client.execute_command("op Steve")

    assert failed.value.message.endswith("op Steve")


@pytest.mark.asyncio
async def test_client_with_wrong_key_fails(url, tmp_path):
    from cws.security.keystore import KeyStore

    stranger = KeyStore(tmp_path)
    stranger.initialize()

    with pytest.raises(AuthenticationFailed):
        await GatewayClient(url, private_key_path=stranger.private_key_path, ping_interval=None).connect()
