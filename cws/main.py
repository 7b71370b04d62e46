# cws/main.py
import asyncio
import logging
import signal
import sys
from typing import Iterable, Optional

from cws.electrons.authenticator import AuthenticationElectron
from cws.electrons.logger import LoggerElectron
from cws.electrons.ping import PingElectron
from cws.engine import PipelineEngine
from cws.errors import ConfigurationLoadError, KeyStoreInitFailed
from cws.gateway import ClientGateway
from cws.handlers.base import MainThreadBridge
from cws.handlers.commands import CommandHandler
from cws.handlers.placeholders import PlaceholderHandler
from cws.handlers.players import PlayerHandler
from cws.host.base import HostAdapter
from cws.host.memory import InMemoryHost
from cws.nucleus.config import DEFAULT_BLOCKED_COMMANDS, ConfigManager, GatewayConfig
from cws.nucleus.protocol import (
    BroadcastRequest,
    CommandRequest,
    OnlinePlayersRequest,
    PlaceholderRequest,
    PlayerMessageRequest,
    PlayerOnlineRequest,
)
from cws.nucleus.registry import SessionRegistry
from cws.nucleus.router import Router
from cws.security.auth import AuthService
from cws.security.keystore import KeyStore
from cws.security.nonces import BaseNonceRegistry, InMemoryNonceRegistry, RedisNonceRegistry
from cws.settings import Settings, settings
from cws.utils.redis_client import get_redis_client

logger = logging.getLogger("CWS_Main")


def build_router(bridge: MainThreadBridge, blocked_commands: Iterable[str] = DEFAULT_BLOCKED_COMMANDS) -> Router:
    """Registers a handler for every request type the gateway understands."""
    commands = CommandHandler(bridge, blocked_commands)
    placeholders = PlaceholderHandler(bridge)
    players = PlayerHandler(bridge)

    router = Router()
    router.register("command", CommandRequest, commands.handle_command)
    router.register("placeholder", PlaceholderRequest, placeholders.handle_placeholder)
    router.register("isPlayerOnline", PlayerOnlineRequest, players.handle_is_player_online)
    router.register("getOnlinePlayers", OnlinePlayersRequest, players.handle_get_online_players)
    router.register("broadcast", BroadcastRequest, players.handle_broadcast)
    router.register("playerMessage", PlayerMessageRequest, players.handle_player_message)
    return router


def build_pipeline(auth: AuthService, router: Router) -> PipelineEngine:
    # Order matters: ping is answered for everyone, auth gates the rest.
    active_electrons = [
        LoggerElectron(),
        PingElectron(),
        AuthenticationElectron(auth),
    ]
    return PipelineEngine(electrons=active_electrons, nucleus_handler=router.route)


def build_gateway(
    config: GatewayConfig,
    auth: AuthService,
    host: HostAdapter,
    server_host: str = "0.0.0.0",
    path: str = "/cwebsender",
    reap_interval: float = 60.0,
) -> ClientGateway:
    bridge = MainThreadBridge(host)
    router = build_router(bridge, config.blocked_command_set)
    return ClientGateway(
        registry=SessionRegistry(),
        pipeline=build_pipeline(auth, router),
        auth=auth,
        bridge=bridge,
        host=server_host,
        port=config.websocket_port,
        path=path,
        connection_timeout_ms=config.connection_timeout_ms,
        reap_interval=reap_interval,
    )


def build_nonce_registry(app_settings: Settings, config: GatewayConfig) -> BaseNonceRegistry:
    if app_settings.NONCE_BACKEND == "redis":
        logger.info(f"Using Redis nonce registry at {app_settings.redis_url}")
        return RedisNonceRegistry(get_redis_client(app_settings.redis_url), config.nonce_expiration_ms)
    return InMemoryNonceRegistry(config.nonce_expiration_ms)


def apply_debug_mode(config: GatewayConfig) -> None:
    logging.getLogger("cws").setLevel(logging.DEBUG if config.debug_mode else logging.NOTSET)


async def main(app_settings: Optional[Settings] = None) -> int:
    """
    The main entry point for the cws gateway.
    """
    app_settings = app_settings or settings
    logging.basicConfig(
        level=app_settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] (%(name)s) %(message)s"
    )

    # 1. Configuration and key material. Both failures are fatal.
    config_manager = ConfigManager(app_settings.config_path)
    try:
        config = config_manager.load()
    except ConfigurationLoadError:
        logger.error("Could not load configuration. Exiting.")
        return 1
    apply_debug_mode(config)

    keystore = KeyStore(app_settings.data_path)
    try:
        keystore.initialize()
    except KeyStoreInitFailed as e:
        logger.error(f"Key store initialization failed, refusing to start: {e}")
        return 1

    # 2. Authentication and the host.
    nonces = build_nonce_registry(app_settings, config)
    auth = AuthService(keystore, nonces)
    host = InMemoryHost()

    def make_gateway(current: GatewayConfig) -> ClientGateway:
        return build_gateway(
            current,
            auth,
            host,
            server_host=app_settings.SERVER_HOST,
            path=app_settings.WEBSOCKET_PATH,
            reap_interval=app_settings.REAPER_INTERVAL_SECONDS,
        )

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    reload_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, reload_event.set)

    gateway = make_gateway(config)
    try:
        await gateway.start()
        logger.info("cws gateway started. Now accepting client connections.")

        while not stop_event.is_set():
            stop_wait = asyncio.create_task(stop_event.wait())
            reload_wait = asyncio.create_task(reload_event.wait())
            await asyncio.wait({stop_wait, reload_wait}, return_when=asyncio.FIRST_COMPLETED)
            stop_wait.cancel()
            reload_wait.cancel()

            if reload_event.is_set() and not stop_event.is_set():
                reload_event.clear()
                try:
                    config = config_manager.reload()
                except ConfigurationLoadError:
                    logger.error("Reload failed, keeping the running gateway.")
                    continue
                apply_debug_mode(config)
                nonces.nonce_ttl_ms = config.nonce_expiration_ms
                await gateway.stop()
                gateway = make_gateway(config)
                await gateway.start()
                logger.info(f"Gateway restarted: {gateway.status()}")
    finally:
        # 3. Orderly shutdown: listener, key material, host, nonce store.
        logger.info("Shutting down...")
        await gateway.stop()
        keystore.close()
        host.close()
        await nonces.close()
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
