# cws/handlers/players.py
import logging

from cws.handlers.base import BaseHandler
from cws.nucleus.protocol import (
    BroadcastRequest,
    BroadcastResponse,
    ErrorFrame,
    OnlinePlayersRequest,
    OnlinePlayersResponse,
    PlayerMessageRequest,
    PlayerMessageResponse,
    PlayerOnlineRequest,
    PlayerOnlineResponse,
)
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)


class PlayerHandler(BaseHandler):
    """Presence queries and chat delivery."""

    async def handle_is_player_online(self, request: PlayerOnlineRequest, session: Session) -> None:
        def work() -> PlayerOnlineResponse:
            online = self._host.is_player_online(request.player)
            logger.debug(f"[Players] {request.player} online: {online}")
            return PlayerOnlineResponse(player=request.player, online=online, id=request.id)

        self._bridge.submit(session, work, lambda e: ErrorFrame(message="isPlayerOnline failed", id=request.id))

    async def handle_get_online_players(self, request: OnlinePlayersRequest, session: Session) -> None:
        def work() -> OnlinePlayersResponse:
            players = list(self._host.list_online_players())
            logger.debug(f"[Players] Online players requested. Total: {len(players)}")
            return OnlinePlayersResponse(players=players, count=len(players), id=request.id)

        self._bridge.submit(session, work, lambda e: ErrorFrame(message="getOnlinePlayers failed", id=request.id))

    async def handle_broadcast(self, request: BroadcastRequest, session: Session) -> None:
        def work() -> BroadcastResponse:
            self._host.broadcast_message(request.message)
            logger.debug(f"[Players] Broadcast sent: {request.message}")
            return BroadcastResponse(success=True, id=request.id)

        self._bridge.submit(session, work, lambda e: BroadcastResponse(success=False, id=request.id))

    async def handle_player_message(self, request: PlayerMessageRequest, session: Session) -> None:
        def work() -> PlayerMessageResponse:
            success = self._host.message_player(request.player, request.message)
            logger.debug(f"[Players] Message to {request.player} (delivered: {success})")
            return PlayerMessageResponse(success=success, player=request.player, id=request.id)

        self._bridge.submit(
            session,
            work,
            lambda e: PlayerMessageResponse(success=False, player=request.player, id=request.id),
        )
