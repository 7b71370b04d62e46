# cws/handlers/placeholders.py
import logging

from cws.handlers.base import BaseHandler
from cws.nucleus.protocol import ErrorFrame, PlaceholderRequest, PlaceholderResponse
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)


class PlaceholderHandler(BaseHandler):

    async def handle_placeholder(self, request: PlaceholderRequest, session: Session) -> None:
        placeholder = request.placeholder
        player = request.player

        def work() -> PlaceholderResponse:
            result = self._host.expand_template(player, placeholder)
            if result is None:
                logger.warning("[Placeholder] Host has no template support, returning the raw placeholder.")
                result = placeholder
            logger.debug(f"[Placeholder] {placeholder} -> {result} (player: {player})")
            return PlaceholderResponse(placeholder=placeholder, result=result, player=player, id=request.id)

        self._bridge.submit(session, work, lambda e: ErrorFrame(message="placeholder failed", id=request.id))
