# cws/engine.py
import json
import logging
from typing import Awaitable, Callable, List, Union

from pydantic import ValidationError

from cws.electrons.base import BaseElectron
from cws.errors import ProtocolError
from cws.nucleus.protocol import ErrorFrame, Request
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)


class PipelineEngine:
    """
    The engine that runs the middleware pipeline for each frame.

    It takes a list of Electrons (middleware) and a final Nucleus handler,
    and chains them together to process incoming requests. Protocol errors
    raised anywhere in the chain become `error` frames on the same session.
    """

    def __init__(
        self,
        electrons: List[BaseElectron],
        nucleus_handler: Callable[[Request, Session], Awaitable[None]],
    ):
        self._electrons = electrons
        self._nucleus_handler = nucleus_handler
        logger.info(f"PipelineEngine initialized with {len(self._electrons)} electrons.")

    async def process_message(self, message: Union[str, bytes], session: Session) -> None:
        request_id = None
        try:
            request = self._parse(message)
            request_id = request.id
            await self._execute_pipeline(request, session)
        except ProtocolError as e:
            logger.debug(f"Protocol error on session {session.session_id}: {e.message}")
            await session.send(ErrorFrame(message=e.message, id=e.request_id))
        except Exception as e:
            logger.error(f"Error processing message on session {session.session_id}: {e}", exc_info=True)
            await session.send(ErrorFrame(message="internal error", id=request_id))

    @staticmethod
    def _parse(message: Union[str, bytes]) -> Request:
        try:
            data = json.loads(message)
        except ValueError as e:
            raise ProtocolError("invalid JSON") from e
        if not isinstance(data, dict):
            raise ProtocolError("invalid JSON")

        try:
            request = Request.model_validate(data)
        except ValidationError as e:
            raise ProtocolError("missing message type", data.get("id")) from e
        if not request.type:
            raise ProtocolError("missing message type", request.id)
        return request

    async def _execute_pipeline(self, request: Request, session: Session) -> None:
        """Builds the electron chain for one request, innermost step first, and runs it."""
        async def nucleus():
            await self._nucleus_handler(request, session)

        step = nucleus
        for electron in reversed(self._electrons):
            step = self._link(electron, request, session, step)
        await step()

    @staticmethod
    def _link(
        electron: BaseElectron,
        request: Request,
        session: Session,
        following: Callable[[], Awaitable[None]],
    ) -> Callable[[], Awaitable[None]]:
        async def step():
            await electron.process(request, session, following)
        return step
