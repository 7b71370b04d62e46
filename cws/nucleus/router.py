# cws/nucleus/router.py
import logging
from typing import Awaitable, Callable, Dict, Tuple, Type

from pydantic import ValidationError

from cws.errors import ProtocolError
from cws.nucleus.protocol import Request
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)

RequestHandler = Callable[[Request, Session], Awaitable[None]]


class Router:
    """
    The Nucleus Router. The final destination in the pipeline.
    It validates a request against the model registered for its type and
    hands it to the matching handler.
    """
    def __init__(self):
        self._routes: Dict[str, Tuple[Type[Request], RequestHandler]] = {}

    def register(self, message_type: str, model: Type[Request], handler: RequestHandler) -> None:
        self._routes[message_type] = (model, handler)

    async def route(self, request: Request, session: Session) -> None:
        """
        Routes the request to its handler.
        """
        route = self._routes.get(request.type)
        if route is None:
            raise ProtocolError(f"unknown message type: {request.type}", request.id)

        model, handler = route
        try:
            typed_request = model.model_validate(request.model_dump())
        except ValidationError as e:
            field = e.errors()[0]["loc"][0]
            raise ProtocolError(f"{field} not specified", request.id) from e

        logger.debug(f"[Router] Routing '{request.type}' for session {session.session_id}.")
        await handler(typed_request, session)
