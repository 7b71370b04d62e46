# cws/electrons/base.py
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from cws.nucleus.protocol import Request
from cws.nucleus.session import Session


class BaseElectron(ABC):
    """
    Abstract base class for all "Electrons" (middleware components).

    An Electron is a processing unit in the pipeline that can inspect,
    answer, or halt a request before it reaches the Nucleus (the router).
    """

    @abstractmethod
    async def process(
        self,
        request: Request,
        session: Session,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        """
        Processes an incoming request.

        Args:
            request: The parsed request envelope.
            session: The session the frame arrived on; electrons reply
                     through `session.send`.
            next_electron: An awaitable callable that invokes the next
                           electron in the pipeline. If it is not called,
                           the chain is halted.
        """
        pass
