# cws/handlers/base.py
import asyncio
import logging
from typing import Callable, Set, TypeVar

from cws.host.base import HostAdapter
from cws.nucleus.protocol import Frame
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Frame)


class MainThreadBridge:
    """
    Moves host work onto the main executor without blocking the caller.

    `submit` returns as soon as the work is queued. A background task waits
    for the result and sends the frame it produces to the session; if the
    session has closed by then, the frame is dropped.
    """

    def __init__(self, host: HostAdapter):
        self.host = host
        self._inflight: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._inflight)

    def submit(
        self,
        session: Session,
        work: Callable[[], F],
        on_error: Callable[[Exception], Frame],
    ) -> asyncio.Task:
        task = asyncio.create_task(self._complete(session, work, on_error))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self) -> None:
        """Waits until every submitted piece of work has been answered."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _complete(self, session: Session, work, on_error) -> None:
        try:
            frame = await self.host.run_on_main(work)
        except Exception as e:
            logger.error(f"Host-side failure for session {session.session_id}: {e}", exc_info=True)
            frame = on_error(e)
        await session.send(frame)


class BaseHandler:
    """Shared plumbing for request handlers."""

    def __init__(self, bridge: MainThreadBridge):
        self._bridge = bridge
        self._host = bridge.host
