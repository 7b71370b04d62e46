# cws/electrons/ping.py
from typing import Awaitable, Callable

from cws.electrons.base import BaseElectron
from cws.nucleus.protocol import Pong, Request
from cws.nucleus.session import Session


class PingElectron(BaseElectron):
    """Answers keepalive pings for every session, authenticated or not."""

    async def process(
        self,
        request: Request,
        session: Session,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        if request.type == "ping":
            await session.send(Pong(id=request.id))
            return
        await next_electron()
