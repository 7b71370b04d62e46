# cws/handlers/commands.py
import logging
from typing import FrozenSet, Iterable

from cws.errors import ProtocolError
from cws.handlers.base import BaseHandler, MainThreadBridge
from cws.nucleus.config import DEFAULT_BLOCKED_COMMANDS
from cws.nucleus.protocol import CommandRequest, CommandResponse
from cws.nucleus.session import Session

logger = logging.getLogger(__name__)


def command_verb(command: str) -> str:
    """
    The verb a console command would run: the first whitespace-separated
    token, lowercased, without a leading slash or a `namespace:` prefix.
    """
    tokens = command.split(maxsplit=1)
    if not tokens:
        return ""
    verb = tokens[0].lower().lstrip("/")
    return verb.rsplit(":", 1)[-1]


class CommandHandler(BaseHandler):
    """Runs console commands on the host, refusing the blocked verbs."""

    def __init__(self, bridge: MainThreadBridge, blocked: Iterable[str] = DEFAULT_BLOCKED_COMMANDS):
        super().__init__(bridge)
        self.blocked: FrozenSet[str] = frozenset(name.lower() for name in blocked)

    def is_blocked(self, command: str) -> bool:
        return command_verb(command) in self.blocked

    async def handle_command(self, request: CommandRequest, session: Session) -> None:
        command = request.command.strip()
        if not command:
            raise ProtocolError("command not specified", request.id)

        if self.is_blocked(command):
            logger.warning(f"[Command] Session {session.session_id} tried blocked command: {command}")
            raise ProtocolError(f"command not allowed: {command}", request.id)

        def work() -> CommandResponse:
            success = self._host.dispatch_console_command(command)
            logger.debug(f"[Command] Executed '{command}' (success: {success})")
            return CommandResponse(success=success, id=request.id)

        self._bridge.submit(session, work, lambda e: CommandResponse(success=False, id=request.id))
