# cws/host/memory.py
import logging
import re
import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from cws.host.base import HostAdapter

logger = logging.getLogger(__name__)

CommandFn = Callable[["InMemoryHost", List[str]], bool]
TemplateFn = Callable[[str], str]

_TEMPLATE_TOKEN = re.compile(r"%([a-zA-Z0-9_]+)%")


class InMemoryHost(HostAdapter):
    """
    A self-contained host used when the gateway runs standalone and in tests.

    It keeps a set of online players, a table of console commands, the list
    of broadcasts and a per-player inbox. `calls` records every capability
    invocation together with the name of the thread it ran on.
    """

    def __init__(
        self,
        players: Iterable[str] = (),
        templates_enabled: bool = True,
    ):
        super().__init__()
        self.online = {name.lower(): name for name in players}
        self.templates_enabled = templates_enabled
        self.commands: Dict[str, CommandFn] = {
            "say": _say,
            "list": _list,
            "kick": _kick,
        }
        self.template_providers: Dict[str, TemplateFn] = {}
        self.broadcasts: List[str] = []
        self.inbox: Dict[str, List[str]] = {}
        self.executed: List[str] = []
        self.calls: List[Tuple[str, str]] = []

    def _record(self, capability: str) -> None:
        self.calls.append((capability, threading.current_thread().name))

    def join(self, name: str) -> None:
        self.online[name.lower()] = name

    def quit(self, name: str) -> None:
        self.online.pop(name.lower(), None)

    def register_command(self, name: str, fn: CommandFn) -> None:
        self.commands[name.lower()] = fn

    def register_template(self, token: str, fn: TemplateFn) -> None:
        self.template_providers[token.lower()] = fn

    def dispatch_console_command(self, command: str) -> bool:
        self._record("dispatch_console_command")
        args = command.split()
        if not args:
            return False
        fn = self.commands.get(args[0].lower())
        if fn is None:
            logger.info(f"Unknown console command: {args[0]}")
            return False
        self.executed.append(command)
        return fn(self, args[1:])

    def is_player_online(self, name: str) -> bool:
        self._record("is_player_online")
        return name.lower() in self.online

    def list_online_players(self) -> List[str]:
        self._record("list_online_players")
        return sorted(self.online.values())

    def broadcast_message(self, text: str) -> None:
        self._record("broadcast_message")
        self.broadcasts.append(text)

    def message_player(self, name: str, text: str) -> bool:
        self._record("message_player")
        player = self.online.get(name.lower())
        if player is None:
            return False
        self.inbox.setdefault(player, []).append(text)
        return True

    def expand_template(self, name: str, template: str) -> Optional[str]:
        self._record("expand_template")
        if not self.templates_enabled:
            return None

        def replace(match: re.Match) -> str:
            token = match.group(1).lower()
            if token == "player_name":
                return self.online.get(name.lower(), name)
            if token == "player_online":
                return "yes" if name.lower() in self.online else "no"
            provider = self.template_providers.get(token)
            if provider is None:
                return match.group(0)
            return provider(name)

        return _TEMPLATE_TOKEN.sub(replace, template)


def _say(host: InMemoryHost, args: List[str]) -> bool:
    if not args:
        return False
    host.broadcasts.append(" ".join(args))
    return True


def _list(host: InMemoryHost, args: List[str]) -> bool:
    logger.info(f"There are {len(host.online)} players online: {', '.join(sorted(host.online.values()))}")
    return True


def _kick(host: InMemoryHost, args: List[str]) -> bool:
    if not args or args[0].lower() not in host.online:
        return False
    host.quit(args[0])
    return True
