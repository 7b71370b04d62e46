# cws/host/base.py
import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAIN_THREAD_PREFIX = "cws-main"


class HostAdapter(ABC):
    """
    The capability boundary between the gateway and the embedding runtime.

    Every capability method touches host state and must only be called
    from the main executor, i.e. inside a function passed to `run_on_main`.
    The default main executor is one dedicated worker thread draining a
    FIFO queue; embedders that already own a main loop override
    `run_on_main` to hand the work to it instead.
    """

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=MAIN_THREAD_PREFIX)

    async def run_on_main(self, fn: Callable[[], T]) -> T:
        """Runs `fn` on the main executor and returns its result to the calling task."""
        return await asyncio.wrap_future(self._executor.submit(fn))

    def close(self) -> None:
        """Stops the main executor after the queued work has run."""
        self._executor.shutdown(wait=True)
        logger.info("Host main executor stopped.")

    @abstractmethod
    def dispatch_console_command(self, command: str) -> bool:
        pass

    @abstractmethod
    def is_player_online(self, name: str) -> bool:
        pass

    @abstractmethod
    def list_online_players(self) -> List[str]:
        pass

    @abstractmethod
    def broadcast_message(self, text: str) -> None:
        pass

    @abstractmethod
    def message_player(self, name: str, text: str) -> bool:
        pass

    def expand_template(self, name: str, template: str) -> Optional[str]:
        """
        Expands a per-player template string. Returns None when the host has
        no template capability; callers then use the template unchanged.
        """
        return None
