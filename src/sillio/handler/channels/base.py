# channel: connect/disconnect, post inbound messages and log lines, run commands

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sillio.handler.commands import CommandSet
    from sillio.handler.message_bus import MessageBus

from sillio.handler.messages import Message


class BaseChannelHandler(ABC):
    name: str = "base"

    def __init__(
        self,
        bus: MessageBus,
        commands: CommandSet,
        config: dict | None = None,
    ):
        self._running = False
        self._bus = bus
        self._commands = commands
        self._config = config

    @abstractmethod
    async def connect(self):
        """Establish connection to the channel."""
        pass

    @abstractmethod
    async def disconnect(self):
        """Terminate connection to the channel."""
        pass

    @abstractmethod
    async def post_message(self, message: Message):
        """Show an inbound SMS/MMS, attachments included."""
        pass

    @abstractmethod
    async def post_log(self, line: str):
        """Show an operational alert."""
        pass

    async def _run_command(self, name: str, args: list[str]) -> str:
        """Run a bridge command and return the reply text."""
        return await self._commands.run(name, args)

    @property
    def is_running(self) -> bool:
        """Return True if the handler is running, False otherwise."""
        return self._running
