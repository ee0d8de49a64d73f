"""Chat bridge commands, independent of the chat service.

Each command takes its whitespace-split arguments and returns the reply
text. ``sms`` is the bridge's only way into the modem: it goes through
``MessageBus.send_message`` and waits for the relay engine's verdict.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import phonenumbers
from loguru import logger

from sillio.constants import DEFAULT_PHONE_REGION
from sillio.handler.message_bus import MessageBus
from sillio.modem.base import TransportError


@dataclass
class Command:
    name: str
    action: Callable[[list[str]], Awaitable[str]]
    args: list[str] = field(default_factory=list)
    splat: bool = False   # accepts any number of arguments
    help_text: str = ""

    def usage(self) -> str:
        if self.help_text:
            return self.help_text
        return " ".join([self.name, *self.args])


def normalize_number(number: str, region: str = DEFAULT_PHONE_REGION) -> str:
    """E.164 without the leading '+', as the modem expects it.

    Raises phonenumbers.NumberParseException for unparseable input.
    """
    parsed = phonenumbers.parse(number, region)
    formatted = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    return formatted.removeprefix("+")


class CommandSet:
    """The commands a chat bridge exposes, sorted by name."""

    def __init__(self, bus: MessageBus, region: str = DEFAULT_PHONE_REGION) -> None:
        self._bus = bus
        self._region = region
        self.commands = sorted(
            [
                Command(name="help", action=self._help),
                Command(
                    name="sms",
                    action=self._sms,
                    splat=True,
                    help_text="sms <phone_number> <message>",
                ),
            ],
            key=lambda c: c.name,
        )

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.commands]

    def help_message(self) -> str:
        lines = ["Usage:"]
        lines.extend(c.usage() for c in self.commands)
        return "\n".join(lines) + "\n"

    def get(self, name: str) -> Command | None:
        for command in self.commands:
            if command.name == name:
                return command
        return None

    async def run(self, name: str, args: list[str]) -> str:
        """Run command ``name``; unknown commands or wrong arity yield help."""
        command = self.get(name)
        if command is None:
            return self.help_message()
        if not command.splat and len(command.args) != len(args):
            return self.help_message()
        return await command.action(args)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _help(self, args: list[str]) -> str:
        return self.help_message()

    async def _sms(self, args: list[str]) -> str:
        if len(args) < 2:
            return self.help_message()

        try:
            number = normalize_number(args[0], self._region)
        except phonenumbers.NumberParseException as e:
            logger.warning(f"Parse number {args[0]!r} failed: {e}")
            return f"parse number err: {e}"

        try:
            await self._bus.send_message(number, " ".join(args[1:]))
        except TransportError as e:
            logger.error(f"Send sms to {number} failed: {e}")
            return f"Send sms err: {e}"

        return "Send ok!"
