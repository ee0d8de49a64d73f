"""Telegram chat bridge — shows inbound SMS/MMS and alerts, takes commands.

Supports:
    - Inbound messages posted to the configured chat, attachments uploaded
      as documents
    - Health-check alerts and other log lines
    - Commands (/help, /sms <number> <message>) from the configured chat
"""

import time

from loguru import logger
from telegram import Bot, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
)

from sillio.constants import BLANK_ATTACHMENT_NAME, BRIDGE_MAX_COMMAND_AGE
from sillio.handler.commands import CommandSet
from sillio.handler.message_bus import MessageBus
from sillio.handler.messages import Message

from .base import BaseChannelHandler


class TelegramChannelHandler(BaseChannelHandler):
    """Telegram channel handler using polling.

    Responsibilities:
        - Connect / disconnect to Telegram (polling mode)
        - Post inbound Messages and log lines to one chat
        - Run bridge commands issued from that chat
    """

    name = "telegram"

    def __init__(
        self,
        bus: MessageBus,
        token: str,
        chat_id: str,
        commands: CommandSet,
        config: dict | None = None,
    ):
        """
        Args:
            bus: MessageBus the commands send through.
            token: Telegram Bot API token from @BotFather.
            chat_id: The only chat messages go to and commands come from.
            commands: Command set exposed as /<name>.
            config: Optional channel-specific config dict.
        """
        super().__init__(bus, commands, config)
        self._token = token
        self._chat_id = str(chat_id)
        self._app: Application | None = None
        self._bot: Bot | None = None

    # ------------------------------------------------------------------
    # BaseChannelHandler interface
    # ------------------------------------------------------------------

    async def connect(self):
        """Build the Telegram Application, register commands, start polling."""
        if self._running:
            logger.warning(
                "TelegramChannelHandler.connect() called while already connected"
            )
            return

        self._app = Application.builder().token(self._token).build()
        self._bot = self._app.bot

        for name in self._commands.names:
            self._app.add_handler(CommandHandler(name, self._handle_command))
        self._app.add_handler(CommandHandler("start", self._handle_command))

        # Initialize and start polling (non-blocking)
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)

        self._running = True
        logger.info("Telegram channel connected (polling)")

    async def disconnect(self):
        """Stop polling, shut down the Application gracefully."""
        if not self._running or self._app is None:
            return

        try:
            if self._app.updater and self._app.updater.running:
                await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
        except Exception as exc:
            logger.error(f"Error during Telegram disconnect: {exc}")
        finally:
            self._running = False
            logger.info("Telegram channel disconnected")

    async def post_message(self, message: Message):
        """Post the message text, then upload each attachment."""
        if self._bot is None:
            raise RuntimeError("Cannot post message: handler is not connected")

        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=self._format_message(message),
            )
        except TelegramError as exc:
            logger.error(f"Post message from {message.sender} failed: {exc}")

        for attachment in message.attachments:
            filename = attachment.name or BLANK_ATTACHMENT_NAME
            try:
                await self._bot.send_document(
                    chat_id=self._chat_id,
                    document=attachment.data,
                    filename=filename,
                )
            except TelegramError as exc:
                logger.error(f"Upload file {filename} failed: {exc}")

    async def post_log(self, line: str):
        """Post an alert line as a plain message."""
        if self._bot is None:
            raise RuntimeError("Cannot post log line: handler is not connected")

        await self._bot.send_message(chat_id=self._chat_id, text=line)

    # ------------------------------------------------------------------
    # Command handler
    # ------------------------------------------------------------------

    async def _handle_command(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ):
        """Run /<command> from the configured chat and reply with its output."""
        if update.message is None or update.message.text is None:
            return

        msg = update.message
        if str(msg.chat_id) != self._chat_id:
            logger.warning(f"Ignoring command from unexpected chat {msg.chat_id}")
            return

        if msg.date and time.time() - msg.date.timestamp() > BRIDGE_MAX_COMMAND_AGE:
            logger.info(f"Ignoring command older than an hour: {msg.date}")
            return

        name = self._command_name(msg.text)
        if name == "start":
            name = "help"
        args = list(context.args or [])

        logger.debug(f"Command /{name} {args} from chat {msg.chat_id}")
        reply = await self._run_command(name, args)
        await msg.reply_text(reply)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _command_name(text: str) -> str:
        """'/sms@sillio_bot 555 hi' -> 'sms'."""
        first = text.split(maxsplit=1)[0] if text.strip() else ""
        return first.lstrip("/").split("@", 1)[0].lower()

    @staticmethod
    def _format_message(message: Message) -> str:
        lines = [f"From {message.sender}"]
        if message.body:
            lines.append(message.body)
        lines.append("")
        lines.append(f"Time: {message.timestamp.isoformat()}")
        if message.to:
            lines.append(f"To: {message.to}")
        return "\n".join(lines)
