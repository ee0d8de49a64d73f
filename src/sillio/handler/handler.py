# roles: chat bridge connections and fan-out of inbound messages and alerts. # noqa:E501

import asyncio

from loguru import logger

from sillio.config import AppConfig
from sillio.handler.channels.base import BaseChannelHandler
from sillio.handler.channels.telegram import TelegramChannelHandler
from sillio.handler.commands import CommandSet
from sillio.handler.message_bus import MessageBus


class CommunicationHandler:
    """Singleton orchestrator that owns the chat bridge channels.

    Responsibilities:
        1. **Channel connections** — instantiate and connect/disconnect channels.
        2. **Fan-out** — subscribes each channel to the MessageBus inbound and
           log queues and runs the dispatch task.
        3. **Commands** — hands every channel the shared CommandSet, whose
           ``sms`` command sends through the bus.
    """

    _instance: "CommunicationHandler | None" = None

    # ------------------------------------------------------------------
    # Singleton
    # ------------------------------------------------------------------

    @classmethod
    def get_instance(
        cls, config: AppConfig, message_bus: MessageBus | None = None
    ) -> "CommunicationHandler":
        """Return the singleton CommunicationHandler, creating it on first call."""
        if cls._instance is None:
            cls._instance = cls(config=config, message_bus=message_bus)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton (useful for testing)."""
        cls._instance = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __init__(self, config: AppConfig, message_bus: MessageBus | None = None):
        self._config = config
        self.message_bus = message_bus or MessageBus()
        self.commands = CommandSet(self.message_bus)
        self.channels: dict[str, BaseChannelHandler] = {}
        self._dispatch_task: asyncio.Task | None = None

        self._register_channels()

    def _register_channels(self):
        """Parse enabled channels from config and instantiate handlers."""
        for name, channel_cfg in self._config.get_enabled_channels().items():
            if channel_cfg.type == "telegram":
                if not channel_cfg.token or not channel_cfg.chat_id:
                    logger.warning(
                        f"Telegram token or chat id not resolved for channel "
                        f"'{name}'. Check your .env file. Skipping."
                    )
                    continue
                handler = TelegramChannelHandler(
                    bus=self.message_bus,
                    token=channel_cfg.token,
                    chat_id=channel_cfg.chat_id,
                    commands=self.commands,
                    config=channel_cfg.extra,
                )
                self.channels[name] = handler
                logger.info(f"Registered channel: {name} (type={channel_cfg.type})")
            else:
                logger.warning(f"Unknown channel type: {channel_cfg.type}")

    async def start(self):
        """Connect all channels and start fan-out dispatch."""
        for name, channel in self.channels.items():
            await channel.connect()
            logger.info(f"Channel '{name}' connected")

            self.message_bus.subscribe_inbound(channel.post_message)
            self.message_bus.subscribe_logs(channel.post_log)

        self._dispatch_task = asyncio.create_task(
            self.message_bus.dispatch(),
            name="bus-dispatch",
        )

        logger.info("CommunicationHandler started")

    async def stop(self):
        """Disconnect channels, cancel background tasks, stop bus."""
        self.message_bus.stop()
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            self._dispatch_task = None

        for name, channel in self.channels.items():
            await channel.disconnect()
            logger.info(f"Channel '{name}' disconnected")

        logger.info("CommunicationHandler stopped")
