"""Application bootstrap — creates shared components and runs everything.

This is the single place that reads configuration and wires the relay
engines (one per modem) and the CommunicationHandler together through a
shared MessageBus, then runs them concurrently.

Any fatal engine error ends the process with exit status 1; restarting is
left to the supervisor (systemd or similar).
"""

from __future__ import annotations

import asyncio
import signal
import sys

from loguru import logger

from sillio.config import AppConfig, get_config
from sillio.handler.handler import CommunicationHandler
from sillio.handler.message_bus import MessageBus
from sillio.modem.base import BaseDecoder, TransportError
from sillio.modem.mmcli import MmcliTransport, list_modems
from sillio.relay.assembler import InboundAssembler
from sillio.relay.cache import MessageCache
from sillio.relay.engine import FatalGatewayError, RelayEngine
from sillio.relay.forwarder import WebhookForwarder


def _build_decoder() -> BaseDecoder:
    # python-messaging is only needed once a modem is actually attached
    from sillio.modem.mms import MessagingDecoder

    return MessagingDecoder()


class Application:
    """Top-level application that owns all major components.

    Architecture:
        MessageBus (shared)
            ├── RelayEngine × modems   (modem ⇄ bus, webhook forwarding, health checks)
            └── CommunicationHandler   (bus → chat bridge, bridge commands → bus)
    """

    def __init__(self, config: AppConfig | None = None) -> None:
        self._config = config or get_config()
        self._configure_logging()

        # Shared message bus: the single bridge between engines and the chat side
        self.message_bus = MessageBus(
            inbound_maxsize=self._config.bus.inbound_maxsize,
            log_maxsize=self._config.bus.log_maxsize,
        )

        # Communication handler: owns bridge channels and bus fan-out
        CommunicationHandler.reset()  # ensure clean state
        self.handler = CommunicationHandler.get_instance(
            config=self._config,
            message_bus=self.message_bus,
        )

        self.cache = MessageCache(self._config.resolved_cache_dir)
        self.forwarder = WebhookForwarder(self._config.webhook)
        if not self.forwarder.enabled:
            logger.warning("No webhook URL configured, forwarding disabled")

        self.engines: list[RelayEngine] = []
        self.exit_code = 0
        self._shutdown_event = asyncio.Event()

    def _configure_logging(self) -> None:
        logger.remove()
        logger.add(sys.stderr, level=self._config.log_level.upper())

    async def _build_engines(self) -> None:
        """One relay engine per modem ModemManager reports."""
        try:
            paths = await list_modems(self._config.modem)
        except TransportError as e:
            raise FatalGatewayError(f"Get modems err: {e}") from e
        if not paths:
            raise FatalGatewayError("No modems detected")

        assembler = InboundAssembler(_build_decoder(), cache=self.cache)
        for path in paths:
            self.engines.append(
                RelayEngine(
                    transport=MmcliTransport(path, self._config.modem),
                    assembler=assembler,
                    bus=self.message_bus,
                    forwarder=self.forwarder,
                    health_check=self._config.health_check,
                    modem=self._config.modem,
                    cache=self.cache,
                    name=f"modem{path.rsplit('/', 1)[-1]}",
                )
            )
            logger.info(f"Modem {path} attached")

    async def _run_engine(self, engine: RelayEngine) -> None:
        try:
            await engine.run()
        except FatalGatewayError as e:
            logger.critical(f"Fatal: {e}")
            self._fail()
        except Exception:
            logger.exception(f"[{engine.name}] relay engine crashed")
            self._fail()

    def _fail(self) -> None:
        self.exit_code = 1
        self._shutdown_event.set()

    async def start(self) -> None:
        """Start all components and run until shutdown or a fatal error."""
        logger.info("sillio starting up...")

        # Install signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        # Start communication handler (connects channels + starts dispatch)
        await self.handler.start()

        try:
            await self._build_engines()
        except FatalGatewayError as e:
            logger.critical(f"Fatal: {e}")
            self.exit_code = 1
            await self.handler.stop()
            return

        engine_tasks = [
            asyncio.create_task(self._run_engine(engine), name=f"engine-{engine.name}")
            for engine in self.engines
        ]

        logger.info("sillio is running. Press Ctrl+C to stop.")

        # Wait for shutdown signal or a fatal engine error
        await self._shutdown_event.wait()

        logger.info("Shutting down...")
        for task in engine_tasks:
            task.cancel()
        await asyncio.gather(*engine_tasks, return_exceptions=True)

        await self.handler.stop()
        logger.info("sillio stopped.")

    def _signal_handler(self) -> None:
        """Handle SIGINT/SIGTERM by setting the shutdown event."""
        logger.info("Shutdown signal received")
        self._shutdown_event.set()

    def run(self) -> int:
        """Synchronous entry point — creates event loop, runs the app, returns exit status."""
        asyncio.run(self.start())
        return self.exit_code


def main() -> None:
    sys.exit(Application().run())
