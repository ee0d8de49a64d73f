import asyncio
from asyncio import Queue
from collections.abc import Awaitable, Callable

from loguru import logger

from sillio.constants import INBOUND_QUEUE_SIZE, LOG_QUEUE_SIZE

from .messages import Message, OutboundRequest


class MessageBus:
    """Narrow channels between relay engines and everything else.

    Inbound messages and log lines are fanned out best-effort: publishing
    never blocks, and a full queue drops the item and bumps a counter.
    Outbound send requests are queued without bound; the caller blocks on
    the request's own result slot, never the engine on the caller.
    """

    def __init__(
        self,
        inbound_maxsize: int = INBOUND_QUEUE_SIZE,
        log_maxsize: int = LOG_QUEUE_SIZE,
    ):
        self.inbound: Queue[Message] = Queue(maxsize=inbound_maxsize)
        self.logs: Queue[str] = Queue(maxsize=log_maxsize)
        self.outbound: Queue[OutboundRequest] = Queue()
        self._inbound_subscribers: list[Callable[[Message], Awaitable[None]]] = []
        self._log_subscribers: list[Callable[[str], Awaitable[None]]] = []
        self.dropped_inbound = 0
        self.dropped_logs = 0
        self._running = False

    def publish_inbound(self, message: Message) -> bool:
        """Offer a message to the bridge side. Returns False if it was dropped."""
        try:
            self.inbound.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped_inbound += 1
            logger.warning(
                "Inbound queue full, dropped message from {} (dropped={})",
                message.sender,
                self.dropped_inbound,
            )
            return False
        return True

    def publish_log(self, line: str) -> bool:
        """Offer a log line to the bridge side. Returns False if it was dropped."""
        try:
            self.logs.put_nowait(line)
        except asyncio.QueueFull:
            self.dropped_logs += 1
            logger.warning("Log queue full, dropped line (dropped={})", self.dropped_logs)
            return False
        return True

    async def send_message(self, destination: str, body: str) -> None:
        """Ask a relay engine to send an SMS and wait for the outcome.

        Raises whatever error the engine reported for this request.
        """
        request = OutboundRequest(destination=destination, body=body)
        await self.outbound.put(request)
        await request.wait()

    async def consume_outbound(self) -> OutboundRequest:
        return await self.outbound.get()

    def subscribe_inbound(self, callback: Callable[[Message], Awaitable[None]]):
        """Register a consumer for inbound messages."""
        self._inbound_subscribers.append(callback)

    def subscribe_logs(self, callback: Callable[[str], Awaitable[None]]):
        """Register a consumer for log lines."""
        self._log_subscribers.append(callback)

    async def dispatch(self) -> None:
        """
        Deliver inbound messages and log lines to subscribers.
        Run this as a background task.
        """
        self._running = True
        while self._running:
            inbound_get = asyncio.ensure_future(self.inbound.get())
            log_get = asyncio.ensure_future(self.logs.get())
            try:
                done, _ = await asyncio.wait(
                    {inbound_get, log_get},
                    timeout=1.0,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                for task in (inbound_get, log_get):
                    if not task.done():
                        task.cancel()

            if inbound_get in done:
                await self._deliver(self._inbound_subscribers, inbound_get.result())
            if log_get in done:
                await self._deliver(self._log_subscribers, log_get.result())

    @staticmethod
    async def _deliver(subscribers, item) -> None:
        for callback in subscribers:
            try:
                await callback(item)
            except Exception as e:
                logger.error(f"Error dispatching to subscriber: {e}")

    def stop(self):
        """Stop dispatching."""
        self._running = False

    @property
    def inbound_size(self) -> int:
        """Return the number of messages in the inbound queue."""
        return self.inbound.qsize()

    @property
    def log_size(self) -> int:
        """Return the number of lines in the log queue."""
        return self.logs.qsize()
