"""Relay engine — the per-modem event loop.

One engine owns one modem session. It waits on three event sources and
handles exactly one event at a time, to completion, before waiting again:

    1. Timer tick          → health-check watchdog (timeouts, new probe)
    2. Outbound request    → create, send and purge an SMS; report to caller
    3. Inbound notification → assemble, purge, then either acknowledge a
                             probe or fan the Message out

Because handling never overlaps, the watchdog state needs no locking.
Forwarding to the webhook runs in background tasks so a slow endpoint
cannot stall the loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from sillio.config import HealthCheckConfig, ModemConfig
from sillio.handler.message_bus import MessageBus
from sillio.handler.messages import Message, OutboundRequest
from sillio.modem.base import BaseTransport, RecordGone, TransportError
from sillio.relay.assembler import InboundAssembler
from sillio.relay.cache import MessageCache
from sillio.relay.forwarder import WebhookForwarder
from sillio.relay.watchdog import HealthCheckWatchdog

_TICK = "tick"
_OUTBOUND = "outbound"
_INBOUND = "inbound"
# Order in which simultaneously ready sources are handled
_SOURCES = (_TICK, _OUTBOUND, _INBOUND)


class FatalGatewayError(Exception):
    """The modem session cannot continue; the process should exit."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_STREAM_END = object()


async def _next_notification(notifications: Any) -> Any:
    try:
        return await anext(notifications)
    except StopAsyncIteration:
        return _STREAM_END


class RelayEngine:
    """Serializes all activity of one modem session."""

    def __init__(
        self,
        transport: BaseTransport,
        assembler: InboundAssembler,
        bus: MessageBus,
        forwarder: WebhookForwarder | None = None,
        health_check: HealthCheckConfig | None = None,
        modem: ModemConfig | None = None,
        cache: MessageCache | None = None,
        name: str = "modem",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.transport = transport
        self.assembler = assembler
        self.bus = bus
        self.forwarder = forwarder
        self.health_check = health_check or HealthCheckConfig()
        self.modem = modem or ModemConfig()
        self.cache = cache
        self.name = name
        self._clock = clock

        self.watchdog = HealthCheckWatchdog(self.health_check)
        self.own_numbers: list[str] = []

        self._background: set[asyncio.Task] = set()
        self._fatal: asyncio.Future | None = None
        self._escalation: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_message(self, destination: str, body: str) -> None:
        """Queue an SMS for sending and wait for the outcome."""
        await self.bus.send_message(destination, body)

    @property
    def background_tasks(self) -> set[asyncio.Task]:
        """Forwarding tasks still in flight."""
        return set(self._background)

    async def run(self) -> None:
        """Run the session until a fatal error; raises FatalGatewayError."""
        self._fatal = asyncio.get_running_loop().create_future()

        await self._drain_stored()
        self.own_numbers = await self._fetch_own_numbers()
        logger.info("[{}] own numbers: {}", self.name, self.own_numbers)

        notifications = aiter(self.transport.subscribe_new_messages())
        sources: dict[str, asyncio.Task] = {}
        for source in _SOURCES:
            task = self._arm(source, notifications)
            if task is not None:
                sources[source] = task

        logger.info("[{}] relay engine started", self.name)
        try:
            while True:
                done, _ = await asyncio.wait(
                    {*sources.values(), self._fatal},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if self._fatal in done:
                    self._fatal.result()

                for source in _SOURCES:
                    task = sources.get(source)
                    if task is None or task not in done:
                        continue
                    await self._handle(source, task)
                    sources[source] = self._arm(source, notifications)
        finally:
            self._abandon_request(sources.get(_OUTBOUND))
            for task in sources.values():
                task.cancel()
            await asyncio.gather(*sources.values(), return_exceptions=True)
            if self._escalation is not None:
                self._escalation.cancel()
            close = getattr(notifications, "aclose", None)
            if close is not None:
                await close()

    # ------------------------------------------------------------------
    # Event sources
    # ------------------------------------------------------------------

    def _abandon_request(self, task: asyncio.Task | None) -> None:
        """Fail a request that was dequeued but never (fully) handled."""
        if task is None or not task.done() or task.cancelled():
            return
        if task.exception() is not None:
            return
        request = task.result()
        if not request.done:
            request.fail(TransportError(f"{self.name} relay engine stopped"))

    def _arm(self, source: str, notifications: Any) -> asyncio.Task | None:
        if source == _TICK:
            if not self.health_check.enabled:
                return None
            coro = asyncio.sleep(self.health_check.interval)
        elif source == _OUTBOUND:
            coro = self.bus.consume_outbound()
        else:
            coro = _next_notification(notifications)
        return asyncio.create_task(coro, name=f"{self.name}-{source}")

    async def _handle(self, source: str, task: asyncio.Task) -> None:
        if source == _TICK:
            await self._on_tick()
        elif source == _OUTBOUND:
            await self._on_outbound(task.result())
        else:
            try:
                notification = task.result()
            except TransportError as e:
                raise FatalGatewayError(
                    f"[{self.name}] notification stream failed: {e}"
                ) from e
            if notification is _STREAM_END:
                raise FatalGatewayError(f"[{self.name}] notification stream ended")
            await self._on_notification(notification)

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    async def _drain_stored(self) -> None:
        """Forward received records already on the modem and purge them.

        Sent records are purged too; records still arriving are left for
        the subscription to report once complete.
        """
        try:
            records = await self.transport.list_stored_messages()
        except TransportError as e:
            raise FatalGatewayError(f"[{self.name}] list stored messages: {e}") from e

        logger.info("[{}] draining {} stored record(s)", self.name, len(records))
        for raw in records:
            logger.debug("[{}] stored record: {}", self.name, raw)
            if not raw.is_submit:
                if not raw.received:
                    # the subscription reports it once it is complete
                    logger.info("[{}] record {} still arriving", self.name, raw.handle)
                    continue
                message = await self.assembler.assemble(raw)
                self._dispatch(message)
            await self._delete(raw.handle)

    async def _fetch_own_numbers(self) -> list[str]:
        try:
            return await self.transport.own_numbers()
        except TransportError as e:
            logger.warning(f"[{self.name}] cannot read own numbers: {e}")
            return []

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_tick(self) -> None:
        now = self._clock()

        stale = self.watchdog.stale(now)
        for probe, sent_at in stale:
            line = (
                f"Health check failed on {self.name}: probe {probe!r} sent at "
                f"{sent_at.isoformat()} was not received"
            )
            logger.error(line)
            self.bus.publish_log(line)
        if stale and self.health_check.fatal_on_timeout:
            self._escalate(f"[{self.name}] {len(stale)} health check probe(s) timed out")

        if not self.watchdog.due(now):
            return

        if not self.own_numbers:
            raise FatalGatewayError(
                f"[{self.name}] own number unknown, cannot address a health check"
            )

        probe = self.watchdog.new_probe()
        self.watchdog.track(probe, now)
        try:
            await self._send(self.own_numbers[0], probe)
        except TransportError as e:
            raise FatalGatewayError(f"[{self.name}] health check send failed: {e}") from e
        self.watchdog.mark_sent(now)
        logger.info("[{}] health check sent: {}", self.name, probe)

    async def _on_outbound(self, request: OutboundRequest) -> None:
        logger.info("[{}] send to={} body={!r}", self.name, request.destination, request.body)
        try:
            await self._send(request.destination, request.body)
        except TransportError as e:
            logger.error(f"[{self.name}] send to {request.destination} failed: {e}")
            if not request.done:
                request.fail(e)
            return
        if not request.done:
            request.succeed()

    async def _on_notification(self, notification: Any) -> None:
        try:
            raw = await self.transport.parse_notification(notification)
        except RecordGone as e:
            logger.info(f"[{self.name}] skipping notification: {e}")
            return
        except TransportError as e:
            raise FatalGatewayError(
                f"[{self.name}] failed to parse notification {notification!r}: {e}"
            ) from e

        logger.debug("[{}] got record: {}", self.name, raw)
        if self.cache is not None:
            self.cache.write_notification(raw)

        if raw.is_submit:
            if self.modem.delete_sent_records:
                logger.info("[{}] outbound record {} (delete)", self.name, raw.handle)
                await self._delete(raw.handle)
            else:
                logger.info("[{}] outbound record {} (skip)", self.name, raw.handle)
            return

        if not raw.received:
            logger.info("[{}] record {} still arriving, left on modem", self.name, raw.handle)
            return

        message = await self.assembler.assemble(raw)
        await self._delete(raw.handle)

        if self.watchdog.acknowledge(message.body):
            logger.info("[{}] health check ok", self.name)
            return

        self._dispatch(message)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(self, destination: str, body: str) -> None:
        """Create, send and purge one SMS. Raises TransportError."""
        handle = await self.transport.create_message(destination, body)
        await self.transport.send(handle)
        await self.transport.delete(handle)

    async def _delete(self, handle: str) -> None:
        try:
            await self.transport.delete(handle)
        except TransportError as e:
            logger.warning(f"[{self.name}] delete {handle} failed: {e}")

    def _dispatch(self, message: Message) -> None:
        self.bus.publish_inbound(message)
        if self.forwarder is not None and self.forwarder.enabled:
            task = asyncio.create_task(
                self.forwarder.deliver(message), name=f"{self.name}-forward"
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    def _escalate(self, reason: str) -> None:
        """Fail the session after the grace delay; later calls are no-ops."""
        if self._escalation is not None:
            return
        logger.critical("{}; exiting in {}s", reason, self.health_check.grace)
        self._escalation = asyncio.get_running_loop().call_later(
            self.health_check.grace, self._fail, reason
        )

    def _fail(self, reason: str) -> None:
        if self._fatal is not None and not self._fatal.done():
            self._fatal.set_exception(FatalGatewayError(reason))
