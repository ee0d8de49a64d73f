"""Health-check watchdog state.

The engine periodically texts a uniquely tagged probe to the modem's own
number and expects it back as an inbound message with the exact same text.
This class only keeps the bookkeeping; the engine owns sending, alerting
and termination. Lost probes are found by scanning ``pending`` on each
tick and are never removed from it.

Not thread-safe: only the owning engine loop may touch it.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta

from sillio.config import HealthCheckConfig
from sillio.constants import HEALTH_CHECK_PREFIX


class HealthCheckWatchdog:
    def __init__(self, config: HealthCheckConfig, prefix: str = HEALTH_CHECK_PREFIX):
        self.timeout = timedelta(seconds=config.timeout)
        self.cooldown = timedelta(seconds=config.cooldown)
        self.prefix = prefix
        self.pending: dict[str, datetime] = {}
        self.last_sent: datetime | None = None
        self._last_ns = 0

    def stale(self, now: datetime) -> list[tuple[str, datetime]]:
        """Probes older than the timeout, oldest first."""
        return sorted(
            (
                (probe, sent_at)
                for probe, sent_at in self.pending.items()
                if now - sent_at > self.timeout
            ),
            key=lambda item: item[1],
        )

    def due(self, now: datetime) -> bool:
        """True once the cooldown since the last probe has elapsed."""
        return self.last_sent is None or now - self.last_sent >= self.cooldown

    def new_probe(self) -> str:
        """Probe text carrying a nanosecond stamp that never repeats."""
        ns = time.time_ns()
        if ns <= self._last_ns:
            ns = self._last_ns + 1
        self._last_ns = ns
        return f"{self.prefix} {ns}"

    def track(self, probe: str, now: datetime) -> None:
        self.pending[probe] = now

    def mark_sent(self, now: datetime) -> None:
        self.last_sent = now

    def acknowledge(self, body: str) -> bool:
        """Consume the pending probe whose text equals ``body``, if any."""
        return self.pending.pop(body, None) is not None
