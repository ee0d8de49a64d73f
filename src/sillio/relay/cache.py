"""Best-effort on-disk copies of raw notifications and fetched MMS bodies.

Layout (one flat directory per user)::

    sms.<millis>                       raw notification record as JSON
    mms.<millis>.<content-location>    fetched MMS body, '/' replaced by '_'

Write failures are logged and never propagated.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

from loguru import logger

from sillio.constants import CACHE_MMS_PREFIX, CACHE_SMS_PREFIX
from sillio.modem.base import RawMessage


def safe_segment(content_location: str) -> str:
    """Flatten a content-location URL into a single path segment."""
    return content_location.replace("/", "_")


class MessageCache:
    """Writes cache files under ``directory``; a None directory disables it."""

    def __init__(self, directory: Path | None) -> None:
        self.directory = directory
        self._last_stamp = 0

    @property
    def enabled(self) -> bool:
        return self.directory is not None

    def _stamp(self) -> int:
        """Millisecond timestamp, strictly increasing within this process."""
        stamp = time.time_ns() // 1_000_000
        if stamp <= self._last_stamp:
            stamp = self._last_stamp + 1
        self._last_stamp = stamp
        return stamp

    def _write(self, name: str, data: bytes) -> Path | None:
        if self.directory is None:
            return None
        path = self.directory / name
        try:
            self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            path.write_bytes(data)
            path.chmod(0o600)
        except OSError as e:
            logger.warning(f"Cache write to {path} failed: {e}")
            return None
        logger.debug("Cached {}", path)
        return path

    def write_notification(self, raw: RawMessage) -> Path | None:
        record = raw.raw or {
            "handle": raw.handle,
            "number": raw.number,
            "text": raw.text,
            "timestamp": raw.timestamp.isoformat() if raw.timestamp else None,
            "pdu_type": raw.pdu_type.name.lower(),
            "data": raw.data.hex(),
        }
        try:
            payload = json.dumps(record, default=str).encode()
        except (TypeError, ValueError) as e:
            logger.warning(f"Cannot serialize notification {raw.handle}: {e}")
            return None
        return self._write(f"{CACHE_SMS_PREFIX}.{self._stamp()}", payload)

    def write_mms(self, content_location: str, body: bytes) -> Path | None:
        name = f"{CACHE_MMS_PREFIX}.{self._stamp()}.{safe_segment(content_location)}"
        return self._write(name, body)
