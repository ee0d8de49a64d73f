"""WAP-push / MMS decoder backed by python-messaging."""

from __future__ import annotations

from array import array
from typing import Any

from messaging.mms.message import MMSMessage
from messaging.sms.wap import extract_push_notification

from sillio.modem.base import BaseDecoder, DecodeError, Part, PushHeaders


def _address(value: Any) -> str:
    # Encoded-string addresses carry a type suffix: "+15551234567/TYPE=PLMN"
    text = str(value)
    return text.split("/TYPE=", 1)[0]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class MessagingDecoder(BaseDecoder):
    """Decoder for the binary formats ModemManager hands us for MMS."""

    def decode_push(self, data: bytes) -> PushHeaders:
        try:
            notification = extract_push_notification(data)
        except Exception as e:
            raise DecodeError(f"WAP push: {e}") from e

        headers = dict(notification.headers)
        return PushHeaders(
            sender=_address(headers["From"]) if headers.get("From") else "",
            to=[_address(to) for to in _as_list(headers.get("To"))],
            content_location=str(headers.get("Content-Location") or ""),
            extra=headers,
        )

    def decode_multipart(self, data: bytes) -> list[Part]:
        try:
            message = MMSMessage.from_data(array("B", data))
        except Exception as e:
            raise DecodeError(f"MMS body: {e}") from e

        parts = []
        for data_part in message.data_parts:
            params = getattr(data_part, "content_type_parameters", {}) or {}
            headers = getattr(data_part, "headers", {}) or {}
            parts.append(
                Part(
                    content_type=data_part.content_type,
                    data=bytes(data_part.data),
                    filename=str(headers.get("Content-Location") or ""),
                    header_name=str(params.get("Name") or ""),
                )
            )
        return parts
