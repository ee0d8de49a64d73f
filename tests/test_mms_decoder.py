"""Tests for MessagingDecoder against hand-encoded WAP push and MMS bodies."""

import pytest

from sillio.modem.base import DecodeError, Part
from sillio.modem.mms import MessagingDecoder

SENDER = b"+15551234567/TYPE=PLMN\x00"

# WSP push header (transaction id, PDU type 0x06, 3 header bytes) followed
# by an m-notification-ind
PUSH = (
    bytes([0x01, 0x06, 0x03, 0xBE, 0xAF, 0x84])
    + bytes([0x8C, 0x82])  # Message-Type: m-notification-ind
    + b"\x98T1\x00"  # Transaction-Id
    + bytes([0x8D, 0x90])  # MMS-Version: 1.0
    + bytes([0x89, len(SENDER) + 1, 0x80]) + SENDER  # From
    + b"\x97+15550000000/TYPE=PLMN\x00"  # To
    + b"\x83http://mmsc.example/m1\x00"  # Content-Location
)

# m-retrieve-conf with two parts: plain text, then a named JPEG
BODY = (
    bytes([0x8C, 0x84])
    + b"\x98T2\x00"
    + bytes([0x8D, 0x90])
    + b"\x84application/vnd.wap.multipart.mixed\x00"
    + b"\x02"
    + bytes([0x0B, 0x06]) + b"text/plain\x00" + b"hello "
    + bytes([0x21, 0x03, 0x14]) + b"image/jpeg\x00" + b"\x85cat.jpg\x00"
    + b"\x83photo1.jpg\x00"
    + b"\xff\xd8\xff"
)


@pytest.fixture
def decoder():
    return MessagingDecoder()


# ---------------------------------------------------------------------------
# WAP push
# ---------------------------------------------------------------------------


class TestDecodePush:
    def test_notification_headers(self, decoder):
        push = decoder.decode_push(PUSH)

        assert push.sender == "+15551234567"
        assert push.to == ["+15550000000"]
        assert push.content_location == "http://mmsc.example/m1"
        assert push.extra["Message-Type"] == "m-notification-ind"

    def test_not_a_push(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode_push(b"\x01\x05\x00")

    def test_truncated_push(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode_push(b"\x01")


# ---------------------------------------------------------------------------
# Multipart body
# ---------------------------------------------------------------------------


class TestDecodeMultipart:
    def test_parts_in_order(self, decoder):
        assert decoder.decode_multipart(BODY) == [
            Part(content_type="text/plain", data=b"hello "),
            Part(
                content_type="image/jpeg",
                data=b"\xff\xd8\xff",
                filename="photo1.jpg",
                header_name="cat.jpg",
            ),
        ]

    def test_part_data_is_bytes(self, decoder):
        parts = decoder.decode_multipart(BODY)
        assert all(isinstance(part.data, bytes) for part in parts)

    def test_truncated_header_is_decode_error(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode_multipart(b"\x8c")
