"""
CoAP handlers for water meter ingestion.
"""

import logging
from typing import Optional

from aiocoap.numbers.codes import Code

from coap_core.message import CONTENT_FORMAT_TEXT_PLAIN, Request, ResponseWriter
from .telegram import MeterReading, TelegramDecodeError, TelegramDecoder, format_reading


DEFAULT_MAX_PAYLOAD_SIZE = 256
HELLO_PAYLOAD = b"hello, world!"


class IngestionHandler:
    """
    Decodes telegrams posted by meters and acknowledges them.

    The acknowledgement never depends on the decode outcome.
    """

    def __init__(
        self,
        decoder: TelegramDecoder,
        max_payload_size: int = DEFAULT_MAX_PAYLOAD_SIZE,
        logger: Optional[logging.Logger] = None
    ):
        self.decoder = decoder
        self.max_payload_size = max_payload_size
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    def read_body(self, request: Request) -> bytes:
        """Request body cut down to max_payload_size bytes."""
        body = request.body
        if len(body) > self.max_payload_size:
            self.logger.debug(
                f"Payload of {len(body)} bytes truncated to {self.max_payload_size}"
            )
        return bytes(body[:self.max_payload_size])

    def decode(self, payload: bytes) -> Optional[MeterReading]:
        """Decode and log a telegram; returns None when it is rejected."""
        self.logger.debug(f"received payload hex={payload.hex().upper()} bytecount={len(payload)}")

        try:
            reading = self.decoder.decode(payload)
        except TelegramDecodeError as e:
            self.logger.error(f"decode failed [{e.kind.value}]: {e}")
            return None

        for line in format_reading(reading):
            self.logger.info(line)
        if not reading.battery_level_valid:
            self.logger.error(f"battery level has invalid value {reading.battery_level}%")

        return reading

    def __call__(self, writer: ResponseWriter, request: Request) -> None:
        payload = self.read_body(request)

        if payload:
            self.decode(payload)
        else:
            self.logger.info("empty payload")

        writer.set_response(Code.CHANGED, CONTENT_FORMAT_TEXT_PLAIN)


class LivenessHandler:
    """Static greeting used as a reachability probe."""

    def __call__(self, writer: ResponseWriter, request: Request) -> None:
        writer.set_response(Code.CONTENT, CONTENT_FORMAT_TEXT_PLAIN, HELLO_PAYLOAD)
