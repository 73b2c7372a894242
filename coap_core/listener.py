"""
UDP listener for the CoAP front-end.
"""

import asyncio
import itertools
import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from aiocoap import Message

from .errors import TransportError
from .message import ResponseWriter, compose_reset, compose_response, decode_frame
from .mux import Router


COAP_PORT = 5683


@dataclass
class ListenerConfig:
    """Listener configuration."""
    host: str = "0.0.0.0"
    port: int = COAP_PORT


class _DatagramProtocol(asyncio.DatagramProtocol):

    def __init__(self, listener: "UdpListener"):
        self.listener = listener

    def connection_made(self, transport):
        self.listener._transport = transport

    def datagram_received(self, data, addr):
        self.listener.handle_datagram(data, addr)

    def error_received(self, exc):
        self.listener.on_error(TransportError(f"socket error: {exc}"))

    def connection_lost(self, exc):
        if exc:
            self.listener.on_error(TransportError(f"connection lost: {exc}"))


class UdpListener:
    """
    Binds a datagram socket and serves each datagram through a Router.

    Every datagram is handled on its own; no state is kept between them
    apart from the message id counter for NON responses.
    """

    def __init__(
        self,
        router: Router,
        config: ListenerConfig,
        on_error: Callable[[Exception], None],
        logger: Optional[logging.Logger] = None
    ):
        self.router = router
        self.config = config
        self.on_error = on_error
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._message_ids = itertools.count(random.randrange(0x10000))

    @property
    def running(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    @property
    def address(self) -> Optional[Tuple]:
        """Bound (host, port), useful when configured with port 0."""
        if not self._transport:
            return None
        return self._transport.get_extra_info("sockname")

    async def start(self) -> None:
        """
        Bind the socket.

        Raises:
            TransportError: the address could not be bound
        """
        loop = asyncio.get_running_loop()
        try:
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self),
                local_addr=(self.config.host, self.config.port)
            )
        except OSError as e:
            raise TransportError(
                f"failed to create udp listener on {self.config.host}:{self.config.port}: {e}"
            ) from e

        self.logger.info(f"Listening on {self.address}")

    async def stop(self) -> None:
        """Close the socket."""
        if self._transport:
            self._transport.close()
            self._transport = None
            self.logger.info("Listener closed")

    def handle_datagram(self, data: bytes, remote: Tuple) -> None:
        try:
            request = decode_frame(data, remote)
        except TransportError as e:
            self.on_error(e)
            return

        if request.is_ping:
            self._send(compose_reset(request), remote)
            return

        if not request.is_request:
            self.logger.debug(f"Ignoring non-request message from {remote}: {request}")
            return

        writer = ResponseWriter(remote)
        try:
            self.router.serve(writer, request)
        except Exception:
            self.logger.exception(f"Unhandled error serving {request.path} for {remote}")
            return

        if writer.written:
            mid = next(self._message_ids) & 0xFFFF
            self._send(compose_response(request, writer.response, mid), remote)

    def _send(self, message: Message, remote: Tuple) -> None:
        if not self._transport:
            self.on_error(TransportError("listener is not running", remote=remote))
            return

        try:
            self._transport.sendto(message.encode(), remote)
        except OSError as e:
            self.on_error(TransportError(f"unable to send response to {remote}: {e}", remote=remote))
