#!/usr/bin/env python3
"""End-to-end tests of the UDP listener on the loopback interface."""

import asyncio
import logging
import sys
from pathlib import Path

import pytest
from aiocoap import Message
from aiocoap.numbers.codes import Code
from aiocoap.numbers.types import Type

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from telegram_builder import REFERENCE_TELEGRAM
from coap_core.errors import TransportError, TruncatedMessageError
from coap_core.listener import ListenerConfig, UdpListener
from main import build_router

TIMEOUT = 2.0
SILENCE = 0.3


class ClientProtocol(asyncio.DatagramProtocol):
    def __init__(self):
        self.responses = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.responses.put_nowait(data)


async def start_listener(errors: list) -> UdpListener:
    logger = logging.getLogger("test.listener")
    listener = UdpListener(
        build_router({}, logger),
        ListenerConfig(host="127.0.0.1", port=0),
        on_error=errors.append,
        logger=logger
    )
    await listener.start()
    return listener


async def exchange(listener: UdpListener, datagrams, wait: float = TIMEOUT) -> list:
    """Send datagrams and collect decoded replies until the line goes quiet."""
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        ClientProtocol, remote_addr=listener.address[:2]
    )
    try:
        for data in datagrams:
            transport.sendto(data)

        replies = []
        while True:
            try:
                data = await asyncio.wait_for(protocol.responses.get(), wait)
            except asyncio.TimeoutError:
                return replies
            replies.append(Message.decode(data))
            wait = SILENCE
    finally:
        transport.close()


def request(path, payload=b"", mtype=Type.CON, code=Code.POST, mid=0x0101, token=b"\x0A\x0B"):
    return Message(mtype=mtype, mid=mid, code=code, token=token, uri_path=path, payload=payload).encode()


def run(coro_factory):
    """Start a listener, run the scenario, always close the socket."""
    errors = []

    async def scenario():
        listener = await start_listener(errors)
        try:
            return await coro_factory(listener)
        finally:
            await listener.stop()

    return asyncio.run(scenario()), errors


def test_ingestion_round_trip():
    """A confirmable POST gets a piggybacked, empty 2.04."""
    print("Testing ingestion round trip...")

    replies, errors = run(lambda listener: exchange(listener, [request(("coap",), REFERENCE_TELEGRAM)]))

    assert len(replies) == 1
    reply = replies[0]
    assert reply.mtype == Type.ACK
    assert reply.mid == 0x0101
    assert reply.token == b"\x0A\x0B"
    assert reply.code == Code.CHANGED
    assert reply.payload == b""
    assert reply.opt.content_format == 0
    assert errors == []

    print("  ✅ Ingestion round trip passed")


def test_invalid_telegram_still_acknowledged():
    replies, _ = run(lambda listener: exchange(listener, [request(("coap",), b"\x02\x00" + bytes(200))]))
    assert [r.code for r in replies] == [Code.CHANGED]


def test_hello_non_confirmable():
    replies, _ = run(lambda listener: exchange(
        listener, [request(("hello",), mtype=Type.NON, code=Code.GET, mid=42)]
    ))

    assert len(replies) == 1
    assert replies[0].mtype == Type.NON
    assert replies[0].code == Code.CONTENT
    assert replies[0].payload == b"hello, world!"
    assert replies[0].token == b"\x0A\x0B"


def test_discovery_probe_gets_no_reply():
    """The client just times out."""
    replies, errors = run(lambda listener: exchange(
        listener, [request((".well-known", "core"), code=Code.GET)], wait=SILENCE
    ))
    assert replies == []
    assert errors == []


def test_unknown_path():
    replies, _ = run(lambda listener: exchange(listener, [request(("nope",), code=Code.GET)]))
    assert [r.code for r in replies] == [Code.NOT_FOUND]


def test_truncated_datagram():
    replies, errors = run(lambda listener: exchange(listener, [b"\x40\x01"], wait=SILENCE))
    assert replies == []
    assert len(errors) == 1
    assert isinstance(errors[0], TruncatedMessageError)


def test_ping_answered_with_reset():
    ping = Message(mtype=Type.CON, mid=77, code=Code.EMPTY).encode()
    replies, _ = run(lambda listener: exchange(listener, [ping]))

    assert len(replies) == 1
    assert replies[0].mtype == Type.RST
    assert replies[0].mid == 77


def test_service_survives_bad_datagrams():
    datagrams = [
        b"",
        b"\xff\xff\xff\xff\xff",
        request(("coap",), b"\x01"),
        request(("hello",), code=Code.GET, mid=9),
    ]
    replies, _ = run(lambda listener: exchange(listener, datagrams))
    assert [r.code for r in replies] == [Code.CHANGED, Code.CONTENT]


def test_bind_failure():
    async def scenario():
        first = await start_listener([])
        try:
            second = UdpListener(
                first.router,
                ListenerConfig(host="127.0.0.1", port=first.address[1]),
                on_error=lambda e: None
            )
            with pytest.raises(TransportError):
                await second.start()
        finally:
            await first.stop()

    asyncio.run(scenario())


def main():
    print("=" * 60)
    print("Listener Tests")
    print("=" * 60)

    test_ingestion_round_trip()

    print("=" * 60)
    print("All tests passed! ✅")


if __name__ == "__main__":
    main()
