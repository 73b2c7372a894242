#!/usr/bin/env python3
"""
Telegram probe client

Posts a water meter telegram to a running ingress and prints the response.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from aiocoap import Context, Message
from aiocoap.numbers.codes import Code

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from coap_core.listener import COAP_PORT

# application/octet-stream
CONTENT_FORMAT_OCTETS = 42

# Regular telegram captured from a field meter (208 bytes, battery 96%)
REFERENCE_TELEGRAM = (
    "010040D00022765905C43ED46110000000000000000000000000738BCF61000000000000"
    "0000F0D8FFFF0100D0A1D161000000000000000000000000000000000000000000000000"
    "000000000000000000000000000000000000000000000000000000000000000000000000"
    "000000000000000000000000000000000000000000000000000000000000000000000000"
    "0000AAAA85010000038200000000000000000000E6000800000090FF0314B32700004300"
    "02001700000004001A00002DFCA6EB190025EA4800E2FB540060919F"
)


async def send(host: str, port: int, path: str, payload: bytes, timeout: float) -> Message:
    context = await Context.create_client_context()
    try:
        if payload:
            request = Message(
                code=Code.POST,
                uri=f"coap://{host}:{port}{path}",
                payload=payload,
                content_format=CONTENT_FORMAT_OCTETS,
            )
        else:
            request = Message(code=Code.GET, uri=f"coap://{host}:{port}{path}")
        return await asyncio.wait_for(context.request(request).response, timeout)
    finally:
        await context.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Send a telegram to the CoAP ingress")
    parser.add_argument("--host", default="127.0.0.1", help="Hostname or IP of the CoAP server")
    parser.add_argument("--port", type=int, default=COAP_PORT, help="CoAP server port")
    parser.add_argument("--timeout", type=float, default=5.0, help="Timeout in seconds")
    parser.add_argument("--path", default="/coap", help="Resource path")
    parser.add_argument("--hex", default=REFERENCE_TELEGRAM, help="Telegram as hex string")
    parser.add_argument("--hello", action="store_true", help="GET /hello instead of posting")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logger = logging.getLogger("send_telegram")

    path, payload = ("/hello", b"") if args.hello else (args.path, bytes.fromhex(args.hex))

    try:
        response = asyncio.run(send(args.host, args.port, path, payload, args.timeout))
    except asyncio.TimeoutError:
        logger.error(f"No response from {args.host}:{args.port} within {args.timeout}s")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unable to get a response from coap server: {e}")
        sys.exit(1)

    logger.info(f"response: {response.code} {response.payload!r}")


if __name__ == "__main__":
    main()
