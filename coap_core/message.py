"""
CoAP message handling.

Wraps aiocoap's wire codec with the request/response objects used by the
router and handlers.

Frame layout (RFC 7252):
- Ver/T/TKL: version (2 bits), type (2 bits), token length (4 bits)
- Code: class.detail (1 byte)
- Message ID (2 bytes, big-endian)
- Token (TKL bytes)
- Options, then 0xFF and the payload
"""

import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from aiocoap import Message
from aiocoap.error import UnparsableMessage
from aiocoap.numbers.codes import Code
from aiocoap.numbers.types import Type

from .errors import MalformedFrameError, TruncatedMessageError


HEADER_LENGTH = 4
MAX_TOKEN_LENGTH = 8

# text/plain;charset=utf-8
CONTENT_FORMAT_TEXT_PLAIN = 0


def decode_frame(data: bytes, remote: Optional[Tuple] = None) -> "Request":
    """
    Decode a datagram into a Request.

    Raises:
        TruncatedMessageError: datagram ends inside the header or token
        MalformedFrameError: anything else aiocoap refuses to parse
    """
    if len(data) < HEADER_LENGTH:
        raise TruncatedMessageError(
            f"message truncated: {len(data)} bytes, header needs {HEADER_LENGTH}",
            remote=remote
        )

    token_length = data[0] & 0x0F
    if token_length > MAX_TOKEN_LENGTH:
        raise MalformedFrameError(f"invalid token length {token_length}", remote=remote)

    if len(data) < HEADER_LENGTH + token_length:
        raise TruncatedMessageError(
            f"message truncated: token of {token_length} bytes announced, "
            f"{len(data) - HEADER_LENGTH} present",
            remote=remote
        )

    try:
        message = Message.decode(data)
    except (struct.error, IndexError) as e:
        raise TruncatedMessageError(f"message truncated: {e}", remote=remote) from e
    except (UnparsableMessage, ValueError) as e:
        raise MalformedFrameError(f"unparsable message: {e}", remote=remote) from e

    return Request(message=message, remote=remote)


@dataclass
class Request:
    """An inbound CoAP message and the address it came from."""

    message: Message
    remote: Optional[Tuple] = None

    @property
    def path(self) -> str:
        """Uri-Path options joined with '/', always with a leading '/'."""
        return "/" + "/".join(self.message.opt.uri_path)

    @property
    def body(self) -> bytes:
        return self.message.payload

    @property
    def code(self) -> Code:
        return self.message.code

    @property
    def mtype(self) -> Type:
        return self.message.mtype

    @property
    def mid(self) -> int:
        return self.message.mid

    @property
    def token(self) -> bytes:
        return self.message.token

    @property
    def is_request(self) -> bool:
        return self.code.is_request()

    @property
    def is_ping(self) -> bool:
        """Empty confirmable message (RFC 7252 section 4.3)."""
        return self.mtype == Type.CON and self.code == Code.EMPTY

    def __str__(self) -> str:
        return (
            f"Code: {self.code}, Type: {self.mtype}, MID: {self.mid}, "
            f"Token: {self.token.hex()}, Path: {self.path}, "
            f"Body Length: {len(self.body)}"
        )


@dataclass
class Response:
    code: Code
    content_format: int = CONTENT_FORMAT_TEXT_PLAIN
    payload: bytes = b""


class ResponseWriter:
    """
    Collects the response a handler wants to send.

    A writer that was never written to means no datagram goes back to the
    client.
    """

    def __init__(self, remote: Optional[Tuple] = None):
        self.remote = remote
        self.response: Optional[Response] = None

    @property
    def written(self) -> bool:
        return self.response is not None

    def set_response(self, code: Code, content_format: int = CONTENT_FORMAT_TEXT_PLAIN,
                     payload: bytes = b"") -> None:
        self.response = Response(code=code, content_format=content_format, payload=payload)


def compose_response(request: Request, response: Response, mid: int) -> Message:
    """
    Build the outbound message for a request.

    Confirmable requests get a piggybacked ACK reusing their message id;
    non-confirmable requests get a NON response with the given fresh id.
    """
    if request.mtype == Type.CON:
        mtype, mid = Type.ACK, request.mid
    else:
        mtype = Type.NON

    return Message(
        mtype=mtype,
        mid=mid,
        code=response.code,
        token=request.token,
        payload=response.payload,
        content_format=response.content_format,
    )


def compose_reset(request: Request) -> Message:
    """RST answering a CoAP ping."""
    return Message(mtype=Type.RST, mid=request.mid, code=Code.EMPTY)
