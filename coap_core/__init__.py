"""CoAP Core - Frame handling, routing and the UDP listener."""

from .errors import MalformedFrameError, TransportError, TruncatedMessageError
from .message import (
    CONTENT_FORMAT_TEXT_PLAIN,
    Request,
    Response,
    ResponseWriter,
    compose_response,
    decode_frame,
)
from .mux import Router, access_logger, discovery_filter, error_handler
from .listener import COAP_PORT, ListenerConfig, UdpListener

__all__ = [
    "MalformedFrameError",
    "TransportError",
    "TruncatedMessageError",
    "CONTENT_FORMAT_TEXT_PLAIN",
    "Request",
    "Response",
    "ResponseWriter",
    "compose_response",
    "decode_frame",
    "Router",
    "access_logger",
    "discovery_filter",
    "error_handler",
    "COAP_PORT",
    "ListenerConfig",
    "UdpListener",
]
