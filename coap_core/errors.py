"""
Transport level errors for the CoAP front-end.
"""


class TransportError(Exception):
    """Socket bind/read/write failure or an undecodable frame."""

    def __init__(self, message: str, remote=None):
        super().__init__(message)
        self.remote = remote


class TruncatedMessageError(TransportError):
    """Datagram shorter than the CoAP header it announces."""


class MalformedFrameError(TransportError):
    """Datagram that is not a valid CoAP message."""
