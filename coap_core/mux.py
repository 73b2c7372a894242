"""
Request multiplexer and middleware chain.

Handlers are plain callables ``handler(writer, request)``. Middleware wrap a
handler and return a new one; a middleware that does not call the next
handler (and writes nothing) drops the request silently.
"""

import logging
from typing import Callable, Dict, List, Optional

from aiocoap.numbers.codes import Code

from .errors import TruncatedMessageError
from .message import Request, ResponseWriter


Handler = Callable[[ResponseWriter, Request], None]
Middleware = Callable[[Handler], Handler]

# RFC 6690 resource discovery, probed by internet-wide scanners
DISCOVERY_PATHS = (".well-known/core", "/.well-known/core")


def normalize_path(path: str) -> str:
    return "/" + path.strip("/")


def not_found(writer: ResponseWriter, request: Request) -> None:
    writer.set_response(Code.NOT_FOUND)


class Router:
    """Routes requests by Uri-Path through an ordered middleware chain."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._routes: Dict[str, Handler] = {}
        self._middleware: List[Middleware] = []
        self.default_handler: Handler = not_found

    def handle(self, path: str, handler: Handler) -> None:
        """Register a handler for a path ('coap' and '/coap' are the same route)."""
        self._routes[normalize_path(path)] = handler
        self.logger.debug(f"Route registered: {normalize_path(path)}")

    def use(self, *middleware: Middleware) -> None:
        """Append middleware; the first one registered runs outermost."""
        self._middleware.extend(middleware)

    @property
    def routes(self) -> List[str]:
        return sorted(self._routes)

    def _dispatch(self, writer: ResponseWriter, request: Request) -> None:
        handler = self._routes.get(normalize_path(request.path), self.default_handler)
        handler(writer, request)

    def serve(self, writer: ResponseWriter, request: Request) -> None:
        """Run a request through the middleware chain and its handler."""
        handler: Handler = self._dispatch
        for middleware in reversed(self._middleware):
            handler = middleware(handler)
        handler(writer, request)


def discovery_filter() -> Middleware:
    """Drop resource discovery probes without answering them."""

    def middleware(next_handler: Handler) -> Handler:
        def handler(writer: ResponseWriter, request: Request) -> None:
            if request.path.lstrip("/") in DISCOVERY_PATHS:
                return
            next_handler(writer, request)
        return handler

    return middleware


def access_logger(logger: logging.Logger) -> Middleware:
    """Log the client address and a request summary, then continue."""

    def middleware(next_handler: Handler) -> Handler:
        def handler(writer: ResponseWriter, request: Request) -> None:
            logger.info(f"client address {writer.remote}, {request}")
            next_handler(writer, request)
        return handler

    return middleware


def error_handler(logger: logging.Logger) -> Callable[[Exception], None]:
    """
    Sink for transport level errors.

    Truncated messages are expected under partial reads and are not logged.
    """

    def handle(err: Exception) -> None:
        if isinstance(err, TruncatedMessageError):
            return
        logger.error(f"coap error: {err}")

    return handle
