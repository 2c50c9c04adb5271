"""Per-attempt timing collection.

Timestamps are monotonic milliseconds. Connection-level timestamps come
from httpcore's ``trace`` request extension, so they are only filled in
when the request actually travels through an httpcore connection pool.
"""

import time

from pydantic import BaseModel


def now_ms() -> float:
    """Return the current monotonic time in milliseconds."""
    return time.monotonic() * 1000


class Timings(BaseModel):
    """Timestamps recorded during one attempt.

    Attributes:
        start: When the attempt was issued.
        socket: When a connection was requested.
        lookup: When name resolution finished.
        connect: When the TCP connection was established.
        secure_connect: When the TLS handshake finished.
        upload: When the request body was fully sent.
        response: When the response headers arrived.
        end: When the response body was fully read.
        error: When the attempt failed.
    """

    start: float
    socket: float | None = None
    lookup: float | None = None
    connect: float | None = None
    secure_connect: float | None = None
    upload: float | None = None
    response: float | None = None
    end: float | None = None
    error: float | None = None

    @classmethod
    def begin(cls) -> "Timings":
        """Create timings for an attempt starting now."""
        return cls(start=now_ms())

    def mark(self, name: str) -> None:
        """Record the current time under ``name`` unless already recorded."""
        if getattr(self, name) is None:
            setattr(self, name, now_ms())

    @property
    def phases(self) -> dict[str, float | None]:
        """Durations between consecutive timestamps, in milliseconds."""
        connected = self.secure_connect or self.connect
        return {
            "wait": _span(self.start, self.socket),
            "dns": _span(self.socket, self.lookup),
            "tcp": _span(self.lookup, self.connect),
            "tls": _span(self.connect, self.secure_connect),
            "request": _span(connected or self.start, self.upload),
            "first_byte": _span(self.upload, self.response),
            "download": _span(self.response, self.end),
            "total": _span(self.start, self.end or self.error),
        }

    def trace(self, event_name: str, info: dict) -> None:
        """Record timestamps from httpcore trace events.

        Suitable as the ``trace`` request extension. Names look like
        ``connection.connect_tcp.complete`` or
        ``http11.receive_response_headers.complete``.
        """
        if event_name == "connection.connect_tcp.started":
            self.mark("socket")
        elif event_name == "connection.connect_tcp.complete":
            self.mark("lookup")
            self.mark("connect")
        elif event_name == "connection.start_tls.complete":
            self.mark("secure_connect")
        elif event_name.endswith(".send_request_headers.started"):
            # A pooled connection skips the connect events entirely.
            self.mark("socket")
            self.mark("lookup")
            self.mark("connect")
        elif event_name.endswith(".send_request_body.complete"):
            self.mark("upload")
        elif event_name.endswith(".receive_response_headers.complete"):
            self.mark("response")


def _span(begin: float | None, finish: float | None) -> float | None:
    if begin is None or finish is None:
        return None
    return finish - begin
