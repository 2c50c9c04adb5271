"""Transport boundary for the request lifecycle.

This is an internal module. It picks the function that actually sends a
request, builds ``httpx.Request`` objects from descriptors, and translates
transport exceptions into the engine's error types.

A send function has the shape::

    async send(request: httpx.Request) -> httpx.Response

and must return a streaming response whose body has not been read yet.
"""

import asyncio
import errno
import ipaddress
import socket
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

import httpx

from courier._timings import Timings
from courier.exceptions import RequestError, TimeoutError
from courier.models import RequestDescriptor

Send = Callable[[httpx.Request], Awaitable[httpx.Response]]

UPLOAD_CHUNK_SIZE = 64 * 1024

# Fallback error codes for httpx exceptions that carry no OS error.
_HTTPX_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (httpx.TimeoutException, "ETIMEDOUT"),
    (httpx.ConnectError, "ECONNREFUSED"),
    (httpx.RemoteProtocolError, "ECONNRESET"),
    (httpx.ReadError, "ECONNRESET"),
    (httpx.WriteError, "EPIPE"),
)

_TIMEOUT_EVENTS: tuple[tuple[type[Exception], str], ...] = (
    (httpx.ConnectTimeout, "connect"),
    (httpx.ReadTimeout, "read"),
    (httpx.WriteTimeout, "write"),
    (httpx.PoolTimeout, "pool"),
)

_GAI_ERROR_CODES = {
    socket.EAI_NONAME: "ENOTFOUND",
    socket.EAI_AGAIN: "EAI_AGAIN",
}


class Attempt:
    """One issuance of a descriptor against the network.

    Attributes:
        request: The request being sent.
        timings: Timestamps recorded for this attempt.
        task: The task running the attempt, once started.
        aborted: Whether ``abort`` was called.
    """

    def __init__(self, request: httpx.Request, timings: Timings) -> None:
        self.request = request
        self.timings = timings
        self.task: asyncio.Task | None = None
        self.aborted = False

    @property
    def live(self) -> bool:
        """Whether the attempt is still in flight."""
        return self.task is not None and not self.task.done()

    def abort(self) -> None:
        """Cancel the attempt. Safe to call more than once."""
        if self.aborted:
            return
        self.aborted = True
        if self.task is not None:
            self.task.cancel()


def open_client(socket_path: str | None = None) -> httpx.AsyncClient:
    """Create a client, routed through a Unix socket when given one."""
    transport = None
    if socket_path is not None:
        transport = httpx.AsyncHTTPTransport(uds=socket_path)
    return httpx.AsyncClient(transport=transport)


def select_sender(
    descriptor: RequestDescriptor,
    fallback: Callable[[RequestDescriptor], httpx.AsyncClient],
) -> Send:
    """Pick the send function for a descriptor.

    Precedence: a custom ``transport`` function, then the ``agent`` for the
    descriptor's protocol, then the client returned by ``fallback``.

    Args:
        descriptor: The request about to be issued.
        fallback: Supplies a client when the descriptor names none.

    Returns:
        The send function.
    """
    if descriptor.transport is not None:
        return descriptor.transport

    client = _agent_for(descriptor.agent, descriptor.protocol)
    if client is None:
        client = fallback(descriptor)
    lookup = descriptor.lookup if descriptor.socket_path is None else None

    async def send(request: httpx.Request) -> httpx.Response:
        request.extensions.setdefault("timeout", client.timeout.as_dict())
        if lookup is not None:
            await resolve_address(request, lookup)
        return await client.send(request, stream=True, follow_redirects=False)

    return send


async def resolve_address(request: httpx.Request, lookup: Any) -> None:
    """Point ``request`` at an address found through ``lookup``.

    The ``Host`` header keeps the original name and TLS is told the name
    through the ``sni_hostname`` extension, so only the connection target
    changes. Literal IP addresses are left alone.
    """
    host = request.url.host
    if not host:
        return
    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        return

    addresses = await lookup.lookup(host, request.url.port)
    if not addresses:
        return
    _, address = addresses[0]
    if ":" in address:
        address = f"[{address}]"
    request.extensions["sni_hostname"] = host
    request.url = request.url.copy_with(host=address)


def _agent_for(agent: Any, protocol: str) -> httpx.AsyncClient | None:
    if isinstance(agent, Mapping):
        return agent.get(protocol)
    return agent


def build_request(
    descriptor: RequestDescriptor,
    content: Any,
    timings: Timings,
) -> httpx.Request:
    """Build the ``httpx.Request`` for one attempt.

    Args:
        descriptor: The request to send.
        content: Body content: ``bytes``, ``str``, an async iterable of
            ``bytes``, or ``None``.
        timings: Receives httpcore trace events.
    """
    extensions: dict[str, Any] = {"trace": timings.trace}
    if descriptor.timeout is not None:
        extensions["timeout"] = descriptor.timeout.to_httpx().as_dict()
    headers = {
        name: str(value) for name, value in descriptor.headers.items() if value is not None
    }
    return httpx.Request(
        descriptor.method,
        descriptor.url,
        headers=headers,
        content=content,
        extensions=extensions,
    )


async def progress_stream(
    body: bytes,
    report: Callable[[int, int | None], None],
) -> AsyncIterator[bytes]:
    """Yield ``body`` in chunks, reporting bytes sent after each one."""
    total = len(body)
    report(0, total)
    for offset in range(0, total, UPLOAD_CHUNK_SIZE):
        chunk = body[offset : offset + UPLOAD_CHUNK_SIZE]
        yield chunk
        report(offset + len(chunk), total)


def error_code(error: BaseException) -> str | None:
    """Find a network error code such as ``ECONNRESET`` for an exception.

    Walks the exception chain looking for an ``OSError`` with an errno,
    then falls back to a code implied by the httpx exception class.
    """
    current: BaseException | None = error
    seen = 0
    while current is not None and seen < 8:
        if isinstance(current, socket.gaierror):
            code = _GAI_ERROR_CODES.get(current.errno)
            if code:
                return code
        elif isinstance(current, OSError) and current.errno:
            code = errno.errorcode.get(current.errno)
            if code:
                return code
        current = current.__cause__ or current.__context__
        seen += 1

    for error_type, code in _HTTPX_ERROR_CODES:
        if isinstance(error, error_type):
            return code
    return None


def classify_transport_error(
    error: BaseException,
    descriptor: RequestDescriptor,
    timings: Timings,
) -> RequestError:
    """Translate a transport exception into a ``RequestError``.

    ``asyncio.TimeoutError`` means the overall request budget elapsed;
    ``httpx.TimeoutException`` means one of the phase budgets did.
    """
    timings.mark("error")
    if isinstance(error, asyncio.TimeoutError):
        budget = descriptor.timeout.request if descriptor.timeout else None
        return TimeoutError(
            f"Timeout awaiting 'request' for {budget}ms",
            event="request",
            descriptor=descriptor,
            cause=error,
            timings=timings,
        )

    if isinstance(error, httpx.TimeoutException):
        event = next(
            (name for error_type, name in _TIMEOUT_EVENTS if isinstance(error, error_type)),
            "request",
        )
        return TimeoutError(
            f"Timeout awaiting '{event}'",
            event=event,
            descriptor=descriptor,
            cause=error,
            timings=timings,
        )

    message = str(error) or type(error).__name__
    return RequestError(
        message,
        code=error_code(error),
        descriptor=descriptor,
        cause=error,
        timings=timings,
    )
