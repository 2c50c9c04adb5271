"""Exception hierarchy for the courier HTTP engine.

This module defines every error a logical request can end with. The
hierarchy lets callers catch one specific failure or whole categories.

Exception Hierarchy:
    CourierError (base)
    ├── RequestError - The transport failed to complete an attempt
    │   ├── TimeoutError - A timeout budget elapsed
    │   └── ReadError - The response body could not be read
    ├── CacheError - The response cache failed
    ├── UnsupportedProtocolError - Protocol is neither http nor https
    ├── MaxRedirectsError - More than 10 redirects
    ├── HTTPError - The server answered with an error status
    ├── ParseError - The response body could not be parsed
    ├── CancelError - The request was aborted
    └── OptionsNormalizedError - A frozen option was reassigned

Example:
    Catching specific errors::

        try:
            response = await engine.get("https://example.test/items")
        except HTTPError as e:
            print(f"Server said {e.status_code}")
        except TimeoutError as e:
            print(f"Timed out during {e.event}")

    Catching all engine errors::

        try:
            await engine.post("https://example.test/items", json={"a": 1})
        except CourierError as e:
            print(f"Request failed: {e}")
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from courier._response import Response
    from courier._timings import Timings
    from courier.models import RequestDescriptor


class CourierError(Exception):
    """Base exception for all courier errors.

    Every exception raised by the engine inherits from this class. The
    attributes read by the retry decision (``code``, ``method``,
    ``status_code``, ``headers``) are always present.

    Attributes:
        message: Human-readable error description.
        code: Network error code such as ``ECONNRESET``, if known.
        descriptor: The request descriptor the error belongs to, if any.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        descriptor: "RequestDescriptor | None" = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            code: Network error code, if known.
            descriptor: The request descriptor the error belongs to.
        """
        self.message = message
        self.code = code
        self.descriptor = descriptor
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message

    @property
    def method(self) -> str | None:
        """HTTP method of the failed request."""
        if self.descriptor is None:
            return None
        return self.descriptor.method

    @property
    def url(self) -> str | None:
        """Absolute URL of the failed request."""
        if self.descriptor is None:
            return None
        return self.descriptor.url

    @property
    def status_code(self) -> int | None:
        """Status code of the response that caused the error, if any."""
        return None

    @property
    def headers(self) -> dict[str, str]:
        """Headers of the response that caused the error, if any."""
        return {}


class RequestError(CourierError):
    """The transport failed before a complete response was received.

    Raised for connection failures, protocol errors and other I/O problems.
    These errors are eligible for retry when their ``code`` is listed in the
    retry policy.

    Attributes:
        cause: The underlying exception raised by the transport.
        timings: Timings of the attempt that failed, if recorded.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        descriptor: "RequestDescriptor | None" = None,
        cause: BaseException | None = None,
        timings: "Timings | None" = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            code: Network error code, if known.
            descriptor: The request descriptor the error belongs to.
            cause: The underlying transport exception.
            timings: Timings of the failed attempt.
        """
        self.cause = cause
        self.timings = timings
        super().__init__(message, code=code, descriptor=descriptor)

    def __str__(self) -> str:
        """Return string representation including URL if available."""
        if self.url:
            return f"{self.message} (url: {self.url})"
        return self.message


class TimeoutError(RequestError):
    """A timeout budget elapsed while the request was in flight.

    Attributes:
        event: Which budget elapsed (``request``, ``connect``, ``read``,
            ``write`` or ``pool``).
    """

    def __init__(
        self,
        message: str,
        event: str,
        descriptor: "RequestDescriptor | None" = None,
        cause: BaseException | None = None,
        timings: "Timings | None" = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            event: Which timeout budget elapsed.
            descriptor: The request descriptor the error belongs to.
            cause: The underlying timeout exception.
            timings: Timings of the attempt that timed out.
        """
        self.event = event
        super().__init__(
            message,
            code="ETIMEDOUT",
            descriptor=descriptor,
            cause=cause,
            timings=timings,
        )


class ReadError(RequestError):
    """The response body could not be read after the headers arrived."""


class CacheError(CourierError):
    """The response cache failed.

    Raised when the cache layer itself fails, as opposed to the transport
    it wraps. Cache errors are never retried.

    Attributes:
        cause: The underlying exception raised by the cache.
    """

    def __init__(
        self,
        message: str,
        descriptor: "RequestDescriptor | None" = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            descriptor: The request descriptor the error belongs to.
            cause: The underlying cache exception.
        """
        self.cause = cause
        super().__init__(message, descriptor=descriptor)


class UnsupportedProtocolError(CourierError):
    """The descriptor's protocol is neither ``http`` nor ``https``."""

    def __init__(self, descriptor: "RequestDescriptor") -> None:
        """Initialize the exception.

        Args:
            descriptor: The request descriptor with the bad protocol.
        """
        self.protocol = descriptor.protocol
        super().__init__(
            f"Unsupported protocol {descriptor.protocol!r}",
            descriptor=descriptor,
        )


class MaxRedirectsError(CourierError):
    """The redirect chain grew past its limit.

    Attributes:
        redirect_urls: Every URL visited before giving up.
        response_status: Status code of the redirect that was refused.
    """

    def __init__(
        self,
        response_status: int,
        redirect_urls: list[str],
        descriptor: "RequestDescriptor | None" = None,
    ) -> None:
        """Initialize the exception.

        Args:
            response_status: Status code of the redirect that was refused.
            redirect_urls: The redirect chain so far.
            descriptor: The request descriptor the error belongs to.
        """
        self.response_status = response_status
        self.redirect_urls = list(redirect_urls)
        super().__init__(
            f"Redirected {len(self.redirect_urls)} times. Aborting.",
            descriptor=descriptor,
        )

    @property
    def status_code(self) -> int | None:
        """Status code of the redirect that was refused."""
        return self.response_status


class HTTPError(CourierError):
    """The server answered with an error status code.

    Attributes:
        response: The finalized response carrying the error status.
    """

    def __init__(
        self,
        response: "Response",
        descriptor: "RequestDescriptor | None" = None,
    ) -> None:
        """Initialize the exception.

        Args:
            response: The response carrying the error status.
            descriptor: The request descriptor the error belongs to.
        """
        self.response = response
        reason = response.raw.reason_phrase
        super().__init__(
            f"Response code {response.status_code} ({reason})",
            descriptor=descriptor,
        )

    def __str__(self) -> str:
        """Return string representation including status code."""
        return f"[HTTP {self.status_code}] {self.message}"

    @property
    def status_code(self) -> int | None:
        """Status code of the response."""
        return self.response.status_code

    @property
    def headers(self) -> dict[str, str]:
        """Lowercased response headers."""
        return {key.lower(): value for key, value in self.response.headers.items()}


class ParseError(CourierError):
    """The response body could not be parsed as the requested type.

    Attributes:
        response: The response whose body failed to parse.
    """

    def __init__(
        self,
        message: str,
        response: "Response",
        descriptor: "RequestDescriptor | None" = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Description of the parse failure.
            response: The response whose body failed to parse.
            descriptor: The request descriptor the error belongs to.
        """
        self.response = response
        super().__init__(
            f"{message} in {response.url}",
            descriptor=descriptor,
        )

    @property
    def status_code(self) -> int | None:
        """Status code of the response."""
        return self.response.status_code


class CancelError(CourierError):
    """The request was aborted by the caller."""

    def __init__(self, message: str = "Request was aborted") -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
        """
        super().__init__(message)


class OptionsNormalizedError(CourierError):
    """An option that is frozen after normalization was reassigned."""


def error_details(error: BaseException) -> dict[str, Any]:
    """Collect the fields the retry decision reads from an error.

    Works for any exception; missing attributes come back as ``None`` or an
    empty mapping.

    Args:
        error: The exception to inspect.

    Returns:
        A dict with ``code``, ``method``, ``status_code`` and ``headers``.
    """
    return {
        "code": getattr(error, "code", None),
        "method": getattr(error, "method", None),
        "status_code": getattr(error, "status_code", None),
        "headers": getattr(error, "headers", None) or {},
    }
