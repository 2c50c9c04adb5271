"""Responses as delivered to callers.

``Response`` wraps the raw ``httpx.Response`` together with the body that
was read and the lifecycle metadata: effective URL, originally requested
URL, retry count, timings and the redirect chain.

``finalize_response`` is the last step before delivery. It applies the
``response_type`` and turns error statuses into ``HTTPError``.
"""

import json
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from courier._timings import Timings
from courier.exceptions import HTTPError, ParseError
from courier.models import RequestDescriptor

NOT_MODIFIED = 304


class Progress(BaseModel):
    """Transfer progress reported by upload and download events.

    Attributes:
        percent: Fraction done, from 0 to 1. Zero while the total is unknown.
        transferred: Bytes transferred so far.
        total: Total bytes, if known.
    """

    percent: float
    transferred: int
    total: int | None = None

    @classmethod
    def of(cls, transferred: int, total: int | None) -> "Progress":
        """Build a progress report, computing ``percent``."""
        if total:
            percent = min(transferred / total, 1.0)
        elif total == 0:
            percent = 1.0
        else:
            percent = 0.0
        return cls(percent=percent, transferred=transferred, total=total)


class Response(BaseModel):
    """A completed response plus lifecycle metadata.

    Attributes:
        raw: The underlying ``httpx.Response``. Its body is already closed.
        body: The body bytes, decoded per ``Content-Encoding`` unless the
            request disabled decompression.
        url: The URL that produced this response, after redirects.
        request_url: The URL originally requested.
        retry_count: How many retries happened before this response.
        timings: Timings of the attempt that produced this response.
        redirect_urls: Every redirect followed, in order.
        descriptor: The descriptor of the final attempt.
        is_from_cache: Whether the cache answered instead of the network.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    raw: httpx.Response
    body: bytes
    url: str
    request_url: str
    retry_count: int = 0
    timings: Timings
    redirect_urls: list[str] = Field(default_factory=list)
    descriptor: RequestDescriptor
    is_from_cache: bool = False

    @property
    def status_code(self) -> int:
        """The response status code."""
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        """The response headers."""
        return self.raw.headers

    @property
    def ok(self) -> bool:
        """Whether the status is 2xx, or a 3xx while redirects are off."""
        limit = 299 if self.descriptor.follow_redirect else 399
        return self.status_code == NOT_MODIFIED or 200 <= self.status_code <= limit

    @property
    def text(self) -> str:
        """The body decoded as text."""
        encoding = self.descriptor.encoding or self.raw.encoding or "utf-8"
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        """The body parsed as JSON."""
        return json.loads(self.text)


def finalize_response(response: Response) -> Response:
    """Validate a response before it is handed to the caller.

    Args:
        response: The response to finalize.

    Returns:
        The same response.

    Raises:
        HTTPError: If the status is an error and ``throw_http_errors`` is set.
        ParseError: If ``response_type`` is ``json`` and the body is not JSON.
    """
    descriptor = response.descriptor
    if not response.ok and descriptor.throw_http_errors:
        raise HTTPError(response, descriptor=descriptor)

    if descriptor.response_type == "json" and response.body:
        try:
            response.json()
        except ValueError as exc:
            raise ParseError(f"Unexpected response body: {exc}", response, descriptor) from exc

    return response
