"""Request descriptor models.

The ``RequestDescriptor`` is the fully normalized form of one request. It
is produced by ``courier._normalize.normalize`` and consumed by the request
lifecycle. Hooks receive descriptors and may change them; redirects and
retries work on copies made with ``copy_for``.
"""

from typing import Any, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from courier._retry import RetryPolicy
from courier.exceptions import OptionsNormalizedError
from courier.hooks import HookSet

# Descriptor fields that come from the URL rather than from options.
URL_FIELDS = ("protocol", "hostname", "port", "path")


class Timeouts(BaseModel):
    """Timeout budgets in milliseconds.

    ``request`` bounds a whole attempt, from issuing it to reading the
    last byte of the body. The others bound a single phase.
    """

    model_config = ConfigDict(extra="forbid")

    lookup: float | None = None
    connect: float | None = None
    secure_connect: float | None = None
    socket: float | None = None
    send: float | None = None
    response: float | None = None
    request: float | None = None

    def to_httpx(self) -> httpx.Timeout:
        """Map the phase budgets onto an ``httpx.Timeout``.

        httpx folds name resolution, TCP connect and TLS into one connect
        budget, so those three phases are summed.
        """
        connect_phases = [
            value
            for value in (self.lookup, self.connect, self.secure_connect)
            if value is not None
        ]
        connect = sum(connect_phases) if connect_phases else None
        read = self.response if self.response is not None else self.socket
        write = self.send if self.send is not None else self.socket
        return httpx.Timeout(
            connect=_seconds(connect),
            read=_seconds(read),
            write=_seconds(write),
            pool=_seconds(self.socket),
        )


class RequestDescriptor(BaseModel):
    """Canonical description of one request.

    Attributes:
        method: Uppercased HTTP method.
        protocol: ``http`` or ``https``.
        hostname: Target host.
        port: Explicit port, or ``None`` for the protocol default.
        path: Path including the query string.
        socket_path: Unix domain socket to route through, if any.
        base_url: Base the request URL was resolved against. Frozen once
            normalization completes.
        auth: ``user:password`` credentials for basic authentication.
        headers: Lowercased header names. Values are stringified when the
            request is built; hooks may set ``None`` to drop a header.
        body: ``bytes``, ``str`` or an (async) iterable of ``bytes``.
        json_body: A value to send as JSON (option name ``json``).
        form: A mapping to send url-encoded.
        timeout: Timeout budgets, if any.
        retry: The retry policy.
        compute_retry_delay: The compiled retry decision function.
        hooks: Lifecycle hooks.
        cookie_jar: Cookie jar capability.
        cache: Response cache capability.
        lookup: Name resolution capability built from ``dns_cache``.
        transport: Custom async send function replacing the default.
        agent: An ``httpx.AsyncClient``, or a mapping of protocol to client.
        follow_redirect: Whether to follow redirects.
        decompress: Whether to decode compressed bodies.
        throw_http_errors: Whether error statuses fail the request.
        response_type: ``text``, ``json`` or ``buffer``.
        encoding: Text encoding override for the body.
        force_refresh: Skip cached responses for this request.
    """

    model_config = ConfigDict(
        extra="forbid",
        arbitrary_types_allowed=True,
        populate_by_name=True,
    )

    method: str = "GET"
    protocol: str = "https"
    hostname: str | None = None
    port: int | None = None
    path: str = "/"
    socket_path: str | None = None
    base_url: str | None = None
    auth: str | None = None
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    json_body: Any = Field(default=None, alias="json")
    form: Any = None
    timeout: Timeouts | None = None
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    compute_retry_delay: Callable[[int, BaseException], float] | None = None
    hooks: HookSet = Field(default_factory=HookSet)
    cookie_jar: Any = None
    cache: Any = None
    lookup: Any = None
    transport: Any = None
    agent: Any = None
    follow_redirect: bool = True
    decompress: bool = True
    throw_http_errors: bool = True
    response_type: str = "text"
    encoding: str | None = None
    force_refresh: bool = False

    _normalized: bool = PrivateAttr(default=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "base_url" and self._normalized:
            raise OptionsNormalizedError(
                "Failed to set base_url. Options are normalized already."
            )
        super().__setattr__(name, value)

    def freeze_base_url(self) -> None:
        """Reject any later assignment to ``base_url``."""
        self._normalized = True

    @property
    def url(self) -> str:
        """The absolute URL this descriptor targets."""
        host = self.hostname or ""
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        port = f":{self.port}" if self.port is not None else ""
        return f"{self.protocol}://{host}{port}{self.path}"

    def copy_for(self, **changes: Any) -> "RequestDescriptor":
        """Return a copy with ``changes`` applied and its own headers dict."""
        update = {"headers": dict(self.headers)}
        update.update(changes)
        return self.model_copy(update=update)

    def to_options(self) -> dict[str, Any]:
        """Return the non-URL fields as an options mapping."""
        options = {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name not in URL_FIELDS and name != "compute_retry_delay"
        }
        options["json"] = options.pop("json_body")
        options["headers"] = dict(self.headers)
        return options


def _seconds(milliseconds: float | None) -> float | None:
    if milliseconds is None:
        return None
    return milliseconds / 1000
