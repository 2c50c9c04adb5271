"""The request lifecycle.

``RequestLifecycle`` drives one logical request from a normalized
``RequestDescriptor`` to exactly one outcome. Internally it may issue many
attempts (redirects and retries), but callers see a single awaitable that
either returns a ``Response`` or raises an error.

States::

    PREPARING -> ISSUING -> AWAITING_RESPONSE -> REDIRECTING -> ISSUING
                                              -> RETRY_SCHEDULED -> ISSUING
                                              -> RESPONSE_READY -> DONE
                                              -> FAILED

Example:
    Waiting for a response while watching redirects::

        lifecycle = RequestLifecycle(normalize("https://example.test/a"))
        lifecycle.on("redirect", lambda response, next_descriptor: ...)
        response = await lifecycle
"""

import asyncio
import inspect
import json
import logging
from base64 import b64encode
from enum import Enum
from typing import Any, Callable, Generator
from urllib.parse import urlencode

import httpx

from courier._cookies import resolve
from courier._normalize import url_components
from courier._redirect import (
    MAX_REDIRECTS,
    RedirectDecision,
    is_redirect_candidate,
    resolve_redirect,
)
from courier._response import Progress, Response, finalize_response
from courier._retry import compile_retry_policy
from courier._timings import Timings
from courier._transport import (
    Attempt,
    Send,
    build_request,
    classify_transport_error,
    error_code,
    open_client,
    progress_stream,
    select_sender,
)
from courier.exceptions import (
    CacheError,
    CancelError,
    CourierError,
    HTTPError,
    MaxRedirectsError,
    ReadError,
    RequestError,
    UnsupportedProtocolError,
)
from courier.hooks import run_hooks
from courier.models import RequestDescriptor

logger = logging.getLogger(__name__)

# Events a caller can listen to with ``RequestLifecycle.on``.
EVENTS = ("request", "redirect", "retry", "upload_progress", "download_progress")

SUPPORTED_PROTOCOLS = frozenset({"http", "https"})

BODYLESS_METHODS = frozenset({"GET", "HEAD"})

# Headers describing a body that a method-changing redirect drops.
BODY_HEADERS = ("content-length", "content-type", "transfer-encoding")

# Headers only meant for the original host.
HOST_BOUND_HEADERS = ("host", "cookie", "authorization")


class LifecycleState(str, Enum):
    """Where a lifecycle is in its state machine."""

    PREPARING = "preparing"
    ISSUING = "issuing"
    AWAITING_RESPONSE = "awaiting_response"
    REDIRECTING = "redirecting"
    RESPONSE_READY = "response_ready"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    DONE = "done"


class RequestLifecycle:
    """One logical request, from first attempt to final outcome.

    Work starts on the next tick of the event loop, so listeners and
    aborts wired right after construction always take effect. Awaiting the
    lifecycle returns the ``Response`` or raises the final error.

    Attributes:
        descriptor: The descriptor of the current (or last) attempt.
        state: The current ``LifecycleState``.
        redirect_urls: Redirects followed so far, in order.
        retry_count: Retries scheduled so far.
        request_url: The URL of the first attempt.
    """

    def __init__(
        self,
        descriptor: RequestDescriptor,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        """Create the lifecycle and schedule its first step.

        Args:
            descriptor: A normalized request descriptor.
            client: Shared client used when the descriptor names no
                transport or agent. Left open when the lifecycle ends.
            sleep: Awaitable delay function taking seconds.

        Raises:
            RuntimeError: If no event loop is running.
        """
        self.descriptor = descriptor
        self.state = LifecycleState.PREPARING
        self.redirect_urls: list[str] = []
        self.retry_count = 0
        self.request_url: str | None = None

        self._client = client
        self._owned_clients: dict[str | None, httpx.AsyncClient] = {}
        self._sleep = sleep
        self._listeners: dict[str, list[Callable[..., Any]]] = {event: [] for event in EVENTS}
        self._attempt: Attempt | None = None
        self._abort_requested = False
        self._content: Any = None
        self._stream_sent = False

        loop = asyncio.get_running_loop()
        self._result: asyncio.Future = loop.create_future()
        self._task = loop.create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    def __await__(self) -> Generator[Any, None, Response]:
        return self._result.__await__()

    @property
    def done(self) -> bool:
        """Whether the outcome has been delivered."""
        return self._result.done()

    def on(self, event: str, listener: Callable[..., Any]) -> "RequestLifecycle":
        """Register a listener for a lifecycle event.

        Args:
            event: One of ``request``, ``redirect``, ``retry``,
                ``upload_progress`` or ``download_progress``.
            listener: Called synchronously with the event's arguments.

        Returns:
            The lifecycle, for chaining.

        Raises:
            ValueError: If the event is unknown.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown lifecycle event: {event}")
        self._listeners[event].append(listener)
        return self

    def abort(self) -> None:
        """Abort the request.

        Safe to call at any time and more than once. Before the first
        attempt exists the abort is latched, so no request is ever sent.
        After the outcome is delivered it does nothing.
        """
        if self._result.done():
            return
        self._abort_requested = True
        if self._attempt is not None and self._attempt.live:
            self._attempt.abort()
        self._task.cancel()

    def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            listener(*args)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if self._result.done():
            return
        self.state = LifecycleState.FAILED
        if task.cancelled():
            self._result.set_exception(CancelError())
        elif task.exception() is not None:
            self._result.set_exception(task.exception())

    async def _run(self) -> None:
        try:
            response = await self._drive()
        except CancelError as error:
            self.state = LifecycleState.FAILED
            self._result.set_exception(error)
        except Exception as error:
            self.state = LifecycleState.FAILED
            self._result.set_exception(await self._before_error(error))
        else:
            self.state = LifecycleState.DONE
            self._result.set_result(response)
        finally:
            await self._close_clients()

    async def _before_error(self, error: Exception) -> BaseException:
        """Pass the error through the ``before_error`` hooks.

        A hook returning ``None`` keeps the current error. A hook that
        raises replaces the error with its own exception.
        """
        for hook in self.descriptor.hooks.before_error:
            try:
                result = hook(error)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as hook_error:
                logger.debug(f"before_error hook failed: {hook_error!r}")
                return hook_error
            if isinstance(result, BaseException):
                error = result
        return error

    async def _close_clients(self) -> None:
        clients = list(self._owned_clients.values())
        self._owned_clients.clear()
        for client in clients:
            await client.aclose()

    async def _drive(self) -> Response:
        self.state = LifecycleState.PREPARING
        await run_hooks(self.descriptor.hooks.before_request, self.descriptor)
        self.descriptor.method = self.descriptor.method.upper()
        self._content = self._prepare_body()
        self.request_url = self.descriptor.url

        while True:
            self.state = LifecycleState.ISSUING
            try:
                response, decision = await self._issue()
            except RequestError as error:
                delay = self._retry_delay(error)
                if delay <= 0:
                    raise
                await self._schedule_retry(error, delay)
                continue

            if decision.should_follow:
                await self._redirect(response, decision)
                continue

            if not response.ok:
                error = HTTPError(response, descriptor=self.descriptor)
                delay = self._retry_delay(error)
                if delay > 0:
                    await self._schedule_retry(error, delay)
                    continue

            self.state = LifecycleState.RESPONSE_READY
            return finalize_response(response)

    def _prepare_body(self) -> Any:
        """Validate and serialize the body options into request content.

        Sets ``content-type``, ``content-length``, ``accept`` and
        ``authorization`` headers when they are missing.

        Returns:
            ``bytes``, an async iterable of ``bytes``, or ``None``.

        Raises:
            TypeError: If more than one body option is set, a GET or HEAD
                request carries a body, or a body has an unsupported type.
        """
        descriptor = self.descriptor
        headers = descriptor.headers

        provided = [
            name
            for name, value in (
                ("body", descriptor.body),
                ("json", descriptor.json_body),
                ("form", descriptor.form),
            )
            if value is not None
        ]
        if len(provided) > 1:
            raise TypeError(
                f"The {', '.join(f'`{name}`' for name in provided)} options are mutually exclusive"
            )
        if provided and descriptor.method in BODYLESS_METHODS:
            raise TypeError(f"The `{descriptor.method}` method cannot be used with a body")

        size: int | None
        if descriptor.form is not None:
            headers.setdefault("content-type", "application/x-www-form-urlencoded")
            pairs = descriptor.form.items() if hasattr(descriptor.form, "items") else descriptor.form
            content = urlencode(list(pairs), doseq=True).encode()
            size = len(content)
        elif descriptor.json_body is not None:
            headers.setdefault("content-type", "application/json")
            content = json.dumps(descriptor.json_body, separators=(",", ":")).encode()
            size = len(content)
        elif descriptor.body is None:
            content = None
            size = 0
        elif isinstance(descriptor.body, str):
            content = descriptor.body.encode()
            size = len(content)
        elif isinstance(descriptor.body, (bytes, bytearray)):
            content = bytes(descriptor.body)
            size = len(content)
        elif hasattr(descriptor.body, "__aiter__"):
            content = descriptor.body
            size = None
        else:
            raise TypeError(
                f"The `body` option must be bytes, str or an async iterable, "
                f"not {type(descriptor.body).__name__}"
            )

        if "content-length" not in headers and "transfer-encoding" not in headers:
            if size is not None and (size > 0 or descriptor.method == "PUT"):
                headers["content-length"] = str(size)

        if descriptor.response_type == "json" and "accept" not in headers:
            headers["accept"] = "application/json"

        if descriptor.auth and "authorization" not in headers:
            token = b64encode(descriptor.auth.encode()).decode("ascii")
            headers["authorization"] = f"Basic {token}"

        return content

    def _content_for_attempt(self) -> Any:
        content = self._content
        if content is not None and not isinstance(content, bytes):
            if self._stream_sent:
                raise RequestError(
                    "The request body stream was already sent and cannot be replayed",
                    descriptor=self.descriptor,
                )
            self._stream_sent = True
        if isinstance(content, bytes) and content and self._listeners["upload_progress"]:
            return progress_stream(content, self._report_upload)
        return content

    def _report_upload(self, transferred: int, total: int | None) -> None:
        self._emit("upload_progress", Progress.of(transferred, total))

    def _fallback_client(self, descriptor: RequestDescriptor) -> httpx.AsyncClient:
        if descriptor.socket_path is None and self._client is not None:
            return self._client
        client = self._owned_clients.get(descriptor.socket_path)
        if client is None:
            client = self._owned_clients[descriptor.socket_path] = open_client(
                descriptor.socket_path
            )
        return client

    def _with_cache(self, send: Send, descriptor: RequestDescriptor) -> Send:
        """Wrap ``send`` with the descriptor's cache.

        Exceptions raised by ``send`` itself pass through; anything else
        the cache raises becomes a ``CacheError``.
        """
        transport_errors: list[BaseException] = []

        async def tracked_send(request: httpx.Request) -> httpx.Response:
            try:
                return await send(request)
            except Exception as exc:
                transport_errors.append(exc)
                raise

        async def cached_send(request: httpx.Request) -> httpx.Response:
            try:
                wrapped = descriptor.cache.wrap(tracked_send, descriptor)
                return await wrapped(request)
            except Exception as exc:
                if any(exc is seen for seen in transport_errors):
                    raise
                raise CacheError(
                    f"Cache failed: {exc}", descriptor=descriptor, cause=exc
                ) from exc

        return cached_send

    async def _issue(self) -> tuple[Response, RedirectDecision]:
        """Send the current descriptor once and read the response."""
        descriptor = self.descriptor
        if descriptor.protocol not in SUPPORTED_PROTOCOLS:
            raise UnsupportedProtocolError(descriptor)
        if self._abort_requested:
            raise CancelError()

        if descriptor.cookie_jar is not None:
            cookie = await resolve(descriptor.cookie_jar.get_cookie_string(descriptor.url))
            if cookie:
                descriptor.headers["cookie"] = cookie

        send = select_sender(descriptor, self._fallback_client)
        if descriptor.cache is not None:
            send = self._with_cache(send, descriptor)

        timings = Timings.begin()
        request = build_request(descriptor, self._content_for_attempt(), timings)
        attempt = Attempt(request, timings)
        self._attempt = attempt
        self._emit("request", request)
        logger.debug(f"Issuing {request.method} {request.url}")

        self.state = LifecycleState.AWAITING_RESPONSE
        attempt.task = asyncio.get_running_loop().create_task(
            self._perform(send, attempt, descriptor)
        )
        budget = descriptor.timeout.request if descriptor.timeout else None
        try:
            raw, body = await asyncio.wait_for(
                attempt.task, budget / 1000 if budget is not None else None
            )
        except asyncio.TimeoutError as exc:
            raise classify_transport_error(exc, descriptor, timings) from exc
        finally:
            self._attempt = None

        if descriptor.cookie_jar is not None:
            for raw_cookie in raw.headers.get_list("set-cookie"):
                await resolve(descriptor.cookie_jar.set_cookie(raw_cookie, descriptor.url))

        response = Response(
            raw=raw,
            body=body,
            url=descriptor.url,
            request_url=self.request_url or descriptor.url,
            retry_count=self.retry_count,
            timings=timings,
            redirect_urls=list(self.redirect_urls),
            descriptor=descriptor,
            is_from_cache=bool(raw.extensions.get("from_cache", False)),
        )
        location = next(
            (value for name, value in raw.headers.raw if name.lower() == b"location"),
            None,
        )
        decision = resolve_redirect(
            raw.status_code,
            location,
            descriptor.url,
            descriptor.method,
            descriptor.follow_redirect,
        )
        return response, decision

    async def _perform(
        self,
        send: Send,
        attempt: Attempt,
        descriptor: RequestDescriptor,
    ) -> tuple[httpx.Response, bytes]:
        timings = attempt.timings
        try:
            raw = await send(attempt.request)
        except CourierError:
            raise
        except Exception as exc:
            raise classify_transport_error(exc, descriptor, timings) from exc
        timings.mark("response")

        if is_redirect_candidate(
            raw.status_code,
            "location" in raw.headers,
            descriptor.method,
            descriptor.follow_redirect,
        ):
            await raw.aclose()
            body = b""
        else:
            body = await self._read_body(raw, descriptor, timings)
        timings.mark("end")
        return raw, body

    async def _read_body(
        self,
        raw: httpx.Response,
        descriptor: RequestDescriptor,
        timings: Timings,
    ) -> bytes:
        length = raw.headers.get("content-length", "")
        total = int(length) if length.isdigit() else None
        chunks: list[bytes] = []
        received = 0
        self._emit("download_progress", Progress.of(0, total))
        try:
            if descriptor.decompress or raw.is_stream_consumed:
                iterator = raw.aiter_bytes()
            else:
                iterator = raw.aiter_raw()
            async for chunk in iterator:
                chunks.append(chunk)
                received += len(chunk)
                transferred = raw.num_bytes_downloaded or received
                self._emit("download_progress", Progress.of(transferred, total))
        except httpx.TimeoutException as exc:
            raise classify_transport_error(exc, descriptor, timings) from exc
        except httpx.HTTPError as exc:
            timings.mark("error")
            raise ReadError(
                str(exc) or type(exc).__name__,
                code=error_code(exc),
                descriptor=descriptor,
                cause=exc,
                timings=timings,
            ) from exc
        finally:
            await raw.aclose()

        if total is None:
            self._emit("download_progress", Progress.of(received, received))
        return b"".join(chunks)

    async def _redirect(self, response: Response, decision: RedirectDecision) -> None:
        self.state = LifecycleState.REDIRECTING
        current = self.descriptor
        if len(self.redirect_urls) >= MAX_REDIRECTS:
            raise MaxRedirectsError(response.status_code, self.redirect_urls, descriptor=current)
        self.redirect_urls.append(decision.next_url)

        changes = url_components(httpx.URL(decision.next_url))
        same_origin = (changes["hostname"], changes["port"]) == (current.hostname, current.port)
        if not same_origin:
            changes.setdefault("auth", None)
            changes["socket_path"] = None
        if decision.next_method != current.method:
            changes.update(method=decision.next_method, body=None, json_body=None, form=None)

        next_descriptor = current.copy_for(**changes)
        if not same_origin:
            for name in HOST_BOUND_HEADERS:
                next_descriptor.headers.pop(name, None)
        if decision.next_method != current.method:
            for name in BODY_HEADERS:
                next_descriptor.headers.pop(name, None)
            self._content = None

        logger.debug(
            f"Following {response.status_code} redirect to {decision.next_url} "
            f"({len(self.redirect_urls)}/{MAX_REDIRECTS})"
        )
        await run_hooks(next_descriptor.hooks.before_redirect, next_descriptor)
        self._emit("redirect", response, next_descriptor)
        self.descriptor = next_descriptor

    def _retry_delay(self, error: Exception) -> float:
        compute = self.descriptor.compute_retry_delay or compile_retry_policy(self.descriptor.retry)
        return float(compute(self.retry_count + 1, error) or 0)

    async def _schedule_retry(self, error: Exception, delay: float) -> None:
        self.state = LifecycleState.RETRY_SCHEDULED
        self.retry_count += 1
        logger.debug(f"Retry {self.retry_count} in {delay:.0f}ms after: {error}")
        self._emit("retry", error, self.retry_count)
        await self._sleep(delay / 1000)

        self.descriptor = self.descriptor.copy_for(force_refresh=True)
        await run_hooks(
            self.descriptor.hooks.before_retry, self.descriptor, error, self.retry_count
        )
