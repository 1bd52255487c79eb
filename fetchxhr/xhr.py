"""
Callback-driven XMLHttpRequest lifecycle on top of an async fetch capability.

The request object walks the classic ready states
UNSENT -> OPENED -> HEADERS_RECEIVED -> LOADING -> DONE while a single fetch
call does the actual I/O on the running asyncio loop. `send()` only schedules
the exchange; progress is reported through the single-slot `on*` handlers.

Example:
    xhr = XMLHttpRequest()
    xhr.onload = lambda: print(xhr.status, xhr.response_text)
    xhr.open("GET", "https://example.com/")
    xhr.send()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from fetchxhr.abort import AbortController
from fetchxhr.errors import InvalidStateError, TimeoutError, UnimplementedError
from fetchxhr.fetch import RequestBody, fetch as default_fetch
from fetchxhr.headers import Headers
from fetchxhr.models import Blob, FetchResponse, decode_text
from fetchxhr.utils import parse_url, strip_fragment

logger = logging.getLogger(__name__)

__all__ = ["ReadyState", "XMLHttpRequest", "XMLHttpRequestEventTarget"]

FetchFn = Callable[..., Awaitable[FetchResponse]]
Handler = Callable[..., Any]

_UNSET = object()


class ReadyState(IntEnum):
    UNSENT = 0
    OPENED = 1
    HEADERS_RECEIVED = 2
    LOADING = 3
    DONE = 4


@dataclass
class _Draft:
    """Request captured between open() and send(); url is validated, fragment removed."""

    method: str
    url: str
    headers: Headers = field(default_factory=Headers)


@dataclass
class _Computed:
    type: str | None = None
    blob: Blob | None = None
    buffer: bytes | None = None
    text: str | None = None
    # Parsed lazily from `text` on first access
    json: Any = _UNSET


@dataclass
class _State:
    ready_state: ReadyState = ReadyState.UNSENT
    draft: _Draft | None = None
    computed: _Computed | None = None
    controller: AbortController | None = None
    response: FetchResponse | None = None
    timed_out: bool = False
    in_flight: bool = False


class XMLHttpRequestEventTarget:
    """Single-slot handlers shared by request-like objects."""

    def __init__(self) -> None:
        self.onload: Handler | None = None
        self.onerror: Handler | None = None
        self.onloadstart: Handler | None = None
        self.ontimeout: Handler | None = None
        self._background: set[asyncio.Task] = set()

    def _fire(self, slot: str, *args: Any) -> None:
        handler = getattr(self, slot)
        if handler is None:
            return
        try:
            result = handler(*args)
        except Exception:
            logger.exception("%s handler raised", slot)
            return
        if asyncio.iscoroutine(result):
            self._spawn(self._await_handler(slot, result))

    async def _await_handler(self, slot: str, coro: Awaitable[Any]) -> None:
        try:
            await coro
        except Exception:
            logger.exception("%s handler raised", slot)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


class XMLHttpRequest(XMLHttpRequestEventTarget):
    """
    Legacy request/response lifecycle driven by a single fetch call.

    Args:
        fetch: Async fetch capability, called as
            `fetch(url, method=..., headers=..., body=..., signal=...)`.
            Defaults to the shared `fetchxhr.fetch` transport.
    """

    UNSENT = ReadyState.UNSENT
    OPENED = ReadyState.OPENED
    HEADERS_RECEIVED = ReadyState.HEADERS_RECEIVED
    LOADING = ReadyState.LOADING
    DONE = ReadyState.DONE

    def __init__(self, fetch: FetchFn | None = None) -> None:
        super().__init__()
        self.onreadystatechange: Handler | None = None
        # Milliseconds; 0 means the exchange is never timed out.
        self.timeout: float = 0
        self._fetch = fetch or default_fetch
        self._state = _State()
        self._generation = 0

    def _set_ready_state(self, new_state: ReadyState) -> None:
        self._state.ready_state = new_state
        if new_state == ReadyState.UNSENT:
            return
        self._fire("onreadystatechange")

    # -- read-only projections -------------------------------------------

    @property
    def ready_state(self) -> ReadyState:
        return self._state.ready_state

    @property
    def response(self) -> Any:
        computed = self._state.computed
        if self._state.ready_state != ReadyState.DONE or computed is None:
            raise InvalidStateError("response is only available once the request is DONE")
        response_type = self.response_type
        if response_type == "arraybuffer":
            return computed.buffer
        if response_type == "blob":
            return computed.blob
        if response_type == "json":
            if computed.json is _UNSET:
                computed.json = json.loads(computed.text or "")
            return computed.json
        if response_type in ("text", ""):
            return computed.text
        raise UnimplementedError(f"Unimplemented response type: {response_type!r}")

    @property
    def response_text(self) -> str | None:
        computed = self._state.computed
        return computed.text if computed is not None else None

    @property
    def response_type(self) -> str:
        computed = self._state.computed
        if computed is None or computed.type is None:
            return "text"
        return computed.type

    @property
    def response_url(self) -> str | None:
        response = self._state.response
        return response.url if response is not None else None

    @property
    def response_xml(self) -> Any:
        raise UnimplementedError("responseXML is not implemented")

    @property
    def status(self) -> int:
        return self._require_response().status

    @property
    def status_text(self) -> str:
        return self._require_response().status_text

    def _require_response(self) -> FetchResponse:
        response = self._state.response
        if response is None:
            raise InvalidStateError("Response headers have not been received yet")
        return response

    # -- configuration ---------------------------------------------------

    def open(self, method: str, url: str) -> None:
        """Start a new draft request; aborts an exchange that is still running."""
        parse_url(url)
        url = strip_fragment(url)
        state = self._state
        if state.in_flight and state.controller is not None:
            logger.debug("open() while in flight, aborting previous exchange")
            self._generation += 1
            state.in_flight = False
            state.controller.abort()
        state.draft = _Draft(method=method.upper(), url=url)
        state.response = None
        state.timed_out = False
        if state.computed is not None:
            # A declared response type survives re-opening; bodies do not.
            state.computed = _Computed(type=state.computed.type)
        self._set_ready_state(ReadyState.OPENED)

    def override_mime_type(self, type: str) -> None:
        if self._state.computed is None:
            self._state.computed = _Computed()
        self._state.computed.type = type

    def set_request_header(self, name: str, value: str) -> None:
        draft = self._state.draft
        if self._state.ready_state != ReadyState.OPENED or draft is None:
            return
        draft.headers.set(name, value)

    def get_response_header(self, name: str) -> str | None:
        return self._require_response().headers.get(name)

    def get_all_response_headers(self) -> str:
        headers = self._require_response().headers
        return "\r\n".join(f"{name}: {value}" for name, value in headers.items())

    # -- execution -------------------------------------------------------

    def send(self, body: RequestBody = None) -> None:
        """
        Schedule the exchange on the running event loop and return immediately.

        Raises:
            InvalidStateError: open() was not called, or an exchange is in flight
            RuntimeError: no asyncio event loop is running
        """
        state = self._state
        if state.in_flight:
            raise InvalidStateError("send() called while an exchange is in flight")
        draft = state.draft
        if draft is None:
            raise InvalidStateError("open() must be called before send()")
        loop = asyncio.get_running_loop()

        state.draft = None
        if draft.method in ("GET", "HEAD"):
            body = None
        controller = AbortController()
        state.controller = controller
        state.timed_out = False
        state.in_flight = True
        self._generation += 1
        generation = self._generation

        self._fire("onloadstart")

        timer: asyncio.TimerHandle | None = None
        if self.timeout > 0:
            timer = loop.call_later(
                self.timeout / 1000, self._on_timeout, controller, generation
            )
        self._spawn(self._exchange(draft, body, controller, timer, generation))

    def abort(self) -> None:
        controller = self._state.controller
        if controller is None:
            raise InvalidStateError("abort() called before send()")
        controller.abort()

    def _on_timeout(self, controller: AbortController, generation: int) -> None:
        if generation != self._generation or not self._state.in_flight:
            return
        logger.debug("Exchange timed out after %sms", self.timeout)
        self._state.timed_out = True
        controller.abort(TimeoutError(f"Timed out after {self.timeout}ms"))
        self._fire("ontimeout")

    async def _exchange(
        self,
        draft: _Draft,
        body: RequestBody,
        controller: AbortController,
        timer: asyncio.TimerHandle | None,
        generation: int,
    ) -> None:
        state = self._state
        try:
            response = await self._fetch(
                draft.url,
                method=draft.method,
                headers=draft.headers,
                body=body,
                signal=controller.signal,
            )
        except Exception as exc:
            if timer is not None:
                timer.cancel()
            self._fail(exc, generation)
            return

        if timer is not None:
            timer.cancel()
        if generation != self._generation or state.timed_out:
            # Late success after a timeout or a re-open is discarded.
            if generation == self._generation:
                state.in_flight = False
            await response.aclose()
            return

        state.response = response
        # Handlers may re-open the request between transitions.
        for next_state in (ReadyState.HEADERS_RECEIVED, ReadyState.LOADING):
            self._set_ready_state(next_state)
            if generation != self._generation:
                await response.aclose()
                return

        try:
            blob = await response.blob()
            buffer = await blob.array_buffer()
        except Exception as exc:
            self._fail(exc, generation)
            return
        if generation != self._generation:
            return

        computed = state.computed or _Computed()
        computed.blob = blob
        computed.buffer = buffer
        computed.text = decode_text(buffer, response.headers.get("content-type"))
        computed.json = _UNSET
        if computed.type is None:
            computed.type = "text"
        state.computed = computed
        state.in_flight = False
        self._set_ready_state(ReadyState.DONE)
        self._fire("onload")

    def _fail(self, exc: Exception, generation: int) -> None:
        if generation != self._generation:
            return
        self._state.in_flight = False
        if self._state.timed_out:
            logger.debug("Suppressing error after timeout: %r", exc)
            return
        logger.debug("Exchange failed: %r", exc)
        self._fire("onerror", exc)

    def __repr__(self) -> str:
        return f"<XMLHttpRequest {self._state.ready_state.name}>"
