from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable

from fetchxhr.abort import AbortSignal, abortable
from fetchxhr.errors import BodyUsedError
from fetchxhr.headers import Headers

BodySource = bytes | AsyncIterator[bytes] | None


def charset_from_content_type(content_type: str | None, default: str = "utf-8") -> str:
    if content_type and "charset=" in content_type.lower():
        idx = content_type.lower().index("charset=")
        value = content_type[idx + len("charset="):].split(";")[0].strip().strip('"')
        return value or default
    return default


def decode_text(data: bytes, content_type: str | None = None) -> str:
    encoding = charset_from_content_type(content_type)
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


class Blob:
    """Immutable bytes with a media type."""

    def __init__(self, data: bytes = b"", type: str = "") -> None:
        self._data = bytes(data)
        self.type = type.lower()

    @property
    def size(self) -> int:
        return len(self._data)

    async def array_buffer(self) -> bytes:
        return self._data

    async def text(self) -> str:
        return decode_text(self._data, self.type)

    def slice(self, start: int = 0, end: int | None = None, type: str = "") -> Blob:
        return Blob(self._data[start:end], type)

    def __bytes__(self) -> bytes:
        return self._data

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Blob):
            return self._data == other._data and self.type == other.type
        return NotImplemented

    def __repr__(self) -> str:
        return f"<Blob {self.size} bytes type={self.type!r}>"


class FetchResponse:
    """
    Response handed out by the fetch transport as soon as headers arrive.

    The body is one-shot: it can be materialized once, through `blob()`,
    `array_buffer()`, `text()` or `json()`. Reads race against the signal
    the exchange was started with, so aborting mid-body rejects the read.
    """

    def __init__(
        self,
        status: int,
        status_text: str,
        headers: Headers | list[tuple[str, str]],
        url: str = "",
        body: BodySource = None,
        signal: AbortSignal | None = None,
        redirected: bool = False,
        http_version: str = "1.1",
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.status = status
        self.status_text = status_text
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self.url = url
        self.redirected = redirected
        self.http_version = http_version
        self._body = body
        self._signal = signal
        self._on_close = on_close
        self._body_used = False
        self._closed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body_used(self) -> bool:
        return self._body_used

    async def _collect(self) -> bytes:
        body = self._body
        if body is None:
            return b""
        if isinstance(body, (bytes, bytearray)):
            return bytes(body)
        chunks: list[bytes] = []
        async for chunk in body:
            chunks.append(chunk)
        return b"".join(chunks)

    async def _consume(self) -> bytes:
        if self._body_used:
            raise BodyUsedError("Body has already been consumed")
        self._body_used = True
        try:
            return await abortable(self._collect(), self._signal)
        finally:
            await self.aclose()

    async def blob(self) -> Blob:
        data = await self._consume()
        return Blob(data, self.headers.get("content-type") or "")

    async def array_buffer(self) -> bytes:
        return await self._consume()

    async def text(self) -> str:
        return decode_text(await self._consume(), self.headers.get("content-type"))

    async def json(self) -> object:
        return json.loads(await self.text())

    async def aclose(self) -> None:
        """Release the underlying stream."""
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._body, "aclose", None)
        # A read abandoned by an abort is still unwinding; it closes itself.
        if aclose is not None and not getattr(self._body, "ag_running", False):
            await aclose()
        if self._on_close is not None:
            await self._on_close()

    def __repr__(self) -> str:
        return f"<FetchResponse [{self.status}] {self.url}>"
