from __future__ import annotations

import asyncio
import functools
import logging
import ssl
import urllib.parse
from collections import deque
from collections.abc import AsyncIterator, Mapping
from http import HTTPStatus

import h2.config
import h2.connection
import h2.events

from fetchxhr import __version__
from fetchxhr.abort import AbortSignal, abortable
from fetchxhr.compression import accept_encoding, decode_body
from fetchxhr.errors import NetworkError, ProtocolError, TooManyRedirects
from fetchxhr.headers import Headers, canonicalize_headers
from fetchxhr.models import Blob, FetchResponse
from fetchxhr.utils import authority, parse_url, resolve_location, strip_fragment

logger = logging.getLogger(__name__)

__all__ = ["FetchTransport", "fetch", "encode_body"]

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
NULL_BODY_STATUSES = frozenset({204, 205, 304})
HEADER_ORDER = ["Host", "Connection", "User-Agent", "Accept", "Accept-Encoding"]
# Hop-by-hop headers that HTTP/2 forbids
H2_FORBIDDEN_HEADERS = frozenset(
    {"host", "connection", "keep-alive", "proxy-connection", "transfer-encoding", "upgrade"}
)

RequestBody = bytes | str | Mapping[str, str] | Blob | None


def encode_body(body: RequestBody) -> tuple[bytes | None, str | None]:
    """
    Turn a request body into bytes plus the Content-Type it implies.

    Returns:
        (payload, content_type); content_type is None when the body carries none
    """
    if body is None:
        return None, None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body), None
    if isinstance(body, str):
        return body.encode("utf-8"), "text/plain;charset=UTF-8"
    if isinstance(body, Blob):
        return bytes(body), body.type or None
    if isinstance(body, Mapping):
        return (
            urllib.parse.urlencode(body).encode("utf-8"),
            "application/x-www-form-urlencoded;charset=UTF-8",
        )
    raise TypeError("Unsupported data type for request body")


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except (OSError, ssl.SSLError):
        pass


class _H2Stream:
    """One request/response stream on a fresh HTTP/2 connection."""

    def __init__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.conn = h2.connection.H2Connection(
            config=h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
        )
        self.stream_id = 0
        self.response_headers: list[tuple[str, str]] | None = None
        self.chunks: deque[bytes] = deque()
        self.ended = False

    async def start(
        self,
        method: str,
        authority_: str,
        path: str,
        headers: list[tuple[str, str]],
        body: bytes | None,
    ) -> None:
        self.conn.initiate_connection()
        self.stream_id = self.conn.get_next_available_stream_id()
        pseudo_headers = [
            (":method", method),
            (":authority", authority_),
            (":scheme", "https"),
            (":path", path),
        ]
        fields = [
            (name.lower(), value)
            for name, value in headers
            if name.lower() not in H2_FORBIDDEN_HEADERS
        ]
        self.conn.send_headers(self.stream_id, pseudo_headers + fields, end_stream=not body)
        if body:
            self.conn.send_data(self.stream_id, body, end_stream=True)
        self.writer.write(self.conn.data_to_send())
        await self.writer.drain()

    async def pump(self) -> None:
        data = await self.reader.read(65536)
        if not data:
            raise ProtocolError("Connection closed before stream ended")
        events = self.conn.receive_data(data)
        for event in events:
            if isinstance(event, h2.events.ResponseReceived):
                self.response_headers = list(event.headers)
            elif isinstance(event, h2.events.DataReceived):
                self.chunks.append(event.data)
                self.conn.acknowledge_received_data(
                    event.flow_controlled_length, event.stream_id
                )
            elif isinstance(event, h2.events.StreamEnded):
                self.ended = True
            elif isinstance(event, h2.events.StreamReset):
                raise ProtocolError(f"Stream reset: {event.error_code}")
            elif isinstance(event, h2.events.ConnectionTerminated):
                if not self.ended:
                    raise ProtocolError(f"Connection terminated: {event.error_code}")
        pending = self.conn.data_to_send()
        if pending:
            self.writer.write(pending)
            await self.writer.drain()


class FetchTransport:
    """
    Default fetch capability: one request per connection over asyncio streams.

    The returned FetchResponse is handed back as soon as the status line and
    headers are parsed; the body stays on the wire until it is materialized.

    Args:
        verify: Whether to verify TLS certificates
        http2: Offer HTTP/2 through ALPN for https targets (default: False)
        auto_decompress: Decode gzip/deflate/br response bodies (default: True)
        connect_timeout: Seconds allowed for connecting, None for no limit
        max_redirects: Redirect hops followed before giving up
        user_agent: User-Agent sent when the caller sets none
    """

    def __init__(
        self,
        verify: bool = True,
        http2: bool = False,
        auto_decompress: bool = True,
        connect_timeout: float | None = None,
        max_redirects: int = 20,
        user_agent: str | None = None,
    ) -> None:
        self.verify = verify
        self.http2 = http2
        self.auto_decompress = auto_decompress
        self.connect_timeout = connect_timeout
        self.max_redirects = max_redirects
        self.user_agent = user_agent or f"fetchxhr/{__version__}"

    async def __call__(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Headers | Mapping[str, str] | None = None,
        body: RequestBody = None,
        signal: AbortSignal | None = None,
    ) -> FetchResponse:
        """
        Perform one exchange, following redirects.

        Args:
            url: Absolute http(s) URL
            method: HTTP method
            headers: Request headers
            body: Request body (bytes, str, form mapping or Blob)
            signal: Optional abort signal attached to the exchange and its body

        Returns:
            FetchResponse whose body has not been read yet
        """
        if signal is not None:
            signal.throw_if_aborted()
        method = method.upper()
        request_headers = Headers(headers) if headers is not None else Headers()
        payload, content_type = encode_body(body)
        if content_type and not request_headers.has("content-type"):
            request_headers.set("Content-Type", content_type)

        current_url = url
        for hop in range(self.max_redirects + 1):
            logger.debug("%s %s", method, current_url)
            response = await abortable(
                self._exchange(method, current_url, request_headers, payload, signal),
                signal,
            )
            location = response.headers.get("location")
            if response.status not in REDIRECT_STATUSES or not location:
                response.url = strip_fragment(current_url)
                response.redirected = hop > 0
                return response

            await response.aclose()
            next_url = resolve_location(current_url, location)
            logger.debug("Redirect %d: %s -> %s", response.status, current_url, next_url)
            if response.status == 303 or (response.status in (301, 302) and method == "POST"):
                if method != "HEAD":
                    method = "GET"
                payload = None
                request_headers.delete("content-type")
                request_headers.delete("content-length")
            if urllib.parse.urlparse(next_url).netloc != urllib.parse.urlparse(current_url).netloc:
                request_headers.delete("authorization")
            current_url = next_url

        raise TooManyRedirects(f"Exceeded {self.max_redirects} redirects for {url}")

    def _ssl_context(self, alpn: list[str]) -> ssl.SSLContext:
        ssl_ctx = ssl.create_default_context()
        if not self.verify:
            ssl_ctx.check_hostname = False
            ssl_ctx.verify_mode = ssl.CERT_NONE
        try:
            ssl_ctx.set_alpn_protocols(alpn)
        except NotImplementedError:
            pass
        return ssl_ctx

    async def _exchange(
        self,
        method: str,
        url: str,
        headers: Headers,
        body: bytes | None,
        signal: AbortSignal | None,
    ) -> FetchResponse:
        parsed, host, port, path = parse_url(url)

        ssl_ctx: ssl.SSLContext | None = None
        if parsed.scheme == "https":
            alpn = ["h2", "http/1.1"] if self.http2 else ["http/1.1"]
            ssl_ctx = self._ssl_context(alpn)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host,
                    port,
                    ssl=ssl_ctx,
                    server_hostname=host if ssl_ctx else None,
                ),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Failed to connect to {host}:{port}: {exc}") from exc

        defaults = [
            ("Host", authority(parsed)),
            ("Connection", "close"),
            ("User-Agent", self.user_agent),
            ("Accept", "*/*"),
            ("Accept-Encoding", accept_encoding(self.auto_decompress)),
        ]
        if body is not None:
            defaults.append(("Content-Length", str(len(body))))
        merged_headers = canonicalize_headers(defaults, headers, order=HEADER_ORDER)

        negotiated_protocol = None
        ssl_obj = writer.get_extra_info("ssl_object")
        if ssl_obj is not None:
            negotiated_protocol = ssl_obj.selected_alpn_protocol()

        try:
            if negotiated_protocol == "h2":
                return await self._request_h2(
                    reader, writer, method, authority(parsed), path, merged_headers, body, signal
                )
            return await self._request_h1(
                reader, writer, method, path, merged_headers, body, signal
            )
        except BaseException:
            await _close_writer(writer)
            raise

    async def _request_h1(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        method: str,
        path: str,
        headers: list[tuple[str, str]],
        body: bytes | None,
        signal: AbortSignal | None,
    ) -> FetchResponse:
        req_lines = [f"{method} {path} HTTP/1.1\r\n".encode("ascii")]
        for name, value in headers:
            req_lines.append(f"{name}: {value}\r\n".encode("latin-1"))
        req_lines.append(b"\r\n")
        if body:
            req_lines.append(body)
        try:
            writer.writelines(req_lines)
            await writer.drain()
        except OSError as exc:
            raise NetworkError(f"Failed to send request: {exc}") from exc

        # Interim 1xx responses carry no body; skip to the final one.
        while True:
            version, status, reason, headers_list = await self._read_head(reader)
            if not 100 <= status < 200 or status == 101:
                break

        header_map = {k.lower(): v for k, v in headers_list}
        content_encoding = header_map.get("content-encoding", "") if self.auto_decompress else ""

        if method == "HEAD" or status in NULL_BODY_STATUSES:
            await _close_writer(writer)
            body_source: bytes | AsyncIterator[bytes] = b""
        elif header_map.get("transfer-encoding", "").lower().endswith("chunked"):
            body_source = self._iter_body(self._iter_chunked(reader), writer, content_encoding)
        elif "content-length" in header_map:
            try:
                length = int(header_map["content-length"])
            except ValueError as exc:
                raise ProtocolError(
                    f"Malformed Content-Length: {header_map['content-length']!r}"
                ) from exc
            body_source = self._iter_body(
                self._iter_content_length(reader, length), writer, content_encoding
            )
        else:
            body_source = self._iter_body(self._iter_until_close(reader), writer, content_encoding)

        return FetchResponse(
            status,
            reason,
            headers_list,
            body=body_source,
            signal=signal,
            http_version=version,
            on_close=functools.partial(_close_writer, writer),
        )

    async def _read_head(
        self, reader: asyncio.StreamReader
    ) -> tuple[str, int, str, list[tuple[str, str]]]:
        try:
            status_line = await reader.readline()
        except OSError as exc:
            raise NetworkError(f"Connection lost: {exc}") from exc
        if not status_line:
            raise ProtocolError("Empty response")
        try:
            parts = status_line.decode("latin-1").strip().split(" ", 2)
            version = parts[0].split("/", 1)[1]
            status = int(parts[1])
            reason = parts[2] if len(parts) > 2 else ""
        except (IndexError, ValueError) as exc:
            raise ProtocolError(f"Malformed status line: {status_line!r}") from exc

        headers_list: list[tuple[str, str]] = []
        while True:
            line = await reader.readline()
            if line in (b"\r\n", b"\n", b""):
                break
            try:
                name, value = line.split(b":", 1)
            except ValueError as exc:
                raise ProtocolError(f"Malformed header line: {line!r}") from exc
            headers_list.append(
                (name.decode("latin-1").strip(), value.decode("latin-1").strip())
            )
        return version, status, reason, headers_list

    async def _iter_body(
        self,
        raw: AsyncIterator[bytes],
        writer: asyncio.StreamWriter,
        content_encoding: str,
    ) -> AsyncIterator[bytes]:
        """Yield body chunks, decoding at the end when the body is encoded."""
        buffer = bytearray()
        try:
            async for chunk in raw:
                if content_encoding:
                    buffer += chunk
                else:
                    yield chunk
            if content_encoding and buffer:
                yield decode_body(bytes(buffer), content_encoding)
        except (OSError, asyncio.IncompleteReadError) as exc:
            raise NetworkError(f"Connection lost while reading body: {exc}") from exc
        finally:
            await _close_writer(writer)

    async def _iter_chunked(self, reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
        while True:
            line = await reader.readline()
            if not line:
                raise ProtocolError("Connection closed inside chunked body")
            try:
                size = int(line.split(b";", 1)[0].strip(), 16)
            except ValueError as exc:
                raise ProtocolError(f"Malformed chunk size: {line!r}") from exc
            if size == 0:
                # Trailers end with an empty line
                while (await reader.readline()) not in (b"\r\n", b"\n", b""):
                    pass
                return
            yield await reader.readexactly(size)
            await reader.readexactly(2)

    async def _iter_content_length(
        self, reader: asyncio.StreamReader, length: int, chunk_size: int = 65536
    ) -> AsyncIterator[bytes]:
        remaining = length
        while remaining > 0:
            data = await reader.read(min(remaining, chunk_size))
            if not data:
                raise ProtocolError(
                    f"Connection closed with {remaining} of {length} body bytes unread"
                )
            remaining -= len(data)
            yield data

    async def _iter_until_close(
        self, reader: asyncio.StreamReader, chunk_size: int = 65536
    ) -> AsyncIterator[bytes]:
        while True:
            data = await reader.read(chunk_size)
            if not data:
                return
            yield data

    async def _request_h2(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        method: str,
        authority_: str,
        path: str,
        headers: list[tuple[str, str]],
        body: bytes | None,
        signal: AbortSignal | None,
    ) -> FetchResponse:
        stream = _H2Stream(reader, writer)
        await stream.start(method, authority_, path, headers, body)
        while stream.response_headers is None:
            await stream.pump()

        status = 0
        headers_list: list[tuple[str, str]] = []
        for name, value in stream.response_headers:
            if name == ":status":
                status = int(value)
            elif not name.startswith(":"):
                headers_list.append((name, value))
        try:
            reason = HTTPStatus(status).phrase
        except ValueError:
            reason = ""

        header_map = {k.lower(): v for k, v in headers_list}
        content_encoding = header_map.get("content-encoding", "") if self.auto_decompress else ""

        async def frames() -> AsyncIterator[bytes]:
            while True:
                while stream.chunks:
                    yield stream.chunks.popleft()
                if stream.ended:
                    return
                await stream.pump()

        return FetchResponse(
            status,
            reason,
            headers_list,
            body=self._iter_body(frames(), writer, content_encoding),
            signal=signal,
            http_version="2",
            on_close=functools.partial(_close_writer, writer),
        )


_default_transport = FetchTransport()


async def fetch(
    url: str,
    *,
    method: str = "GET",
    headers: Headers | Mapping[str, str] | None = None,
    body: RequestBody = None,
    signal: AbortSignal | None = None,
) -> FetchResponse:
    """Fetch `url` with the shared default transport."""
    return await _default_transport(
        url, method=method, headers=headers, body=body, signal=signal
    )
