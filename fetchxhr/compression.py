"""Content-Encoding decoding for response bodies (gzip, deflate, br)."""

from __future__ import annotations

import gzip
import logging
import zlib
from collections.abc import Callable

import brotli

logger = logging.getLogger(__name__)

# Accept-Encoding sent when the transport decodes bodies itself
DEFAULT_ACCEPT_ENCODING = "gzip, deflate, br"


def _inflate(body: bytes) -> bytes:
    # Servers disagree on whether "deflate" carries the zlib wrapper.
    try:
        return zlib.decompress(body, -zlib.MAX_WBITS)
    except zlib.error:
        return zlib.decompress(body)


_Decoder = tuple[Callable[[bytes], bytes], tuple[type[Exception], ...]]

DECODERS: dict[str, _Decoder] = {
    "gzip": (gzip.decompress, (OSError, EOFError, zlib.error)),
    "x-gzip": (gzip.decompress, (OSError, EOFError, zlib.error)),
    "deflate": (_inflate, (zlib.error,)),
    "br": (brotli.decompress, (brotli.error,)),
}


def decode_body(body: bytes, content_encoding: str) -> bytes:
    """
    Undo every coding listed in a Content-Encoding value.

    Codings are removed last-applied first. Unknown codings and bodies a
    decoder rejects are left as they are.
    """
    if not content_encoding or not body:
        return body
    codings = [c.strip().lower() for c in content_encoding.split(",") if c.strip()]
    for coding in reversed(codings):
        entry = DECODERS.get(coding)
        if entry is None:
            continue
        decoder, errors = entry
        try:
            body = decoder(body)
        except errors:
            logger.debug("Body is not valid %s, passing through", coding)
    return body


def accept_encoding(auto_decompress: bool = True) -> str:
    """Accept-Encoding value matching the transport's decoding setting."""
    return DEFAULT_ACCEPT_ENCODING if auto_decompress else "identity"
