"""Tests for fetchxhr.compression module."""

import gzip
import io
import zlib

import brotli

from fetchxhr.compression import (
    DEFAULT_ACCEPT_ENCODING,
    DECODERS,
    accept_encoding,
    decode_body,
)


class TestDecodeBody:
    """Tests for decode_body function."""

    def test_decode_empty_body(self):
        """Test empty body returns unchanged."""
        assert decode_body(b"", "gzip") == b""

    def test_decode_empty_encoding(self):
        """Test empty encoding returns body unchanged."""
        assert decode_body(b"test body", "") == b"test body"

    def test_decode_gzip(self):
        """Test gzip decompression."""
        buf = io.BytesIO()
        with gzip.GzipFile(fileobj=buf, mode="wb") as f:
            f.write(b"hello world")
        assert decode_body(buf.getvalue(), "gzip") == b"hello world"

    def test_decode_deflate_raw(self):
        """Test raw deflate decompression."""
        compress_obj = zlib.compressobj(level=6, method=zlib.DEFLATED, wbits=-zlib.MAX_WBITS)
        compressed = compress_obj.compress(b"hello world") + compress_obj.flush()
        assert decode_body(compressed, "deflate") == b"hello world"

    def test_decode_deflate_zlib_wrapped(self):
        """Test zlib-wrapped deflate decompression."""
        assert decode_body(zlib.compress(b"hello world"), "deflate") == b"hello world"

    def test_decode_brotli(self):
        """Test brotli decompression."""
        assert decode_body(brotli.compress(b"hello world"), "br") == b"hello world"

    def test_decode_unknown_encoding(self):
        """Test unknown encoding returns body unchanged."""
        assert decode_body(b"test data", "unknown-encoding") == b"test data"

    def test_decode_multiple_encodings(self):
        """Test multiple encodings are decoded in reverse order."""
        compressed = brotli.compress(gzip.compress(b"layered"))
        assert decode_body(compressed, "gzip, br") == b"layered"

    def test_decode_case_insensitive(self):
        """Test encoding names are matched case-insensitively."""
        assert decode_body(gzip.compress(b"hi"), "GZIP") == b"hi"


class TestMalformedBodies:
    """Tests for bodies a decoder rejects."""

    def test_invalid_gzip_passes_through(self):
        """Test invalid gzip data is returned unchanged."""
        assert decode_body(b"not gzip", "gzip") == b"not gzip"

    def test_invalid_deflate_passes_through(self):
        """Test invalid deflate data is returned unchanged."""
        assert decode_body(b"not deflate", "deflate") == b"not deflate"

    def test_invalid_brotli_passes_through(self):
        """Test invalid brotli data is returned unchanged."""
        assert decode_body(b"not brotli", "br") == b"not brotli"

    def test_chain_continues_after_rejected_layer(self):
        """Test a rejected layer does not stop the remaining codings."""
        assert decode_body(gzip.compress(b"inner"), "gzip, deflate") == b"inner"

    def test_registered_codings(self):
        """Test every advertised coding has a decoder."""
        for coding in DEFAULT_ACCEPT_ENCODING.split(", "):
            assert coding in DECODERS
        assert "x-gzip" in DECODERS


class TestAcceptEncoding:
    """Tests for accept_encoding function."""

    def test_auto_decompress_advertises_codecs(self):
        """Test decoding transports advertise gzip, deflate and br."""
        assert accept_encoding(True) == DEFAULT_ACCEPT_ENCODING
        assert "br" in DEFAULT_ACCEPT_ENCODING

    def test_no_decompress_requests_identity(self):
        """Test non-decoding transports ask for identity."""
        assert accept_encoding(False) == "identity"
