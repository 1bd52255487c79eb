__version__ = "0.1.0"

from fetchxhr.abort import AbortController, AbortSignal, abortable
from fetchxhr.errors import (
    AbortError,
    BodyUsedError,
    FetchXHRError,
    InvalidStateError,
    NetworkError,
    ProtocolError,
    TimeoutError,
    TooManyRedirects,
    UnimplementedError,
)
from fetchxhr.fetch import FetchTransport, fetch
from fetchxhr.headers import Headers
from fetchxhr.models import Blob, FetchResponse
from fetchxhr.xhr import ReadyState, XMLHttpRequest, XMLHttpRequestEventTarget

__all__ = [
    "__version__",
    "AbortController",
    "AbortSignal",
    "abortable",
    "AbortError",
    "BodyUsedError",
    "FetchXHRError",
    "InvalidStateError",
    "NetworkError",
    "ProtocolError",
    "TimeoutError",
    "TooManyRedirects",
    "UnimplementedError",
    "FetchTransport",
    "fetch",
    "Headers",
    "Blob",
    "FetchResponse",
    "ReadyState",
    "XMLHttpRequest",
    "XMLHttpRequestEventTarget",
]
