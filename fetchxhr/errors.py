class FetchXHRError(Exception):
    """Base error for fetchxhr."""


class NetworkError(FetchXHRError):
    """Raised when a TCP/TLS connection or exchange fails."""


class ProtocolError(NetworkError):
    """Raised when the peer sends a malformed HTTP response."""


class TooManyRedirects(NetworkError):
    """Raised when a redirect chain exceeds the transport's limit."""


class AbortError(FetchXHRError):
    """Raised when an in-flight exchange is aborted through its signal."""


class TimeoutError(AbortError):
    """Raised when an exchange is aborted because its timer expired."""


class InvalidStateError(FetchXHRError):
    """Raised when an operation is not allowed in the current ready state."""


class UnimplementedError(FetchXHRError, NotImplementedError):
    """Raised for response interpretations that are not supported."""


class BodyUsedError(FetchXHRError):
    """Raised when a one-shot response body is consumed twice."""
