"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    version: str = "HTTP/1.1"
    has_body: bool = False


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client.

    ``body_iter`` streams a body of ``body_length`` bytes; otherwise ``body``
    is sent as-is. ``omit_body`` keeps the length headers but sends no bytes,
    which is how HEAD responses are produced.
    """

    status: int
    reason: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    close_connection: bool = False
    body_iter: Optional[Iterable[bytes]] = None
    body_length: Optional[int] = None
    omit_body: bool = False

    @property
    def status_line(self) -> str:
        """Return the HTTP/1.1 status line for the response."""
        return f"HTTP/1.1 {self.status} {self.reason}"

    def content_length(self) -> int:
        """Return the number of body bytes the response declares."""
        if self.body_iter is not None and self.body_length is not None:
            return self.body_length
        return len(self.body)


def should_close(request: HttpRequest) -> bool:
    """Determine whether the connection should be closed after responding."""
    connection = request.headers.get("connection", "").lower()
    if request.has_body:
        return True
    if request.version == "HTTP/1.0":
        return connection != "keep-alive"
    return connection == "close"
