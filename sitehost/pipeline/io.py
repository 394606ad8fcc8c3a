"""HTTP/1.1 input/output operations bounded by connection deadlines."""

import logging
import socket
import time
import urllib.parse
from email.utils import formatdate
from typing import Optional, Tuple

from sitehost.bootstrap.config import HEADER_DELIMITER, MAX_HEADER_BYTES
from sitehost.domain.correlation_id import component_logger, set_correlation_id
from sitehost.domain.http_types import HttpRequest, HttpResponse
from sitehost.pipeline.validation import RequestHeaderTooLarge

IO_LOGGER = component_logger("io")

IDLE_POLL_SECONDS = 0.5
RECV_SIZE = 4096
SUPPORTED_VERSIONS = {"HTTP/1.0", "HTTP/1.1"}


def deadline_after(seconds: float) -> Optional[float]:
    """Return a monotonic deadline ``seconds`` from now; 0 means no ceiling."""
    if not seconds:
        return None
    return time.monotonic() + seconds


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TimeoutError("Connection deadline exceeded")
    return remaining


def recv_with_deadline(client_socket: socket.socket, deadline: Optional[float]) -> bytes:
    """Receive data from socket with a deadline, raising TimeoutError if exceeded."""
    client_socket.settimeout(_remaining(deadline))
    return client_socket.recv(RECV_SIZE)


def send_with_deadline(
    client_socket: socket.socket, data: bytes, deadline: Optional[float]
) -> None:
    """Send all of ``data`` before the deadline, raising TimeoutError otherwise."""
    client_socket.settimeout(_remaining(deadline))
    client_socket.sendall(data)


def wait_for_bytes(
    client_socket: socket.socket, timeout: float, lifecycle=None
) -> Optional[bytes]:
    """Wait for the next bytes of a request on an idle connection.

    Returns ``None`` when the peer closes, the timeout elapses or the server
    starts draining. The wait is sliced so draining is noticed promptly.
    """
    deadline = deadline_after(timeout)
    while True:
        if lifecycle is not None and lifecycle.is_draining():
            return None
        wait = IDLE_POLL_SECONDS
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            wait = min(wait, remaining)
        client_socket.settimeout(wait)
        try:
            chunk = client_socket.recv(RECV_SIZE)
        except TimeoutError:
            continue
        return chunk or None


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if ":" in line:
            name, value = line.split(":", 1)
            parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Parse the HTTP method, decoded path and version from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if version not in SUPPORTED_VERSIONS:
        raise ValueError("Unsupported HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    return method, path, version


def receive_request(
    client_socket: socket.socket, buffer: bytes, deadline: Optional[float]
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes until a complete request head is available.

    The head must be complete by ``deadline`` (see :func:`deadline_after`),
    which the caller fixes before any of the request was read. Request bodies
    are not read; such requests close the connection after their response.
    """
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise RequestHeaderTooLarge
        chunk = recv_with_deadline(client_socket, deadline)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    if len(header_block) > MAX_HEADER_BYTES:
        raise RequestHeaderTooLarge
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    incoming_correlation_id = headers.get("x-request-id")
    if incoming_correlation_id:
        set_correlation_id(incoming_correlation_id)

    has_body = "transfer-encoding" in headers or headers.get("content-length", "0") not in (
        "",
        "0",
    )
    IO_LOGGER.debug(
        "Parsed request", extra={"method": method, "path": path, "protocol": version}
    )
    return HttpRequest(method, path, headers, version, has_body), remainder


def send_response(
    client_socket: socket.socket, response: HttpResponse, write_timeout: float
) -> int:
    """Serialize and send the response within ``write_timeout``; return body bytes sent."""
    deadline = deadline_after(write_timeout)
    headers = dict(response.headers)
    headers["Date"] = formatdate(usegmt=True)
    headers["Content-Length"] = str(response.content_length())
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER

    sent = 0
    try:
        if response.omit_body:
            send_with_deadline(client_socket, header_block, deadline)
        elif response.body_iter is not None:
            send_with_deadline(client_socket, header_block, deadline)
            for chunk in response.body_iter:
                if not chunk:
                    continue
                send_with_deadline(client_socket, chunk, deadline)
                sent += len(chunk)
        else:
            send_with_deadline(client_socket, header_block + response.body, deadline)
            sent = len(response.body)
    finally:
        close = getattr(response.body_iter, "close", None)
        if close is not None:
            close()
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Sent response",
            extra={"status_code": response.status, "bytes_out": sent},
        )
    return sent
