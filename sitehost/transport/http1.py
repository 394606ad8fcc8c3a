"""HTTP/1.x connection serving with keep-alive."""

import logging
import socket
import time

from sitehost.bootstrap.config import SECURITY_HEADERS
from sitehost.domain.correlation_id import (
    clear_correlation_id,
    component_logger,
    generate_correlation_id,
    set_correlation_id,
)
from sitehost.domain.response_builders import (
    bad_request_response,
    header_too_large_response,
)
from sitehost.pipeline.io import (
    deadline_after,
    receive_request,
    send_response,
    wait_for_bytes,
)
from sitehost.pipeline.validation import RequestHeaderTooLarge
from sitehost.transport.context import WorkerContext

HTTP1_LOGGER = component_logger("transport.http1")


def serve_http1(
    client_socket: socket.socket, client_addr_str: str, context: WorkerContext
) -> None:
    """Serve requests on one connection until it closes, times out or drains."""
    config = context.config
    buffer = b""
    first_request = True
    # The first head is due read_timeout after the connection is ready.
    read_deadline = deadline_after(config.read_timeout)

    while True:
        if not buffer:
            timeout = config.read_timeout if first_request else config.idle_timeout
            chunk = wait_for_bytes(client_socket, timeout, context.lifecycle)
            if chunk is None:
                if HTTP1_LOGGER.logger.isEnabledFor(logging.DEBUG):
                    HTTP1_LOGGER.debug(
                        "Connection idle or closed",
                        extra={"event": "connection_idle_closed", "client": client_addr_str},
                    )
                return
            buffer = chunk
        if not first_request:
            # Keep-alive heads are due read_timeout after their first byte.
            read_deadline = deadline_after(config.read_timeout)
        first_request = False

        set_correlation_id(generate_correlation_id())
        started = time.monotonic()
        try:
            try:
                request, buffer = receive_request(client_socket, buffer, read_deadline)
            except RequestHeaderTooLarge:
                HTTP1_LOGGER.warning(
                    "Request header exceeded limit",
                    extra={"event": "header_too_large", "client": client_addr_str},
                )
                send_response(
                    client_socket,
                    header_too_large_response(SECURITY_HEADERS),
                    config.write_timeout,
                )
                return
            except (ValueError, UnicodeDecodeError):
                HTTP1_LOGGER.warning(
                    "Malformed request received",
                    extra={"event": "malformed_request", "client": client_addr_str},
                )
                send_response(
                    client_socket,
                    bad_request_response(SECURITY_HEADERS),
                    config.write_timeout,
                )
                return

            if request is None:
                return

            response = context.router.route(request)
            if context.lifecycle is not None and context.lifecycle.is_draining():
                response.close_connection = True
            sent = send_response(client_socket, response, config.write_timeout)
            HTTP1_LOGGER.info(
                "Request completed",
                extra={
                    "event": "request_complete",
                    "client": client_addr_str,
                    "method": request.method,
                    "route": request.path,
                    "status_code": response.status,
                    "bytes_out": sent,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "protocol": request.version,
                },
            )
            if response.close_connection:
                return
        finally:
            clear_correlation_id()
