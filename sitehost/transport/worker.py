"""Worker thread logic for handling individual client connections."""

import logging
import socket
import ssl
import threading
from typing import Callable

from sitehost.domain.correlation_id import clear_correlation_id, component_logger
from sitehost.transport.context import WorkerContext
from sitehost.transport.http1 import serve_http1
from sitehost.transport.http2 import serve_http2

WORKER_LOGGER = component_logger("transport.worker")

HTTP1_PROTOCOL = "http/1.1"

# ALPN preference order; never empty, so h2 stays advertised.
PROTOCOL_HANDLERS: dict[str, Callable[[socket.socket, str, WorkerContext], None]] = {
    "h2": serve_http2,
    HTTP1_PROTOCOL: serve_http1,
}


def _wrap_tls(client_socket: socket.socket, context: WorkerContext) -> ssl.SSLSocket:
    """Take over the accepted socket with TLS; the handshake happens later."""
    tls_socket = context.tls_context.wrap_socket(
        client_socket, server_side=True, do_handshake_on_connect=False
    )
    if context.lifecycle is not None:
        context.lifecycle.attach_socket(threading.current_thread(), tls_socket)
    return tls_socket


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Serve one accepted connection with the protocol negotiated for it.

    The accept loop registers this thread with the lifecycle before starting it.
    """
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    current_thread = threading.current_thread()
    lifecycle = context.lifecycle

    try:
        protocol = HTTP1_PROTOCOL
        if context.tls_context is not None:
            client_socket = _wrap_tls(client_socket, context)
            try:
                client_socket.settimeout(context.config.read_timeout or None)
                client_socket.do_handshake()
            except (ssl.SSLError, TimeoutError, ConnectionError) as error:
                WORKER_LOGGER.info(
                    "TLS handshake failed",
                    extra={
                        "event": "tls_handshake_failed",
                        "client": client_addr_str,
                        "error_type": type(error).__name__,
                    },
                )
                return
            protocol = client_socket.selected_alpn_protocol() or HTTP1_PROTOCOL

        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Connection ready",
                extra={"event": "connection_ready", "client": client_addr_str, "protocol": protocol},
            )
        PROTOCOL_HANDLERS[protocol](client_socket, client_addr_str, context)
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.info(
            "Connection closed with error",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        if lifecycle is not None:
            lifecycle.cleanup_worker(current_thread)
        try:
            client_socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        client_socket.close()
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": client_addr_str},
        )
        clear_correlation_id()
