"""Main connection acceptance loop."""

import errno
import logging
import socket
import threading
import time

from sitehost.domain.correlation_id import component_logger
from sitehost.lifecycle.state import ServerLifecycle
from sitehost.transport.context import WorkerContext
from sitehost.transport.worker import handle_client

ACCEPT_LOGGER = component_logger("transport.accept")

# The listening socket itself is unusable; anything else is per-connection.
FATAL_ACCEPT_ERRNOS = {errno.EBADF, errno.EINVAL, errno.ENOTSOCK}
ACCEPT_RETRY_MIN_SECONDS = 0.005
ACCEPT_RETRY_MAX_SECONDS = 1.0


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
    lifecycle: ServerLifecycle,
) -> None:
    """Start a worker thread for a newly accepted connection."""
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        daemon=False,
    )
    lifecycle.register_worker(thread, client_socket)
    thread.start()


def run_accept_loop(
    server_socket: socket.socket, context: WorkerContext, lifecycle: ServerLifecycle
) -> None:
    """Accept connections until the lifecycle asks to stop.

    Returns normally on a requested stop and raises ``OSError`` when the
    listening socket fails for any other reason.
    """
    retry_delay = 0.0
    while not lifecycle.should_stop():
        try:
            client_socket, client_address = server_socket.accept()
        except socket.timeout:
            continue
        except OSError as error:
            if lifecycle.should_stop():
                break
            if error.errno in FATAL_ACCEPT_ERRNOS:
                raise
            # Doubling pause for repeated failures such as EMFILE.
            retry_delay = min(
                max(retry_delay * 2, ACCEPT_RETRY_MIN_SECONDS), ACCEPT_RETRY_MAX_SECONDS
            )
            ACCEPT_LOGGER.error(
                "Socket accept failed, retrying in %.3fs",
                retry_delay,
                extra={
                    "event": "accept_error",
                    "error_type": type(error).__name__,
                    "errno": error.errno,
                    "timeout_seconds": retry_delay,
                },
            )
            time.sleep(retry_delay)
            continue

        retry_delay = 0.0

        if lifecycle.should_stop():
            client_socket.close()
            break

        _handle_accepted_client(client_socket, client_address, context, lifecycle)
