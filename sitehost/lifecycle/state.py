"""Drain flag and connection registry shared by the accept loop and workers."""

import enum
import socket
import threading
import time
from typing import Optional

from sitehost.domain.correlation_id import component_logger

LIFECYCLE_LOGGER = component_logger("lifecycle")
JOIN_SLICE_SECONDS = 0.1


class ServerState(enum.Enum):
    """Phases of a server instance."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"


class ServerLifecycle:
    """Per-instance registry of connection threads and their sockets.

    A fresh instance is created for every start, so draining never has to be
    undone.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._drain = threading.Event()
        self._connections: dict[threading.Thread, Optional[socket.socket]] = {}

    def should_stop(self) -> bool:
        """True once the accept loop must stop taking connections."""
        return self._drain.is_set()

    def is_draining(self) -> bool:
        """True once keep-alive connections should close after their current request."""
        return self._drain.is_set()

    def begin_draining(self) -> None:
        self._drain.set()
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown", extra={"event": "draining_started"}
        )

    def register_worker(
        self, thread: threading.Thread, client_socket: Optional[socket.socket] = None
    ) -> None:
        with self._registry_lock:
            self._connections[thread] = client_socket

    def attach_socket(self, thread: threading.Thread, client_socket: socket.socket) -> None:
        """Swap in the socket a registered worker now reads from (its TLS wrapper)."""
        with self._registry_lock:
            if thread in self._connections:
                self._connections[thread] = client_socket

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._registry_lock:
            self._connections.pop(thread, None)

    def has_worker(self, thread: threading.Thread) -> bool:
        with self._registry_lock:
            return thread in self._connections

    def active_worker_count(self) -> int:
        with self._registry_lock:
            return len(self._connections)

    def _prune_finished(self) -> list[threading.Thread]:
        with self._registry_lock:
            for finished in [t for t in self._connections if not t.is_alive()]:
                del self._connections[finished]
            return list(self._connections)

    def wait_for_workers(self, timeout: float) -> bool:
        """Join connection threads until none remain or *timeout* seconds pass.

        Returns False when some connections were still open at the deadline.
        """
        deadline = time.monotonic() + timeout
        pending = self._prune_finished()
        while pending:
            left = deadline - time.monotonic()
            if left <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={"remaining_connections": len(pending)},
                )
                return False
            pending[0].join(timeout=min(JOIN_SLICE_SECONDS, left))
            pending = self._prune_finished()
        return True

    def force_close_connections(self) -> int:
        """Shut down every tracked socket so blocked workers unwind; return the count."""
        with self._registry_lock:
            open_sockets = [sock for sock in self._connections.values() if sock is not None]
        for sock in open_sockets:
            try:
                # The worker still owns the TLS object; only the descriptor is shut.
                socket.socket.shutdown(sock, socket.SHUT_RDWR)
            except OSError:
                pass
        return len(open_sockets)
