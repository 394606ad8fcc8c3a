"""Server lifecycle: start, serve and graceful shutdown of one server instance."""

import socket
import ssl
import threading
import time
from typing import Optional

from sitehost.bootstrap.config import DEFAULT_HOST, SHUTDOWN_TIMEOUT_SECONDS, Configuration
from sitehost.bootstrap.socket_factory import build_tls_context, create_server_socket
from sitehost.domain.correlation_id import component_logger
from sitehost.domain.mounts import MountTable
from sitehost.lifecycle.state import ServerLifecycle, ServerState
from sitehost.pipeline.router import Router
from sitehost.transport.accept_loop import run_accept_loop
from sitehost.transport.context import WorkerContext
from sitehost.transport.worker import PROTOCOL_HANDLERS

MANAGER_LOGGER = component_logger("lifecycle.manager")

FORCE_CLOSE_GRACE_SECONDS = 1.0


class UnexpectedServeError(Exception):
    """Raised by ``start`` when the accept loop failed without a stop request."""


class ShutdownTimeoutError(Exception):
    """Raised internally when draining exceeds the shutdown budget."""


class LifecycleManager:
    """Owns the live server instance and its state transitions.

    ``start`` blocks the calling thread. ``shutdown`` must be called from a
    different thread; ``request_shutdown`` does that for signal handlers.
    """

    def __init__(
        self,
        config: Configuration,
        mount_table: MountTable,
        host: str = DEFAULT_HOST,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS,
    ) -> None:
        self.config = config
        self.mount_table = mount_table
        self.host = host
        self.shutdown_timeout = shutdown_timeout
        self._lock = threading.Lock()
        self._state = ServerState.STOPPED
        self._lifecycle: Optional[ServerLifecycle] = None
        self._server_socket: Optional[socket.socket] = None
        self._tls_context: Optional[ssl.SSLContext] = None
        self._loop_done = threading.Event()
        self._loop_done.set()
        self._stopped = threading.Event()
        self._stopped.set()
        self._shutdown_clean = True
        # Written without the lock, from signal handlers.
        self._stop_before_start = False

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    def is_running(self) -> bool:
        return self.state is ServerState.RUNNING

    @property
    def bound_address(self) -> Optional[tuple[str, int]]:
        """Address of the live listening socket, ``None`` when not listening."""
        with self._lock:
            if self._server_socket is None:
                return None
            return self._server_socket.getsockname()[:2]

    @property
    def tls_context(self) -> Optional[ssl.SSLContext]:
        with self._lock:
            return self._tls_context

    def wait_until_running(self, timeout: float) -> bool:
        """Poll until the accept loop is live; used by embedders and tests."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.is_running():
                return True
            time.sleep(0.01)
        return self.is_running()

    def start(self) -> None:
        """Bind, serve until shut down, and return once fully stopped.

        Raises ``TLSMaterialError`` or ``ListenError`` before serving, and
        ``UnexpectedServeError`` after a self-triggered shutdown.
        """
        with self._lock:
            if self._state is not ServerState.STOPPED:
                raise RuntimeError(f"server is already {self._state.value}")
            if self._stop_before_start:
                self._stop_before_start = False
                MANAGER_LOGGER.info(
                    "Shutdown was requested before start, not serving",
                    extra={"event": "start_cancelled"},
                )
                return
            self._state = ServerState.STARTING
            self._loop_done.clear()
            self._stopped.clear()
            lifecycle = ServerLifecycle()
            self._lifecycle = lifecycle

        try:
            tls_context = None
            if self.config.production:
                tls_context = build_tls_context(
                    self.config.cert_file, self.config.key_file, list(PROTOCOL_HANDLERS)
                )
            server_socket = create_server_socket(self.host, self.config.listen_port)
        except Exception:
            self._mark_stopped(clean=True)
            raise

        context = WorkerContext(Router(self.mount_table), self.config, lifecycle, tls_context)
        with self._lock:
            self._server_socket = server_socket
            self._tls_context = tls_context
            if self._state is ServerState.STARTING:
                self._state = ServerState.RUNNING

        host, port = server_socket.getsockname()[:2]
        MANAGER_LOGGER.info(
            "Server listening for connections",
            extra={
                "event": "server_listening",
                "host": host,
                "port": port,
                "tls": tls_context is not None,
                "protocol": ",".join(PROTOCOL_HANDLERS) if tls_context else "http/1.1",
            },
        )

        failure: Optional[BaseException] = None
        try:
            run_accept_loop(server_socket, context, lifecycle)
        except Exception as error:  # pylint: disable=broad-except
            failure = error
        finally:
            self._release_listener()
            self._loop_done.set()

        if failure is None:
            MANAGER_LOGGER.info(
                "Server stopped accepting connections", extra={"event": "accept_stopped"}
            )
            self._stopped.wait()
            return

        MANAGER_LOGGER.error(
            "Server stopped unexpectedly",
            extra={
                "event": "serve_failed",
                "error_type": type(failure).__name__,
                "error": str(failure),
            },
        )
        try:
            self.shutdown()
        except Exception as error:  # pylint: disable=broad-except
            MANAGER_LOGGER.error(
                "Shutdown after unexpected stop failed",
                extra={"event": "shutdown_failed", "error_type": type(error).__name__},
                exc_info=True,
            )
            self._mark_stopped(clean=False)
        raise UnexpectedServeError(str(failure)) from failure

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Drain and stop the server; a no-op returning True when already stopped.

        Returns False when in-flight connections had to be force-closed.
        """
        if timeout is None:
            timeout = self.shutdown_timeout

        with self._lock:
            state = self._state
            if state is ServerState.STOPPED:
                MANAGER_LOGGER.debug(
                    "Shutdown requested while stopped", extra={"event": "shutdown_noop"}
                )
                return True
            already_draining = state is ServerState.DRAINING
            if not already_draining:
                self._state = ServerState.DRAINING
            lifecycle = self._lifecycle

        if already_draining:
            finished = self._stopped.wait(timeout + FORCE_CLOSE_GRACE_SECONDS)
            return finished and self._shutdown_clean

        MANAGER_LOGGER.info(
            "Shutting down server",
            extra={"event": "shutdown_started", "timeout_seconds": timeout},
        )
        lifecycle.begin_draining()
        clean = True
        try:
            self._drain(lifecycle, time.monotonic() + timeout)
        except ShutdownTimeoutError as error:
            clean = False
            closed = lifecycle.force_close_connections()
            MANAGER_LOGGER.error(
                "Graceful shutdown timed out, connections force-closed",
                extra={
                    "event": "shutdown_timeout",
                    "error_type": type(error).__name__,
                    "remaining_connections": closed,
                    "timeout_seconds": timeout,
                },
            )
            lifecycle.wait_for_workers(FORCE_CLOSE_GRACE_SECONDS)
        finally:
            self._release_listener()
            self._mark_stopped(clean)

        MANAGER_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})
        return clean

    def request_shutdown(self) -> threading.Thread:
        """Run ``shutdown`` on a helper thread; safe to call from signal handlers.

        A request made while stopped makes the next ``start`` return without
        serving, so a signal arriving just before startup is not lost.
        """
        if self._state is ServerState.STOPPED:
            self._stop_before_start = True
        thread = threading.Thread(target=self.shutdown, name="sitehost-shutdown")
        thread.start()
        return thread

    def _drain(self, lifecycle: ServerLifecycle, deadline: float) -> None:
        if not self._loop_done.wait(max(0.0, deadline - time.monotonic())):
            raise ShutdownTimeoutError("accept loop did not stop in time")
        if not lifecycle.wait_for_workers(max(0.0, deadline - time.monotonic())):
            raise ShutdownTimeoutError("in-flight connections did not finish in time")

    def _release_listener(self) -> None:
        with self._lock:
            server_socket = self._server_socket
            self._server_socket = None
        if server_socket is not None:
            server_socket.close()

    def _mark_stopped(self, clean: bool) -> None:
        with self._lock:
            self._state = ServerState.STOPPED
            self._lifecycle = None
            self._tls_context = None
            self._shutdown_clean = clean
            self._stop_before_start = False
        self._loop_done.set()
        self._stopped.set()
