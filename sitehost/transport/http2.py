"""HTTP/2 connection serving for clients that negotiate ``h2`` over TLS."""

import collections
import socket
import time
import urllib.parse
from typing import Optional

import h2.config
import h2.connection
import h2.events
import h2.exceptions

from sitehost.domain.correlation_id import (
    clear_correlation_id,
    component_logger,
    generate_correlation_id,
    set_correlation_id,
)
from sitehost.domain.http_types import HttpRequest, HttpResponse
from sitehost.pipeline.io import (
    deadline_after,
    recv_with_deadline,
    send_with_deadline,
    wait_for_bytes,
)
from sitehost.transport.context import WorkerContext

HTTP2_LOGGER = component_logger("transport.http2")

# Connection-specific fields are forbidden in HTTP/2.
CONNECTION_HEADERS = {"connection", "keep-alive", "transfer-encoding", "upgrade"}


def _request_from_headers(headers: list[tuple[str, str]], stream_ended: bool) -> HttpRequest:
    pseudo = {name: value for name, value in headers if name.startswith(":")}
    regular = {name.lower(): value for name, value in headers if not name.startswith(":")}
    target = urllib.parse.urlsplit(pseudo.get(":path", ""))
    return HttpRequest(
        pseudo.get(":method", ""),
        urllib.parse.unquote(target.path),
        regular,
        "HTTP/2",
        not stream_ended,
    )


def _response_headers(response: HttpResponse) -> list[tuple[str, str]]:
    headers = [(":status", str(response.status))]
    headers.extend(
        (name.lower(), value)
        for name, value in response.headers.items()
        if name.lower() not in CONNECTION_HEADERS
    )
    headers.append(("content-length", str(response.content_length())))
    return headers


class Http2Session:
    """One HTTP/2 connection; streams are answered one at a time in arrival order."""

    def __init__(
        self, client_socket: socket.socket, client_addr_str: str, context: WorkerContext
    ) -> None:
        self.sock = client_socket
        self.client = client_addr_str
        self.context = context
        self.conn = h2.connection.H2Connection(
            config=h2.config.H2Configuration(client_side=False, header_encoding="utf-8")
        )
        self.ready: collections.deque[tuple[int, HttpRequest]] = collections.deque()
        self.open_requests: dict[int, HttpRequest] = {}
        self.reset_streams: set[int] = set()
        self.terminated = False

    def run(self) -> None:
        """Serve streams until the peer goes away, a timeout hits or the server drains."""
        config = self.context.config
        self.conn.initiate_connection()
        self._flush(deadline_after(config.write_timeout))

        while not self.terminated:
            while self.ready:
                stream_id, request = self.ready.popleft()
                self._respond(stream_id, request)

            lifecycle = self.context.lifecycle
            if lifecycle is not None and lifecycle.is_draining():
                self.conn.close_connection()
                self._flush(deadline_after(config.write_timeout))
                return

            timeout = config.read_timeout if self.open_requests else config.idle_timeout
            data = wait_for_bytes(self.sock, timeout, lifecycle)
            if data is None:
                if lifecycle is not None and lifecycle.is_draining():
                    continue
                return
            self._receive(data)
            self._flush(deadline_after(config.write_timeout))

    def _receive(self, data: bytes) -> None:
        for event in self.conn.receive_data(data):
            if isinstance(event, h2.events.RequestReceived):
                request = _request_from_headers(event.headers, event.stream_ended is not None)
                if event.stream_ended is not None:
                    self.ready.append((event.stream_id, request))
                else:
                    self.open_requests[event.stream_id] = request
            elif isinstance(event, h2.events.DataReceived):
                self.conn.acknowledge_received_data(
                    event.flow_controlled_length, event.stream_id
                )
            elif isinstance(event, h2.events.StreamEnded):
                request = self.open_requests.pop(event.stream_id, None)
                if request is not None:
                    self.ready.append((event.stream_id, request))
            elif isinstance(event, h2.events.StreamReset):
                self.open_requests.pop(event.stream_id, None)
                self.reset_streams.add(event.stream_id)
            elif isinstance(event, h2.events.ConnectionTerminated):
                self.terminated = True

    def _flush(self, deadline: Optional[float]) -> None:
        data = self.conn.data_to_send()
        if data:
            send_with_deadline(self.sock, data, deadline)

    def _respond(self, stream_id: int, request: HttpRequest) -> None:
        if stream_id in self.reset_streams:
            return
        set_correlation_id(request.headers.get("x-request-id") or generate_correlation_id())
        started = time.monotonic()
        response = self.context.router.route(request)
        deadline = deadline_after(self.context.config.write_timeout)
        sent = 0
        try:
            has_body = not response.omit_body and response.content_length() > 0
            self.conn.send_headers(
                stream_id, _response_headers(response), end_stream=not has_body
            )
            self._flush(deadline)
            if has_body:
                chunks = response.body_iter if response.body_iter is not None else [response.body]
                for chunk in chunks:
                    sent += self._send_data(stream_id, chunk, deadline)
                self.conn.end_stream(stream_id)
                self._flush(deadline)
        except h2.exceptions.StreamClosedError:
            HTTP2_LOGGER.info(
                "Stream reset by client",
                extra={"event": "stream_reset", "client": self.client, "route": request.path},
            )
        finally:
            close = getattr(response.body_iter, "close", None)
            if close is not None:
                close()
            HTTP2_LOGGER.info(
                "Request completed",
                extra={
                    "event": "request_complete",
                    "client": self.client,
                    "method": request.method,
                    "route": request.path,
                    "status_code": response.status,
                    "bytes_out": sent,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "protocol": request.version,
                },
            )
            clear_correlation_id()

    def _send_data(self, stream_id: int, data: bytes, deadline: Optional[float]) -> int:
        """Send ``data`` on a stream, waiting for window updates as needed."""
        sent = 0
        view = memoryview(data)
        while view:
            if self.terminated:
                raise ConnectionError("Peer terminated the connection")
            if stream_id in self.reset_streams:
                raise h2.exceptions.StreamClosedError(stream_id)
            window = min(
                self.conn.local_flow_control_window(stream_id),
                self.conn.max_outbound_frame_size,
            )
            if window <= 0:
                self._flush(deadline)
                incoming = recv_with_deadline(self.sock, deadline)
                if not incoming:
                    raise ConnectionError("Peer closed during flow-controlled send")
                self._receive(incoming)
                continue
            self.conn.send_data(stream_id, view[:window].tobytes())
            self._flush(deadline)
            sent += min(window, len(view))
            view = view[window:]
        return sent


def serve_http2(
    client_socket: socket.socket, client_addr_str: str, context: WorkerContext
) -> None:
    """Serve an ``h2`` connection negotiated through ALPN."""
    try:
        Http2Session(client_socket, client_addr_str, context).run()
    except h2.exceptions.ProtocolError as error:
        HTTP2_LOGGER.warning(
            "HTTP/2 protocol error",
            extra={
                "event": "h2_protocol_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
