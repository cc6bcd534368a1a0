"""
Stream Fan-out Server
=====================

HTTP server exposing the MJPEG stream and the control routes.

One thread per connection (ThreadingMixIn). Each stream connection pulls
from the LatestFramePublisher at its own pace, so a slow or stalled client
only delays its own thread, never the classification loop or other clients.

Connections are tracked so stop() can:
1. stop accepting new connections,
2. wake every stream loop and let it drain for `drain_timeout` seconds,
3. force-close whatever is still open.

Per-connection state machine:
    AWAITING_REQUEST -> DISPATCHED_CONTROL -> CLOSED
    AWAITING_REQUEST -> DISPATCHED_STREAM -> (WAITING_FOR_FRAME <-> SENDING_FRAME) -> CLOSED
"""

import json
import socket
import threading
import time
from enum import Enum
from functools import partial
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Optional, Set, Tuple

from cupertino_tld.logging_utils import generate_trace_id, get_component_logger, trace_context
from cupertino_tld.stream.control import CORS_HEADERS, ControlEndpoint, ControlResponse
from cupertino_tld.stream.publisher import LatestFramePublisher
from cupertino_tld.stream.routes import Request, Route, RouteTable

logger = get_component_logger(__name__, "stream_server")

BOUNDARY = b"frame"
STREAM_CONTENT_TYPE = f"multipart/x-mixed-replace; boundary={BOUNDARY.decode()}"


class ConnectionState(Enum):
    AWAITING_REQUEST = "awaiting_request"
    DISPATCHED_CONTROL = "dispatched_control"
    DISPATCHED_STREAM = "dispatched_stream"
    WAITING_FOR_FRAME = "waiting_for_frame"
    SENDING_FRAME = "sending_frame"
    CLOSED = "closed"


def build_frame_chunk(jpeg: bytes) -> bytes:
    """
    One self-delimited multipart chunk.

    Example:
        >>> build_frame_chunk(b"abc")
        b'--frame\\r\\nContent-Type: image/jpeg\\r\\nContent-Length: 3\\r\\n\\r\\nabc\\r\\n'
    """
    header = (
        b"--" + BOUNDARY + b"\r\n"
        b"Content-Type: image/jpeg\r\n"
        b"Content-Length: " + str(len(jpeg)).encode("ascii") + b"\r\n\r\n"
    )
    return header + jpeg + b"\r\n"


class _ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True
    allow_reuse_address = True
    # Draining is handled by StreamServer.stop()
    block_on_close = False

    def handle_error(self, request, client_address):
        logger.error(
            f"Unhandled error serving {client_address}",
            extra={"event": "request_unhandled_error", "client": str(client_address)},
            exc_info=True,
        )


class StreamRequestHandler(BaseHTTPRequestHandler):
    """
    Per-connection handler. One request per connection (HTTP/1.0).

    Every method funnels into _dispatch(), which resolves a tagged Request
    through the RouteTable before any handler logic runs.
    """

    server_version = "cupertino-tld"
    protocol_version = "HTTP/1.0"

    def __init__(self, *args, stream_server: "StreamServer", **kwargs):
        # BaseHTTPRequestHandler handles the request inside __init__
        self.stream_server = stream_server
        self.state = ConnectionState.AWAITING_REQUEST
        super().__init__(*args, **kwargs)

    def setup(self):
        super().setup()
        self.stream_server._register(self)

    def finish(self):
        try:
            super().finish()
        finally:
            self.state = ConnectionState.CLOSED
            self.stream_server._unregister(self)

    def do_GET(self):
        self._dispatch()

    def do_POST(self):
        self._dispatch()

    def do_OPTIONS(self):
        self._dispatch()

    def do_PUT(self):
        self._dispatch()

    def do_DELETE(self):
        self._dispatch()

    def do_PATCH(self):
        self._dispatch()

    def log_message(self, format, *args):
        logger.debug(format % args, extra={"event": "http_access", "client": self.address_string()})

    # ------------------------------------------------------------------

    def _dispatch(self):
        server = self.stream_server
        with trace_context(generate_trace_id("req")):
            route = server.routes.resolve(self.command, self.path)
            logger.info(
                f"{self.command} {self.path} -> {route.value}",
                extra={
                    "event": "request_received",
                    "route": route.value,
                    "client": self.address_string(),
                },
            )

            if route is Route.STREAM:
                self.state = ConnectionState.DISPATCHED_STREAM
                self._serve_stream()
                return

            if route.is_control:
                self.state = ConnectionState.DISPATCHED_CONTROL
                body = b""
                if route is Route.UPLOAD_CONFIG:
                    body = self._read_body()
                    if body is None:
                        self._send_json(
                            HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                            {"status": "error", "message": "Payload too large"},
                        )
                        return
                request = Request(route=route, method=self.command, path=self.path, body=body)
                self._send_control(server.dispatch_control(request))
                return

            if route is Route.METHOD_NOT_ALLOWED:
                allow = ", ".join(server.routes.allowed_methods(self.path))
                self._send_json(
                    HTTPStatus.METHOD_NOT_ALLOWED,
                    {"status": "error", "message": "Method not allowed"},
                    extra_headers={"Allow": allow},
                )
                return

            self._send_json(HTTPStatus.NOT_FOUND, {"status": "error", "message": "Not found"})

    def _read_body(self) -> Optional[bytes]:
        """Request body per Content-Length; None if it exceeds the upload limit."""
        raw_length = self.headers.get("Content-Length")
        if not raw_length:
            return b""
        try:
            length = int(raw_length)
        except ValueError:
            return b""
        if length <= 0:
            return b""
        if length > self.stream_server.max_body_bytes:
            # Drain so closing the socket doesn't reset the 413 response
            remaining = length
            while remaining > 0:
                chunk = self.rfile.read(min(remaining, 64 * 1024))
                if not chunk:
                    break
                remaining -= len(chunk)
            return None
        return self.rfile.read(length)

    def _serve_stream(self):
        server = self.stream_server
        publisher = server.publisher
        frames_sent = 0

        try:
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", STREAM_CONTENT_TYPE)
            self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
            self.send_header("Pragma", "no-cache")
            for key, value in CORS_HEADERS.items():
                self.send_header(key, value)
            self.end_headers()
        except OSError as e:
            logger.info(
                f"Stream client gone before headers were sent: {e}",
                extra={"event": "stream_client_disconnected", "frames_sent": 0},
            )
            return

        server._stream_client_opened()
        try:
            while not server.is_stopping:
                self.state = ConnectionState.WAITING_FOR_FRAME
                frame = publisher.read_copy()
                if frame is None:
                    server._wait(server.no_frame_retry_interval)
                    continue

                self.state = ConnectionState.SENDING_FRAME
                self.wfile.write(build_frame_chunk(frame.data))
                self.wfile.flush()
                frames_sent += 1

                server._wait(server.frame_interval)

        except OSError as e:
            # BrokenPipe / ConnectionReset: the client went away. Normal termination.
            logger.info(
                f"Stream client disconnected after {frames_sent} frames",
                extra={
                    "event": "stream_client_disconnected",
                    "frames_sent": frames_sent,
                    "error_type": type(e).__name__,
                },
            )
        else:
            logger.info(
                f"Stream closed by server shutdown after {frames_sent} frames",
                extra={"event": "stream_closed_shutdown", "frames_sent": frames_sent},
            )
        finally:
            server._stream_client_closed()

    def _send_control(self, response: ControlResponse):
        try:
            self.send_response(response.status)
            for key, value in response.headers.items():
                self.send_header(key, value)
            if response.content_type:
                self.send_header("Content-Type", response.content_type)
            self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if response.body:
                self.wfile.write(response.body)
            self.wfile.flush()
        except OSError as e:
            logger.info(
                f"Control client disconnected before response: {e}",
                extra={"event": "control_client_disconnected"},
            )

    def _send_json(self, status: HTTPStatus, payload: dict, extra_headers: Optional[dict] = None):
        body = json.dumps(payload).encode("utf-8")
        headers = dict(CORS_HEADERS)
        headers.update(extra_headers or {})
        self._send_control(ControlResponse(status=status, body=body, headers=headers))


class StreamServer:
    """
    MJPEG fan-out and control HTTP server.

    Args:
        publisher: Latest-frame slot the stream connections read from
        control: Control endpoint for configuration routes
        host: Bind address (loopback by default; a reverse proxy fronts it)
        port: Bind port (0 = ephemeral, see .address)
        api_prefix: Path prefix of every route
        frame_interval: Pause between frames on one connection (seconds)
        no_frame_retry_interval: Pause before retrying when nothing is published
        drain_timeout: How long stop() waits for connections before force-closing
        max_body_bytes: Upload size limit

    Example:
        >>> server = StreamServer(publisher, control, port=8080)
        >>> server.start()
        >>> # ... GET /local/tld/api/stream ...
        >>> server.stop()
    """

    def __init__(
        self,
        publisher: LatestFramePublisher,
        control: ControlEndpoint,
        host: str = "127.0.0.1",
        port: int = 8080,
        api_prefix: str = "/local/tld/api",
        frame_interval: float = 0.033,
        no_frame_retry_interval: float = 0.01,
        drain_timeout: float = 2.0,
        max_body_bytes: int = 64 * 1024,
    ):
        self.publisher = publisher
        self.control = control
        self.host = host
        self.port = port
        self.routes = RouteTable(api_prefix)
        self.frame_interval = frame_interval
        self.no_frame_retry_interval = no_frame_retry_interval
        self.drain_timeout = drain_timeout
        self.max_body_bytes = max_body_bytes

        self._httpd: Optional[_ThreadedHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._connections: Set[StreamRequestHandler] = set()
        self._connections_changed = threading.Condition()
        self._stream_clients = 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self):
        """Bind and start accepting connections in a background thread."""
        handler_factory = partial(StreamRequestHandler, stream_server=self)
        self._httpd = _ThreadedHTTPServer((self.host, self.port), handler_factory)
        self._stopping.clear()

        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            kwargs={"poll_interval": 0.2},
            name="tld-stream-server",
            daemon=True,
        )
        self._thread.start()

        host, port = self.address
        logger.info(
            f"Stream server listening on {host}:{port}",
            extra={
                "event": "server_started",
                "host": host,
                "port": port,
                "stream_path": self.routes.path_for("stream"),
                "upload_path": self.routes.path_for("save_config"),
            },
        )

    def stop(self, drain_timeout: Optional[float] = None):
        """
        Stop accepting, let open connections drain, then force-close them.
        """
        if self._httpd is None:
            return
        timeout = self.drain_timeout if drain_timeout is None else drain_timeout

        logger.info(
            "Stopping stream server",
            extra={"event": "server_stopping", "open_connections": self.open_connections},
        )

        self._httpd.shutdown()
        self._stopping.set()

        if not self._wait_for_drain(timeout):
            self._force_close_connections()
            self._wait_for_drain(1.0)

        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1.0)

        logger.info(
            "Stream server stopped",
            extra={"event": "server_stopped", "open_connections": self.open_connections},
        )
        self._httpd = None
        self._thread = None

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); reflects the real port when started with port=0."""
        if self._httpd is None:
            return self.host, self.port
        host, port = self._httpd.server_address[:2]
        return host, port

    @property
    def is_stopping(self) -> bool:
        return self._stopping.is_set()

    @property
    def open_connections(self) -> int:
        with self._connections_changed:
            return len(self._connections)

    @property
    def stream_clients(self) -> int:
        with self._connections_changed:
            return self._stream_clients

    # ========================================================================
    # Dispatch
    # ========================================================================

    def dispatch_control(self, request: Request) -> ControlResponse:
        """Forward a control request to the control endpoint."""
        if request.route is Route.UPLOAD_CONFIG:
            return self.control.handle_upload(request.body)
        if request.route is Route.PREFLIGHT:
            return self.control.handle_preflight()
        if request.route is Route.GET_CONFIG:
            return self.control.handle_get_config()
        raise ValueError(f"Not a control route: {request.route}")

    # ========================================================================
    # Connection bookkeeping (called from handler threads)
    # ========================================================================

    def _register(self, handler: StreamRequestHandler):
        with self._connections_changed:
            self._connections.add(handler)

    def _unregister(self, handler: StreamRequestHandler):
        with self._connections_changed:
            self._connections.discard(handler)
            self._connections_changed.notify_all()

    def _stream_client_opened(self):
        with self._connections_changed:
            self._stream_clients += 1
            count = self._stream_clients
        logger.info(
            f"Stream client connected ({count} active)",
            extra={"event": "stream_client_connected", "stream_clients": count},
        )

    def _stream_client_closed(self):
        with self._connections_changed:
            self._stream_clients = max(0, self._stream_clients - 1)

    def _wait(self, seconds: float):
        # Returns early on shutdown so stream loops exit promptly
        self._stopping.wait(seconds)

    def _wait_for_drain(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        with self._connections_changed:
            while self._connections:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._connections_changed.wait(remaining)
        return True

    def _force_close_connections(self):
        with self._connections_changed:
            handlers = list(self._connections)
        logger.warning(
            f"Force-closing {len(handlers)} connections after drain timeout",
            extra={"event": "connections_force_closed", "count": len(handlers)},
        )
        for handler in handlers:
            try:
                handler.connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Already closed by the peer
                continue
