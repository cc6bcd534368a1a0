"""
End-to-end tests for StreamServer over real sockets

The server binds to an ephemeral port on loopback. Control routes are
exercised with http.client; the MJPEG stream is read from a raw socket so
the multipart framing can be checked byte for byte.
"""

import http.client
import json
import socket
import threading
import time

import pytest

from cupertino_tld.detector.lamp_config import DEFAULT_LAMP_CONFIG, ConfigStore
from cupertino_tld.detector.reload_signal import ReloadSignal
from cupertino_tld.stream.control import ControlEndpoint
from cupertino_tld.stream.publisher import LatestFramePublisher
from cupertino_tld.stream.server import StreamServer, build_frame_chunk

API = "/local/tld/api"


@pytest.fixture
def store():
    return ConfigStore()


@pytest.fixture
def reload_signal():
    return ReloadSignal()


@pytest.fixture
def publisher():
    return LatestFramePublisher()


@pytest.fixture
def server(store, reload_signal, publisher, tmp_path):
    control = ControlEndpoint(store, reload_signal, config_path=tmp_path / "config.json")
    srv = StreamServer(
        publisher,
        control,
        host="127.0.0.1",
        port=0,
        frame_interval=0.01,
        no_frame_retry_interval=0.005,
        drain_timeout=1.0,
    )
    srv.start()
    yield srv
    srv.stop()


def request(server, method, path, body=None, headers=None):
    host, port = server.address
    conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request(method, path, body=body, headers=headers or {})
        response = conn.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        conn.close()


def open_stream(server):
    sock = socket.create_connection(server.address, timeout=5)
    sock.sendall(f"GET {API}/stream HTTP/1.1\r\nHost: localhost\r\n\r\n".encode())
    return sock


def read_until(sock, predicate, limit=1 << 20):
    buffer = b""
    while not predicate(buffer):
        chunk = sock.recv(65536)
        if not chunk:
            break
        buffer += chunk
        if len(buffer) > limit:
            break
    return buffer


def wait_for(condition, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


class TestBuildFrameChunk:
    def test_chunk_layout(self):
        chunk = build_frame_chunk(b"\xff\xd8JPEG\xff\xd9")
        assert chunk == (
            b"--frame\r\n"
            b"Content-Type: image/jpeg\r\n"
            b"Content-Length: 8\r\n\r\n"
            b"\xff\xd8JPEG\xff\xd9\r\n"
        )


class TestControlRoutes:
    def test_upload_applies_config(self, server, store, reload_signal):
        status, headers, body = request(
            server, "POST", f"{API}/save_config",
            body=b'{"lamp_radius": 20}',
            headers={"Content-Type": "application/json"},
        )

        assert status == 200
        assert json.loads(body) == {"status": "success"}
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert store.snapshot().lamp_radius == 20
        assert reload_signal.consume() is True

    def test_upload_without_body_rejected(self, server, store):
        status, _, body = request(server, "POST", f"{API}/save_config")

        assert status == 400
        assert json.loads(body)["message"] == "Empty body"
        assert store.snapshot() == DEFAULT_LAMP_CONFIG

    def test_invalid_upload_rejected(self, server, store, reload_signal):
        status, _, body = request(server, "POST", f"{API}/save_config", body=b'{"lamp_radius": -4}')

        assert status == 400
        assert json.loads(body)["status"] == "error"
        assert store.snapshot() == DEFAULT_LAMP_CONFIG
        assert not reload_signal.is_set()

    def test_oversized_upload_rejected(self, server, store):
        server.max_body_bytes = 16
        status, _, _ = request(server, "POST", f"{API}/save_config", body=b'{"lamp_radius": 20, "x": 1}')

        assert status == 413
        assert store.snapshot() == DEFAULT_LAMP_CONFIG

    def test_preflight(self, server, store):
        status, headers, body = request(server, "OPTIONS", f"{API}/save_config")

        assert status == 204
        assert body == b""
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert store.snapshot() == DEFAULT_LAMP_CONFIG

    def test_get_config(self, server):
        status, _, body = request(server, "GET", f"{API}/config")

        assert status == 200
        assert json.loads(body) == DEFAULT_LAMP_CONFIG.to_document()

    def test_unknown_path_is_404_json(self, server):
        status, headers, body = request(server, "GET", "/index.html")

        assert status == 404
        assert headers["Content-Type"] == "application/json"
        assert json.loads(body) == {"status": "error", "message": "Not found"}

    def test_wrong_method_is_405(self, server):
        status, headers, _ = request(server, "DELETE", f"{API}/stream")

        assert status == 405
        assert headers["Allow"] == "GET"


class TestStream:
    def test_stream_headers_and_first_chunk(self, server, publisher):
        payload = b"\xff\xd8" + b"x" * 500 + b"\xff\xd9"
        publisher.publish(payload)
        expected = build_frame_chunk(payload)

        sock = open_stream(server)
        try:
            data = read_until(sock, lambda buf: expected in buf)
        finally:
            sock.close()

        head, _, rest = data.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.0 200")
        assert b"Content-Type: multipart/x-mixed-replace; boundary=frame" in head
        assert rest.startswith(expected)

    def test_stream_waits_for_first_frame(self, server, publisher):
        sock = open_stream(server)
        try:
            head = read_until(sock, lambda buf: b"\r\n\r\n" in buf)
            assert head.startswith(b"HTTP/1.0 200")

            time.sleep(0.05)
            publisher.publish(b"late-frame")
            data = read_until(sock, lambda buf: b"late-frame\r\n" in buf)
        finally:
            sock.close()

        assert build_frame_chunk(b"late-frame") in data

    def test_stream_follows_latest_frame(self, server, publisher):
        publisher.publish(b"frame-one")
        sock = open_stream(server)
        try:
            read_until(sock, lambda buf: b"frame-one" in buf)
            publisher.publish(b"frame-two")
            data = read_until(sock, lambda buf: b"frame-two" in buf)
        finally:
            sock.close()

        assert build_frame_chunk(b"frame-two") in data

    def test_multiple_clients_receive_frames(self, server, publisher):
        publisher.publish(b"shared-frame")
        sockets = [open_stream(server) for _ in range(3)]
        try:
            results = [read_until(s, lambda buf: b"shared-frame\r\n" in buf) for s in sockets]
        finally:
            for s in sockets:
                s.close()

        for data in results:
            assert build_frame_chunk(b"shared-frame") in data

    def test_client_disconnect_is_cleaned_up(self, server, publisher):
        publisher.publish(b"frame")
        sock = open_stream(server)
        read_until(sock, lambda buf: b"frame\r\n" in buf)
        assert wait_for(lambda: server.stream_clients == 1)

        sock.close()

        assert wait_for(lambda: server.stream_clients == 0)
        assert wait_for(lambda: server.open_connections == 0)

    def test_stalled_client_does_not_block_publisher(self, server, publisher):
        """A client that never reads must not delay publish()."""
        publisher.publish(b"\x00" * 200000)
        stalled = open_stream(server)
        try:
            assert wait_for(lambda: server.stream_clients == 1)
            started = time.monotonic()
            for _ in range(200):
                publisher.publish(b"\x01" * 200000)
            assert time.monotonic() - started < 2.0
        finally:
            stalled.close()


class TestShutdown:
    def test_stop_drains_stream_clients(self, store, reload_signal, publisher):
        control = ControlEndpoint(store, reload_signal)
        srv = StreamServer(publisher, control, port=0, frame_interval=0.01, drain_timeout=2.0)
        srv.start()
        publisher.publish(b"frame")
        sock = open_stream(srv)
        try:
            read_until(sock, lambda buf: b"frame\r\n" in buf)
            assert wait_for(lambda: srv.stream_clients == 1)

            stopper = threading.Thread(target=srv.stop)
            stopper.start()
            stopper.join(timeout=5)

            assert not stopper.is_alive()
            assert srv.stream_clients == 0
            assert srv.open_connections == 0
        finally:
            sock.close()

    def test_stop_refuses_new_connections(self, store, reload_signal, publisher):
        srv = StreamServer(publisher, ControlEndpoint(store, reload_signal), port=0)
        srv.start()
        address = srv.address
        srv.stop()

        with pytest.raises(OSError):
            socket.create_connection(address, timeout=1).close()

    def test_stop_without_start_is_noop(self, store, reload_signal, publisher):
        StreamServer(publisher, ControlEndpoint(store, reload_signal), port=0).stop()
