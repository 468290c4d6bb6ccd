"""Tests for graceful shutdown, signal wiring and process entry."""

from __future__ import annotations

import signal
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path

import pytest

import server as server_module
from config import ServerConfig
from pipeline import build_pipeline
from request import HTTPRequest
from response import HTTPResponse
from server import HTTPServer, install_signal_handlers, print_banner


@dataclass
class SlowHandler:
    delay_secs: float

    def __call__(self, _request: HTTPRequest) -> HTTPResponse:
        time.sleep(self.delay_secs)
        return HTTPResponse(status_code=200, body="slow-ok")


def _start_server(**kwargs: object) -> tuple[HTTPServer, threading.Thread]:
    server = HTTPServer(host="127.0.0.1", port=0, **kwargs)
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()

    if not server.wait_until_ready(timeout=3):
        raise RuntimeError("Server did not bind to a port")
    return server, thread


def _recv_all(sock: socket.socket) -> bytes:
    buffer = bytearray()
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return bytes(buffer)
        buffer.extend(chunk)


def test_inflight_request_completes_while_server_is_draining() -> None:
    server, thread = _start_server(
        handler=build_pipeline(ServerConfig(), handler=SlowHandler(delay_secs=0.4)),
        drain_timeout_secs=2.0,
    )
    with socket.create_connection((server.host, server.port), timeout=3) as sock:
        sock.sendall(b"GET /slow HTTP/1.1\r\nHost: localhost\r\n\r\n")
        time.sleep(0.1)
        server.stop()
        response = _recv_all(sock)

    thread.join(timeout=3)

    assert not thread.is_alive()
    assert response.startswith(b"HTTP/1.1 200 OK")
    assert b"Connection: close\r\n" in response
    assert b"Cross-Origin-Opener-Policy: same-origin\r\n" in response
    assert response.endswith(b"slow-ok")


def test_new_connections_are_refused_after_stop() -> None:
    server, thread = _start_server(handler=SlowHandler(delay_secs=0))
    server.stop()
    thread.join(timeout=3)

    with pytest.raises(OSError):
        socket.create_connection((server.host, server.port), timeout=1).close()


def test_signal_handler_stops_accept_loop() -> None:
    server, thread = _start_server(handler=SlowHandler(delay_secs=0))

    server.handle_signal(signal.SIGTERM, None)
    thread.join(timeout=3)

    assert server.draining
    assert not thread.is_alive()


def test_install_signal_handlers_routes_interrupt_and_terminate() -> None:
    server = HTTPServer(host="127.0.0.1", port=0, handler=SlowHandler(delay_secs=0))
    previous_int = signal.getsignal(signal.SIGINT)
    previous_term = signal.getsignal(signal.SIGTERM)
    try:
        install_signal_handlers(server)

        assert signal.getsignal(signal.SIGINT) == server.handle_signal
        assert signal.getsignal(signal.SIGTERM) == server.handle_signal
    finally:
        signal.signal(signal.SIGINT, previous_int)
        signal.signal(signal.SIGTERM, previous_term)


def test_install_signal_handlers_outside_main_thread_fails() -> None:
    server = HTTPServer(host="127.0.0.1", port=0, handler=SlowHandler(delay_secs=0))
    errors: list[BaseException] = []

    def install() -> None:
        try:
            install_signal_handlers(server)
        except ValueError as exc:
            errors.append(exc)

    worker = threading.Thread(target=install)
    worker.start()
    worker.join(timeout=2)

    assert len(errors) == 1


def test_bind_failure_raises_os_error() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen(1)
        port = occupied.getsockname()[1]

        server = HTTPServer(host="127.0.0.1", port=port, handler=SlowHandler(delay_secs=0))
        with pytest.raises(OSError):
            server.start()


def test_main_returns_1_when_port_cannot_be_bound(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_run(_config: ServerConfig, _pipeline: object) -> None:
        raise OSError("Address already in use")

    monkeypatch.setattr(server_module, "run", failing_run)
    monkeypatch.setattr(server_module, "resolve_config", lambda: ServerConfig())

    assert server_module.main() == 1


def test_main_returns_0_after_graceful_shutdown(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    seen: list[ServerConfig] = []

    def fake_run(config: ServerConfig, _pipeline: object) -> None:
        seen.append(config)

    config = ServerConfig(port=9123, static_dir=str(tmp_path))
    monkeypatch.setattr(server_module, "run", fake_run)
    monkeypatch.setattr(server_module, "resolve_config", lambda: config)

    assert server_module.main() == 0
    assert seen == [config]
    assert "http://0.0.0.0:9123" in capsys.readouterr().out


def test_banner_reports_both_cache_policies(capsys: pytest.CaptureFixture[str]) -> None:
    print_banner(ServerConfig(cache_control="max-age=60", html_cache_control="no-store"))

    out = capsys.readouterr().out
    assert "HTML files: no-store" in out
    assert "Static assets: max-age=60" in out
    assert "ENV > config.toml > default" in out
