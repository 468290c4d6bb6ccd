"""Static file server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import json
import logging
import os
import signal
import socket
import sys
import threading
import time
from types import FrameType

from config import (
    DRAIN_TIMEOUT_SECS,
    HOST,
    KEEPALIVE_TIMEOUT_SECS,
    LOG_FORMAT,
    LOG_LEVEL,
    MAX_KEEPALIVE_REQUESTS,
    PORT,
    REQUEST_QUEUE_SIZE,
    SOCKET_TIMEOUT_SECS,
    WORKER_COUNT,
    ServerConfig,
    resolve_config,
)
from pipeline import Handler, Pipeline, build_pipeline
from request import HTTPRequest, HTTPRequestParseError
from response import REASON_PHRASES, HTTPResponse
from socket_handler import (
    HeaderTooLargeError,
    HTTPReadError,
    MalformedRequestError,
    PayloadTooLargeError,
    SocketTimeoutError,
    read_http_request_message,
    write_http_response_message,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

_READ_ERROR_RESPONSES: dict[type[HTTPReadError], tuple[int, str]] = {
    PayloadTooLargeError: (413, "Payload Too Large"),
    HeaderTooLargeError: (431, "Request Header Fields Too Large"),
    MalformedRequestError: (400, "Bad Request"),
}


class HTTPServer:
    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        handler: Handler | None = None,
        worker_count: int = WORKER_COUNT,
        request_queue_size: int = REQUEST_QUEUE_SIZE,
        *,
        keepalive_timeout_secs: float = KEEPALIVE_TIMEOUT_SECS,
        drain_timeout_secs: float = DRAIN_TIMEOUT_SECS,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.host = host
        self.port = port
        self.handler = handler or build_pipeline(ServerConfig())
        self.worker_count = worker_count
        self.request_queue_size = request_queue_size
        self.keepalive_timeout_secs = keepalive_timeout_secs
        self.drain_timeout_secs = drain_timeout_secs
        self.log_format = log_format

        self._pool: ThreadPool | None = None
        self._running = threading.Event()
        self._draining = threading.Event()
        self._bound = threading.Event()

    @property
    def draining(self) -> bool:
        return self._draining.is_set()

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        return self._bound.wait(timeout)

    def start(self) -> None:
        """Bind, accept until stop() is called, then drain in-flight work.

        Raises OSError when the listening socket cannot be bound.
        """
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_socket:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
            server_socket.listen(128)
            server_socket.settimeout(0.2)
            self.port = server_socket.getsockname()[1]
            self._pool = ThreadPool(
                worker_count=self.worker_count,
                queue_size=self.request_queue_size,
                handler=self._handle_client,
            )
            self._pool.start()

            self._running.set()
            self._bound.set()
            logger.info("Server ready, listening on %s:%s", self.host, self.port)
            try:
                while self._running.is_set():
                    try:
                        client_socket, address = server_socket.accept()
                    except socket.timeout:
                        continue
                    except OSError:
                        logger.exception("Accept failed, stopping listener")
                        break

                    if not self._pool.submit(client_socket, address):
                        self._send_queue_full_response(client_socket, address)
            finally:
                self._draining.set()
                server_socket.close()
                self._pool.shutdown(graceful=True, timeout=self.drain_timeout_secs)
                self._pool = None
                logger.info("Server stopped")

    def stop(self) -> None:
        """Ask the accept loop to stop; in-flight connections are left to finish."""
        self._running.clear()
        self._draining.set()

    def handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        logger.info("Received %s, shutting down gracefully...", signal.Signals(signum).name)
        self.stop()

    def _send_queue_full_response(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
    ) -> None:
        with client_socket:
            started_at = time.perf_counter()
            response = self._decorate(
                None,
                HTTPResponse(
                    status_code=503,
                    headers={"Connection": "close", "Retry-After": "1"},
                    body="Service Unavailable",
                ),
            )
            try:
                bytes_sent = write_http_response_message(client_socket, response)
            except OSError:
                return
            self._log_access(address, "-", "-", response, bytes_sent, started_at)

    def _send_error(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        status_code: int,
        body: str,
        started_at: float,
    ) -> None:
        response = self._decorate(
            None,
            HTTPResponse(status_code=status_code, headers={"Connection": "close"}, body=body),
        )
        try:
            bytes_sent = write_http_response_message(client_socket, response)
        except OSError:
            return
        self._log_access(address, "-", "-", response, bytes_sent, started_at)

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            client_socket.settimeout(min(SOCKET_TIMEOUT_SECS, self.keepalive_timeout_secs))
            carry = b""
            for request_count in range(MAX_KEEPALIVE_REQUESTS):
                if request_count and self.draining and not carry:
                    return
                started_at = time.perf_counter()
                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except SocketTimeoutError as exc:
                    if exc.idle and request_count > 0:
                        return
                    self._send_error(client_socket, address, 408, "Request Timeout", started_at)
                    return
                except HTTPReadError as exc:
                    status_code, body = _READ_ERROR_RESPONSES[type(exc)]
                    self._send_error(client_socket, address, status_code, body, started_at)
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    logger.debug("Rejected request from %s: %s", address[0], exc)
                    self._send_error(
                        client_socket,
                        address,
                        exc.status_code,
                        _reason_body(exc.status_code),
                        started_at,
                    )
                    return

                response = self._dispatch(request)
                last_request = request_count + 1 >= MAX_KEEPALIVE_REQUESTS
                close_after = (
                    not request.keep_alive
                    or response.should_close
                    or last_request
                    or self.draining
                )
                if close_after:
                    response.headers["Connection"] = "close"
                elif request.http_version == "HTTP/1.0":
                    response.headers["Connection"] = "keep-alive"

                try:
                    bytes_sent = write_http_response_message(client_socket, response)
                except OSError as exc:
                    logger.debug("Write to %s failed: %s", address[0], exc)
                    return
                self._log_access(
                    address,
                    request.method,
                    request.raw_target,
                    response,
                    bytes_sent,
                    started_at,
                )
                if close_after:
                    return

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        try:
            return self.handler(request)
        except Exception:
            logger.exception("Unhandled error while handling %s %s", request.method, request.path)
            response = HTTPResponse(status_code=500, body="Internal Server Error", should_close=True)
            return self._decorate(request, response)

    def _decorate(self, request: HTTPRequest | None, response: HTTPResponse) -> HTTPResponse:
        """Give a server-generated response the same headers as handler output."""
        if not isinstance(self.handler, Pipeline):
            return response
        if request is None:
            request = HTTPRequest(method="-", path="/", http_version="HTTP/1.1")
        return self.handler.decorate(request, response)

    def _log_access(
        self,
        address: tuple[str, int],
        method: str,
        target: str,
        response: HTTPResponse,
        bytes_sent: int,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "path": target,
            "status": response.status_code,
            "bytes_out": bytes_sent,
            "latency_ms": round(duration_ms, 3),
            "cache_control": response.get_header("Cache-Control", "-"),
        }
        if self.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s path=%s status=%s bytes_out=%s duration_ms=%.2f cache_control=%r",
            event["client"],
            event["method"],
            event["path"],
            event["status"],
            event["bytes_out"],
            duration_ms,
            event["cache_control"],
        )


def _reason_body(status_code: int) -> str:
    return REASON_PHRASES.get(status_code, "Bad Request")


def install_signal_handlers(server: HTTPServer) -> None:
    """Route SIGINT and, where the platform has it, SIGTERM to server.stop().

    Must run in the main thread; signal.signal raises ValueError otherwise.
    """
    signal.signal(signal.SIGINT, server.handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, server.handle_signal)


def print_banner(config: ServerConfig) -> None:
    rule = "-" * 40
    lines = [
        "Sonic Wave Server",
        rule,
        f"Listening on: http://{config.host}:{config.port}",
        f"Static directory: {config.static_dir}",
        "Headers: COOP/COEP enabled",
        f"Cache-Control ({config.cache_profile}):",
        f"   HTML files: {config.html_policy}",
        f"   Static assets: {config.cache_control}",
        rule,
        "Configuration priority: ENV > config.toml > default",
        f"   PORT={config.port}",
        f"   STATIC_DIR={config.static_dir}",
        "",
        "Press Ctrl+C to stop the server",
        "",
    ]
    print("\n".join(lines), flush=True)


def run(config: ServerConfig, pipeline: Pipeline) -> None:
    """Serve pipeline on config.host:config.port until SIGINT/SIGTERM.

    Raises OSError if the port cannot be bound and ValueError if signal
    handlers cannot be installed.
    """
    server = HTTPServer(
        host=config.host,
        port=config.port,
        handler=pipeline,
        log_format=os.environ.get("LOG_FORMAT", LOG_FORMAT),
    )
    install_signal_handlers(server)
    server.start()


def main() -> int:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = resolve_config()
    logger.info("Starting Sonic Wave server")
    logger.info("Port: %s", config.port)
    logger.info("Static directory: %s", config.static_dir)
    logger.info("Cache-Control (static): %s", config.cache_control)
    logger.info("Cache-Control (HTML): %s", config.html_policy)
    print_banner(config)

    pipeline = build_pipeline(config)
    try:
        run(config, pipeline)
    except OSError as exc:
        logger.critical("Failed to bind %s:%s: %s", config.host, config.port, exc)
        return 1
    except ValueError as exc:
        logger.critical("Failed to install signal handlers: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
