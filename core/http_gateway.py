"""
Loopback HTTP listener accepting ``POST /notify``.

The listener runs on the Qt event loop through QTcpServer; request routing is
the pure ``handle_http_request`` function so it can be exercised without a
socket.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set, Tuple
from urllib.parse import urlsplit

from PySide6.QtCore import QObject, QTimer
from PySide6.QtNetwork import QHostAddress, QTcpServer, QTcpSocket

from shared.errors import ProtocolError, ResourceError, ValidationError
from shared.notification import NotificationOrigin
from shared.request_schema import (
    NotificationRequest,
    RequestConstraints,
    decode_json_object,
    validate_notification_request,
)
from stack_notifier.stack_notifier import logger as app_logger

_LOGGER = app_logger.get_logger()

NOTIFY_PATH = "/notify"
MAX_BODY_BYTES = RequestConstraints().max_body_bytes
MAX_HEAD_BYTES = 16 * 1024
IDLE_TIMEOUT_MS = 10_000

_REASONS = {
    200: "OK",
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
}


@dataclass(frozen=True)
class HttpResponse:
    status: int
    payload: Dict[str, Any] = field(default_factory=dict)

    def encode(self) -> bytes:
        body = json.dumps(self.payload, ensure_ascii=False).encode("utf-8")
        head = (
            f"HTTP/1.1 {self.status} {_REASONS.get(self.status, 'Error')}\r\n"
            "Content-Type: application/json; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: close\r\n"
            "\r\n"
        )
        return head.encode("ascii") + body


def _error(status: int, message: str) -> HttpResponse:
    return HttpResponse(status, {"success": False, "error": message})


def handle_http_request(
    method: str,
    target: str,
    body: bytes,
    on_request: Callable[[NotificationRequest], None],
) -> HttpResponse:
    """Route one request; ``on_request`` is called only for a valid notification."""
    if method.upper() != "POST":
        return _error(405, "Method Not Allowed")
    if urlsplit(target).path != NOTIFY_PATH:
        return _error(404, "Not Found")

    try:
        request = validate_notification_request(decode_json_object(body))
    except ProtocolError as exc:
        _LOGGER.warning("Rejected notification request with malformed body: {}", exc)
        return _error(400, "Bad request: invalid JSON")
    except ValidationError as exc:
        _LOGGER.warning("Rejected notification request: {}", exc)
        return _error(400, f"Bad request: {exc}")

    on_request(request)
    return HttpResponse(200, {"success": True, "message": "Notification received"})


def parse_request_head(head: bytes) -> Tuple[str, str, Dict[str, str]]:
    """Split a raw request head into method, target and lower-cased headers."""
    try:
        text = head.decode("iso-8859-1")
    except UnicodeDecodeError as exc:  # pragma: no cover - latin-1 decodes any byte
        raise ProtocolError("Undecodable request head.") from exc

    lines = text.split("\r\n")
    parts = lines[0].split(" ")
    if len(parts) != 3 or not parts[2].startswith("HTTP/"):
        raise ProtocolError(f"Malformed request line: {lines[0]!r}")

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep:
            raise ProtocolError(f"Malformed header line: {line!r}")
        headers[name.strip().lower()] = value.strip()
    return parts[0], parts[1], headers


def decode_chunked(data: bytes) -> Optional[bytes]:
    """
    Decode a ``Transfer-Encoding: chunked`` body.

    Returns None while the terminating zero-size chunk (and any trailers)
    has not arrived yet. Raises ProtocolError on malformed framing.
    """
    body = bytearray()
    position = 0
    while True:
        line_end = data.find(b"\r\n", position)
        if line_end < 0:
            return None
        size_field = data[position:line_end].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError as exc:
            raise ProtocolError(f"Malformed chunk size: {size_field!r}") from exc
        if size < 0:
            raise ProtocolError(f"Negative chunk size: {size_field!r}")
        position = line_end + 2

        if size == 0:
            if data[position:position + 2] == b"\r\n":
                return bytes(body)
            # Trailer fields end with an empty line.
            return bytes(body) if data.find(b"\r\n\r\n", position) >= 0 else None

        if len(data) < position + size + 2:
            return None
        body += data[position:position + size]
        if data[position + size:position + size + 2] != b"\r\n":
            raise ProtocolError("Chunk data is not terminated by CRLF.")
        position += size + 2


class _HttpConnection(QObject):
    """Buffers one request on a socket, answers it, then closes."""

    def __init__(self, socket: QTcpSocket, gateway: "HttpGateway", idle_timeout_ms: int) -> None:
        super().__init__(gateway)
        self._socket = socket
        self._gateway = gateway
        self._buffer = bytearray()
        self._request_line: Optional[Tuple[str, str]] = None
        self._content_length = 0
        self._chunked = False
        self._body_start = 0
        self._done = False

        self._idle_timer = QTimer(self)
        self._idle_timer.setSingleShot(True)
        self._idle_timer.setInterval(idle_timeout_ms)
        self._idle_timer.timeout.connect(self._on_idle_timeout)
        self._idle_timer.start()

        socket.readyRead.connect(self._on_ready_read)
        socket.disconnected.connect(self._on_disconnected)

    def _on_ready_read(self) -> None:
        if self._done:
            self._socket.readAll()
            return
        self._buffer += bytes(self._socket.readAll().data())
        self._idle_timer.start()

        if self._request_line is None and not self._parse_head():
            return

        received = len(self._buffer) - self._body_start
        if received > MAX_BODY_BYTES:
            self._abort("Request body exceeded {} bytes; connection dropped.".format(MAX_BODY_BYTES))
            return

        if self._chunked:
            try:
                body = decode_chunked(bytes(self._buffer[self._body_start:]))
            except ProtocolError as exc:
                _LOGGER.warning("Malformed chunked body: {}", exc)
                self._respond(_error(400, "Bad request"))
                return
            if body is None:
                return
        else:
            if received < self._content_length:
                return
            body = bytes(self._buffer[self._body_start:self._body_start + self._content_length])

        method, target = self._request_line
        self._respond(self._gateway.handle(method, target, body))

    def _parse_head(self) -> bool:
        end = self._buffer.find(b"\r\n\r\n")
        if end < 0:
            if len(self._buffer) > MAX_HEAD_BYTES:
                self._abort("Request head exceeded {} bytes; connection dropped.".format(MAX_HEAD_BYTES))
            return False

        try:
            method, target, headers = parse_request_head(bytes(self._buffer[:end]))
            self._chunked = "chunked" in headers.get("transfer-encoding", "").lower()
            self._content_length = 0 if self._chunked else int(headers.get("content-length", "0"))
        except (ProtocolError, ValueError) as exc:
            _LOGGER.warning("Malformed HTTP request: {}", exc)
            self._respond(_error(400, "Bad request"))
            return False

        if self._content_length < 0:
            self._respond(_error(400, "Bad request"))
            return False
        if self._content_length > MAX_BODY_BYTES:
            self._abort("Declared body of {} bytes exceeds limit; connection dropped.".format(self._content_length))
            return False

        self._request_line = (method, target)
        self._body_start = end + 4
        return True

    def _respond(self, response: HttpResponse) -> None:
        self._done = True
        self._idle_timer.stop()
        self._socket.write(response.encode())
        self._socket.disconnectFromHost()

    def _abort(self, reason: str) -> None:
        _LOGGER.error("[HTTP] {}", reason)
        self._done = True
        self._idle_timer.stop()
        self._socket.abort()
        self._release()

    def _on_idle_timeout(self) -> None:
        if not self._done:
            self._abort("Connection idle for {} ms; connection dropped.".format(self._idle_timer.interval()))

    def _on_disconnected(self) -> None:
        self._release()

    def _release(self) -> None:
        if self._gateway.forget(self):
            self._socket.deleteLater()
            self.deleteLater()


class HttpGateway(QObject):
    """
    Serves ``POST /notify`` on the loopback interface.

    Valid requests are admitted by the orchestrator; when a request asks to be
    broadcast, the gateway re-emits it over UDP after local admission.
    """

    def __init__(
        self,
        orchestrator,
        *,
        port: int,
        host: str = "127.0.0.1",
        broadcaster=None,
        idle_timeout_ms: int = IDLE_TIMEOUT_MS,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._orchestrator = orchestrator
        self._idle_timeout_ms = idle_timeout_ms
        self._broadcaster = broadcaster
        self._host = host
        self._port = port
        self._server: Optional[QTcpServer] = None
        self._connections: Set[_HttpConnection] = set()

    @property
    def server_port(self) -> int:
        return self._server.serverPort() if self._server is not None else 0

    @property
    def open_connections(self) -> int:
        return len(self._connections)

    def start(self) -> None:
        server = QTcpServer(self)
        if not server.listen(QHostAddress(self._host), self._port):
            message = f"HTTP port {self._port} unavailable: {server.errorString()}"
            _LOGGER.error("{}. Another instance or program may hold the port.", message)
            raise ResourceError(message)
        server.newConnection.connect(self._on_new_connection)
        self._server = server
        _LOGGER.info("HTTP listener running on http://{}:{}", self._host, self.server_port)

    def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        _LOGGER.info("HTTP listener stopped.")

    def handle(self, method: str, target: str, body: bytes) -> HttpResponse:
        return handle_http_request(method, target, body, self._accept)

    def forget(self, connection: _HttpConnection) -> bool:
        if connection in self._connections:
            self._connections.discard(connection)
            return True
        return False

    def _accept(self, request: NotificationRequest) -> None:
        _LOGGER.debug("[HTTP] Notification request received: {!r}", request.title)
        self._orchestrator.submit(request, NotificationOrigin.HTTP)
        if request.broadcast and self._broadcaster is not None:
            self._broadcaster.broadcast(request)

    def _on_new_connection(self) -> None:
        while self._server is not None and self._server.hasPendingConnections():
            socket = self._server.nextPendingConnection()
            self._connections.add(_HttpConnection(socket, self, self._idle_timeout_ms))
