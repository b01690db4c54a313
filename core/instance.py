"""
Single-instance coordination: lock acquisition, secondary-to-primary
signalling, request forwarding, and optional self-detach.
"""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import httpx
from PySide6.QtCore import QDir, QLockFile, QObject, Signal
from PySide6.QtNetwork import QLocalServer, QLocalSocket

from shared.request_schema import NotificationRequest
from stack_notifier.stack_notifier import logger as app_logger

_LOGGER = app_logger.get_logger()

DETACH_ENV_MARKER = "STACK_NOTIFIER_DETACHED"
_LOCK_NAME = "stack-notifier.lock"
_SERVER_NAME = "stack-notifier-primary"
_ACTIVATE_SIGNAL = b"activate\n"
_CONNECT_TIMEOUT_MS = 1000


class ForwardError(RuntimeError):
    """The primary instance did not accept a forwarded notification."""


class InstanceCoordinator(QObject):
    """
    Exclusive per-user lock plus a local socket the primary listens on.

    A connection on the local socket is only a wake-up signal: the primary
    raises its surfaces and admits nothing from it.
    """

    activated = Signal()

    def __init__(
        self,
        *,
        lock_dir: Optional[Path] = None,
        server_name: str = _SERVER_NAME,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        directory = Path(lock_dir) if lock_dir else Path(QDir.tempPath())
        self._lock = QLockFile(str(directory / _LOCK_NAME))
        self._lock.setStaleLockTime(0)
        self._server_name = server_name
        self._server: Optional[QLocalServer] = None

    def acquire(self) -> bool:
        if self._lock.tryLock(0):
            return True
        if self._lock.error() == QLockFile.LockError.LockFailedError:
            return False
        _LOGGER.warning("Could not create lock file ({}); running without single-instance guard.", self._lock.error())
        return True

    def release(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        if self._lock.isLocked():
            self._lock.unlock()

    def listen(self) -> bool:
        server = QLocalServer(self)
        QLocalServer.removeServer(self._server_name)
        if not server.listen(self._server_name):
            _LOGGER.warning("Coordination socket unavailable: {}", server.errorString())
            return False
        server.newConnection.connect(self._on_new_connection)
        self._server = server
        return True

    def notify_primary(self) -> bool:
        """Send the wake-up signal to a running primary."""
        socket = QLocalSocket()
        socket.connectToServer(self._server_name)
        if not socket.waitForConnected(_CONNECT_TIMEOUT_MS):
            _LOGGER.debug("Primary coordination socket not reachable: {}", socket.errorString())
            return False
        socket.write(_ACTIVATE_SIGNAL)
        socket.waitForBytesWritten(_CONNECT_TIMEOUT_MS)
        socket.disconnectFromServer()
        return True

    def _on_new_connection(self) -> None:
        while self._server is not None and self._server.hasPendingConnections():
            connection = self._server.nextPendingConnection()
            connection.disconnected.connect(connection.deleteLater)
            connection.readAll()
            connection.disconnectFromServer()
            _LOGGER.debug("Secondary invocation signalled the primary instance.")
            self.activated.emit()


def forward_notification(
    request: NotificationRequest,
    port: int,
    *,
    host: str = "127.0.0.1",
    timeout: float = 2.0,
    client: Optional[httpx.Client] = None,
) -> Dict[str, object]:
    """POST ``request`` to the primary's ``/notify`` endpoint."""
    url = f"http://{host}:{port}/notify"
    payload = {
        "title": request.title,
        "content": request.content,
        "broadcast": request.broadcast,
    }
    if request.timeout_ms is not None:
        payload["timeout"] = request.timeout_ms

    owns_client = client is None
    session = client or httpx.Client(timeout=timeout)
    try:
        response = session.post(url, json=payload)
    except httpx.ConnectError as exc:
        raise ForwardError("Connection refused. Make sure the notifier daemon is running.") from exc
    except httpx.HTTPError as exc:
        raise ForwardError(f"Error while sending request: {exc}") from exc
    finally:
        if owns_client:
            session.close()

    try:
        body = response.json()
    except ValueError as exc:
        raise ForwardError(f"Unreadable response (status {response.status_code}): {response.text}") from exc

    if response.status_code != 200 or not body.get("success"):
        raise ForwardError(f"Notification rejected ({response.status_code}): {body.get('error', 'unknown error')}")
    return body


def should_detach(argv: Sequence[str], env: Mapping[str, str], *, frozen: Optional[bool] = None) -> bool:
    """Detach when packaged (or asked to) unless this process is already the detached child."""
    if env.get(DETACH_ENV_MARKER):
        return False
    is_frozen = getattr(sys, "frozen", False) if frozen is None else frozen
    return bool(is_frozen) or "--detach" in argv


def detach(argv: Sequence[str], env: Optional[Mapping[str, str]] = None) -> subprocess.Popen:
    """Re-execute this program in the background with the detach marker set."""
    child_env = dict(env if env is not None else os.environ)
    child_env[DETACH_ENV_MARKER] = "1"

    command: List[str]
    if getattr(sys, "frozen", False):
        command = [sys.executable, *argv]
    else:
        command = [sys.executable, "-m", "stack_notifier.main", *argv]

    kwargs: Dict[str, object] = {
        "env": child_env,
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
        "close_fds": True,
    }
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True

    process = subprocess.Popen(command, **kwargs)  # noqa: S603 - argv is our own
    _LOGGER.info("Detached background instance started (pid={}).", process.pid)
    return process
