"""
UDP broadcast intake and outbound re-broadcast.
"""

from __future__ import annotations

import dataclasses
import json
from typing import Optional

from PySide6.QtCore import QObject
from PySide6.QtNetwork import QAbstractSocket, QHostAddress, QUdpSocket

from core.settings import UdpSettings
from shared.errors import AuthError, ProtocolError, ValidationError
from shared.notification import NotificationOrigin
from shared.request_schema import NotificationRequest, decode_json_object, validate_notification_request
from stack_notifier.stack_notifier import logger as app_logger

_LOGGER = app_logger.get_logger()


def authenticate(request: NotificationRequest, shared_key: str) -> None:
    """Raise AuthError unless ``shared_key`` is empty or matches exactly."""
    if shared_key and request.key != shared_key:
        raise AuthError("shared key mismatch")


def evaluate_datagram(
    data: bytes,
    *,
    instance_id: str,
    shared_key: str,
    source: str = "unknown",
) -> Optional[NotificationRequest]:
    """
    Apply loopback suppression, shape validation and shared-key auth, in that
    order. Returns the request to display, or None when it must be dropped.
    """
    try:
        document = decode_json_object(data)
    except ProtocolError as exc:
        _LOGGER.error("[UDP] Undecodable datagram from {}: {}", source, exc)
        return None

    sender = document.get("senderInstanceId")
    if sender and sender == instance_id:
        _LOGGER.debug("[UDP] Ignoring loopback broadcast from this instance ({}).", instance_id)
        return None

    try:
        request = validate_notification_request(document)
    except ValidationError as exc:
        _LOGGER.error("[UDP] Invalid notification datagram from {}: {}", source, exc)
        return None

    try:
        authenticate(request, shared_key)
    except AuthError:
        _LOGGER.warning("[UDP] Key verification failed for datagram from {}.", source)
        return None

    return request


class UdpGateway(QObject):
    """Listens for notification datagrams and hands survivors to the orchestrator."""

    def __init__(self, orchestrator, settings: UdpSettings, instance_id: str, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._orchestrator = orchestrator
        self._settings = settings
        self._instance_id = instance_id
        self._socket: Optional[QUdpSocket] = None
        self.enabled = False

    def start(self) -> bool:
        """Bind the listener; on failure the channel stays disabled for this run."""
        socket = QUdpSocket(self)
        bound = socket.bind(
            QHostAddress(QHostAddress.SpecialAddress.AnyIPv4),
            self._settings.port,
            QAbstractSocket.BindFlag.ShareAddress | QAbstractSocket.BindFlag.ReuseAddressHint,
        )
        if not bound:
            _LOGGER.error(
                "UDP port {} unavailable ({}); UDP channel disabled for this run.",
                self._settings.port,
                socket.errorString(),
            )
            socket.deleteLater()
            self.enabled = False
            return False

        socket.readyRead.connect(self._read_pending)
        self._socket = socket
        self.enabled = True
        _LOGGER.info("UDP listener bound on port {}", self._settings.port)
        return True

    def stop(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self.enabled = False

    def _read_pending(self) -> None:
        while self._socket is not None and self._socket.hasPendingDatagrams():
            datagram = self._socket.receiveDatagram()
            source = f"{datagram.senderAddress().toString()}:{datagram.senderPort()}"
            request = evaluate_datagram(
                bytes(datagram.data().data()),
                instance_id=self._instance_id,
                shared_key=self._settings.shared_key,
                source=source,
            )
            if request is not None:
                self._orchestrator.submit(request, NotificationOrigin.UDP)


class UdpBroadcaster(QObject):
    """Fire-and-forget re-emission of locally admitted notifications."""

    def __init__(self, settings: UdpSettings, instance_id: str, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._settings = settings
        self._instance_id = instance_id
        self._socket = QUdpSocket(self)
        self.enabled = settings.enabled

    def build_payload(self, request: NotificationRequest) -> bytes:
        stamped = dataclasses.replace(
            request,
            sender_instance_id=self._instance_id,
            key=request.key or self._settings.shared_key or None,
        )
        return json.dumps(stamped.to_wire(), ensure_ascii=False).encode("utf-8")

    def broadcast(self, request: NotificationRequest) -> bool:
        if not self.enabled:
            _LOGGER.debug("UDP disabled; not broadcasting {!r}", request.title)
            return False
        message = self.build_payload(request)
        written = self._socket.writeDatagram(
            message,
            QHostAddress(self._settings.broadcast_address),
            self._settings.broadcast_port,
        )
        if written < 0:
            _LOGGER.error("Failed to send UDP broadcast: {}", self._socket.errorString())
            return False
        _LOGGER.debug(
            "UDP broadcast sent to {}:{}",
            self._settings.broadcast_address,
            self._settings.broadcast_port,
        )
        return True


def start_udp_channel(gateway: UdpGateway, broadcaster: UdpBroadcaster, settings: UdpSettings) -> bool:
    """Bind the listener when UDP is enabled; outbound broadcast follows the listener."""
    bound = settings.enabled and gateway.start()
    broadcaster.enabled = bound
    if settings.enabled and not bound:
        _LOGGER.warning("UDP broadcast disabled because the listener could not bind.")
    return bound
