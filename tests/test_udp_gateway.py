import json

import pytest
from PySide6.QtNetwork import QAbstractSocket, QHostAddress, QUdpSocket

from core.settings import UdpSettings
from core.udp_gateway import (
    UdpBroadcaster,
    UdpGateway,
    authenticate,
    evaluate_datagram,
    start_udp_channel,
)
from shared.errors import AuthError
from shared.notification import NotificationOrigin
from shared.request_schema import NotificationRequest
from tests.fakes import pump_until


class RecordingOrchestrator:
    def __init__(self) -> None:
        self.submitted = []

    def submit(self, request, origin=NotificationOrigin.HTTP):
        self.submitted.append((request, origin))


def _datagram(**fields) -> bytes:
    payload = {"title": "T", "content": "C"}
    payload.update(fields)
    return json.dumps(payload).encode("utf-8")


def test_valid_datagram_without_key_is_accepted() -> None:
    request = evaluate_datagram(_datagram(timeout=900), instance_id="me", shared_key="")
    assert request is not None
    assert (request.title, request.timeout_ms) == ("T", 900)


def test_own_broadcast_is_ignored() -> None:
    assert evaluate_datagram(_datagram(senderInstanceId="me"), instance_id="me", shared_key="") is None


def test_loopback_check_precedes_shape_validation(log_records) -> None:
    data = json.dumps({"senderInstanceId": "me"}).encode()
    assert evaluate_datagram(data, instance_id="me", shared_key="") is None
    assert not any(r["level"].name == "ERROR" for r in log_records)


def test_malformed_datagrams_are_dropped_with_error(log_records) -> None:
    assert evaluate_datagram(b"not json", instance_id="me", shared_key="") is None
    assert evaluate_datagram(_datagram(title=""), instance_id="me", shared_key="") is None
    assert sum(r["level"].name == "ERROR" for r in log_records) == 2


def test_key_mismatch_is_dropped_with_warning(log_records) -> None:
    result = evaluate_datagram(
        _datagram(key="wrong"), instance_id="me", shared_key="right", source="10.0.0.7:38081"
    )
    assert result is None
    warnings = [r["message"] for r in log_records if r["level"].name == "WARNING"]
    assert warnings == ["[UDP] Key verification failed for datagram from 10.0.0.7:38081."]


def test_missing_key_is_rejected_when_key_configured() -> None:
    assert evaluate_datagram(_datagram(), instance_id="me", shared_key="right") is None
    assert evaluate_datagram(_datagram(key="right"), instance_id="me", shared_key="right") is not None


def test_authenticate_ignores_key_when_none_configured() -> None:
    authenticate(NotificationRequest(title="t", content="c", key="anything"), "")
    with pytest.raises(AuthError):
        authenticate(NotificationRequest(title="t", content="c"), "secret")


def test_broadcast_payload_is_stamped_with_sender_and_key(qt_app) -> None:
    broadcaster = UdpBroadcaster(UdpSettings(shared_key="k"), "instance-a")
    payload = json.loads(broadcaster.build_payload(NotificationRequest(title="T", content="C", broadcast=True)))
    assert payload == {
        "title": "T",
        "content": "C",
        "broadcast": True,
        "senderInstanceId": "instance-a",
        "key": "k",
    }

    unkeyed = UdpBroadcaster(UdpSettings(), "instance-a")
    assert "key" not in json.loads(unkeyed.build_payload(NotificationRequest(title="T", content="C")))


def test_payload_from_one_instance_is_shown_only_by_others(qt_app) -> None:
    broadcaster = UdpBroadcaster(UdpSettings(shared_key="k"), "instance-a")
    data = broadcaster.build_payload(NotificationRequest(title="T", content="C", broadcast=True))

    assert evaluate_datagram(data, instance_id="instance-a", shared_key="k") is None
    received = evaluate_datagram(data, instance_id="instance-b", shared_key="k")
    assert received is not None
    assert received.sender_instance_id == "instance-a"


def test_disabled_broadcaster_sends_nothing(qt_app) -> None:
    broadcaster = UdpBroadcaster(UdpSettings(enabled=False), "instance-a")
    assert broadcaster.broadcast(NotificationRequest(title="T", content="C")) is False


def test_listener_submits_received_datagrams(qt_app) -> None:
    orchestrator = RecordingOrchestrator()
    gateway = UdpGateway(orchestrator, UdpSettings(port=0), "instance-b")
    assert gateway.start() is True
    port = gateway._socket.localPort()

    sender = QUdpSocket()
    sender.writeDatagram(_datagram(senderInstanceId="instance-a"), QHostAddress(QHostAddress.SpecialAddress.LocalHost), port)
    sender.writeDatagram(_datagram(senderInstanceId="instance-b"), QHostAddress(QHostAddress.SpecialAddress.LocalHost), port)

    try:
        assert pump_until(qt_app, lambda: len(orchestrator.submitted) == 1)
        pump_until(qt_app, lambda: len(orchestrator.submitted) > 1, timeout=0.2)
    finally:
        gateway.stop()

    assert len(orchestrator.submitted) == 1
    request, origin = orchestrator.submitted[0]
    assert origin is NotificationOrigin.UDP
    assert request.sender_instance_id == "instance-a"


def test_bind_failure_disables_listener_and_broadcast(qt_app, log_records) -> None:
    blocker = QUdpSocket()
    assert blocker.bind(
        QHostAddress(QHostAddress.SpecialAddress.AnyIPv4), 0, QAbstractSocket.BindFlag.DontShareAddress
    )
    settings = UdpSettings(port=blocker.localPort())
    gateway = UdpGateway(RecordingOrchestrator(), settings, "instance-a")
    broadcaster = UdpBroadcaster(settings, "instance-a")

    try:
        assert start_udp_channel(gateway, broadcaster, settings) is False
    finally:
        blocker.close()

    assert gateway.enabled is False
    assert broadcaster.enabled is False
    assert broadcaster.broadcast(NotificationRequest(title="T", content="C", broadcast=True)) is False
    assert any("UDP channel disabled" in r["message"] for r in log_records)


def test_disabled_channel_is_never_bound(qt_app) -> None:
    settings = UdpSettings(enabled=False, port=0)
    gateway = UdpGateway(RecordingOrchestrator(), settings, "instance-a")
    broadcaster = UdpBroadcaster(settings, "instance-a")

    assert start_udp_channel(gateway, broadcaster, settings) is False
    assert gateway.enabled is False
    assert broadcaster.enabled is False


def test_bound_channel_enables_broadcast(qt_app) -> None:
    settings = UdpSettings(port=0, broadcast_address="127.0.0.1")
    gateway = UdpGateway(RecordingOrchestrator(), settings, "instance-a")
    broadcaster = UdpBroadcaster(settings, "instance-a")
    try:
        assert start_udp_channel(gateway, broadcaster, settings) is True
        assert broadcaster.enabled is True
    finally:
        gateway.stop()
