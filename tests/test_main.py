import signal
import sys

import pytest
from PySide6.QtCore import QObject

from core.instance import ForwardError
from shared.errors import ResourceError
from stack_notifier.main import _install_signal_handlers, build_parser, main, request_from_args


def _parse(*argv):
    return build_parser().parse_args(list(argv))


def test_no_notification_arguments_means_daemon_mode() -> None:
    assert request_from_args(_parse()) is None
    assert request_from_args(_parse("-v")) is None


def test_title_and_content_build_a_request() -> None:
    request = request_from_args(_parse("-t", "Deploy", "-c", "*done*", "-d", "2500", "-b"))
    assert (request.title, request.content, request.timeout_ms, request.broadcast) == (
        "Deploy",
        "*done*",
        2500,
        True,
    )


def test_long_options_are_accepted() -> None:
    args = _parse("--title", "T", "--content", "C", "--timeout", "0", "--broadcast", "--verbose")
    assert args.verbose is True
    assert request_from_args(args).timeout_ms == 0


@pytest.mark.parametrize("value", ["-5", "abc", "1.5"])
def test_timeout_must_be_a_non_negative_integer(value, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        _parse("-t", "T", "-c", "C", "-d", value)
    assert excinfo.value.code == 2
    assert "non-negative integer" in capsys.readouterr().err


def test_title_without_content_is_a_usage_error(capsys, monkeypatch) -> None:
    monkeypatch.setattr("stack_notifier.main.app_logger.set_verbose", lambda _verbose: None)
    with pytest.raises(SystemExit) as excinfo:
        main(["-t", "Only a title"])
    assert excinfo.value.code == 2
    assert "requires both --title and --content" in capsys.readouterr().err


class FakeInstance:
    acquired = True

    def __init__(self) -> None:
        self.calls = []
        FakeInstance.last = self

    def acquire(self) -> bool:
        self.calls.append("acquire")
        return self.acquired

    def listen(self) -> bool:
        self.calls.append("listen")
        return True

    def release(self) -> None:
        self.calls.append("release")

    def notify_primary(self) -> bool:
        self.calls.append("notify_primary")
        return True


@pytest.fixture
def packaged(monkeypatch, tmp_path):
    """A frozen build with the single-instance guard and the network stubbed out."""
    monkeypatch.setattr(sys, "frozen", True, raising=False)
    monkeypatch.delenv("STACK_NOTIFIER_DETACHED", raising=False)
    monkeypatch.setenv("STACK_NOTIFIER_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setattr("stack_notifier.main.app_logger.set_verbose", lambda _verbose: None)
    monkeypatch.setattr("stack_notifier.main.InstanceCoordinator", FakeInstance)

    calls = {"forwarded": [], "detached": []}
    monkeypatch.setattr(
        "stack_notifier.main.forward_notification",
        lambda request, port: calls["forwarded"].append((request.title, port)),
    )
    monkeypatch.setattr("stack_notifier.main.detach", lambda argv: calls["detached"].append(list(argv)))
    return calls


def test_secondary_call_forwards_instead_of_detaching(packaged, monkeypatch) -> None:
    monkeypatch.setattr(FakeInstance, "acquired", False)

    assert main(["-t", "Deploy", "-c", "done"]) == 0

    assert packaged["forwarded"] == [("Deploy", 38080)]
    assert packaged["detached"] == []
    assert FakeInstance.last.calls == ["acquire", "notify_primary"]


def test_secondary_forward_failure_exits_with_error(packaged, monkeypatch) -> None:
    monkeypatch.setattr(FakeInstance, "acquired", False)

    def _refuse(request, port):
        raise ForwardError("connection refused")

    monkeypatch.setattr("stack_notifier.main.forward_notification", _refuse)

    assert main(["-t", "Deploy", "-c", "done"]) == 1
    assert packaged["detached"] == []


def test_secondary_without_notification_only_wakes_primary(packaged, monkeypatch) -> None:
    monkeypatch.setattr(FakeInstance, "acquired", False)

    assert main([]) == 0
    assert packaged["forwarded"] == []
    assert FakeInstance.last.calls == ["acquire", "notify_primary"]


def test_packaged_primary_releases_lock_before_detaching(packaged) -> None:
    assert main(["-t", "Deploy", "-c", "done"]) == 0

    assert packaged["detached"] == [["-t", "Deploy", "-c", "done"]]
    assert FakeInstance.last.calls == ["acquire", "release"]


def test_primary_resource_error_exits_with_error(packaged, monkeypatch) -> None:
    monkeypatch.setenv("STACK_NOTIFIER_DETACHED", "1")

    def _port_taken(argv, instance, initial):
        raise ResourceError("HTTP port 38080 is already in use")

    monkeypatch.setattr("stack_notifier.main._run_application_once", _port_taken)

    assert main([]) == 1
    assert packaged["detached"] == []
    assert FakeInstance.last.calls == ["acquire", "listen", "release"]


class StubCoordinator(QObject):
    def __init__(self) -> None:
        super().__init__()
        self.shutdowns = 0

    def shutdown(self) -> None:
        self.shutdowns += 1


def test_signal_handlers_shut_down_coordinator(qt_app) -> None:
    saved = {signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)}
    coordinator = StubCoordinator()
    heartbeat = _install_signal_handlers(coordinator)
    try:
        assert heartbeat.parent() is coordinator
        assert heartbeat.isActive()

        signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
        signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        assert coordinator.shutdowns == 2
    finally:
        for signum, handler in saved.items():
            signal.signal(signum, handler)
        heartbeat.stop()
