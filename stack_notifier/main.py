"""
Entry point for the Stack Notifier daemon and its command line.
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from typing import Iterable, List, Optional, Sequence, Tuple

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import QApplication

from core.app import APP_NAME, APP_VERSION, AppCoordinator
from core.instance import ForwardError, InstanceCoordinator, detach, forward_notification, should_detach
from core.settings import CoreSettingsManager
from shared.errors import ResourceError, ValidationError
from shared.request_schema import NotificationRequest, validate_notification_request
from stack_notifier.stack_notifier import logger as app_logger

_LOGGER = app_logger.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stack-notifier",
        description="Desktop notification daemon fed over HTTP and UDP.",
        epilog=(
            "Without -t/-c a background daemon is started unless one is already running. "
            "With -t and -c the notification is shown by the running daemon."
        ),
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {APP_VERSION}")
    parser.add_argument("-t", "--title", help="notification title")
    parser.add_argument("-c", "--content", help="notification content (markdown)")
    parser.add_argument("-d", "--timeout", type=_non_negative_int, help="display time in milliseconds")
    parser.add_argument("-b", "--broadcast", action="store_true", help="also broadcast the notification over UDP")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose console logging")
    parser.add_argument("--detach", action="store_true", help="re-launch in the background and return")
    return parser


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value, 10)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("timeout must be a non-negative integer") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError("timeout must be a non-negative integer")
    return parsed


def request_from_args(args: argparse.Namespace) -> Optional[NotificationRequest]:
    """Return the notification the command line asks for, or None when it asks for none."""
    if args.title is None and args.content is None:
        return None
    return validate_notification_request(
        {
            "title": args.title,
            "content": args.content,
            "timeout": args.timeout,
            "broadcast": args.broadcast,
        }
    )


def _install_signal_handlers(coordinator: AppCoordinator) -> QTimer:
    def _stop(*_args) -> None:
        coordinator.shutdown()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    # Lets the interpreter run Python signal handlers while Qt owns the loop.
    heartbeat = QTimer(coordinator)
    heartbeat.start(500)
    heartbeat.timeout.connect(lambda: None)
    return heartbeat


def _run_application_once(
    argv: Iterable[str],
    instance: InstanceCoordinator,
    initial: Optional[NotificationRequest],
) -> Tuple[int, bool]:
    """Start the Qt application once and report whether shutdown was intentional."""
    app = QApplication.instance() or QApplication(list(argv))
    app.setQuitOnLastWindowClosed(False)
    app.setApplicationName(APP_NAME)

    coordinator = AppCoordinator(instance=instance)
    coordinator.start()
    _heartbeat = _install_signal_handlers(coordinator)
    if initial is not None:
        _LOGGER.info("Showing notification passed on the command line.")
        coordinator.dispatch(initial)

    exit_code = app.exec()
    manual_shutdown = getattr(coordinator, "manual_shutdown_requested", False)
    return exit_code, bool(manual_shutdown)


def _run_secondary(instance: InstanceCoordinator, request: Optional[NotificationRequest], verbose: bool) -> int:
    instance.notify_primary()
    if request is None:
        if verbose:
            _LOGGER.info("{} is already running; nothing to do.", APP_NAME)
        return 0

    port = CoreSettingsManager().read_settings().server.port
    try:
        forward_notification(request, port)
    except ForwardError as exc:
        _LOGGER.error("Failed to deliver notification: {}", exc)
        return 1
    _LOGGER.debug("Notification forwarded to the running instance.")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Launch the daemon with single-instance + recovery safeguards."""
    raw_args: List[str] = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(raw_args)
    app_logger.set_verbose(args.verbose)

    try:
        request = request_from_args(args)
    except ValidationError as exc:
        parser.error(f"sending a notification requires both --title and --content ({exc})")

    instance = InstanceCoordinator()
    if not instance.acquire():
        _LOGGER.debug("{} instance already running; acting as secondary.", APP_NAME)
        return _run_secondary(instance, request, args.verbose)

    if should_detach(raw_args, os.environ):
        # The detached child takes the lock over.
        instance.release()
        detach(raw_args)
        return 0
    instance.listen()

    backoff_seconds = 2
    max_backoff = 30

    try:
        while True:
            try:
                exit_code, manual = _run_application_once([sys.argv[0], *raw_args], instance, request)
            except ResourceError as exc:
                _LOGGER.error("Cannot serve notifications: {}", exc)
                return 1
            except Exception:  # pragma: no cover - crash recovery
                _LOGGER.exception("Daemon crashed; attempting automatic recovery.")
                exit_code = 1
                manual = False

            if manual:
                return exit_code

            # The command-line notification was delivered on the first run.
            request = None
            _LOGGER.warning(
                "Daemon exited unexpectedly (code={}). Restarting in {} seconds.",
                exit_code,
                backoff_seconds,
            )
            time.sleep(backoff_seconds)
            backoff_seconds = min(backoff_seconds * 2, max_backoff)
    finally:
        instance.release()


if __name__ == "__main__":
    raise SystemExit(main())
