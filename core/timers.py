"""
Single-shot countdowns on the Qt event loop.
"""

from __future__ import annotations

from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer


class CountdownTimers(QObject):
    """Creates and cancels single-shot QTimers; handles are the timers themselves."""

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)

    def after(self, delay_ms: int, callback: Callable[[], None]) -> QTimer:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(max(0, int(delay_ms)))
        timer.timeout.connect(callback)
        timer.timeout.connect(timer.deleteLater)
        timer.start()
        return timer

    def cancel(self, handle: QTimer) -> None:
        handle.stop()
        handle.deleteLater()
