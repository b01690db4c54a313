"""
Eased slide transitions for presentation surfaces.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

from PySide6.QtCore import QObject, QVariantAnimation

from core.layout import require_finite
from core.surface import PresentationSurface
from shared.errors import LayoutError
from stack_notifier.stack_notifier import logger as app_logger

MIN_DURATION_MS = 50


def ease_out_cubic(progress: float) -> float:
    """Cubic ease-out: fast start, gentle landing."""
    clamped = min(max(progress, 0.0), 1.0)
    return 1 - (1 - clamped) ** 3


def _finite(*values: float) -> bool:
    return all(isinstance(v, (int, float)) and math.isfinite(v) for v in values)


class _Transition:
    """One running slide of one surface, driven by a QVariantAnimation."""

    def __init__(
        self,
        key: str,
        surface: PresentationSurface,
        start: Tuple[int, int],
        target: Tuple[int, int],
        duration_ms: int,
        owner: "TransitionScheduler",
    ) -> None:
        self.key = key
        self.surface = surface
        self.start = start
        self.target = target
        self._owner = owner
        self.animation = QVariantAnimation(owner)
        self.animation.setStartValue(0.0)
        self.animation.setEndValue(1.0)
        self.animation.setDuration(duration_ms)
        self.animation.valueChanged.connect(self.advance)
        self.animation.finished.connect(self._on_finished)

    def advance(self, raw_progress: float) -> None:
        try:
            x, y = self._interpolate(ease_out_cubic(float(raw_progress)))
        except LayoutError as exc:
            self._owner._logger.error("{} for {}; snapping to target.", exc, self.key)
            self._owner.cancel(self.key)
            self.surface.move_to(*self.target)
            return
        self.surface.move_to(round(x), round(y))

    def _interpolate(self, eased: float) -> Tuple[float, float]:
        start_x, start_y = self.start
        target_x, target_y = self.target
        x = require_finite(start_x + (target_x - start_x) * eased, "Transition x")
        y = require_finite(start_y + (target_y - start_y) * eased, "Transition y")
        return x, y

    def stop(self) -> None:
        self.animation.valueChanged.disconnect(self.advance)
        self.animation.finished.disconnect(self._on_finished)
        self.animation.stop()
        self.animation.deleteLater()

    def _on_finished(self) -> None:
        self.surface.move_to(*self.target)
        self._owner._release(self)


class TransitionScheduler(QObject):
    """
    Keeps at most one transition per surface key. A new request for the
    same key cancels the running one before starting.
    """

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._logger = app_logger.get_logger()
        self._transitions: Dict[str, _Transition] = {}

    def animate(
        self,
        key: str,
        surface: PresentationSurface,
        target_x: float,
        target_y: float,
        duration_ms: int,
    ) -> None:
        self.cancel(key)

        current_x, current_y = surface.position()
        if not _finite(target_x, target_y):
            self._logger.error(
                "Invalid target ({}, {}) for {}; keeping valid coordinates only.", target_x, target_y, key
            )
            safe_x = round(target_x) if _finite(target_x) else current_x
            safe_y = round(target_y) if _finite(target_y) else current_y
            surface.move_to(safe_x, safe_y)
            return

        target = (round(target_x), round(target_y))
        if target == (current_x, current_y):
            return

        transition = _Transition(
            key,
            surface,
            (current_x, current_y),
            target,
            max(int(duration_ms), MIN_DURATION_MS),
            self,
        )
        self._transitions[key] = transition
        transition.animation.start()

    def cancel(self, key: str) -> None:
        transition = self._transitions.pop(key, None)
        if transition is not None:
            transition.stop()

    def cancel_all(self) -> None:
        for key in list(self._transitions):
            self.cancel(key)

    def is_running(self, key: str) -> bool:
        return key in self._transitions

    def _release(self, transition: _Transition) -> None:
        if self._transitions.get(transition.key) is transition:
            del self._transitions[transition.key]
            transition.animation.deleteLater()
