"""
Stacked layout computation for visible notifications.

Pure functions over the active list; nothing here touches Qt widgets.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from core.settings import NotificationSettings
from shared.errors import LayoutError
from shared.notification import DEFAULT_HEIGHT, Notification
from stack_notifier.stack_notifier import logger as app_logger

_LOGGER = app_logger.get_logger()


@dataclass(frozen=True)
class WorkArea:
    """Available geometry of the primary display."""

    x: int = 0
    y: int = 0
    width: int = 1920
    height: int = 1080


@dataclass(frozen=True)
class Placement:
    x: int
    y: int


def _is_finite_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def require_finite(value: float, what: str) -> float:
    """Return ``value`` unchanged or raise LayoutError when it is not a finite number."""
    if not _is_finite_number(value):
        raise LayoutError(f"{what} is not finite: {value!r}")
    return value


class LayoutEngine:
    """Computes right-aligned, top-down stack positions for active notifications."""

    def __init__(self, settings: NotificationSettings, work_area: WorkArea) -> None:
        self.settings = settings
        self.work_area = work_area

    def surface_width(self) -> int:
        return math.floor(self.work_area.width * self.settings.max_width_ratio)

    def max_height(self) -> int:
        return math.floor(self.work_area.height * self.settings.max_height_ratio)

    def clamp_height(self, reported: float, last_known: Optional[int] = None) -> int:
        """
        Clamp a reported content height to ``[min_height, max_height]``.

        Non-finite reports keep ``last_known`` (or the default height).
        """
        if not _is_finite_number(reported):
            fallback = last_known if last_known is not None else DEFAULT_HEIGHT
            _LOGGER.error("Non-finite height {!r} reported; keeping {}", reported, fallback)
            return fallback
        upper = max(self.settings.min_height, self.max_height())
        return int(min(max(reported, self.settings.min_height), upper))

    def target_x(self, width: Optional[int] = None) -> int:
        surface_width = self.surface_width() if width is None else width
        return self.work_area.width - surface_width - self.settings.margin_right

    def offscreen_x(self) -> int:
        return self.work_area.width

    def stack_origin(self) -> int:
        return self.work_area.y + self.settings.margin_top

    def compute(self, notifications: Iterable[Notification]) -> Dict[str, Placement]:
        """
        Return the target placement of every notification, in stack order.

        Also records the computed ``x``/``y`` on each notification.
        """
        origin = self.stack_origin()
        current_y: float = origin
        placements: Dict[str, Placement] = {}

        for notification in notifications:
            height = notification.height
            if not _is_finite_number(height) or height <= 0:
                height = DEFAULT_HEIGHT

            try:
                require_finite(current_y, "Stack offset")
            except LayoutError as exc:
                _LOGGER.error("{}; resetting to origin.", exc)
                current_y = origin

            width = notification.width or self.surface_width()
            placement = Placement(x=self.target_x(width), y=round(current_y))
            placements[notification.id] = placement
            notification.x = placement.x
            notification.y = placement.y
            current_y += height + self.settings.spacing

        return placements
