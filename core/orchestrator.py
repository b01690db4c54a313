"""
Notification orchestrator: admission, countdowns, pause/resume and the
closing hand-off that promotes queued notifications.
"""

from __future__ import annotations

from collections import deque
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

from PySide6.QtCore import QObject, Signal

from core.layout import LayoutEngine, Placement
from core.settings import CoreSettings
from core.surface import PresentationSurface, SurfaceFactory
from shared.messages import (
    CloseSurface,
    CreateSurface,
    ManualCloseRequested,
    PointerEnter,
    PointerLeave,
    Resized,
    SetTheme,
    SurfaceEvent,
)
from shared.notification import (
    DEFAULT_HEIGHT,
    Notification,
    NotificationOrigin,
    NotificationStatus,
    generate_notification_id,
)
from shared.request_schema import NotificationRequest
from stack_notifier.stack_notifier import logger as app_logger

AfterFunc = Callable[[int, Callable[[], None]], Any]
CancelFunc = Callable[[Any], None]


class Transitions(Protocol):
    def animate(self, key: str, surface: PresentationSurface, target_x: float, target_y: float, duration_ms: int) -> None: ...

    def cancel(self, key: str) -> None: ...

    def cancel_all(self) -> None: ...


class NotificationOrchestrator(QObject):
    """
    Owns the active stack and the overflow queue.

    Every handler finishes its state change before returning control to the
    event loop; countdowns and close hand-offs are scheduled through
    ``after``/``after_cancel``.
    """

    notificationActivated = Signal(str)
    notificationQueued = Signal(str)
    notificationRemoved = Signal(str)
    notificationDropped = Signal(str)

    def __init__(
        self,
        settings: CoreSettings,
        *,
        surface_factory: SurfaceFactory,
        layout: LayoutEngine,
        transitions: Transitions,
        after: AfterFunc,
        after_cancel: CancelFunc,
        theme: str = "light",
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._logger = app_logger.get_logger()
        self._settings = settings.notification
        self._surface_factory = surface_factory
        self._layout = layout
        self._transitions = transitions
        self._after = after
        self._after_cancel = after_cancel
        self._theme = theme

        self._active: List[Notification] = []
        self._queued: Deque[Notification] = deque()
        self._surfaces: Dict[str, PresentationSurface] = {}
        self._removal_timers: Dict[str, Any] = {}

    # Queries -------------------------------------------------------------

    @property
    def active_ids(self) -> List[str]:
        return [n.id for n in self._active]

    @property
    def queued_ids(self) -> List[str]:
        return [n.id for n in self._queued]

    @property
    def theme(self) -> str:
        return self._theme

    def get(self, notification_id: str) -> Optional[Notification]:
        for notification in self._active:
            if notification.id == notification_id:
                return notification
        for notification in self._queued:
            if notification.id == notification_id:
                return notification
        return None

    def surface_for(self, notification_id: str) -> Optional[PresentationSurface]:
        return self._surfaces.get(notification_id)

    # Admission -----------------------------------------------------------

    def submit(
        self,
        request: NotificationRequest,
        origin: NotificationOrigin = NotificationOrigin.HTTP,
    ) -> Notification:
        notification = Notification.from_request(
            request,
            default_timeout_ms=self._settings.default_timeout_ms,
            origin=origin,
            notification_id=self._unique_id(),
        )
        self._admit(notification)
        return notification

    def _unique_id(self) -> str:
        candidate = generate_notification_id()
        while self.get(candidate) is not None:
            candidate = generate_notification_id()
        return candidate

    def _admit(self, notification: Notification) -> None:
        if len(self._active) < self._settings.max_visible:
            self._activate(notification)
        else:
            self._enqueue(notification)

    def _enqueue(self, notification: Notification) -> None:
        limit = self._settings.max_queued
        if limit and len(self._queued) >= limit:
            dropped = self._queued.popleft()
            self._logger.warning(
                "Queue full ({} waiting); dropping oldest queued notification {}", limit, dropped.id
            )
            self.notificationDropped.emit(dropped.id)
        notification.status = NotificationStatus.QUEUED
        self._queued.append(notification)
        self._logger.debug("Notification {} queued ({} waiting)", notification.id, len(self._queued))
        self.notificationQueued.emit(notification.id)

    def _activate(self, notification: Notification) -> None:
        notification.status = NotificationStatus.ACTIVE
        notification.width = self._layout.surface_width()
        notification.height = DEFAULT_HEIGHT
        notification.paused = False
        self._active.append(notification)

        surface = self._surface_factory(notification, self.handle_event)
        self._surfaces[notification.id] = surface
        surface.send(
            CreateSurface(
                id=notification.id,
                title=notification.title,
                content=notification.content,
                timeout_ms=notification.timeout_ms,
                theme=self._theme,
            )
        )
        placement = self._layout.compute(self._active)[notification.id]
        surface.set_geometry(self._layout.offscreen_x(), placement.y, notification.width, notification.height)

        self._start_countdown(notification)
        self._logger.info(
            "Presenting notification {} (origin={}, timeout={}ms)",
            notification.id,
            notification.origin.value,
            notification.timeout_ms,
        )
        self.notificationActivated.emit(notification.id)

    # Countdown -----------------------------------------------------------

    def _start_countdown(self, notification: Notification) -> None:
        self._cancel_countdown(notification)
        notification.timer = self._after(notification.timeout_ms, partial(self._on_timeout, notification.id))

    def _cancel_countdown(self, notification: Notification) -> None:
        if notification.timer is not None:
            self._after_cancel(notification.timer)
            notification.timer = None

    def _on_timeout(self, notification_id: str) -> None:
        notification = self._find_active(notification_id)
        if notification is None:
            return
        notification.timer = None
        if notification.paused or notification.is_closing:
            return
        self._logger.debug("Notification {} timed out", notification_id)
        self.close(notification_id)

    # Surface events ------------------------------------------------------

    def handle_event(self, event: SurfaceEvent) -> None:
        if isinstance(event, PointerEnter):
            self.pause(event.id)
        elif isinstance(event, PointerLeave):
            self.resume(event.id)
        elif isinstance(event, Resized):
            self.resize(event.id, event.height)
        elif isinstance(event, ManualCloseRequested):
            self._logger.debug("Manual close requested for {}", event.id)
            self.close(event.id)
        else:
            self._logger.warning("Ignoring unknown surface event {!r}", event)

    def pause(self, notification_id: str) -> None:
        notification = self._find_active(notification_id)
        if notification is None:
            self._logger.warning("pause: unknown notification id {!r}", notification_id)
            return
        if notification.paused or notification.is_closing:
            return
        self._cancel_countdown(notification)
        notification.paused = True

    def resume(self, notification_id: str) -> None:
        notification = self._find_active(notification_id)
        if notification is None:
            self._logger.warning("resume: unknown notification id {!r}", notification_id)
            return
        if not notification.paused:
            return
        notification.paused = False
        if notification.is_closing:
            return
        # Full configured timeout, not the time left when paused.
        self._start_countdown(notification)

    def resize(self, notification_id: str, reported_height: float) -> None:
        notification = self._find_active(notification_id)
        surface = self._surfaces.get(notification_id)
        if notification is None or surface is None:
            self._logger.error("resize: unknown notification id {!r}", notification_id)
            return
        if notification.is_closing:
            return

        new_height = self._layout.clamp_height(reported_height, notification.height)
        height_changed = new_height != notification.height
        notification.height = new_height

        placements = self._layout.compute(self._active)
        target = placements[notification_id]
        animation = self._settings.animation

        if not surface.is_shown():
            surface.set_geometry(self._layout.offscreen_x(), target.y, notification.width, new_height)
            surface.show_surface()
            self._transitions.animate(notification_id, surface, target.x, target.y, animation.duration_ms)
        else:
            current_x, current_y = surface.position()
            surface.set_geometry(current_x, current_y, notification.width, new_height)
            if height_changed or (current_x, current_y) != (target.x, target.y):
                self._transitions.animate(
                    notification_id, surface, target.x, target.y, animation.restack_duration_ms
                )
        if height_changed:
            self._restack(placements, exclude=notification_id)

    # Closing -------------------------------------------------------------

    def close(self, notification_id: str) -> None:
        notification = self._find_active(notification_id)
        if notification is None:
            self._logger.debug("close: {!r} is not active (already removed?)", notification_id)
            return
        if notification.is_closing:
            return

        notification.status = NotificationStatus.CLOSING
        notification.paused = False
        self._cancel_countdown(notification)

        duration = self._settings.animation.duration_ms
        surface = self._surfaces.get(notification_id)
        if surface is not None:
            surface.send(CloseSurface())
            _, current_y = surface.position()
            self._transitions.animate(
                notification_id, surface, self._layout.offscreen_x(), current_y, duration // 2
            )
        self._removal_timers[notification_id] = self._after(
            duration, partial(self._finish_close, notification_id)
        )
        self._logger.info("Closing notification {}", notification_id)

    def _finish_close(self, notification_id: str) -> None:
        self._removal_timers.pop(notification_id, None)
        notification = self._find_active(notification_id)
        if notification is None:
            return

        self._transitions.cancel(notification_id)
        surface = self._surfaces.pop(notification_id, None)
        if surface is not None:
            surface.destroy_surface()
        self._active.remove(notification)
        self.notificationRemoved.emit(notification_id)

        self._restack(self._layout.compute(self._active))

        if self._queued:
            next_notification = self._queued.popleft()
            self._logger.debug("Promoting queued notification {}", next_notification.id)
            self._admit(next_notification)

    def _restack(self, placements: Dict[str, Placement], exclude: Optional[str] = None) -> None:
        duration = self._settings.animation.restack_duration_ms
        for notification in self._active:
            if notification.id == exclude or notification.is_closing:
                continue
            surface = self._surfaces.get(notification.id)
            target = placements.get(notification.id)
            if surface is None or target is None:
                continue
            if surface.position() == (target.x, target.y):
                continue
            if surface.is_shown():
                self._transitions.animate(notification.id, surface, target.x, target.y, duration)
            else:
                surface.move_to(target.x, target.y)

    # Presentation-wide commands ------------------------------------------

    def set_theme(self, theme: str) -> None:
        self._theme = theme
        self._logger.debug("Broadcasting theme {} to {} surfaces", theme, len(self._surfaces))
        for surface in self._surfaces.values():
            surface.send(SetTheme(theme=theme))

    def relayout(self) -> None:
        """Move every surface to its slot after the work area changed."""
        self._restack(self._layout.compute(self._active))

    def raise_all(self) -> None:
        for surface in self._surfaces.values():
            surface.raise_surface()

    def shutdown(self) -> None:
        for notification in self._active:
            self._cancel_countdown(notification)
        for handle in self._removal_timers.values():
            self._after_cancel(handle)
        self._removal_timers.clear()
        self._transitions.cancel_all()
        for surface in self._surfaces.values():
            surface.destroy_surface()
        self._surfaces.clear()
        self._active.clear()
        self._queued.clear()

    def _find_active(self, notification_id: str) -> Optional[Notification]:
        for notification in self._active:
            if notification.id == notification_id:
                return notification
        return None
