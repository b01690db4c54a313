"""
Application coordinator wiring the orchestration engine to Qt and the network.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

from PySide6.QtCore import QObject, Qt
from PySide6.QtGui import QGuiApplication
from PySide6.QtWidgets import QApplication

from core.http_gateway import HttpGateway
from core.instance import InstanceCoordinator
from core.layout import LayoutEngine, WorkArea
from core.notification_popup import popup_factory
from core.orchestrator import NotificationOrchestrator
from core.settings import CoreSettings, CoreSettingsManager
from core.timers import CountdownTimers
from core.transitions import TransitionScheduler
from core.udp_gateway import UdpBroadcaster, UdpGateway, start_udp_channel
from shared.notification import Notification, NotificationOrigin
from shared.request_schema import NotificationRequest
from stack_notifier.stack_notifier import logger as app_logger

APP_NAME = "Stack Notifier"
APP_VERSION = "1.0.0"


def primary_work_area() -> WorkArea:
    screen = QGuiApplication.primaryScreen()
    if screen is None:
        return WorkArea()
    geometry = screen.availableGeometry()
    return WorkArea(x=geometry.x(), y=geometry.y(), width=geometry.width(), height=geometry.height())


def resolve_theme(configured: str) -> str:
    """Map the configured theme to the concrete one surfaces render."""
    if configured in ("light", "dark"):
        return configured
    hints = QGuiApplication.styleHints()
    if hints is not None and hints.colorScheme() == Qt.ColorScheme.Dark:
        return "dark"
    return "light"


@dataclass
class AppCoordinator(QObject):
    settings_manager: CoreSettingsManager = field(default_factory=CoreSettingsManager)
    instance: Optional[InstanceCoordinator] = None
    instance_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        super().__init__()
        self._logger = app_logger.get_logger()
        self._manual_shutdown_requested = False

        self._settings: CoreSettings = self.settings_manager.read_settings()
        custom_css = self.settings_manager.read_custom_css(self._settings)

        self._timers = CountdownTimers(self)
        self._transitions = TransitionScheduler(self)
        self._layout = LayoutEngine(self._settings.notification, primary_work_area())
        self.orchestrator = NotificationOrchestrator(
            self._settings,
            surface_factory=popup_factory(custom_css),
            layout=self._layout,
            transitions=self._transitions,
            after=self._timers.after,
            after_cancel=self._timers.cancel,
            theme=resolve_theme(self._settings.theme),
            parent=self,
        )

        self._broadcaster = UdpBroadcaster(self._settings.udp, self.instance_id, self)
        self._http = HttpGateway(
            self.orchestrator,
            port=self._settings.server.port,
            broadcaster=self._broadcaster,
            parent=self,
        )
        self._udp = UdpGateway(self.orchestrator, self._settings.udp, self.instance_id, self)

        hints = QGuiApplication.styleHints()
        if hints is not None:
            hints.colorSchemeChanged.connect(self._on_color_scheme_changed)
        screen = QGuiApplication.primaryScreen()
        if screen is not None:
            screen.availableGeometryChanged.connect(self._on_work_area_changed)
        if self.instance is not None:
            self.instance.activated.connect(self.orchestrator.raise_all)

    @property
    def settings(self) -> CoreSettings:
        return self._settings

    @property
    def manual_shutdown_requested(self) -> bool:
        return self._manual_shutdown_requested

    def start(self) -> None:
        """Bind listeners. Raises ResourceError when the HTTP port is taken."""
        self._logger.info("Starting {} v{} (instance {})", APP_NAME, APP_VERSION, self.instance_id)
        self._http.start()
        start_udp_channel(self._udp, self._broadcaster, self._settings.udp)

    def dispatch(
        self,
        request: NotificationRequest,
        origin: NotificationOrigin = NotificationOrigin.CLI,
    ) -> Notification:
        """Admit a locally originated request and re-broadcast it when asked."""
        notification = self.orchestrator.submit(request, origin)
        if request.broadcast and origin is not NotificationOrigin.UDP:
            self._broadcaster.broadcast(request)
        return notification

    def shutdown(self) -> None:
        self._logger.info("Shutting down application on request.")
        self._manual_shutdown_requested = True
        self._http.stop()
        self._udp.stop()
        self.orchestrator.shutdown()
        app = QApplication.instance()
        if app is not None:
            app.quit()

    def _on_color_scheme_changed(self, _scheme) -> None:
        if self._settings.theme != "system":
            return
        self.orchestrator.set_theme(resolve_theme("system"))

    def _on_work_area_changed(self, _geometry) -> None:
        self._layout.work_area = primary_work_area()
        self._logger.debug("Primary work area changed to {}", self._layout.work_area)
        self.orchestrator.relayout()
