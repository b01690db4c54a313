"""
Frameless notification card stacked in the top-right corner of the screen.
"""

from __future__ import annotations

from typing import Optional, Tuple

from PySide6.QtCore import QPropertyAnimation, QSize, Qt, QTimer
from PySide6.QtGui import QColor, QEnterEvent
from PySide6.QtWidgets import (
    QGraphicsDropShadowEffect,
    QHBoxLayout,
    QLabel,
    QSizePolicy,
    QStyle,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

from core.surface import SurfaceEventHandler
from shared.messages import (
    CloseSurface,
    CreateSurface,
    ManualCloseRequested,
    PointerEnter,
    PointerLeave,
    Resized,
    SetTheme,
    SurfaceCommand,
)
from shared.notification import Notification
from stack_notifier.stack_notifier import logger as app_logger

_FADE_OUT_MS = 150

_THEME_STYLES = {
    "dark": """
        QWidget#PopupCard {
            background-color: rgba(24, 24, 28, 0.92);
            border-radius: 10px;
            border: 1px solid rgba(255, 255, 255, 0.10);
        }
        QWidget#PopupCard QLabel#NotificationTitle { color: white; }
        QWidget#PopupCard QLabel#NotificationContent { color: rgba(255, 255, 255, 0.85); }
        QToolButton#CloseButton { background: transparent; border: none; color: white; }
    """,
    "light": """
        QWidget#PopupCard {
            background-color: rgba(250, 250, 252, 0.96);
            border-radius: 10px;
            border: 1px solid rgba(0, 0, 0, 0.10);
        }
        QWidget#PopupCard QLabel#NotificationTitle { color: #111827; }
        QWidget#PopupCard QLabel#NotificationContent { color: #374151; }
        QToolButton#CloseButton { background: transparent; border: none; color: #111827; }
    """,
}


class NotificationPopup(QWidget):
    """Qt implementation of a presentation surface for one notification."""

    def __init__(
        self,
        notification_id: str,
        on_event: SurfaceEventHandler,
        *,
        custom_css: str = "",
        parent: Optional[QWidget] = None,
    ) -> None:
        flags = (
            Qt.WindowType.Tool
            | Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.WindowDoesNotAcceptFocus
        )
        super().__init__(parent)
        self.setWindowFlags(flags)
        self.setObjectName("NotificationPopup")
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground, True)
        self.setAttribute(Qt.WidgetAttribute.WA_ShowWithoutActivating, True)

        self._id = notification_id
        self._on_event = on_event
        self._custom_css = custom_css
        self._destroying = False
        self._fade: Optional[QPropertyAnimation] = None
        self._logger = app_logger.get_logger()

        self._container = QWidget(self)
        self._container.setObjectName("PopupCard")
        shadow = QGraphicsDropShadowEffect(self._container)
        shadow.setBlurRadius(18)
        shadow.setColor(QColor(0, 0, 0, 120))
        shadow.setOffset(0, 4)
        self._container.setGraphicsEffect(shadow)

        self._title_label = QLabel()
        self._title_label.setObjectName("NotificationTitle")
        self._title_label.setStyleSheet("font-weight: bold; font-size: 14px;")
        self._title_label.setTextFormat(Qt.TextFormat.PlainText)

        self._content_label = QLabel()
        self._content_label.setObjectName("NotificationContent")
        self._content_label.setWordWrap(True)
        self._content_label.setTextFormat(Qt.TextFormat.MarkdownText)
        self._content_label.setOpenExternalLinks(True)
        self._content_label.setSizePolicy(QSizePolicy.Policy.Preferred, QSizePolicy.Policy.Minimum)

        self._close_button = QToolButton()
        self._close_button.setObjectName("CloseButton")
        self._close_button.setCursor(Qt.CursorShape.PointingHandCursor)
        self._close_button.setToolTip("Close")
        self._close_button.setIconSize(QSize(14, 14))
        self._close_button.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_TitleBarCloseButton))
        self._close_button.clicked.connect(self._request_close)  # type: ignore[arg-type]

        header = QHBoxLayout()
        header.setSpacing(6)
        header.addWidget(self._title_label, 1)
        header.addWidget(self._close_button, 0, Qt.AlignmentFlag.AlignTop)

        card_layout = QVBoxLayout(self._container)
        card_layout.setContentsMargins(12, 10, 12, 12)
        card_layout.setSpacing(4)
        card_layout.addLayout(header)
        card_layout.addWidget(self._content_label)

        base_layout = QHBoxLayout(self)
        base_layout.setContentsMargins(0, 0, 0, 0)
        base_layout.addWidget(self._container)

    # Commands from the orchestrator --------------------------------------

    def send(self, command: SurfaceCommand) -> None:
        if isinstance(command, CreateSurface):
            self._title_label.setText(command.title)
            self._content_label.setText(command.content)
            self._apply_theme(command.theme)
            QTimer.singleShot(0, self._report_height)
        elif isinstance(command, SetTheme):
            self._apply_theme(command.theme)
            QTimer.singleShot(0, self._report_height)
        elif isinstance(command, CloseSurface):
            self._fade_out()
        else:
            self._logger.warning("Surface {} ignoring unknown command {!r}", self._id, command)

    def _apply_theme(self, theme: str) -> None:
        style = _THEME_STYLES.get(theme, _THEME_STYLES["light"])
        self.setStyleSheet(style + self._custom_css)

    def _fade_out(self) -> None:
        self._fade = QPropertyAnimation(self, b"windowOpacity", self)
        self._fade.setDuration(_FADE_OUT_MS)
        self._fade.setStartValue(self.windowOpacity())
        self._fade.setEndValue(0.0)
        self._fade.start()

    def _report_height(self) -> None:
        if self._destroying:
            return
        layout = self.layout()
        width = self.width()
        if layout is not None and layout.hasHeightForWidth():
            height = layout.totalHeightForWidth(width)
        else:
            height = self.sizeHint().height()
        self._on_event(Resized(id=self._id, height=height))

    # Geometry -------------------------------------------------------------

    def position(self) -> Tuple[int, int]:
        return self.x(), self.y()

    def move_to(self, x: int, y: int) -> None:
        self.move(x, y)

    def set_geometry(self, x: int, y: int, width: int, height: int) -> None:
        self.setFixedWidth(width)
        self.setGeometry(x, y, width, height)

    def show_surface(self) -> None:
        self.show()

    def is_shown(self) -> bool:
        return self.isVisible()

    def raise_surface(self) -> None:
        self.raise_()

    def destroy_surface(self) -> None:
        self._destroying = True
        self.close()
        self.deleteLater()

    # Qt events -------------------------------------------------------------

    def enterEvent(self, event: QEnterEvent) -> None:  # noqa: N802
        super().enterEvent(event)
        self._on_event(PointerEnter(id=self._id))

    def leaveEvent(self, event) -> None:  # noqa: N802
        super().leaveEvent(event)
        self._on_event(PointerLeave(id=self._id))

    def closeEvent(self, event) -> None:  # noqa: N802
        if self._destroying:
            super().closeEvent(event)
            return
        event.ignore()
        self._request_close()

    def _request_close(self) -> None:
        if not self._destroying:
            self._on_event(ManualCloseRequested(id=self._id))


def popup_factory(custom_css: str = ""):
    """Build a surface factory producing ``NotificationPopup`` windows."""

    def create(notification: Notification, on_event: SurfaceEventHandler) -> NotificationPopup:
        return NotificationPopup(notification.id, on_event, custom_css=custom_css)

    return create
