"""
Notification orchestration engine shared by the daemon and its tests.
"""

from .layout import LayoutEngine, Placement, WorkArea  # noqa: F401
from .settings import CoreSettings, CoreSettingsManager  # noqa: F401
