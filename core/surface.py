"""
Contract between the orchestrator and the visual element showing one notification.
"""

from __future__ import annotations

from typing import Callable, Protocol, Tuple

from shared.messages import SurfaceCommand, SurfaceEvent
from shared.notification import Notification

SurfaceEventHandler = Callable[[SurfaceEvent], None]


class PresentationSurface(Protocol):
    """
    A positionable rectangle rendering one notification.

    Implementations report pointer, resize and manual-close events back
    through the handler they were created with.
    """

    def send(self, command: SurfaceCommand) -> None: ...

    def position(self) -> Tuple[int, int]: ...

    def move_to(self, x: int, y: int) -> None: ...

    def set_geometry(self, x: int, y: int, width: int, height: int) -> None: ...

    def show_surface(self) -> None: ...

    def is_shown(self) -> bool: ...

    def raise_surface(self) -> None: ...

    def destroy_surface(self) -> None: ...


SurfaceFactory = Callable[[Notification, SurfaceEventHandler], PresentationSurface]
