"""
Messages exchanged across the presentation boundary.

Commands flow from the orchestrator to a surface; events flow back. Both
sides are closed sets of frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class CreateSurface:
    id: str
    title: str
    content: str
    timeout_ms: int
    theme: str


@dataclass(frozen=True)
class SetTheme:
    theme: str


@dataclass(frozen=True)
class CloseSurface:
    pass


@dataclass(frozen=True)
class PointerEnter:
    id: str


@dataclass(frozen=True)
class PointerLeave:
    id: str


@dataclass(frozen=True)
class Resized:
    id: str
    height: float


@dataclass(frozen=True)
class ManualCloseRequested:
    id: str


SurfaceCommand = Union[CreateSurface, SetTheme, CloseSurface]
SurfaceEvent = Union[PointerEnter, PointerLeave, Resized, ManualCloseRequested]
