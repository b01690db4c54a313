"""
Runtime representation of a notification owned by the orchestrator.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .request_schema import NotificationRequest

DEFAULT_HEIGHT = 100
_ID_ALPHABET = string.digits + string.ascii_lowercase


class NotificationStatus(Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    CLOSING = "closing"


class NotificationOrigin(Enum):
    HTTP = "http"
    UDP = "udp"
    CLI = "cli"
    INTERNAL = "internal"


def generate_notification_id(now_ms: Optional[int] = None) -> str:
    """Millisecond timestamp followed by a five character base36 suffix."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=5))
    return f"{stamp}{suffix}"


@dataclass(slots=True)
class Notification:
    """
    A notification admitted by the orchestrator, together with the layout
    state and the countdown handle the orchestrator keeps for it.
    """

    id: str
    title: str
    content: str
    timeout_ms: int
    broadcast: bool = False
    sender_instance_id: Optional[str] = None
    origin: NotificationOrigin = NotificationOrigin.HTTP
    status: NotificationStatus = NotificationStatus.QUEUED
    width: int = 0
    height: int = DEFAULT_HEIGHT
    x: int = 0
    y: int = 0
    paused: bool = False
    timer: Any = field(default=None, repr=False)

    @classmethod
    def from_request(
        cls,
        request: NotificationRequest,
        *,
        default_timeout_ms: int,
        origin: NotificationOrigin,
        notification_id: Optional[str] = None,
    ) -> "Notification":
        return cls(
            id=notification_id or generate_notification_id(),
            title=request.title,
            content=request.content,
            timeout_ms=request.timeout_ms or default_timeout_ms,
            broadcast=request.broadcast,
            sender_instance_id=request.sender_instance_id,
            origin=origin,
        )

    @property
    def is_active(self) -> bool:
        return self.status is NotificationStatus.ACTIVE

    @property
    def is_closing(self) -> bool:
        return self.status is NotificationStatus.CLOSING
