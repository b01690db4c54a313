"""
Notification request validation shared by the HTTP and UDP ingestion paths
and by the command line forwarder.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import ProtocolError, ValidationError


@dataclass(frozen=True)
class RequestConstraints:
    """Schema constraints as simple dataclass constants."""

    max_body_bytes: int = 1_000_000
    max_timeout_ms: int = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class NotificationRequest:
    """A validated notification request that has not been admitted yet."""

    title: str
    content: str
    timeout_ms: Optional[int] = None
    broadcast: bool = False
    sender_instance_id: Optional[str] = None
    key: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """Render the JSON shape used by ``POST /notify`` and UDP datagrams."""
        payload: Dict[str, Any] = {
            "title": self.title,
            "content": self.content,
            "broadcast": self.broadcast,
        }
        if self.timeout_ms is not None:
            payload["timeout"] = self.timeout_ms
        if self.sender_instance_id:
            payload["senderInstanceId"] = self.sender_instance_id
        if self.key:
            payload["key"] = self.key
        return payload


def decode_json_object(raw: bytes) -> Dict[str, Any]:
    """
    Decode a UTF-8 JSON document whose root must be an object.

    Raises ProtocolError for undecodable bytes, malformed JSON, or a
    non-object root.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"Body is not valid UTF-8: {exc}") from exc

    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise ProtocolError("JSON root must be an object.")
    return document


def validate_notification_request(raw: Mapping[str, Any]) -> NotificationRequest:
    """
    Validate a decoded request mapping.

    ``title`` and ``content`` are required non-empty strings; ``timeout`` is
    an optional non-negative integer in milliseconds; ``broadcast`` is coerced
    to a bool. Unknown fields are ignored.
    """
    title = _require_string(raw.get("title"), field="title")
    content = _require_string(raw.get("content"), field="content")
    timeout_ms = _validate_timeout(raw.get("timeout"))

    sender = raw.get("senderInstanceId")
    key = raw.get("key")

    return NotificationRequest(
        title=title,
        content=content,
        timeout_ms=timeout_ms,
        broadcast=bool(raw.get("broadcast", False)),
        sender_instance_id=sender if isinstance(sender, str) and sender else None,
        key=key if isinstance(key, str) else None,
    )


def _require_string(value: Any, *, field: str) -> str:
    if value is None:
        raise ValidationError(f"{field} is required.")
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string.")
    if value == "":
        raise ValidationError(f"{field} must be a non-empty string.")
    return value


def _validate_timeout(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("timeout must be a non-negative integer.")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("timeout must be a whole number of milliseconds.")
        value = int(value)
    try:
        timeout = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("timeout must be a non-negative integer.") from exc
    if timeout < 0:
        raise ValidationError("timeout must be a non-negative integer.")
    return min(timeout, RequestConstraints().max_timeout_ms)
