"""
Error taxonomy shared by the ingestion, orchestration and layout layers.
"""

from __future__ import annotations


class NotifierError(Exception):
    """Base class for every error raised by the notifier."""


class ValidationError(NotifierError, ValueError):
    """A request is well-formed JSON but misses or mistypes a field."""


class ProtocolError(NotifierError, ValueError):
    """A request body or datagram could not be decoded."""


class ResourceError(NotifierError, OSError):
    """A listener could not acquire its socket."""


class AuthError(NotifierError):
    """A broadcast message carried the wrong shared key."""


class LayoutError(NotifierError, ArithmeticError):
    """A computed position or height was not a finite number."""
