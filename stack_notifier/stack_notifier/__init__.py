"""
stack_notifier package.

Process-level helpers for the notifier daemon (logging setup). The
orchestration engine lives in ``core`` and the wire/data types in ``shared``.
"""

__all__ = [
    "logger",
]
