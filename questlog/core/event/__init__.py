"""
Event system for questlog.

Progression events (`xp.granted`, `progression.leveled_up`, ...) are
published here after the owning transaction commits.
"""

from .bus import EventBus, matches
from .types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
    "matches",
]
