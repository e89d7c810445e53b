"""
Internal event bus, audit log and user notifications.
"""

from careconnect.core.events.audit import EventLogger, redact
from careconnect.core.events.models import BaseEvent, EventSeverity, SourceSubsystem
from careconnect.core.events.bus import EventBus, EventBusConfig, OverflowPolicy
from careconnect.core.events.notify import Notifier

__all__ = [
    "EventLogger",
    "redact",
    "BaseEvent",
    "EventSeverity",
    "SourceSubsystem",
    "EventBus",
    "EventBusConfig",
    "OverflowPolicy",
    "Notifier",
]
