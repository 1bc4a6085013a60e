"""Service package exposing configuration, events and video sources."""

from .config import AppConfig, SourceSettings, StreamSettings, resolve_config
from .event_bus import EventBus, EventSubscription, EventType, ServerEvent

__all__ = [
    "AppConfig",
    "SourceSettings",
    "StreamSettings",
    "resolve_config",
    "EventBus",
    "EventSubscription",
    "EventType",
    "ServerEvent",
]
