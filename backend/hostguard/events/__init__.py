"""Push event channel."""

from hostguard.events.bus import EventBus, EventHandler
from hostguard.events.models import EngineEvent, EventType

__all__ = ["EngineEvent", "EventBus", "EventHandler", "EventType"]
