"""
Event Bus for Encore.

This module provides a simple pub/sub event system for decoupled communication
between the playback core and its UI/orchestration collaborators.

Event types:
- track.changed: The active track changed (crossfade swap, advance, autoplay, skip)
- crossfade.started: A crossfade session started priming
- crossfade.completed: A crossfade swapped the active engine
- crossfade.aborted: A crossfade failed; the active engine keeps playing
- resolution.failed: A reference could not be resolved
- playback.no_follow_up: Natural end of track with nothing to play next
- cache.cleared: Every cache tier was invalidated

Usage:
    from encore.core.events import event_bus

    async def on_track_changed(event: TrackChangedEvent) -> None:
        print(f"Now playing {event.title}")

    await event_bus.subscribe("track.changed", on_track_changed)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[["Event"], Coroutine[Any, Any, None]]


@dataclass
class Event:
    """Base class for all events."""

    event_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {"type": self.event_type}


@dataclass
class TrackChangedEvent(Event):
    """Fired exactly once each time the active track changes."""

    event_type: str = field(default="track.changed", init=False)
    track_id: str = ""
    reference: str = ""
    title: str = ""
    artist: str = ""
    cause: str = ""  # crossfade, advance, autoplay, skip

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "track_id": self.track_id,
            "reference": self.reference,
            "title": self.title,
            "artist": self.artist,
            "cause": self.cause,
        }


@dataclass
class CrossfadeEvent(Event):
    """Fired on crossfade lifecycle transitions."""

    event_type: str = "crossfade.started"
    reference: str = ""
    overlap_seconds: float = 0.0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.event_type,
            "reference": self.reference,
            "overlap_seconds": self.overlap_seconds,
        }
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class ResolutionFailedEvent(Event):
    """
    Fired when a reference cannot be resolved.

    `user_visible` is only set for the currently playing track; failures of
    predictive preloads and background promotion never produce this event.
    """

    event_type: str = field(default="resolution.failed", init=False)
    reference: str = ""
    error: str = ""
    retryable: bool = True
    user_visible: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "reference": self.reference,
            "error": self.error,
            "retryable": self.retryable,
            "user_visible": self.user_visible,
        }


@dataclass
class NoFollowUpEvent(Event):
    """Informational: the queue ran out and no similar track was found."""

    event_type: str = field(default="playback.no_follow_up", init=False)
    after_reference: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type, "after_reference": self.after_reference}


@dataclass
class CacheClearedEvent(Event):
    """Fired after clear_all() invalidated every tier."""

    event_type: str = field(default="cache.cleared", init=False)
    released_urls: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type, "released_urls": self.released_urls}


class EventBus:
    """
    Simple async pub/sub event bus.

    Supports:
    - Multiple handlers per event type
    - Wildcard subscriptions (e.g., "crossfade.*")
    - Async handlers
    - Error isolation (one handler failing doesn't affect others)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to subscribe to. Use "*" suffix for wildcards.
            handler: Async function to call when event is published.
        """
        async with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            logger.debug("Subscribed to %s: %s", event_type, handler)

    async def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns True if handler was found and removed.
        """
        async with self._lock:
            if event_type in self._handlers:
                try:
                    self._handlers[event_type].remove(handler)
                    logger.debug("Unsubscribed from %s: %s", event_type, handler)
                    return True
                except ValueError:
                    pass
            return False

    async def publish(self, event: Event) -> int:
        """
        Publish an event to all subscribed handlers.

        Returns:
            Number of handlers that received the event.
        """
        event_type = event.event_type
        handlers_called = 0

        async with self._lock:
            matching_handlers: list[EventHandler] = []

            if event_type in self._handlers:
                matching_handlers.extend(self._handlers[event_type])

            # "crossfade.*" matches "crossfade.aborted"
            for pattern, handlers in self._handlers.items():
                if pattern.endswith(".*"):
                    prefix = pattern[:-2]
                    if event_type.startswith(prefix + "."):
                        matching_handlers.extend(handlers)
                elif pattern == "*":
                    matching_handlers.extend(handlers)

        # Call handlers outside of lock
        for handler in matching_handlers:
            try:
                await handler(event)
                handlers_called += 1
            except Exception as e:
                logger.exception("Error in event handler for %s: %s", event_type, e)

        if handlers_called > 0:
            logger.debug("Published %s to %d handlers", event_type, handlers_called)

        return handlers_called

    def publish_sync(self, event: Event) -> None:
        """
        Schedule event publication from synchronous code.

        This creates a task to publish the event asynchronously.
        """
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(self.publish(event))
        except RuntimeError:
            logger.warning("Cannot publish event %s: no running event loop", event.event_type)

    async def clear(self) -> None:
        """Remove all subscriptions."""
        async with self._lock:
            self._handlers.clear()
            logger.debug("Cleared all event subscriptions")


# Global event bus instance
event_bus = EventBus()
