"""Progress events and a publish/subscribe bus for sync observers.

The Linear client, the project processor and the phase modules publish
typed events; the sync service (and any UI poller) subscribes. Publishers do
not know who is listening.

Usage:
    from pulse.events import EventBus, ProgressChanged

    bus = EventBus()
    unsubscribe = bus.subscribe(lambda e: print(e.percent), ProgressChanged)
    bus.publish(ProgressChanged(percent=20))
    unsubscribe()
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("pulse.events")

__all__ = [
    "ApiQueryIssued",
    "EventBus",
    "PageFetched",
    "PhaseCompleted",
    "PhaseStarted",
    "ProgressChanged",
    "ProjectProgress",
    "StatusMessage",
]


@dataclass(frozen=True)
class ApiQueryIssued:
    """A GraphQL request was sent. ``count`` is the client's running total."""

    operation: str
    count: int


@dataclass(frozen=True)
class PageFetched:
    """A page of a paginated query arrived.

    Attributes:
        operation: Client operation name (e.g. "fetch_started_issues")
        fetched: Total items accumulated so far for this call
        page_size: Items in the page just received
        scope: Optional sub-scope, such as the project id being paged
    """

    operation: str
    fetched: int
    page_size: int
    scope: str | None = None


@dataclass(frozen=True)
class PhaseStarted:
    phase: str


@dataclass(frozen=True)
class PhaseCompleted:
    phase: str
    new_count: int = 0
    updated_count: int = 0
    skipped: bool = False


@dataclass(frozen=True)
class ProgressChanged:
    percent: int

    def __post_init__(self):
        if not 0 <= self.percent <= 100:
            raise ValueError(f"percent must be within 0-100, got {self.percent}")


@dataclass(frozen=True)
class ProjectProgress:
    """A project task finished within a project phase (N of M)."""

    phase: str
    completed: int
    total: int
    project_id: str
    project_name: str | None = None


@dataclass(frozen=True)
class StatusMessage:
    message: str
    project_id: str | None = None


Handler = Callable[[Any], None]


class EventBus:
    """Synchronous in-process publish/subscribe channel.

    Handlers run in publish order on the publisher's task. A failing handler
    is logged and does not affect other handlers or the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[type | None, Handler]] = []

    def subscribe(self, handler: Handler, event_type: type | None = None) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` (all events when None).

        Returns:
            Callable that removes the subscription.
        """
        entry = (event_type, handler)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Any) -> None:
        for event_type, handler in list(self._subscribers):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={"event_type": type(event).__name__},
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
