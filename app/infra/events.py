from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from app.domain.models import EventEnvelope, EventRecord
from app.infra.db import engine

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]
WILDCARD = "*"


def _topics_for(event_type: str) -> list[str]:
    """Subscription keys that match ``event_type``, most specific first.

    ``role.updated`` is delivered to ``role.updated``, ``role.*`` and ``*``.
    """
    topics = [event_type]
    parts = event_type.split(".")
    for size in range(len(parts) - 1, 0, -1):
        topics.append(".".join(parts[:size]) + ".*")
    topics.append(WILDCARD)
    return topics


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[topic]:
            self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for topic in _topics_for(event_type):
            for handler in self._subscribers.get(topic, []):
                if handler not in matched:
                    matched.append(handler)
        return matched

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        """Persist ``event`` and then notify subscribers.

        With an explicit ``session`` the record joins the caller's transaction
        and the caller commits. Handlers run synchronously and their errors
        propagate to the publisher.
        """
        record = EventRecord(
            event_id=event.event_id,
            event_type=event.event_type,
            ts=event.ts,
            actor_id=event.actor_id,
            payload=event.payload,
        )
        if session is not None:
            session.add(record)
        else:
            with Session(engine) as own_session:
                own_session.add(record)
                own_session.commit()

        handlers = self.handlers_for(event.event_type)
        for handler in handlers:
            handler(event)
        logger.debug("published %s to %d handler(s)", event.event_type, len(handlers))

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(event_type=event_type, actor_id=actor_id, payload=payload)
        self.publish(event)
        return event


event_bus = EventBus()
