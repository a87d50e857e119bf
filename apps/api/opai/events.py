from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from opai.context import get_correlation_id


logger = logging.getLogger("opai.events")

EventEnvelope = dict[str, Any]
EventHandler = Callable[[EventEnvelope], None]

LEAD_APPROVED = "crm.lead.approved"
LEAD_REJECTED = "crm.lead.rejected"

# Envelopes published in this process, newest last. Tests read and clear it.
published_events: list[EventEnvelope] = []

_subscribers: dict[str, list[EventHandler]] = defaultdict(list)


def subscribe(event_type: str, handler: EventHandler) -> None:
    if handler not in _subscribers[event_type]:
        _subscribers[event_type].append(handler)


def unsubscribe(event_type: str, handler: EventHandler) -> None:
    handlers = _subscribers.get(event_type, [])
    if handler in handlers:
        handlers.remove(handler)


def build_envelope(
    event_type: str,
    *,
    tenant_id: str,
    actor_user_id: str,
    payload: dict[str, Any],
    occurred_at: datetime | None = None,
) -> EventEnvelope:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": (occurred_at or datetime.now(timezone.utc)).isoformat(),
        "actor_user_id": actor_user_id,
        "tenant_id": tenant_id,
        "correlation_id": get_correlation_id(),
        "version": 1,
        "payload": payload,
    }


def publish(envelope: EventEnvelope) -> None:
    """Record ``envelope`` and hand it to in-process subscribers.

    Called only after the unit of work that produced the event has committed.
    """
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    for handler in list(_subscribers.get(envelope["event_type"], [])):
        handler(envelope)
    logger.debug("event.published", extra={"event_name": envelope["event_type"]})
