"""
Lifecycle event fan-out.

Components report what happened through an optional ``on_event`` sink with
the same keyword shape as ``write_audit``:

    on_event(entity_type=..., entity_id=..., action=..., actor=...,
             project_id=..., diff={...})

A failing sink is logged and never turns a completed operation into an
error: by the time an event is emitted the store write has already landed.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

EventSink = Callable[..., object]


def emit(sink: EventSink | None, **event) -> None:
    if sink is None:
        return
    try:
        sink(**event)
    except Exception:
        logger.exception(
            "Event sink failed for %s on %s/%s",
            event.get("action"), event.get("entity_type"), event.get("entity_id"),
            extra={"event_type": event.get("action"), "project_id": event.get("project_id")},
        )
