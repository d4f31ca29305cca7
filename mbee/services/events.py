"""
Element domain events.

The engine publishes through an injected ``EventBus`` rather than a
module-level singleton; the application owns one bus, stored in
``app.extensions["mbee_events"]``. Signals are blinker signals, the same
mechanism Flask uses for its own request signals, so subscribers connect
with the familiar ``signal.connect(receiver)`` API.

Receivers are called as ``receiver(sender, elements=payload)``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from blinker import Namespace
from flask import current_app

logger = logging.getLogger(__name__)

ELEMENTS_CREATED = "elements-created"
ELEMENTS_UPDATED = "elements-updated"
ELEMENTS_DELETED = "elements-deleted"

ELEMENT_EVENTS = (ELEMENTS_CREATED, ELEMENTS_UPDATED, ELEMENTS_DELETED)


class EventEmitter(Protocol):
    def emit(self, name: str, payload: Any) -> None: ...


class EventBus:
    """Fire-and-forget publisher backed by a private blinker namespace."""

    def __init__(self) -> None:
        self._signals = Namespace()

    def signal(self, name: str):
        return self._signals.signal(name)

    def subscribe(self, name: str, receiver) -> None:
        self.signal(name).connect(receiver, weak=False)

    def emit(self, name: str, payload: Any) -> None:
        receivers = self.signal(name).send(self, elements=payload)
        logger.debug("Emitted %s to %d receiver(s)", name, len(receivers))


def _log_receiver(name: str):
    def receiver(sender, elements=None, **_extra):
        logger.info("%s: %d element(s)", name, len(elements or []))
    return receiver


def init_event_bus(app) -> EventBus:
    """Create the application's bus and attach the audit-log subscriber."""
    bus = EventBus()
    for name in ELEMENT_EVENTS:
        bus.subscribe(name, _log_receiver(name))
    app.extensions["mbee_events"] = bus
    return bus


def get_event_bus() -> EventBus:
    return current_app.extensions["mbee_events"]
