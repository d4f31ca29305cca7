"""Element event bus (blinker) and its wiring into the app and engine."""

from mbee.services.element_service import get_element_service
from mbee.services.events import ELEMENTS_CREATED, ELEMENTS_DELETED, EventBus, get_event_bus


def test_subscribers_receive_payload():
    bus = EventBus()
    received = []
    bus.subscribe(ELEMENTS_CREATED, lambda sender, elements=None: received.append(elements))

    bus.emit(ELEMENTS_CREATED, [{"id": "e1"}])
    bus.emit(ELEMENTS_DELETED, [{"id": "ignored"}])

    assert received == [[{"id": "e1"}]]


def test_buses_are_isolated():
    first, second = EventBus(), EventBus()
    received = []
    first.subscribe(ELEMENTS_CREATED, lambda sender, elements=None: received.append(sender))

    second.emit(ELEMENTS_CREATED, [])
    assert received == []


def test_app_bus_drives_engine(app, project, alice):
    received = []

    def receiver(sender, elements=None):
        received.append([d["id"] for d in elements])

    get_event_bus().subscribe(ELEMENTS_CREATED, receiver)
    try:
        get_element_service().create(alice, "acme", "rocket", "master", {"id": "e1"})
    finally:
        get_event_bus().signal(ELEMENTS_CREATED).disconnect(receiver)

    assert received == [["e1"]]
