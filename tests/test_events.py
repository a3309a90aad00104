from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from app.domain.models import EventEnvelope, EventRecord
from app.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="role.updated",
        actor_id="admin-1",
        payload={"role_id": "hr"},
    )
    bus.subscribe("role.updated", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload == {"role_id": "hr"}
    assert seen == [event.event_id]


def test_event_bus_unsubscribe_and_wildcard() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    specific: list[str] = []
    everything: list[str] = []

    def on_role(event: EventEnvelope) -> None:
        specific.append(event.event_type)

    def on_any(event: EventEnvelope) -> None:
        everything.append(event.event_type)

    bus.subscribe("role.deleted", on_role)
    bus.subscribe("*", on_any)
    bus.unsubscribe("role.deleted", on_role)

    with Session(engine) as session:
        bus.publish(EventEnvelope(event_type="role.deleted", payload={"role_id": "qam"}), session=session)
        session.commit()

    assert specific == []
    assert everything == ["role.deleted"]


def test_event_bus_prefix_topic_matches_family() -> None:
    bus = EventBus()
    seen: list[str] = []

    def on_role_family(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("role.*", on_role_family)
    bus.subscribe("role.*", on_role_family)

    assert bus.handlers_for("role.created") == [on_role_family]
    assert bus.handlers_for("role.deleted") == [on_role_family]
    assert bus.handlers_for("user.roles.updated") == []
    assert bus.handlers_for("policy.created") == []
