import asyncio
import json

import pytest

from app.core.config import settings
from app.core.events import EventEnvelope, EventMetadata, EventType, LeaveDeletedEvent
from app.core.kafka import KafkaConsumer, KafkaProducer, decode_event, publish_event
from app.core.topics import KafkaTopics


class RecordingProducer:
    def __init__(self):
        self.messages = []

    def produce(self, topic, value, key, callback):
        self.messages.append((topic, json.loads(value), key))

    def poll(self, timeout):
        return 0


def deleted_event():
    return EventEnvelope(
        event_type=EventType.LEAVE_DELETED,
        data=LeaveDeletedEvent(
            leave_id=7, user_id="stu-001", status="pending", deleted_by="stu-001"
        ).model_dump(),
        metadata=EventMetadata(actor_user_id="stu-001", actor_role="student"),
    )


def test_every_event_type_has_a_topic():
    for event_type in EventType:
        assert KafkaTopics.for_event(event_type) in KafkaTopics.all_topics()


def test_limit_exceeded_does_not_touch_quota_records():
    assert KafkaTopics.LEAVE_LIMIT_EXCEEDED not in KafkaTopics.record_mutation_topics()


def test_publish_is_skipped_when_kafka_is_disabled():
    assert asyncio.run(publish_event(deleted_event())) is False


def test_publish_routes_event_to_its_topic(monkeypatch):
    producer = RecordingProducer()
    monkeypatch.setattr(settings, "KAFKA_ENABLED", True)
    monkeypatch.setattr(KafkaProducer, "get_producer", classmethod(lambda cls: producer))

    event = deleted_event()
    assert asyncio.run(publish_event(event)) is True

    topic, body, key = producer.messages[0]
    assert topic == "leave-deleted"
    assert key == b"stu-001"
    assert body["event_type"] == "leave.deleted"
    assert body["data"]["user_id"] == "stu-001"
    assert body["metadata"]["source_service"] == "student-leave-service"


@pytest.fixture
def handlers(monkeypatch):
    monkeypatch.setattr(KafkaConsumer, "_handlers", {})
    return KafkaConsumer._handlers


def test_dispatch_runs_registered_handlers_once(handlers):
    seen = []
    KafkaConsumer.register_handler(KafkaTopics.LEAVE_APPROVED, seen.append)
    KafkaConsumer.register_handler(KafkaTopics.LEAVE_APPROVED, seen.append)

    KafkaConsumer.dispatch(KafkaTopics.LEAVE_APPROVED, {"data": {"user_id": "stu-001"}})
    KafkaConsumer.dispatch(KafkaTopics.LEAVE_REJECTED, {"data": {"user_id": "stu-001"}})

    assert seen == [{"data": {"user_id": "stu-001"}}]


def test_handler_errors_do_not_stop_dispatch(handlers):
    seen = []

    def broken(message):
        raise RuntimeError("boom")

    KafkaConsumer.register_handler(KafkaTopics.LEAVE_DELETED, broken)
    KafkaConsumer.register_handler(KafkaTopics.LEAVE_DELETED, seen.append)

    KafkaConsumer.dispatch(KafkaTopics.LEAVE_DELETED, {"event_id": "e-1"})

    assert seen == [{"event_id": "e-1"}]


def test_decode_event_skips_foreign_messages():
    assert decode_event(b'{"event_type": "leave.approved", "data": {}}')["event_type"] == "leave.approved"
    assert decode_event(b"not json") is None
    assert decode_event(b'{"hello": "world"}') is None
    assert decode_event(b"[1, 2]") is None
