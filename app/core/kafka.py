"""
Kafka producer and consumer for leave events (confluent-kafka).

Events are keyed by the student they concern, so every event for one
student lands on the same partition and consumers see that student's
changes in order. The consumer runs in a background thread and hands each
decoded envelope to the handlers registered for its topic; the quota cache
invalidation hook is registered this way at startup.
"""

import json
from datetime import date, datetime
from threading import Lock, Thread
from typing import Any, Callable, Optional

from confluent_kafka import Consumer, KafkaException, Producer

from app.core.config import settings
from app.core.events import EventEnvelope
from app.core.logging import get_logger
from app.core.topics import KafkaTopics

logger = get_logger(__name__)

CLIENT_ID = "student-leave-service"

EventHandler = Callable[[dict], None]


def json_serializer(obj: Any) -> Any:
    """Serialize dates inside event payloads as ISO strings."""
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


def encode_event(event: EventEnvelope) -> tuple[bytes, bytes]:
    """Message key and value for an event; the key is the affected student."""
    partition_key = str(event.data.get("user_id") or event.event_id)
    value = json.dumps(event.model_dump(), default=json_serializer)
    return partition_key.encode("utf-8"), value.encode("utf-8")


def decode_event(raw: bytes) -> Optional[dict]:
    """Decode a message value; anything that is not an event envelope is skipped."""
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Failed to decode message: {e}")
        return None
    if not isinstance(data, dict) or "event_type" not in data:
        logger.warning("Skipping message without an event envelope")
        return None
    return data


def delivery_callback(err, msg):
    if err is not None:
        logger.error(f"Leave event delivery failed: {err}")
    else:
        logger.debug(f"Leave event delivered to {msg.topic()} [{msg.partition()}]")


class KafkaProducer:
    """Process-wide producer for leave events."""

    _instance: Optional[Producer] = None
    _lock: Lock = Lock()
    _started: bool = False

    @classmethod
    def get_producer(cls) -> Optional[Producer]:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = Producer(
                        {
                            "bootstrap.servers": settings.KAFKA_BOOTSTRAP_SERVERS,
                            "client.id": CLIENT_ID,
                            "acks": "all",
                            "enable.idempotence": True,
                            "retries": 3,
                            "retry.backoff.ms": 1000,
                        }
                    )
        return cls._instance

    @classmethod
    async def start(cls):
        if not settings.KAFKA_ENABLED:
            logger.info("Kafka is disabled, leave events will not be published")
            return
        if not cls._started and cls.get_producer():
            cls._started = True
            logger.info(f"Kafka producer ready on {settings.KAFKA_BOOTSTRAP_SERVERS}")

    @classmethod
    async def stop(cls):
        """Flush outstanding leave events and drop the producer."""
        with cls._lock:
            if cls._started and cls._instance:
                cls._instance.flush(timeout=10)
                logger.info("Kafka producer flushed and stopped")
            cls._instance = None
            cls._started = False


class KafkaConsumer:
    """
    Background consumer for the leave topics.

    Handlers are plain callables taking the decoded envelope; one failing
    handler does not keep the others from running.
    """

    _instance: Optional[Consumer] = None
    _thread: Optional[Thread] = None
    _running: bool = False
    _lock: Lock = Lock()
    _handlers: dict[str, list[EventHandler]] = {}

    @classmethod
    def get_consumer(cls) -> Optional[Consumer]:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = Consumer(
                        {
                            "bootstrap.servers": settings.KAFKA_BOOTSTRAP_SERVERS,
                            "group.id": f"{CLIENT_ID}-group",
                            "client.id": f"{CLIENT_ID}-consumer",
                            # Only changes made after startup matter for cache invalidation
                            "auto.offset.reset": "latest",
                            "enable.auto.commit": True,
                        }
                    )
        return cls._instance

    @classmethod
    def register_handler(cls, topic: str, handler: EventHandler):
        handlers = cls._handlers.setdefault(topic, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.info(f"Registered {getattr(handler, '__name__', handler)} for topic {topic}")

    @classmethod
    def dispatch(cls, topic: str, data: dict):
        for handler in cls._handlers.get(topic, []):
            try:
                handler(data)
            except Exception as e:
                logger.error(f"Handler error for topic {topic} (event {data.get('event_id')}): {e}")

    @classmethod
    def _consume_loop(cls):
        consumer = cls.get_consumer()
        topics = list(cls._handlers)
        consumer.subscribe(topics)
        logger.info(f"Listening for leave events on: {topics}")

        while cls._running:
            try:
                msg = consumer.poll(timeout=1.0)
                if msg is None:
                    continue
                if msg.error():
                    logger.error(f"Consumer error: {msg.error()}")
                    continue
                data = decode_event(msg.value() or b"")
                if data is not None:
                    cls.dispatch(msg.topic(), data)
            except KafkaException as e:
                logger.error(f"Consumer loop error: {e}")

        consumer.close()
        logger.info("Kafka consumer closed")

    @classmethod
    async def start(cls):
        if not settings.KAFKA_ENABLED:
            logger.info("Kafka is disabled, cross-instance cache invalidation is off")
            return
        if cls._running or not cls._handlers:
            return

        cls._running = True
        cls._thread = Thread(target=cls._consume_loop, name="leave-events", daemon=True)
        cls._thread.start()
        logger.info("Kafka consumer started")

    @classmethod
    async def stop(cls):
        if not cls._running:
            return
        cls._running = False
        if cls._thread:
            cls._thread.join(timeout=5.0)
            cls._thread = None
        with cls._lock:
            cls._instance = None
        logger.info("Kafka consumer stopped")


async def publish_event(event: EventEnvelope) -> bool:
    """
    Queue a leave event on the topic registered for its type.

    Returns:
        True if the event was handed to the producer, False when Kafka is
        disabled or the producer refused it
    """
    if not settings.KAFKA_ENABLED:
        logger.debug(f"Kafka disabled, skipping event: {event.event_type.value}")
        return False

    topic = KafkaTopics.for_event(event.event_type)
    producer = KafkaProducer.get_producer()
    if not producer:
        logger.error("Kafka producer not initialized")
        return False

    key, value = encode_event(event)
    try:
        producer.produce(topic=topic, key=key, value=value, callback=delivery_callback)
        producer.poll(0)
    except (KafkaException, BufferError) as e:
        logger.error(f"Could not publish {event.event_type.value} to {topic}: {e}")
        return False

    logger.info(f"Published {event.event_type.value} to {topic} (event_id: {event.event_id})")
    return True
