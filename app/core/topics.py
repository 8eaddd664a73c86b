"""
Kafka Topic Definitions for the Student Leave Service.

Topic naming follows the pattern: <domain>-<event-type>
"""

from app.core.events import EventType


class KafkaTopics:
    """
    Central registry of all Kafka topics used by the Student Leave Service.
    """

    # Leave Request Events - Student actions
    LEAVE_REQUESTED = "leave-requested"
    LEAVE_DELETED = "leave-deleted"

    # Leave Decision Events - Admin actions
    LEAVE_APPROVED = "leave-approved"
    LEAVE_REJECTED = "leave-rejected"

    # Quota Events - For admin notifications
    LEAVE_LIMIT_EXCEEDED = "leave-limit-exceeded"

    @classmethod
    def all_topics(cls) -> list[str]:
        """Return list of all topic names."""
        return [
            value
            for name, value in vars(cls).items()
            if isinstance(value, str) and not name.startswith("_")
        ]

    @classmethod
    def record_mutation_topics(cls) -> list[str]:
        """Topics whose events change the set of records a quota is computed from."""
        return [
            cls.LEAVE_REQUESTED,
            cls.LEAVE_DELETED,
            cls.LEAVE_APPROVED,
            cls.LEAVE_REJECTED,
        ]

    @classmethod
    def for_event(cls, event_type: EventType) -> str:
        """Topic an event type is published to."""
        return {
            EventType.LEAVE_REQUESTED: cls.LEAVE_REQUESTED,
            EventType.LEAVE_DELETED: cls.LEAVE_DELETED,
            EventType.LEAVE_APPROVED: cls.LEAVE_APPROVED,
            EventType.LEAVE_REJECTED: cls.LEAVE_REJECTED,
            EventType.LEAVE_LIMIT_EXCEEDED: cls.LEAVE_LIMIT_EXCEEDED,
        }[event_type]
