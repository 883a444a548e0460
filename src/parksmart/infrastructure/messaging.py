# File: src/parksmart/infrastructure/messaging.py
"""
Messaging Infrastructure for the ParkSmart booking core

This module implements the messaging side of the event-driven design:
1. Event Bus - intra-process publish/subscribe of domain events
2. Message Queue - inter-process delivery of event messages

Events are only handed to the bus after the unit of work that raised them
has committed. Handler and broker failures are logged and never undo a
committed booking operation.

Supported Brokers:
- Redis Pub/Sub
- In-memory (for testing and single-process runs)
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, List, Any, Tuple
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from uuid import uuid4
import json
import logging
import threading

import redis

from ..domain.models import DomainEvent


# ============================================================================
# MESSAGE TYPES AND ENUMS
# ============================================================================

class EventType(str, Enum):
    """Domain event types"""
    # Facility events
    FACILITY_REGISTERED = "facility.registered"
    FACILITY_REMOVED = "facility.removed"
    PRICING_MODE_CHANGED = "facility.pricing_changed"

    # Booking events
    BOOKING_CREATED = "booking.created"
    BOOKING_COMPLETED = "booking.completed"
    BOOKING_CANCELLED = "booking.cancelled"


# ============================================================================
# MESSAGE BASE CLASSES
# ============================================================================

@dataclass
class Message:
    """Envelope carried by the message queue"""
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)
    source: Optional[str] = "parksmart"

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary"""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        """Convert message to JSON string"""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Create message from dictionary"""
        data = dict(data)
        data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'Message':
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_event(cls, event: DomainEvent) -> 'Message':
        """Wrap a domain event, keeping its id and timestamp"""
        return cls(
            event_type=event.event_type,
            data=event.payload(),
            message_id=event.event_id,
            timestamp=event.timestamp
        )


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        """Handle a domain event"""
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        """Check if this handler can handle the event"""
        return True


class QueueForwardingHandler(EventHandler):
    """Forwards every event it receives to a message queue topic"""

    def __init__(self, queue: 'MessageQueue', topic: str):
        self.queue = queue
        self.topic = topic

    def handle(self, event: DomainEvent) -> None:
        self.queue.publish(self.topic, Message.from_event(event))


class RecordingHandler(EventHandler):
    """Keeps handled events in memory (audit trail, tests)"""

    def __init__(self):
        self.events: List[DomainEvent] = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)


# ============================================================================
# EVENT BUS
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Handlers are keyed by event type. A failing handler is logged and the
    remaining handlers still run.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to events of a specific type"""
        key = EventType(event_type).value
        with self._lock:
            handlers = self._subscribers.setdefault(key, [])
            if handler not in handlers:
                handlers.append(handler)
                self._logger.debug(f"Subscribed {handler.__class__.__name__} to {key}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe a handler to every event type"""
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe handler from events"""
        key = EventType(event_type).value
        with self._lock:
            handlers = self._subscribers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
                self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {key}")

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to all subscribers"""
        self._logger.info(f"Publishing event: {event.event_type} (ID: {event.event_id})")

        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, []))

        for handler in handlers:
            if handler.can_handle(event):
                try:
                    handler.handle(event)
                    self._logger.debug(f"Event handled by {handler.__class__.__name__}")
                except Exception as e:
                    self._logger.error(
                        f"Error handling event {event.event_type} with {handler.__class__.__name__}: {e}"
                    )

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)

    def clear_subscribers(self) -> None:
        """Clear all subscribers (for testing)"""
        with self._lock:
            self._subscribers.clear()


# ============================================================================
# MESSAGE QUEUE INTERFACES
# ============================================================================

class MessageQueue(ABC):
    """
    Outbound queue for committed event messages

    The booking core only produces messages; consumers live in other
    processes and subscribe to the broker directly.
    """

    @abstractmethod
    def publish(self, topic: str, message: Message) -> bool:
        """Publish a message to a topic; False if it was not delivered"""
        pass

    def close(self) -> None:
        pass


class InMemoryMessageQueue(MessageQueue):
    """In-process queue that keeps every published message (testing, demo)"""

    def __init__(self):
        self.published: List[Tuple[str, Message]] = []

    def publish(self, topic: str, message: Message) -> bool:
        self.published.append((topic, message))
        return True

    def messages(self, topic: str) -> List[Message]:
        return [message for published_topic, message in self.published if published_topic == topic]


# ============================================================================
# REDIS MESSAGE QUEUE
# ============================================================================

class RedisMessageQueue(MessageQueue):
    """Publishes event messages to a Redis Pub/Sub channel"""

    def __init__(self, redis_url: str = "redis://localhost:6379", client: Any = None, **kwargs):
        self.redis_url = redis_url
        self._logger = logging.getLogger(self.__class__.__name__)
        self.redis_client = client if client is not None else redis.Redis.from_url(redis_url, **kwargs)

    def publish(self, topic: str, message: Message) -> bool:
        """Publish a message; True when at least one subscriber received it"""
        try:
            receivers = self.redis_client.publish(topic, message.to_json())
        except redis.RedisError as e:
            self._logger.error(f"Error publishing {message.event_type} to {topic}: {e}")
            return False

        self._logger.debug(f"Published {message.message_id} to {topic} ({receivers} receivers)")
        return receivers > 0

    def close(self):
        self.redis_client.close()
        self._logger.info("Redis message queue closed")
