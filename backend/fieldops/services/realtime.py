from __future__ import annotations
"""Realtime fan-out through a transactional outbox.

Mutations call `enqueue()` inside their own transaction, so an event exists iff its
mutation committed. `flush_outbox()` runs afterwards and pushes pending rows to the
configured channel; a failing publish only bumps the row's attempt counter.
Delivery is at-least-once and ordered per topic by outbox id. A row parked after
OUTBOX_MAX_ATTEMPTS keeps its topic blocked until an operator resets or removes it.
"""
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from flask import current_app
from sqlalchemy import select
from fieldops import get_db
from fieldops.config.dispatch import OUTBOX_BATCH_SIZE
from fieldops.models.outbox import OutboxMessage


def ticket_topic(ticket_id: int) -> str:
    return f"ticket:{ticket_id}"


def user_topic(user_id: int) -> str:
    return f"user:{user_id}"


class RealtimeChannel:
    """Publish/subscribe transport keyed by topic. Implementations must be thread-safe."""

    def publish(self, topic: str, message: Dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryChannel(RealtimeChannel):
    """Process-local channel used for development and tests.

    Keeps a per-topic history so consumers can replay what they missed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._history: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = defaultdict(list)

    def publish(self, topic, message):
        with self._lock:
            self._history[topic].append(message)
            listeners = list(self._subscribers.get(topic, ()))
        for listener in listeners:
            listener(message)

    def subscribe(self, topic: str, listener: Callable[[Dict[str, Any]], None]):
        with self._lock:
            self._subscribers[topic].append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._subscribers.get(topic, []):
                    self._subscribers[topic].remove(listener)
        return unsubscribe

    def messages(self, topic: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._history.get(topic, ()))


def get_channel() -> RealtimeChannel:
    return current_app.extensions['realtime']


def enqueue(topic: str, event: str, payload: Dict[str, Any], session=None,
            event_id: Optional[str] = None) -> OutboxMessage:
    session = session or get_db()
    msg = OutboxMessage(topic=topic, event=event, payload=dict(payload), attempts=0, event_id=event_id)
    session.add(msg)
    return msg


def _envelope(msg: OutboxMessage) -> Dict[str, Any]:
    return {
        'id': msg.id,
        'topic': msg.topic,
        'event': msg.event,
        'payload': msg.payload,
        'created_at': msg.created_at.isoformat() if msg.created_at else None,
    }


def flush_outbox(limit: int = OUTBOX_BATCH_SIZE, channel: Optional[RealtimeChannel] = None) -> int:
    """Publish pending outbox rows. Returns how many were published successfully."""
    session = get_db()
    channel = channel or get_channel()
    max_attempts = int(current_app.config.get('OUTBOX_MAX_ATTEMPTS', 5))
    rows = session.execute(
        select(OutboxMessage)
        .where(OutboxMessage.published_at.is_(None), OutboxMessage.attempts < max_attempts)
        .order_by(OutboxMessage.id.asc())
        .limit(limit)
    ).scalars().all()
    # a parked row still holds its place: nothing later on that topic goes out ahead of it
    blocked_topics = set(session.execute(
        select(OutboxMessage.topic)
        .where(OutboxMessage.published_at.is_(None), OutboxMessage.attempts >= max_attempts)
        .distinct()
    ).scalars())
    published = 0
    for msg in rows:
        # keep per-topic order: once a topic fails, later rows for it wait for the next flush
        if msg.topic in blocked_topics:
            continue
        try:
            channel.publish(msg.topic, _envelope(msg))
        except Exception as exc:
            msg.attempts += 1
            msg.last_error = str(exc)[:500]
            blocked_topics.add(msg.topic)
            current_app.logger.exception('Realtime publish failed for outbox %s (%s)', msg.id, msg.topic)
            continue
        msg.attempts += 1
        msg.published_at = datetime.now(timezone.utc)
        msg.last_error = None
        published += 1
    session.commit()
    return published


def pending_count() -> int:
    session = get_db()
    return len(session.execute(select(OutboxMessage.id).where(OutboxMessage.published_at.is_(None))).all())
