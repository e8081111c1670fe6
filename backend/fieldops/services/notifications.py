from __future__ import annotations
"""Notification dispatcher.

Turns committed domain events into per-recipient Notification rows and pushes each
one on the recipient's realtime topic through the outbox. Notification ids derive
from the event id, so re-dispatching the same event never duplicates a record.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from flask import current_app
from sqlalchemy import delete, func, select, update
from fieldops import get_db
from fieldops.config.dispatch import OUTBOX_BATCH_SIZE
from fieldops.errors import ValidationError
from fieldops.models.notification import Notification
from fieldops.models.outbox import OutboxMessage
from fieldops.models.user import User
from fieldops.services import realtime
from fieldops.services.audit import add_audit
from fieldops.services.roster import active_user_ids
from fieldops.services.unit_of_work import DomainEvent
from fieldops.utils.serializers import notification_json
from fieldops.utils.validation import require_text, validate_choice

TARGET_ALL = 'ALL'
TARGET_TECHNICIAN = 'technician'
BROADCAST_TARGETS = {
    TARGET_ALL: User.ALL_ROLES,
    TARGET_TECHNICIAN: User.TECHNICIAN_ROLES,
    User.ROLE_REQUESTER: (User.ROLE_REQUESTER,),
    User.ROLE_DEPOT_TECH: (User.ROLE_DEPOT_TECH,),
    User.ROLE_FIELD_TECH: (User.ROLE_FIELD_TECH,),
    User.ROLE_ADMIN: (User.ROLE_ADMIN,),
}

# (user_id, type, title, message)
Recipient = Tuple[int, str, str, str]


def notification_id_for(event_id: str, user_id: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f'fieldops:{event_id}:{user_id}'))


def record_notification(user_id: int, title: str, message: str, type_: str = Notification.TYPE_INFO,
                        reference_id: Optional[int] = None, target_role: Optional[str] = None,
                        notification_id: Optional[str] = None, session=None) -> Notification:
    """Get-or-create by id; a new row also queues a push on the user's topic. Caller commits."""
    session = session or get_db()
    validate_choice(type_, Notification.ALL_TYPES, 'type')
    notification_id = notification_id or str(uuid.uuid4())
    existing = session.get(Notification, notification_id)
    if existing is not None:
        return existing
    n = Notification(
        id=notification_id,
        user_id=user_id,
        target_role=target_role,
        title=title,
        message=message,
        type=type_,
        is_read=False,
        reference_id=reference_id,
    )
    session.add(n)
    session.flush()
    realtime.enqueue(realtime.user_topic(user_id), 'notification.created', notification_json(n), session=session)
    return n


def _admins(session) -> List[int]:
    return active_user_ids((User.ROLE_ADMIN,), session)


def recipients_for(event, session=None) -> List[Recipient]:
    """Map a domain event to its recipients. Unknown events notify nobody."""
    session = session or get_db()
    t = event.ticket
    code = t.get('code') or f"#{event.ticket_id}"
    requester_id = t.get('requester_id')
    technician_id = t.get('technician_id')
    out: List[Recipient] = []

    if event.name == 'ticket.created':
        out.append((requester_id, Notification.TYPE_SUCCESS, 'Ticket submitted',
                    f"Your request {code} has been received."))
        for admin_id in _admins(session):
            out.append((admin_id, Notification.TYPE_INFO, 'New ticket',
                        f"{code}: {t.get('category')} ({t.get('type')})"))
    elif event.name == 'ticket.assigned':
        if technician_id is not None:
            out.append((technician_id, Notification.TYPE_ALERT, 'New job assigned',
                        f"{code}: {t.get('category')} at {t.get('location_address') or 'the reported location'}"))
        out.append((requester_id, Notification.TYPE_INFO, 'Technician assigned',
                    f"A technician has been assigned to {code}."))
    elif event.name == 'ticket.status_changed':
        status = t.get('status')
        if status == 'COMPLETED':
            kind, title = Notification.TYPE_SUCCESS, 'Job completed'
        elif status == 'CANCELLED':
            kind, title = Notification.TYPE_WARNING, 'Ticket cancelled'
        else:
            kind, title = Notification.TYPE_INFO, 'Status update'
        out.append((requester_id, kind, title, f"{code} is now {status}."))
        if event.data.get('rejected'):
            for admin_id in _admins(session):
                out.append((admin_id, Notification.TYPE_ALERT, 'Job rejected',
                            f"{code} was rejected by the technician: {t.get('rejection_reason')}"))
    elif event.name in ('ticket.admin_override', 'ticket.rolled_back'):
        verb = 'updated by an administrator' if event.name == 'ticket.admin_override' else 'restored by an administrator'
        if technician_id is not None:
            out.append((technician_id, Notification.TYPE_WARNING, 'Ticket changed', f"{code} was {verb}."))
        out.append((requester_id, Notification.TYPE_WARNING, 'Ticket changed', f"{code} was {verb}."))
    elif event.name == 'ticket.unassigned':
        former = event.data.get('previous_technician_id')
        if former is not None:
            out.append((former, Notification.TYPE_WARNING, 'Job unassigned', f"{code} was taken off your list."))

    seen: Dict[int, Recipient] = {}
    for r in out:
        if r[0] is not None and r[0] not in seen:
            seen[r[0]] = r
    return list(seen.values())


def dispatch_event(event) -> int:
    session = get_db()
    recipients = recipients_for(event, session)
    for user_id, type_, title, message in recipients:
        record_notification(
            user_id, title, message, type_,
            reference_id=event.ticket_id,
            notification_id=notification_id_for(event.id, user_id),
            session=session,
        )
    session.commit()
    return len(recipients)


def _event_from_row(msg: OutboxMessage) -> DomainEvent:
    payload = dict(msg.payload or {})
    ticket = payload.pop('ticket', None) or {}
    actor_id = payload.pop('actor_id', None)
    return DomainEvent(name=msg.event, ticket_id=ticket.get('id'), actor_id=actor_id,
                       ticket=ticket, data=payload, id=msg.event_id)


def dispatch_pending(limit: int = OUTBOX_BATCH_SIZE) -> int:
    """Fan out committed domain events whose notifications were never recorded.

    Each event is rebuilt from its ticket outbox row. The row is marked in the same
    commit as its notifications, and a failed event holds back later events for the
    same ticket until the next run. Returns how many events were dispatched.
    """
    session = get_db()
    rows = session.execute(
        select(OutboxMessage)
        .where(OutboxMessage.event_id.is_not(None), OutboxMessage.notified_at.is_(None))
        .order_by(OutboxMessage.id.asc())
        .limit(limit)
    ).scalars().all()
    dispatched = 0
    blocked_topics = set()
    for msg in rows:
        if msg.topic in blocked_topics:
            continue
        event = _event_from_row(msg)
        try:
            msg.notified_at = datetime.now(timezone.utc)
            dispatch_event(event)
        except Exception:
            session.rollback()
            blocked_topics.add(msg.topic)
            current_app.logger.exception('Notification fan-out failed for %s on ticket %s', event.name, event.ticket_id)
            continue
        dispatched += 1
    return dispatched


def broadcast(sender_id: int, title: str, message: str, target_role: str,
              type_: str = Notification.TYPE_INFO) -> int:
    """Fan out to the target's active members as of now. Returns the recipient count."""
    title = require_text(title, 'title')
    message = require_text(message, 'message')
    validate_choice(target_role, BROADCAST_TARGETS.keys(), 'target_role')
    validate_choice(type_, Notification.ALL_TYPES, 'type')
    session = get_db()
    batch = str(uuid.uuid4())
    user_ids = active_user_ids(BROADCAST_TARGETS[target_role], session)
    for user_id in user_ids:
        record_notification(user_id, title, message, type_, target_role=target_role,
                            notification_id=notification_id_for(batch, user_id), session=session)
    add_audit('NOTIFICATION.BROADCAST', 'Notification', batch,
              {'target_role': target_role, 'recipients': len(user_ids), 'title': title}, actor_id=sender_id)
    session.commit()
    current_app.logger.info('Broadcast %s from user %s to %s reached %s users', batch, sender_id, target_role, len(user_ids))
    try:
        realtime.flush_outbox()
    except Exception:
        session.rollback()
        current_app.logger.exception('Outbox flush after broadcast %s failed', batch)
    return len(user_ids)


def list_notifications(user_id: int, unread_only: bool = False, limit: int = 25, offset: int = 0) -> List[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = (stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit).offset(offset)
            .execution_options(populate_existing=True))
    return get_db().execute(stmt).scalars().all()


def unread_count(user_id: int) -> int:
    return get_db().execute(
        select(func.count(Notification.id)).where(Notification.user_id == user_id, Notification.is_read.is_(False))
    ).scalar_one()


def _clean_ids(ids: Iterable[str]) -> List[str]:
    if ids is None or isinstance(ids, str):
        raise ValidationError('ids must be a list')
    return [str(i) for i in ids]


def mark_read(user_id: int, ids: Iterable[str]) -> int:
    """Marks the caller's listed notifications read. Already-read or foreign ids are skipped."""
    ids = _clean_ids(ids)
    if not ids:
        return 0
    session = get_db()
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.id.in_(ids), Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount


def mark_all_read(user_id: int) -> int:
    session = get_db()
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount


def delete_notifications(user_id: int, ids: Iterable[str]) -> int:
    ids = _clean_ids(ids)
    if not ids:
        return 0
    session = get_db()
    result = session.execute(
        delete(Notification)
        .where(Notification.user_id == user_id, Notification.id.in_(ids))
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount


def clear_all(user_id: int) -> int:
    session = get_db()
    result = session.execute(
        delete(Notification).where(Notification.user_id == user_id).execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount
