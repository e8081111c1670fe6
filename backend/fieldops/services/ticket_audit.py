from __future__ import annotations
"""Audit & rollback engine for administrative ticket mutations.

Entries are only ever inserted. A rollback re-applies an entry's previous snapshot as a
new mutation and records it as a fresh ROLLBACK entry; ROLLBACK entries themselves are
not eligible, which caps the chain at one level.
"""
from typing import Any, Callable, Dict, List, Optional
from flask import current_app
from sqlalchemy import select
from fieldops import get_db
from fieldops.errors import NotFound, NotRollbackable
from fieldops.models.audit import TicketAuditLog
from fieldops.models.ticket import Ticket
from fieldops.services.roster import require_admin
from fieldops.services.unit_of_work import EventBuffer, run_ticket_unit
from fieldops.utils.serializers import iso, parse_iso
from fieldops.utils.validation import require_reason

# Every mutable ticket column; identity, requester snapshot and bookkeeping columns are excluded.
SNAPSHOT_FIELDS = (
    'technician_id', 'type', 'category', 'description', 'location_address', 'notes',
    'location_lat', 'location_lng', 'status', 'priority', 'paused',
    'accepted_at', 'on_way_at', 'in_progress_at', 'completed_at',
    'rejection_reason', 'technician_remarks', 'parts_replaced',
    'images', 'voice_notes', 'completion_images', 'completion_voice_notes',
    'customer_rating', 'customer_feedback',
)
_DATETIME_FIELDS = {'accepted_at', 'on_way_at', 'in_progress_at', 'completed_at'}
_LIST_FIELDS = {'images', 'voice_notes', 'completion_images', 'completion_voice_notes'}


def snapshot_ticket(ticket: Ticket) -> Dict[str, Any]:
    snap: Dict[str, Any] = {}
    for name in SNAPSHOT_FIELDS:
        value = getattr(ticket, name)
        if name in _DATETIME_FIELDS:
            value = iso(value)
        elif name in _LIST_FIELDS:
            value = list(value or [])
        snap[name] = value
    return snap


def apply_snapshot(ticket: Ticket, snap: Dict[str, Any]) -> None:
    for name in SNAPSHOT_FIELDS:
        if name not in snap:
            continue
        value = snap[name]
        if name in _DATETIME_FIELDS:
            value = parse_iso(value)
        elif name in _LIST_FIELDS:
            value = list(value or [])
        setattr(ticket, name, value)


def audited_mutation(session, ticket: Ticket, actor_id: int, action_type: str, reason: str,
                     mutate: Callable[[Ticket], None], rolled_back_entry_id: Optional[int] = None) -> TicketAuditLog:
    """Capture before, mutate, capture after, append the entry. Caller owns the commit."""
    reason = require_reason(reason)
    before = snapshot_ticket(ticket)
    mutate(ticket)
    after = snapshot_ticket(ticket)
    entry = TicketAuditLog(
        ticket_id=ticket.id,
        actor_id=actor_id,
        action_type=action_type,
        previous_state=before,
        new_state=after,
        reason=reason,
        rolled_back_entry_id=rolled_back_entry_id,
    )
    session.add(entry)
    return entry


def get_audit_history(ticket_id: int) -> List[TicketAuditLog]:
    """Newest first."""
    session = get_db()
    return session.execute(
        select(TicketAuditLog)
        .where(TicketAuditLog.ticket_id == ticket_id)
        .order_by(TicketAuditLog.created_at.desc(), TicketAuditLog.id.desc())
    ).scalars().all()


def get_entry(entry_id: int) -> TicketAuditLog:
    entry = get_db().get(TicketAuditLog, entry_id)
    if entry is None:
        raise NotFound(f'Audit entry {entry_id} not found')
    return entry


def rollback_entry(entry_id: int, admin_id: int, reason: str) -> Ticket:
    reason = require_reason(reason)
    require_admin(admin_id)
    entry = get_entry(entry_id)
    if entry.action_type == TicketAuditLog.ACTION_ROLLBACK:
        raise NotRollbackable('A rollback cannot itself be rolled back')
    target_state = dict(entry.previous_state)
    session = get_db()
    if session.get(Ticket, entry.ticket_id) is None:
        raise NotRollbackable(f'Ticket {entry.ticket_id} no longer exists')

    def work(session, ticket: Ticket, events: EventBuffer):
        new_entry = audited_mutation(
            session, ticket, admin_id, TicketAuditLog.ACTION_ROLLBACK, reason,
            lambda t: apply_snapshot(t, target_state),
            rolled_back_entry_id=entry.id,
        )
        session.flush()
        events.emit('ticket.rolled_back', ticket, admin_id, audit_entry_id=new_entry.id,
                    rolled_back_entry_id=entry.id, reason=reason)
        return ticket

    ticket = run_ticket_unit(entry.ticket_id, work)
    current_app.logger.info('Admin %s rolled back audit entry %s on ticket %s', admin_id, entry.id, entry.ticket_id)
    return ticket
