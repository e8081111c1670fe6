from __future__ import annotations
"""Assignment engine: round-robin auto-assignment, manual override and bulk unassign.

Round-robin order is `last_assigned_at ASC NULLS FIRST, id ASC` over online, available,
active technicians whose role matches the ticket's dispatch type. Picking and stamping a
technician is one compare-and-set on `assign_seq`; claiming the ticket is a conditional
update on `technician_id IS NULL`. Losing either race rolls both back and re-reads.
"""
from datetime import datetime, timezone
from typing import Optional
from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm.exc import StaleDataError
from fieldops import get_db
from fieldops.errors import StateError, ValidationError
from fieldops.models.audit import TicketAuditLog
from fieldops.models.ticket import Ticket
from fieldops.models.user import User
from fieldops.services import settings as settings_service
from fieldops.services.audit import add_audit
from fieldops.services.roster import require_admin, require_technician
from fieldops.services.ticket_audit import audited_mutation
from fieldops.services.unit_of_work import EventBuffer, deliver, load_ticket, run_ticket_unit
from fieldops.services.geofence import parse_position

_PROGRESS_TIMESTAMPS = ('accepted_at', 'on_way_at', 'in_progress_at')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def eligible_technicians_query(role: str):
    return (
        select(User)
        .where(
            User.role == role,
            User.is_active.is_(True),
            User.is_online.is_(True),
            User.is_available.is_(True),
        )
        .order_by(User.last_assigned_at.asc().nulls_first(), User.id.asc())
        .execution_options(populate_existing=True)
    )


def next_technician(role: str, session=None) -> Optional[User]:
    session = session or get_db()
    return session.execute(eligible_technicians_query(role).limit(1)).scalars().first()


def stamp_technician(session, tech: User, when: datetime) -> bool:
    """Compare-and-set the round-robin stamp. False means someone else stamped first."""
    result = session.execute(
        update(User)
        .where(User.id == tech.id, User.assign_seq == tech.assign_seq)
        .values(last_assigned_at=when, assign_seq=tech.assign_seq + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _reset_progress(ticket: Ticket):
    ticket.status = Ticket.STATUS_PENDING
    for column in _PROGRESS_TIMESTAMPS:
        setattr(ticket, column, None)


def assign_automatically(ticket_id: int) -> Optional[Ticket]:
    """Returns the ticket when it ends up assigned, None when it stays in the unassigned pool."""
    session = get_db()
    if not settings_service.auto_assign_enabled(session):
        return None
    limit = int(current_app.config.get('ASSIGNMENT_RETRY_LIMIT', 5))
    for attempt in range(1, limit + 1):
        ticket = load_ticket(session, ticket_id, for_update=True)
        if ticket.technician_id is not None:
            session.rollback()
            return ticket
        if ticket.status != Ticket.STATUS_PENDING or ticket.paused:
            session.rollback()
            return None
        tech = next_technician(ticket.required_role, session)
        if tech is None:
            session.rollback()
            current_app.logger.warning('No eligible %s for ticket %s; left unassigned', ticket.required_role, ticket.id)
            return None
        if not stamp_technician(session, tech, utcnow()):
            session.rollback()
            current_app.logger.warning('Technician %s stamped concurrently (attempt %s/%s)', tech.id, attempt, limit)
            continue
        claimed = session.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket.id,
                Ticket.technician_id.is_(None),
                Ticket.status == Ticket.STATUS_PENDING,
                Ticket.version == ticket.version,
            )
            .values(technician_id=tech.id, version=ticket.version + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            session.rollback()
            continue
        session.refresh(ticket)
        events = EventBuffer()
        events.emit('ticket.assigned', ticket, None, technician_id=tech.id, mode='auto')
        session.commit()
        current_app.logger.info('Ticket %s auto-assigned to technician %s', ticket.id, tech.id)
        deliver(events)
        return ticket
    current_app.logger.warning('Auto-assignment for ticket %s gave up after %s attempts', ticket_id, limit)
    return None


def auto_assign_sweep(actor_id: Optional[int] = None) -> int:
    """Try every open unassigned ticket, oldest first. Returns how many got a technician."""
    session = get_db()
    if not settings_service.auto_assign_enabled(session):
        return 0
    ids = list(session.execute(
        select(Ticket.id)
        .where(Ticket.status == Ticket.STATUS_PENDING, Ticket.technician_id.is_(None), Ticket.paused.is_(False))
        .order_by(Ticket.created_at.asc(), Ticket.id.asc())
    ).scalars())
    session.rollback()
    assigned = 0
    for ticket_id in ids:
        if assign_automatically(ticket_id) is not None:
            assigned += 1
    if actor_id is not None:
        add_audit('ASSIGNMENT.SWEEP', 'Ticket', None, {'examined': len(ids), 'assigned': assigned}, actor_id=actor_id)
        session.commit()
    if ids:
        current_app.logger.info('Auto-assign sweep: %s of %s open tickets assigned', assigned, len(ids))
    return assigned


def assign_manually(ticket_id: int, technician_id: int, admin_id: int, reason: Optional[str] = None) -> Ticket:
    """Admin picks any active technician, ignoring presence, ordering and the auto-assign setting."""
    require_admin(admin_id)
    tech = require_technician(technician_id)

    def work(session, ticket: Ticket, events: EventBuffer):
        if ticket.is_terminal:
            raise StateError(f'Ticket {ticket.id} is {ticket.status}; cannot assign')
        fresh = session.get(User, tech.id, populate_existing=True)
        if not stamp_technician(session, fresh, utcnow()):
            raise StaleDataError('technician stamped concurrently')

        def mutate(t: Ticket):
            if t.technician_id != tech.id and t.status != Ticket.STATUS_PENDING:
                _reset_progress(t)
            t.technician_id = tech.id

        entry = audited_mutation(session, ticket, admin_id, TicketAuditLog.ACTION_ASSIGN,
                                 reason or f'Manual assignment to technician #{tech.id}', mutate)
        session.flush()
        events.emit('ticket.assigned', ticket, admin_id, technician_id=tech.id, mode='manual', audit_entry_id=entry.id)
        return ticket

    ticket = run_ticket_unit(ticket_id, work)
    current_app.logger.info('Admin %s assigned ticket %s to technician %s', admin_id, ticket_id, tech.id)
    return ticket


def unassign_all_for_technician(technician_id: int, admin_id: int, reason: Optional[str] = None) -> int:
    require_admin(admin_id)
    tech = require_technician(technician_id)
    session = get_db()
    ids = list(session.execute(
        select(Ticket.id)
        .where(Ticket.technician_id == tech.id, Ticket.status.in_(Ticket.ACTIVE_STATUSES))
        .order_by(Ticket.id.asc())
    ).scalars())
    session.rollback()
    why = reason or f'Bulk unassign from technician #{tech.id}'

    def work(session, ticket: Ticket, events: EventBuffer):
        # re-check under the row lock: the ticket may have moved on since the id scan
        if ticket.technician_id != tech.id or ticket.status not in Ticket.ACTIVE_STATUSES:
            return False

        def mutate(t: Ticket):
            _reset_progress(t)
            t.technician_id = None

        entry = audited_mutation(session, ticket, admin_id, TicketAuditLog.ACTION_UNASSIGN, why, mutate)
        session.flush()
        events.emit('ticket.unassigned', ticket, admin_id, previous_technician_id=tech.id, audit_entry_id=entry.id)
        return True

    count = sum(1 for ticket_id in ids if run_ticket_unit(ticket_id, work))
    add_audit('TECHNICIAN.UNASSIGN_ALL', 'User', tech.id, {'count': count, 'reason': why}, actor_id=admin_id)
    session.commit()
    current_app.logger.info('Admin %s unassigned %s tickets from technician %s', admin_id, count, tech.id)
    return count


def set_presence(technician_id: int, online: Optional[bool] = None, available: Optional[bool] = None) -> User:
    """Update presence; a technician becoming eligible triggers a sweep when auto-assign is on."""
    if online is None and available is None:
        raise ValidationError('online or available required')
    session = get_db()
    tech = require_technician(technician_id, session)
    was_eligible = tech.is_online and tech.is_available
    if online is not None:
        tech.is_online = bool(online)
    if available is not None:
        tech.is_available = bool(available)
    session.commit()
    if tech.is_online and tech.is_available and not was_eligible:
        auto_assign_sweep()
    return session.get(User, technician_id, populate_existing=True)


def update_position(technician_id: int, position) -> User:
    coords = parse_position(position)
    if coords is None:
        raise ValidationError('lat and lng required')
    session = get_db()
    tech = require_technician(technician_id, session)
    tech.current_lat, tech.current_lng = coords
    session.commit()
    return tech
