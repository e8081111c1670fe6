from __future__ import annotations
"""Ticket lifecycle: creation, technician transitions and administrative overrides.

Technician moves go through the capability table and the pause/ownership gate;
administrative moves skip adjacency but are always written through the audit engine
with a mandatory reason. Each call is one ticket unit (see unit_of_work).
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from flask import current_app
from fieldops import get_db
from fieldops.errors import NotFound, StateError, ValidationError, WorkflowPausedError
from fieldops.models.audit import TicketAuditLog
from fieldops.models.ticket import RequesterSnapshot, Ticket
from fieldops.models.user import User
from fieldops.services import assignment, settings as settings_service
from fieldops.services.audit import add_audit
from fieldops.services.geofence import assert_within_geofence, parse_position
from fieldops.services.roster import get_user, require_admin, require_requester, require_technician
from fieldops.services.ticket_audit import audited_mutation, snapshot_ticket
from fieldops.services.unit_of_work import EventBuffer, deliver, run_ticket_unit
from fieldops.utils.fsm import CapabilityTable, forward_chain_graph, override_graph
from fieldops.utils.serializers import ticket_json
from fieldops.utils.validation import clean_url_list, require_reason, require_text, validate_choice

ACTOR_TECHNICIAN = 'technician'
ACTOR_ADMIN = 'admin'

TICKET_CAPABILITIES = CapabilityTable({
    ACTOR_TECHNICIAN: forward_chain_graph(Ticket.FORWARD_CHAIN, Ticket.STATUS_CANCELLED),
    ACTOR_ADMIN: override_graph(Ticket.ALL_STATUSES, frozen=(Ticket.STATUS_CANCELLED,)),
})

OVERRIDE_STATUS_CHANGE = 'STATUS_CHANGE'
OVERRIDE_PRIORITY_UPDATE = 'PRIORITY_UPDATE'
OVERRIDE_EDIT = 'EDIT'
OVERRIDE_PAUSE_TOGGLE = 'PAUSE_TOGGLE'
OVERRIDE_DELETE = 'DELETE'
OVERRIDE_ACTIONS = (OVERRIDE_STATUS_CHANGE, OVERRIDE_PRIORITY_UPDATE, OVERRIDE_EDIT, OVERRIDE_PAUSE_TOGGLE, OVERRIDE_DELETE)

EDITABLE_FIELDS = ('description', 'category', 'location_address', 'notes', 'location_lat', 'location_lng')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ticket_code(ticket_id: int) -> str:
    return f"TKT-{ticket_id:06d}"


def _stamp(ticket: Ticket, status: str, when: datetime, overwrite: bool = True):
    column = Ticket.STATUS_TIMESTAMPS.get(status)
    if column and (overwrite or getattr(ticket, column) is None):
        setattr(ticket, column, when)


# ---------------------------------------------------------------------------
# Creation / reads
# ---------------------------------------------------------------------------

def create_ticket(requester_id: int, type_: str, category: str, location: Any,
                  description: Optional[str] = None, images=None, voice_notes=None,
                  location_address: Optional[str] = None, notes: Optional[str] = None,
                  priority: str = Ticket.PRIORITY_NORMAL) -> Ticket:
    """Raise a new ticket in PENDING, then try automatic assignment when it is enabled."""
    session = get_db()
    requester = require_requester(requester_id, session)
    validate_choice(type_, Ticket.ALL_TYPES, 'type')
    validate_choice(priority, Ticket.ALL_PRIORITIES, 'priority')
    category = require_text(category, 'category')
    coords = parse_position(location)
    if coords is None:
        raise ValidationError('location required')
    ticket = Ticket(
        requester_id=requester.id,
        type=type_,
        category=category,
        description=description,
        location_address=location_address,
        notes=notes,
        location_lat=coords[0],
        location_lng=coords[1],
        status=Ticket.STATUS_PENDING,
        priority=priority,
        paused=False,
        requester_snapshot=RequesterSnapshot.from_user(requester).as_dict(),
        images=clean_url_list(images, 'images'),
        voice_notes=clean_url_list(voice_notes, 'voice_notes'),
        completion_images=[],
        completion_voice_notes=[],
    )
    session.add(ticket)
    try:
        session.flush()
        ticket.code = ticket_code(ticket.id)
        events = EventBuffer()
        events.emit('ticket.created', ticket, requester.id)
        session.commit()
    except Exception:
        session.rollback()
        raise
    current_app.logger.info('Ticket %s raised by requester %s (%s/%s)', ticket.code, requester.id, type_, category)
    deliver(events)
    if settings_service.auto_assign_enabled(session):
        assigned = assignment.assign_automatically(ticket.id)
        if assigned is not None:
            return assigned
    return get_ticket(ticket.id)


def get_ticket(ticket_id: int) -> Ticket:
    ticket = get_db().get(Ticket, ticket_id, populate_existing=True)
    if ticket is None:
        raise NotFound(f'Ticket {ticket_id} not found')
    return ticket


def list_tickets_query(status: Optional[str] = None, type_: Optional[str] = None,
                       priority: Optional[str] = None, technician_id: Optional[int] = None,
                       requester_id: Optional[int] = None, unassigned: bool = False):
    q = get_db().query(Ticket).populate_existing()
    if status:
        q = q.filter(Ticket.status == validate_choice(status, Ticket.ALL_STATUSES, 'status'))
    if type_:
        q = q.filter(Ticket.type == validate_choice(type_, Ticket.ALL_TYPES, 'type'))
    if priority:
        q = q.filter(Ticket.priority == validate_choice(priority, Ticket.ALL_PRIORITIES, 'priority'))
    if technician_id is not None:
        q = q.filter(Ticket.technician_id == technician_id)
    if requester_id is not None:
        q = q.filter(Ticket.requester_id == requester_id)
    if unassigned:
        q = q.filter(Ticket.technician_id.is_(None))
    return q


# ---------------------------------------------------------------------------
# Technician transitions
# ---------------------------------------------------------------------------

def _technician_gate(ticket: Ticket, tech: User, target: str):
    """Pause, ownership, then adjacency. Raises before anything is touched."""
    if ticket.paused:
        raise WorkflowPausedError(f'Ticket {ticket.code} is paused by an administrator')
    self_claim = (
        ticket.status == Ticket.STATUS_PENDING
        and target == Ticket.STATUS_ACCEPTED
        and ticket.technician_id in (None, tech.id)
    )
    if self_claim:
        if tech.role != ticket.required_role:
            raise StateError(f'Ticket {ticket.code} needs a {ticket.required_role}')
    elif ticket.technician_id != tech.id:
        raise StateError(f'Ticket {ticket.code} is not assigned to you')
    TICKET_CAPABILITIES.assert_allowed(ACTOR_TECHNICIAN, ticket.status, target)


def _technician_unit(ticket_id: int, actor_id: int, target: str,
                     apply: Callable[[Ticket, User], None], position: Any = None,
                     **event_data) -> Ticket:
    tech = require_technician(actor_id)

    def work(session, ticket: Ticket, events: EventBuffer):
        _technician_gate(ticket, tech, target)
        if target == Ticket.STATUS_COMPLETED:
            assert_within_geofence(tech, parse_position(position), ticket.location)
        previous = ticket.status
        if target == Ticket.STATUS_ACCEPTED:
            ticket.technician_id = tech.id
        ticket.status = target
        _stamp(ticket, target, utcnow())
        apply(ticket, tech)
        events.emit('ticket.status_changed', ticket, tech.id, previous_status=previous, **event_data)
        return ticket

    ticket = run_ticket_unit(ticket_id, work)
    current_app.logger.info('Technician %s moved ticket %s to %s', tech.id, ticket.code, target)
    return ticket


def advance_status(ticket_id: int, actor_id: int, target_status: str, position: Any = None,
                   reason: Optional[str] = None) -> Ticket:
    """Technician-driven move along the forward chain.

    COMPLETED runs the geofence gate on the position sent with the call;
    CANCELLED is a rejection and needs a reason.
    """
    validate_choice(target_status, Ticket.ALL_STATUSES, 'status')
    if target_status == Ticket.STATUS_CANCELLED:
        return reject_ticket(ticket_id, actor_id, reason)
    actor = get_user(actor_id)
    if not actor.is_technician:
        raise StateError('Only technicians advance tickets; administrators use an override')
    return _technician_unit(ticket_id, actor_id, target_status, lambda t, u: None, position=position)


def complete_ticket(ticket_id: int, actor_id: int, position: Any = None, remarks: Optional[str] = None,
                    parts_replaced: Optional[str] = None, completion_images=None,
                    completion_voice_notes=None) -> Ticket:
    images = clean_url_list(completion_images, 'completion_images')
    voice = clean_url_list(completion_voice_notes, 'completion_voice_notes')

    def apply(ticket: Ticket, tech: User):
        ticket.technician_remarks = remarks
        ticket.parts_replaced = parts_replaced
        ticket.completion_images = images
        ticket.completion_voice_notes = voice

    return _technician_unit(ticket_id, actor_id, Ticket.STATUS_COMPLETED, apply, position=position)


def reject_ticket(ticket_id: int, actor_id: int, reason: Optional[str], evidence: Optional[str] = None) -> Ticket:
    """Assigned technician cancels the job. The reason is mandatory; evidence is one URL."""
    reason = require_reason(reason)
    evidence_urls = clean_url_list([evidence] if evidence else None, 'evidence')

    def apply(ticket: Ticket, tech: User):
        ticket.rejection_reason = reason
        ticket.technician_remarks = f"Rejected: {reason}" + (' [evidence attached]' if evidence_urls else '')
        if evidence_urls:
            ticket.images = list(ticket.images or []) + evidence_urls

    return _technician_unit(ticket_id, actor_id, Ticket.STATUS_CANCELLED, apply, rejected=True)


# ---------------------------------------------------------------------------
# Requester feedback
# ---------------------------------------------------------------------------

def rate_ticket(ticket_id: int, requester_id: int, rating: Any, feedback: Optional[str] = None) -> Ticket:
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError('rating must be an integer 1..5')
    if not 1 <= rating <= 5:
        raise ValidationError('rating must be an integer 1..5')

    def work(session, ticket: Ticket, events: EventBuffer):
        if ticket.requester_id != requester_id:
            raise StateError('Only the requester can rate this ticket')
        if ticket.status != Ticket.STATUS_COMPLETED:
            raise StateError('Only completed tickets can be rated')
        if ticket.customer_rating is not None:
            raise StateError('Ticket already rated')
        ticket.customer_rating = rating
        ticket.customer_feedback = feedback
        events.emit('ticket.rated', ticket, requester_id, rating=rating)
        return ticket

    return run_ticket_unit(ticket_id, work)


# ---------------------------------------------------------------------------
# Administrative overrides
# ---------------------------------------------------------------------------

def _status_change(payload: Dict[str, Any]):
    target = validate_choice(payload.get('status'), Ticket.ALL_STATUSES, 'status')

    def mutate(ticket: Ticket):
        ticket.status = target
        _stamp(ticket, target, utcnow(), overwrite=False)
        if target == Ticket.STATUS_PENDING:
            ticket.technician_id = None

    return TicketAuditLog.ACTION_STATUS_CHANGE, mutate, target


def _priority_update(payload: Dict[str, Any]):
    priority = validate_choice(payload.get('priority'), Ticket.ALL_PRIORITIES, 'priority')

    def mutate(ticket: Ticket):
        ticket.priority = priority

    return TicketAuditLog.ACTION_PRIORITY_UPDATE, mutate, None


def _edit(payload: Dict[str, Any]):
    unknown = set(payload) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"not editable: {', '.join(sorted(unknown))}")
    if not payload:
        raise ValidationError('nothing to edit')
    changes = dict(payload)
    if 'category' in changes:
        changes['category'] = require_text(changes['category'], 'category')
    if 'location_lat' in changes or 'location_lng' in changes:
        if changes.get('location_lat') is None or changes.get('location_lng') is None:
            raise ValidationError('location_lat and location_lng must be edited together')
        lat, lng = parse_position({'lat': changes['location_lat'], 'lng': changes['location_lng']})
        changes['location_lat'], changes['location_lng'] = lat, lng

    def mutate(ticket: Ticket):
        for key, value in changes.items():
            setattr(ticket, key, value)

    return TicketAuditLog.ACTION_EDIT, mutate, None


_OVERRIDE_BUILDERS = {
    OVERRIDE_STATUS_CHANGE: _status_change,
    OVERRIDE_PRIORITY_UPDATE: _priority_update,
    OVERRIDE_EDIT: _edit,
}


def admin_override(ticket_id: int, admin_id: int, action: str, payload: Optional[Dict[str, Any]], reason: Optional[str]):
    """Audited administrative mutation. Returns the ticket, or the final state dict for DELETE."""
    reason = require_reason(reason)
    validate_choice(action, OVERRIDE_ACTIONS, 'action')
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError('payload must be an object')
    require_admin(admin_id)
    if action == OVERRIDE_DELETE:
        return delete_ticket(ticket_id, admin_id, payload.get('confirm'), reason)
    target = None
    if action != OVERRIDE_PAUSE_TOGGLE:
        action_type, mutate, target = _OVERRIDE_BUILDERS[action](payload)

    def work(session, ticket: Ticket, events: EventBuffer):
        if ticket.status == Ticket.STATUS_CANCELLED:
            raise StateError(f'Ticket {ticket.code} is cancelled; only rollback can change it')
        if action == OVERRIDE_PAUSE_TOGGLE:
            kind = TicketAuditLog.ACTION_RESUME if ticket.paused else TicketAuditLog.ACTION_PAUSE
            change = lambda t: setattr(t, 'paused', not t.paused)
        else:
            kind, change = action_type, mutate
            if target is not None:
                TICKET_CAPABILITIES.assert_allowed(ACTOR_ADMIN, ticket.status, target)
        entry = audited_mutation(session, ticket, admin_id, kind, reason, change)
        session.flush()
        events.emit('ticket.admin_override', ticket, admin_id, action=kind, audit_entry_id=entry.id, reason=reason)
        return ticket

    ticket = run_ticket_unit(ticket_id, work)
    current_app.logger.info('Admin %s override %s on ticket %s: %s', admin_id, action, ticket.code, reason)
    return ticket


def delete_ticket(ticket_id: int, admin_id: int, confirm: Optional[str], reason: Optional[str]) -> Dict[str, Any]:
    """Irreversible. Needs the ticket code typed back plus a reason; logged outside the ticket audit."""
    reason = require_reason(reason)

    def work(session, ticket: Ticket, events: EventBuffer):
        if not confirm or str(confirm).strip() != ticket.code:
            raise ValidationError(f'confirm must equal the ticket code {ticket.code}')
        final = ticket_json(ticket)
        events.emit('ticket.deleted', ticket, admin_id, reason=reason)
        add_audit('TICKET.DELETE', 'Ticket', ticket.id,
                  {'code': ticket.code, 'reason': reason, 'final_state': snapshot_ticket(ticket)}, actor_id=admin_id)
        session.delete(ticket)
        return final

    final = run_ticket_unit(ticket_id, work)
    current_app.logger.warning('Admin %s deleted ticket %s: %s', admin_id, final['code'], reason)
    return final
