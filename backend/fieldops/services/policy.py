from __future__ import annotations
from typing import Set
from flask import abort
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import and_, or_
from fieldops.models.ticket import Ticket
from fieldops.models.user import User
from fieldops.services.roster import get_user


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> int:
    ident = get_jwt_identity()
    if ident is None:
        abort(401, description='Missing identity')
    return int(ident)


def current_user() -> User:
    return get_user(current_user_id())


def scope_ticket_query(query, user: User):
    """Requesters see their own tickets; technicians their own plus the open pool for their role."""
    if user.is_admin:
        return query
    if user.is_technician:
        role_types = [t for t, role in Ticket.REQUIRED_ROLE.items() if role == user.role]
        return query.filter(or_(
            Ticket.technician_id == user.id,
            and_(Ticket.technician_id.is_(None), Ticket.status == Ticket.STATUS_PENDING, Ticket.type.in_(role_types)),
        ))
    return query.filter(Ticket.requester_id == user.id)


def assert_can_view_ticket(ticket: Ticket, user: User):
    if user.is_admin:
        return
    if user.is_technician:
        if ticket.technician_id == user.id:
            return
        if ticket.technician_id is None and ticket.status == Ticket.STATUS_PENDING and ticket.required_role == user.role:
            return
    elif ticket.requester_id == user.id:
        return
    abort(403, description='Ticket access denied')
