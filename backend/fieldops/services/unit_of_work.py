from __future__ import annotations
"""Per-ticket atomic units and post-commit delivery.

A unit loads the ticket (row-locked where the backend supports it), runs the caller's
mutation, and commits snapshot + mutation + audit + outbox rows together. The ticket's
`version` column turns every UPDATE into a compare-and-set; a unit that loses the race
is rolled back, re-read and re-validated, so the later writer wins and each attempt that
committed left its own audit entry.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError
from fieldops import get_db
from fieldops.errors import ConcurrentUpdateError, NotFound
from fieldops.models.ticket import Ticket
from fieldops.services import realtime
from fieldops.utils.serializers import ticket_json


@dataclass
class DomainEvent:
    name: str
    ticket_id: Optional[int]
    actor_id: Optional[int]
    ticket: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


class EventBuffer(list):
    """Events raised inside a unit; only delivered if the unit commits."""

    def emit(self, name: str, ticket: Ticket, actor_id: Optional[int], **data) -> DomainEvent:
        # flush first so the payload carries the post-write version
        get_db().flush()
        body = ticket_json(ticket)
        event = DomainEvent(name=name, ticket_id=ticket.id, actor_id=actor_id, ticket=body, data=data)
        realtime.enqueue(realtime.ticket_topic(ticket.id), name, {'actor_id': actor_id, 'ticket': body, **data},
                         event_id=event.id)
        self.append(event)
        return event


def load_ticket(session, ticket_id: int, for_update: bool = False) -> Ticket:
    stmt = select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    ticket = session.execute(stmt).scalar_one_or_none()
    if ticket is None:
        raise NotFound(f'Ticket {ticket_id} not found')
    return ticket


def run_ticket_unit(ticket_id: int, work: Callable[[Any, Ticket, EventBuffer], Any]):
    session = get_db()
    limit = int(current_app.config.get('TRANSITION_RETRY_LIMIT', 3))
    for attempt in range(1, limit + 1):
        events = EventBuffer()
        try:
            ticket = load_ticket(session, ticket_id, for_update=True)
            result = work(session, ticket, events)
            session.commit()
        except StaleDataError:
            session.rollback()
            current_app.logger.warning('Ticket %s changed concurrently (attempt %s/%s); retrying', ticket_id, attempt, limit)
            continue
        except Exception:
            session.rollback()
            raise
        deliver(events)
        return result
    raise ConcurrentUpdateError(f'Ticket {ticket_id} kept changing; gave up after {limit} attempts')


def deliver(events: List[DomainEvent]):
    """Best-effort fan-out after commit; never raises into the caller."""
    if not events:
        return
    from fieldops.services import notifications
    # events were committed with their outbox rows; this also picks up any earlier failed fan-out
    try:
        notifications.dispatch_pending()
    except Exception:
        get_db().rollback()
        current_app.logger.exception('Notification fan-out failed; events stay pending for the next flush')
    try:
        realtime.flush_outbox()
    except Exception:
        get_db().rollback()
        current_app.logger.exception('Outbox flush failed; rows stay pending for the next flush')
