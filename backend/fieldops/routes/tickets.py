from __future__ import annotations
from flask import Blueprint, request, abort
from fieldops.decorators.auth import require_permissions
from fieldops.models.ticket import Ticket
from fieldops.services import lifecycle
from fieldops.services.policy import assert_can_view_ticket, current_user, current_user_id, scope_ticket_query
from fieldops.utils.listing import apply_pagination, make_list_response
from fieldops.utils.serializers import ticket_json
from fieldops.utils.sorting import apply_multi_sort

tickets_bp = Blueprint('tickets', __name__)

SORTABLE = {
    'created_at': Ticket.created_at,
    'updated_at': Ticket.updated_at,
    'priority': Ticket.priority,
    'status': Ticket.status,
    'id': Ticket.id,
}


def _body():
    return request.get_json(silent=True) or {}


@tickets_bp.get('')
@require_permissions('TKT.READ')
def list_tickets():
    user = current_user()
    technician_id = request.args.get('technician_id')
    try:
        technician_id = int(technician_id) if technician_id else None
    except ValueError:
        abort(400, description='technician_id invalid')
    q = lifecycle.list_tickets_query(
        status=request.args.get('status'),
        type_=request.args.get('type'),
        priority=request.args.get('priority'),
        technician_id=technician_id,
        unassigned=request.args.get('unassigned') in ('1', 'true'),
    )
    q = scope_ticket_query(q, user)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Ticket.id, default=[Ticket.created_at.desc(), Ticket.id.desc()])
    paged_q, total, limit, offset = apply_pagination(q)
    rows = [ticket_json(t) for t in paged_q.all()]
    return make_list_response(rows, total, limit, offset)


@tickets_bp.post('')
@require_permissions('TKT.CREATE')
def create_ticket():
    data = _body()
    if not data.get('type') or not data.get('category') or data.get('location') is None:
        abort(400, description='type, category, location required')
    ticket = lifecycle.create_ticket(
        current_user_id(),
        data['type'],
        data['category'],
        data['location'],
        description=data.get('description'),
        images=data.get('images'),
        voice_notes=data.get('voice_notes'),
        location_address=data.get('location_address'),
        notes=data.get('notes'),
        priority=data.get('priority') or Ticket.PRIORITY_NORMAL,
    )
    return ticket_json(ticket), 201


@tickets_bp.get('/<int:ticket_id>')
@require_permissions('TKT.READ')
def get_ticket(ticket_id: int):
    ticket = lifecycle.get_ticket(ticket_id)
    assert_can_view_ticket(ticket, current_user())
    return ticket_json(ticket)


@tickets_bp.post('/<int:ticket_id>/advance')
@require_permissions('TKT.WORK')
def advance_ticket(ticket_id: int):
    data = _body()
    if not data.get('status'):
        abort(400, description='status required')
    ticket = lifecycle.advance_status(ticket_id, current_user_id(), data['status'],
                                      position=data.get('position'), reason=data.get('reason'))
    return ticket_json(ticket)


@tickets_bp.post('/<int:ticket_id>/complete')
@require_permissions('TKT.WORK')
def complete_ticket(ticket_id: int):
    data = _body()
    ticket = lifecycle.complete_ticket(
        ticket_id,
        current_user_id(),
        position=data.get('position'),
        remarks=data.get('remarks'),
        parts_replaced=data.get('parts_replaced'),
        completion_images=data.get('completion_images'),
        completion_voice_notes=data.get('completion_voice_notes'),
    )
    return ticket_json(ticket)


@tickets_bp.post('/<int:ticket_id>/reject')
@require_permissions('TKT.WORK')
def reject_ticket(ticket_id: int):
    data = _body()
    ticket = lifecycle.reject_ticket(ticket_id, current_user_id(), data.get('reason'), evidence=data.get('evidence'))
    return ticket_json(ticket)


@tickets_bp.post('/<int:ticket_id>/rating')
@require_permissions('TKT.RATE')
def rate_ticket(ticket_id: int):
    data = _body()
    if data.get('rating') is None:
        abort(400, description='rating required')
    ticket = lifecycle.rate_ticket(ticket_id, current_user_id(), data['rating'], feedback=data.get('feedback'))
    return ticket_json(ticket)
