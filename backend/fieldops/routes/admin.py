from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import select
from fieldops import get_db
from fieldops.decorators.auth import require_permissions
from fieldops.models.user import User
from fieldops.services import assignment, lifecycle, settings as settings_service, ticket_audit
from fieldops.services.policy import current_user_id
from fieldops.utils.serializers import audit_entry_json, technician_json, ticket_json

admin_bp = Blueprint('admin', __name__)


def _body():
    return request.get_json(silent=True) or {}


@admin_bp.post('/tickets/<int:ticket_id>/override')
@require_permissions('ADMIN.TICKET.OVERRIDE')
def override_ticket(ticket_id: int):
    data = _body()
    if not data.get('action'):
        abort(400, description='action required')
    result = lifecycle.admin_override(ticket_id, current_user_id(), data['action'], data.get('payload'), data.get('reason'))
    if isinstance(result, dict):
        return {'deleted': True, 'ticket': result}
    return ticket_json(result)


@admin_bp.post('/tickets/<int:ticket_id>/auto-assign')
@require_permissions('ADMIN.ASSIGN')
def auto_assign_ticket(ticket_id: int):
    lifecycle.get_ticket(ticket_id)
    assigned = assignment.assign_automatically(ticket_id)
    ticket = lifecycle.get_ticket(ticket_id)
    return {'assigned': assigned is not None, 'ticket': ticket_json(ticket)}


@admin_bp.post('/assignments/sweep')
@require_permissions('ADMIN.ASSIGN')
def sweep():
    return {'assigned': assignment.auto_assign_sweep(actor_id=current_user_id())}


@admin_bp.post('/tickets/<int:ticket_id>/assign')
@require_permissions('ADMIN.ASSIGN')
def assign_ticket(ticket_id: int):
    data = _body()
    try:
        technician_id = int(data.get('technician_id'))
    except (TypeError, ValueError):
        abort(400, description='technician_id required')
    ticket = assignment.assign_manually(ticket_id, technician_id, current_user_id(), reason=data.get('reason'))
    return ticket_json(ticket)


@admin_bp.post('/technicians/<int:technician_id>/unassign-all')
@require_permissions('ADMIN.ASSIGN')
def unassign_all(technician_id: int):
    data = _body()
    count = assignment.unassign_all_for_technician(technician_id, current_user_id(), reason=data.get('reason'))
    return {'unassigned': count}


@admin_bp.get('/technicians')
@require_permissions('ADMIN.ASSIGN')
def list_technicians():
    session = get_db()
    rows = session.execute(
        select(User)
        .where(User.role.in_(User.TECHNICIAN_ROLES), User.is_active.is_(True))
        .order_by(User.last_assigned_at.asc().nulls_first(), User.id.asc())
        .execution_options(populate_existing=True)
    ).scalars().all()
    return {'data': [technician_json(u) for u in rows]}


@admin_bp.get('/tickets/<int:ticket_id>/audit')
@require_permissions('ADMIN.AUDIT')
def audit_history(ticket_id: int):
    entries = ticket_audit.get_audit_history(ticket_id)
    return {'data': [audit_entry_json(e) for e in entries]}


@admin_bp.post('/audit/<int:entry_id>/rollback')
@require_permissions('ADMIN.AUDIT', 'ADMIN.TICKET.OVERRIDE')
def rollback(entry_id: int):
    data = _body()
    ticket = ticket_audit.rollback_entry(entry_id, current_user_id(), data.get('reason'))
    return ticket_json(ticket)


@admin_bp.get('/settings')
@require_permissions('ADMIN.SETTINGS.MANAGE')
def get_settings():
    return settings_service.settings_json(settings_service.read_settings())


@admin_bp.put('/settings')
@require_permissions('ADMIN.SETTINGS.MANAGE')
def put_settings():
    data = _body()
    enabled = data.get('auto_assign_enabled')
    if not isinstance(enabled, bool):
        abort(400, description='auto_assign_enabled must be boolean')
    row = settings_service.set_auto_assign(current_user_id(), enabled, expected_version=data.get('version'))
    if row.auto_assign_enabled:
        assignment.auto_assign_sweep(actor_id=current_user_id())
    return settings_service.settings_json(row)
