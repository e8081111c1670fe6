from __future__ import annotations
from flask import Blueprint, request, abort
from fieldops.decorators.audit import audit_log
from fieldops.decorators.auth import require_permissions
from fieldops.services import assignment
from fieldops.services.roster import require_technician
from fieldops.services.policy import current_user_id
from fieldops.utils.serializers import technician_json

tech_bp = Blueprint('technicians', __name__)


@tech_bp.get('/me')
@require_permissions('TKT.WORK')
def me():
    return technician_json(require_technician(current_user_id()))


@tech_bp.put('/me/presence')
@require_permissions('TKT.WORK')
@audit_log('TECHNICIAN.PRESENCE', entity='User', entity_id_key='id', meta_keys=['is_online', 'is_available'])
def update_presence():
    data = request.get_json(silent=True) or {}
    online = data.get('is_online')
    available = data.get('is_available')
    for value in (online, available):
        if value is not None and not isinstance(value, bool):
            abort(400, description='is_online / is_available must be boolean')
    tech = assignment.set_presence(current_user_id(), online=online, available=available)
    return technician_json(tech)


@tech_bp.put('/me/position')
@require_permissions('TKT.WORK')
def update_position():
    data = request.get_json(silent=True) or {}
    position = data.get('position', data)
    tech = assignment.update_position(current_user_id(), position)
    return technician_json(tech)
