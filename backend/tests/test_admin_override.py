import pytest
from fieldops import get_db
from fieldops.errors import NotFound, StateError, ValidationError
from fieldops.models.audit import AuditLog, TicketAuditLog
from fieldops.models.ticket import Ticket
from fieldops.services import lifecycle, ticket_audit
from tests.test_utils_seed import create_ticket, ensure_admin, ensure_requester, ensure_technician


def _entries(ticket_id):
    return ticket_audit.get_audit_history(ticket_id)


def test_force_complete_with_reason_logs_one_status_change():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    t = lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'COMPLETED'}, 'Testing')
    assert t.status == 'COMPLETED'
    assert t.completed_at is not None
    entries = _entries(t.id)
    assert len(entries) == 1
    e = entries[0]
    assert e.action_type == TicketAuditLog.ACTION_STATUS_CHANGE
    assert e.reason == 'Testing'
    assert e.actor_id == admin.id
    assert e.previous_state['status'] == 'PENDING'
    assert e.new_state['status'] == 'COMPLETED'


@pytest.mark.parametrize('reason', [None, '', '   '])
def test_blank_reason_writes_nothing(reason):
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    version = t.version
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'PRIORITY_UPDATE', {'priority': 'HIGH'}, reason)
    after = lifecycle.get_ticket(t.id)
    assert after.priority == 'NORMAL'
    assert after.version == version
    assert _entries(t.id) == []


def test_status_change_to_pending_clears_technician():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    lifecycle.advance_status(t.id, tech.id, 'ACCEPTED')
    lifecycle.advance_status(t.id, tech.id, 'ON_WAY')
    t = lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'PENDING'}, 'Reopen for dispatch')
    assert t.status == 'PENDING'
    assert t.technician_id is None


def test_status_change_keeps_existing_timestamp():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    lifecycle.advance_status(t.id, tech.id, 'ACCEPTED')
    lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'PENDING'}, 'back')
    lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'ACCEPTED'}, 'forward')
    latest = _entries(t.id)[0]
    assert latest.new_state['status'] == 'ACCEPTED'
    assert latest.previous_state['accepted_at'] is not None
    assert latest.new_state['accepted_at'] == latest.previous_state['accepted_at']


def test_priority_update_and_invalid_priority():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    t = lifecycle.admin_override(t.id, admin.id, 'PRIORITY_UPDATE', {'priority': 'HIGH'}, 'VIP rider')
    assert t.priority == 'HIGH'
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'PRIORITY_UPDATE', {'priority': 'URGENT'}, 'x')
    assert _entries(t.id)[0].action_type == 'PRIORITY_UPDATE'


def test_edit_allowed_fields_only():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    t = lifecycle.admin_override(t.id, admin.id, 'EDIT',
                                 {'description': 'Chain snapped', 'location_lat': 23.6, 'location_lng': 58.4},
                                 'Rider called with details')
    assert t.description == 'Chain snapped'
    assert t.location == (23.6, 58.4)
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'EDIT', {'status': 'COMPLETED'}, 'sneaky')
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'EDIT', {'location_lat': 1.0}, 'half a point')
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'EDIT', {}, 'nothing')
    e = _entries(t.id)[0]
    assert e.action_type == 'EDIT'
    assert e.previous_state['description'] is None
    assert e.new_state['description'] == 'Chain snapped'


def test_pause_toggle_logs_pause_then_resume():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    t = lifecycle.admin_override(t.id, admin.id, 'PAUSE_TOGGLE', None, 'Hold')
    assert t.paused is True
    t = lifecycle.admin_override(t.id, admin.id, 'PAUSE_TOGGLE', None, 'Go')
    assert t.paused is False
    assert [e.action_type for e in _entries(t.id)] == ['RESUME', 'PAUSE']


def test_cancelled_ticket_rejects_overrides():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'CANCELLED'}, 'Duplicate')
    for action, payload in (('STATUS_CHANGE', {'status': 'PENDING'}),
                            ('PRIORITY_UPDATE', {'priority': 'LOW'}),
                            ('EDIT', {'notes': 'x'}),
                            ('PAUSE_TOGGLE', {})):
        with pytest.raises(StateError):
            lifecycle.admin_override(t.id, admin.id, action, payload, 'try')
    assert len(_entries(t.id)) == 1


def test_non_admin_cannot_override():
    rider = ensure_requester()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    with pytest.raises(StateError):
        lifecycle.admin_override(t.id, tech.id, 'PRIORITY_UPDATE', {'priority': 'HIGH'}, 'me')


def test_unknown_action_is_validation_error():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'TELEPORT', {}, 'why not')


def test_delete_requires_code_confirmation():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'DELETE', {'confirm': 'TKT-999999'}, 'Spam')
    with pytest.raises(ValidationError):
        lifecycle.admin_override(t.id, admin.id, 'DELETE', {'confirm': t.code}, '')
    assert lifecycle.get_ticket(t.id) is not None


def test_delete_is_irreversible_and_outside_ticket_audit():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    lifecycle.admin_override(t.id, admin.id, 'PRIORITY_UPDATE', {'priority': 'HIGH'}, 'before delete')
    final = lifecycle.admin_override(t.id, admin.id, 'DELETE', {'confirm': t.code}, 'Spam ticket')
    assert final['code'] == t.code
    with pytest.raises(NotFound):
        lifecycle.get_ticket(t.id)
    session = get_db()
    assert session.query(Ticket).count() == 0
    actions = {e.action_type for e in _entries(t.id)}
    assert actions == {'PRIORITY_UPDATE'}
    log = session.query(AuditLog).filter_by(action='TICKET.DELETE').one()
    assert log.entity_id == str(t.id)
    assert log.meta['reason'] == 'Spam ticket'
    assert log.actor_user_id == admin.id


def test_delete_works_on_cancelled_ticket():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'CANCELLED'}, 'Duplicate')
    lifecycle.admin_override(t.id, admin.id, 'DELETE', {'confirm': t.code}, 'Cleanup')
    with pytest.raises(NotFound):
        lifecycle.get_ticket(t.id)
