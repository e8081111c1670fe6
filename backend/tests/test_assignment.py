import pytest
from fieldops import get_db
from fieldops.errors import NotFound, StateError, ValidationError
from fieldops.models.audit import AuditLog
from fieldops.models.user import User
from fieldops.services import assignment, lifecycle, ticket_audit
from tests.test_utils_seed import (
    create_ticket, enable_auto_assign, ensure_admin, ensure_requester, ensure_technician, minutes_ago,
)


def _reload(user):
    return get_db().get(User, user.id, populate_existing=True)


def test_disabled_setting_leaves_ticket_unassigned():
    rider = ensure_requester()
    ensure_technician('+96892000001')
    t = create_ticket(rider)
    assert t.technician_id is None
    assert assignment.assign_automatically(t.id) is None
    assert lifecycle.get_ticket(t.id).technician_id is None


def test_never_assigned_technician_goes_first():
    rider, admin = ensure_requester(), ensure_admin()
    recent = ensure_technician('+96892000002', last_assigned_at=minutes_ago(5))
    fresh = ensure_technician('+96892000001')
    enable_auto_assign(admin)
    t = create_ticket(rider)
    assert t.technician_id == fresh.id
    assert t.status == 'PENDING'
    stamped = _reload(fresh)
    assert stamped.last_assigned_at is not None
    assert stamped.assign_seq == 1
    assert _reload(recent).assign_seq == 0


def test_round_robin_rotates_through_technicians():
    rider, admin = ensure_requester(), ensure_admin()
    first = ensure_technician('+96892000001')
    second = ensure_technician('+96892000002')
    enable_auto_assign(admin)
    picked = [create_ticket(rider).technician_id for _ in range(4)]
    assert picked == [first.id, second.id, first.id, second.id]


def test_round_robin_is_fair_over_many_assignments():
    rider, admin = ensure_requester(), ensure_admin()
    techs = [ensure_technician(f'+9689200000{i}', last_assigned_at=minutes_ago(10 * i)) for i in range(1, 4)]
    enable_auto_assign(admin)
    counts = {t.id: 0 for t in techs}
    for _ in range(7):
        counts[create_ticket(rider).technician_id] += 1
        # nobody gets a (k+2)th job while someone still has k
        assert max(counts.values()) - min(counts.values()) <= 1
    # stalest stamp first: 30, 20, then 10 minutes ago
    assert counts == {techs[2].id: 3, techs[1].id: 2, techs[0].id: 2}


def test_ties_break_on_lowest_id():
    rider, admin = ensure_requester(), ensure_admin()
    when = minutes_ago(10)
    low = ensure_technician('+96892000001', last_assigned_at=when)
    ensure_technician('+96892000002', last_assigned_at=when)
    enable_auto_assign(admin)
    assert create_ticket(rider).technician_id == low.id


def test_offline_unavailable_and_inactive_are_skipped():
    rider, admin = ensure_requester(), ensure_admin()
    ensure_technician('+96892000001', online=False)
    ensure_technician('+96892000002', available=False)
    gone = ensure_technician('+96892000003')
    gone.is_active = False
    get_db().commit()
    ready = ensure_technician('+96892000004', last_assigned_at=minutes_ago(60))
    enable_auto_assign(admin)
    assert create_ticket(rider).technician_id == ready.id


def test_role_must_match_dispatch_type():
    rider, admin = ensure_requester(), ensure_admin()
    field = ensure_technician('+96892000001')
    depot = ensure_technician('+96892000002', role=User.ROLE_DEPOT_TECH, last_assigned_at=minutes_ago(30))
    enable_auto_assign(admin)
    assert create_ticket(rider, type_='DEPOT').technician_id == depot.id
    assert create_ticket(rider, type_='ON_SITE').technician_id == field.id


def test_no_eligible_technician_keeps_ticket_in_pool():
    rider, admin = ensure_requester(), ensure_admin()
    ensure_technician('+96892000001', role=User.ROLE_DEPOT_TECH)
    enable_auto_assign(admin)
    t = create_ticket(rider)
    assert t.technician_id is None
    assert t.status == 'PENDING'


def test_paused_ticket_is_not_auto_assigned():
    rider, admin = ensure_requester(), ensure_admin()
    t = create_ticket(rider)
    lifecycle.admin_override(t.id, admin.id, 'PAUSE_TOGGLE', {}, 'hold')
    ensure_technician('+96892000001')
    enable_auto_assign(admin)
    assert assignment.assign_automatically(t.id) is None


def test_sweep_assigns_backlog_oldest_first():
    rider, admin = ensure_requester(), ensure_admin()
    older, newer = create_ticket(rider), create_ticket(rider)
    only = ensure_technician('+96892000001')
    enable_auto_assign(admin)
    assert assignment.auto_assign_sweep(actor_id=admin.id) == 2
    assert lifecycle.get_ticket(older.id).technician_id == only.id
    assert lifecycle.get_ticket(newer.id).technician_id == only.id
    log = get_db().query(AuditLog).filter_by(action='ASSIGNMENT.SWEEP').one()
    assert log.meta == {'examined': 2, 'assigned': 2}


def test_sweep_is_noop_when_disabled():
    rider = ensure_requester()
    create_ticket(rider)
    ensure_technician('+96892000001')
    assert assignment.auto_assign_sweep() == 0


def test_technician_coming_online_picks_up_waiting_ticket():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001', online=False)
    enable_auto_assign(admin)
    t = create_ticket(rider)
    assert t.technician_id is None
    updated = assignment.set_presence(tech.id, online=True)
    assert updated.is_online is True
    assert lifecycle.get_ticket(t.id).technician_id == tech.id


def test_presence_rejects_non_technicians():
    rider = ensure_requester()
    with pytest.raises(StateError):
        assignment.set_presence(rider.id, online=True)
    with pytest.raises(NotFound):
        assignment.set_presence(404, online=True)


def test_manual_assignment_ignores_setting_and_presence():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001', online=False, available=False)
    t = create_ticket(rider)
    t = assignment.assign_manually(t.id, tech.id, admin.id)
    assert t.technician_id == tech.id
    assert t.status == 'PENDING'
    assert _reload(tech).assign_seq == 1
    entry = ticket_audit.get_audit_history(t.id)[0]
    assert entry.action_type == 'ASSIGN'
    assert entry.previous_state['technician_id'] is None
    assert entry.new_state['technician_id'] == tech.id
    assert entry.reason == f'Manual assignment to technician #{tech.id}'


def test_reassigning_an_accepted_ticket_resets_progress():
    rider, admin = ensure_requester(), ensure_admin()
    first = ensure_technician('+96892000001')
    second = ensure_technician('+96892000002')
    t = create_ticket(rider)
    lifecycle.advance_status(t.id, first.id, 'ACCEPTED')
    lifecycle.advance_status(t.id, first.id, 'ON_WAY')
    t = assignment.assign_manually(t.id, second.id, admin.id, reason='First tech is stuck')
    assert t.technician_id == second.id
    assert t.status == 'PENDING'
    assert t.accepted_at is None and t.on_way_at is None
    with pytest.raises(StateError):
        lifecycle.advance_status(t.id, first.id, 'ACCEPTED')
    assert lifecycle.advance_status(t.id, second.id, 'ACCEPTED').technician_id == second.id


def test_manual_assignment_of_terminal_ticket_is_rejected():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    lifecycle.admin_override(t.id, admin.id, 'STATUS_CHANGE', {'status': 'COMPLETED'}, 'done offline')
    with pytest.raises(StateError):
        assignment.assign_manually(t.id, tech.id, admin.id)
    assert _reload(tech).assign_seq == 0


def test_manual_assignment_can_be_rolled_back():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    assignment.assign_manually(t.id, tech.id, admin.id)
    entry = ticket_audit.get_audit_history(t.id)[0]
    t = ticket_audit.rollback_entry(entry.id, admin.id, 'wrong technician')
    assert t.technician_id is None


def test_unassign_all_returns_active_tickets_to_pool():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001')
    a, b, done = create_ticket(rider), create_ticket(rider), create_ticket(rider)
    for ticket in (a, b, done):
        assignment.assign_manually(ticket.id, tech.id, admin.id)
    lifecycle.advance_status(b.id, tech.id, 'ACCEPTED')
    lifecycle.admin_override(done.id, admin.id, 'STATUS_CHANGE', {'status': 'COMPLETED'}, 'closed')

    assert assignment.unassign_all_for_technician(tech.id, admin.id, reason='Off sick') == 2
    for ticket in (a, b):
        fresh = lifecycle.get_ticket(ticket.id)
        assert fresh.technician_id is None
        assert fresh.status == 'PENDING'
        latest = ticket_audit.get_audit_history(ticket.id)[0]
        assert latest.action_type == 'UNASSIGN'
        assert latest.reason == 'Off sick'
    assert lifecycle.get_ticket(b.id).accepted_at is None
    assert lifecycle.get_ticket(done.id).technician_id == tech.id
    log = get_db().query(AuditLog).filter_by(action='TECHNICIAN.UNASSIGN_ALL').one()
    assert log.meta['count'] == 2
    assert assignment.unassign_all_for_technician(tech.id, admin.id) == 0


def test_update_position_validates_coordinates():
    tech = ensure_technician('+96892000001')
    updated = assignment.update_position(tech.id, {'lat': 23.6, 'lng': 58.4})
    assert updated.current_position == (23.6, 58.4)
    with pytest.raises(ValidationError):
        assignment.update_position(tech.id, {'lat': 23.6})


def test_non_admin_cannot_assign_or_unassign():
    rider, admin = ensure_requester(), ensure_admin()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    with pytest.raises(StateError):
        assignment.assign_manually(t.id, tech.id, rider.id)
    with pytest.raises(StateError):
        assignment.assign_manually(t.id, tech.id, tech.id)
    assert lifecycle.get_ticket(t.id).technician_id is None
    assert _reload(tech).assign_seq == 0

    assignment.assign_manually(t.id, tech.id, admin.id)
    with pytest.raises(StateError):
        assignment.unassign_all_for_technician(tech.id, rider.id)
    assert lifecycle.get_ticket(t.id).technician_id == tech.id
    assert [e.action_type for e in ticket_audit.get_audit_history(t.id)] == ['ASSIGN']
    assert get_db().query(AuditLog).filter_by(action='TECHNICIAN.UNASSIGN_ALL').count() == 0
