import pytest
from sqlalchemy import select
from fieldops import get_db
from fieldops.errors import StateError
from fieldops.models.notification import Notification
from fieldops.models.outbox import OutboxMessage
from fieldops.services import lifecycle, notifications, realtime
from fieldops.services.realtime import InMemoryChannel, RealtimeChannel, ticket_topic, user_topic
from tests.test_utils_seed import create_ticket, ensure_admin, ensure_requester, ensure_technician


class BrokenChannel(RealtimeChannel):
    def __init__(self):
        self.calls = 0

    def publish(self, topic, message):
        self.calls += 1
        raise ConnectionError('broker down')


class FlakyChannel(InMemoryChannel):
    """Fails the first publish on one topic, then behaves."""

    def __init__(self, bad_topic):
        super().__init__()
        self.bad_topic = bad_topic
        self.failed = False

    def publish(self, topic, message):
        if topic == self.bad_topic and not self.failed:
            self.failed = True
            raise ConnectionError('hiccup')
        super().publish(topic, message)


def _rows(topic=None):
    stmt = select(OutboxMessage).order_by(OutboxMessage.id).execution_options(populate_existing=True)
    if topic:
        stmt = stmt.where(OutboxMessage.topic == topic)
    return get_db().execute(stmt).scalars().all()


def test_ticket_events_reach_ticket_topic_in_order(channel):
    rider = ensure_requester()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    lifecycle.advance_status(t.id, tech.id, 'ACCEPTED')
    lifecycle.advance_status(t.id, tech.id, 'ON_WAY')
    messages = channel.messages(ticket_topic(t.id))
    assert [m['event'] for m in messages] == ['ticket.created', 'ticket.status_changed', 'ticket.status_changed']
    assert [m['payload']['ticket']['status'] for m in messages] == ['PENDING', 'ACCEPTED', 'ON_WAY']
    versions = [m['payload']['ticket']['version'] for m in messages]
    assert versions == sorted(versions) and len(set(versions)) == 3
    assert messages[1]['payload']['actor_id'] == tech.id
    assert messages[1]['payload']['previous_status'] == 'PENDING'
    assert realtime.pending_count() == 0


def test_rejected_mutation_publishes_nothing(channel):
    rider = ensure_requester()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)
    before = len(_rows())
    with pytest.raises(StateError):
        lifecycle.advance_status(t.id, tech.id, 'IN_PROGRESS')
    assert len(_rows()) == before
    assert [m['event'] for m in channel.messages(ticket_topic(t.id))] == ['ticket.created']


def test_broken_channel_keeps_mutation_and_rows(app_context):
    broken = BrokenChannel()
    app_context.extensions['realtime'] = broken
    rider = ensure_requester()
    t = create_ticket(rider)
    assert lifecycle.get_ticket(t.id).status == 'PENDING'
    assert broken.calls > 0
    pending = _rows()
    assert pending and all(r.published_at is None for r in pending)
    assert all(r.attempts <= 1 for r in pending)
    assert any(r.last_error == 'broker down' for r in pending)

    healthy = InMemoryChannel()
    app_context.extensions['realtime'] = healthy
    assert realtime.flush_outbox() == len(pending)
    assert realtime.pending_count() == 0
    assert [m['event'] for m in healthy.messages(ticket_topic(t.id))] == ['ticket.created']
    assert healthy.messages(user_topic(rider.id))[0]['event'] == 'notification.created'


def test_failed_topic_holds_back_later_rows_only():
    session = get_db()
    first = realtime.enqueue('ticket:7', 'a', {'n': 1})
    realtime.enqueue('user:3', 'b', {'n': 2})
    second = realtime.enqueue('ticket:7', 'c', {'n': 3})
    session.commit()
    flaky = FlakyChannel('ticket:7')
    assert realtime.flush_outbox(channel=flaky) == 1
    assert [m['event'] for m in flaky.messages('user:3')] == ['b']
    rows = {r.id: r for r in _rows('ticket:7')}
    assert rows[first.id].attempts == 1 and rows[first.id].published_at is None
    assert rows[second.id].attempts == 0
    assert realtime.flush_outbox(channel=flaky) == 2
    assert [m['payload']['n'] for m in flaky.messages('ticket:7')] == [1, 3]
    assert [m['id'] for m in flaky.messages('ticket:7')] == [first.id, second.id]
    assert _rows('user:3')[0].published_at is not None


def test_rows_past_attempt_limit_are_parked(app_context):
    session = get_db()
    msg = realtime.enqueue('ticket:9', 'x', {})
    msg.attempts = app_context.config['OUTBOX_MAX_ATTEMPTS']
    later = realtime.enqueue('ticket:9', 'y', {})
    realtime.enqueue('ticket:10', 'z', {})
    session.commit()
    channel = InMemoryChannel()
    assert realtime.flush_outbox(channel=channel) == 1
    # the parked row keeps its topic blocked so nothing overtakes it
    assert channel.messages('ticket:9') == []
    assert [m['event'] for m in channel.messages('ticket:10')] == ['z']
    assert realtime.pending_count() == 2

    msg.attempts = 0
    session.commit()
    assert realtime.flush_outbox(channel=channel) == 2
    assert [m['id'] for m in channel.messages('ticket:9')] == [msg.id, later.id]


def test_notification_failure_does_not_undo_transition(monkeypatch, channel):
    rider = ensure_requester()
    ensure_admin()
    tech = ensure_technician('+96892000001')
    t = create_ticket(rider)

    def explode(event):
        raise RuntimeError('dispatcher down')

    monkeypatch.setattr(notifications, 'dispatch_event', explode)
    t = lifecycle.advance_status(t.id, tech.id, 'ACCEPTED')
    assert t.status == 'ACCEPTED'
    assert lifecycle.get_ticket(t.id).technician_id == tech.id
    # the ticket topic still gets its event
    assert channel.messages(ticket_topic(t.id))[-1]['event'] == 'ticket.status_changed'


def test_subscribers_receive_live_messages(channel):
    rider = ensure_requester()
    seen = []
    unsubscribe = channel.subscribe(user_topic(rider.id), seen.append)
    create_ticket(rider)
    assert [m['event'] for m in seen] == ['notification.created']
    unsubscribe()
    create_ticket(rider)
    assert len(seen) == 1
    assert len(channel.messages(user_topic(rider.id))) == 2


def test_outbox_flush_cli(app_context):
    app_context.extensions['realtime'] = BrokenChannel()
    rider = ensure_requester()
    create_ticket(rider)
    pending = realtime.pending_count()
    assert pending > 0
    app_context.extensions['realtime'] = InMemoryChannel()
    result = app_context.test_cli_runner().invoke(args=['outbox-flush'])
    assert result.exit_code == 0, result.output
    assert f'published={pending} pending=0' in result.output


def _titles(user):
    stmt = select(Notification.title).where(Notification.user_id == user.id).order_by(Notification.created_at)
    return list(get_db().execute(stmt).scalars())


def test_failed_fan_out_is_recorded_by_cli_flush(monkeypatch, app_context, channel):
    rider = ensure_requester()
    dispatch = notifications.dispatch_event

    def explode(event):
        raise RuntimeError('dispatcher down')

    monkeypatch.setattr(notifications, 'dispatch_event', explode)
    t = create_ticket(rider)
    assert lifecycle.get_ticket(t.id).status == 'PENDING'
    assert _titles(rider) == []
    row = _rows(ticket_topic(t.id))[0]
    assert row.event_id is not None and row.notified_at is None

    monkeypatch.setattr(notifications, 'dispatch_event', dispatch)
    result = app_context.test_cli_runner().invoke(args=['outbox-flush'])
    assert result.exit_code == 0, result.output
    assert 'notified=1' in result.output
    assert _titles(rider) == ['Ticket submitted']
    assert _rows(ticket_topic(t.id))[0].notified_at is not None
    assert channel.messages(user_topic(rider.id))[0]['payload']['title'] == 'Ticket submitted'

    again = app_context.test_cli_runner().invoke(args=['outbox-flush'])
    assert 'notified=0' in again.output
    assert _titles(rider) == ['Ticket submitted']


def test_next_mutation_catches_up_missed_fan_out_in_order(monkeypatch):
    rider = ensure_requester()
    tech = ensure_technician('+96892000001')
    dispatch = notifications.dispatch_event

    def explode(event):
        raise RuntimeError('dispatcher down')

    monkeypatch.setattr(notifications, 'dispatch_event', explode)
    t = create_ticket(rider)
    monkeypatch.setattr(notifications, 'dispatch_event', dispatch)
    lifecycle.advance_status(t.id, tech.id, 'ACCEPTED')
    assert _titles(rider) == ['Ticket submitted', 'Status update']
    assert all(r.notified_at is not None for r in _rows(ticket_topic(t.id)))
