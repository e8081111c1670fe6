from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional
from fieldops.models.ticket import Ticket
from fieldops.models.user import User
from fieldops.models.audit import TicketAuditLog
from fieldops.models.notification import Notification


def iso(dt: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601; naive values coming back from SQLite are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def ticket_json(t: Ticket):
    return {
        'id': t.id,
        'code': t.code,
        'requester_id': t.requester_id,
        'technician_id': t.technician_id,
        'type': t.type,
        'category': t.category,
        'description': t.description,
        'location_address': t.location_address,
        'notes': t.notes,
        'location': {'lat': t.location_lat, 'lng': t.location_lng},
        'status': t.status,
        'priority': t.priority,
        'paused': t.paused,
        'requester_snapshot': t.requester_snapshot,
        'accepted_at': iso(t.accepted_at),
        'on_way_at': iso(t.on_way_at),
        'in_progress_at': iso(t.in_progress_at),
        'completed_at': iso(t.completed_at),
        'rejection_reason': t.rejection_reason,
        'technician_remarks': t.technician_remarks,
        'parts_replaced': t.parts_replaced,
        'images': list(t.images or []),
        'voice_notes': list(t.voice_notes or []),
        'completion_images': list(t.completion_images or []),
        'completion_voice_notes': list(t.completion_voice_notes or []),
        'customer_rating': t.customer_rating,
        'customer_feedback': t.customer_feedback,
        'created_at': iso(t.created_at),
        'version': t.version,
    }


def technician_json(u: User):
    return {
        'id': u.id,
        'name': u.name,
        'role': u.role,
        'is_online': u.is_online,
        'is_available': u.is_available,
        'last_assigned_at': iso(u.last_assigned_at),
        'position': {'lat': u.current_lat, 'lng': u.current_lng} if u.current_position else None,
    }


def audit_entry_json(e: TicketAuditLog):
    return {
        'id': e.id,
        'ticket_id': e.ticket_id,
        'actor_id': e.actor_id,
        'action_type': e.action_type,
        'previous_state': e.previous_state,
        'new_state': e.new_state,
        'reason': e.reason,
        'rolled_back_entry_id': e.rolled_back_entry_id,
        'created_at': iso(e.created_at),
    }


def notification_json(n: Notification):
    return {
        'id': n.id,
        'user_id': n.user_id,
        'target_role': n.target_role,
        'title': n.title,
        'message': n.message,
        'type': n.type,
        'is_read': n.is_read,
        'reference_id': n.reference_id,
        'created_at': iso(n.created_at),
    }
