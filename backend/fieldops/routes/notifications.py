from __future__ import annotations
from flask import Blueprint, request, abort
from fieldops.config.pagination import normalize_pagination
from fieldops.decorators.auth import require_permissions
from fieldops.models.notification import Notification
from fieldops.services import notifications
from fieldops.services.policy import current_user_id
from fieldops.utils.serializers import notification_json

notif_bp = Blueprint('notifications', __name__)


def _ids():
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    if not isinstance(ids, list):
        abort(400, description='ids must be a list')
    return ids


@notif_bp.get('')
@require_permissions('NOTIF.READ')
def list_notifications():
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    user_id = current_user_id()
    rows = notifications.list_notifications(
        user_id,
        unread_only=request.args.get('unread') in ('1', 'true'),
        limit=limit,
        offset=offset,
    )
    return {'data': [notification_json(n) for n in rows], 'unread': notifications.unread_count(user_id)}


@notif_bp.post('/read')
@require_permissions('NOTIF.READ')
def mark_read():
    return {'updated': notifications.mark_read(current_user_id(), _ids())}


@notif_bp.post('/read-all')
@require_permissions('NOTIF.READ')
def mark_all_read():
    return {'updated': notifications.mark_all_read(current_user_id())}


@notif_bp.post('/delete')
@require_permissions('NOTIF.READ')
def delete():
    return {'deleted': notifications.delete_notifications(current_user_id(), _ids())}


@notif_bp.post('/clear')
@require_permissions('NOTIF.READ')
def clear():
    return {'deleted': notifications.clear_all(current_user_id())}


@notif_bp.post('/broadcast')
@require_permissions('NOTIF.BROADCAST')
def broadcast():
    data = request.get_json(silent=True) or {}
    count = notifications.broadcast(
        current_user_id(),
        data.get('title'),
        data.get('message'),
        data.get('target_role'),
        type_=data.get('type') or Notification.TYPE_INFO,
    )
    return {'recipients': count}, 201
