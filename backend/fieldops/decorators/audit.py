from __future__ import annotations
"""Activity-log decorator for route handlers that have no ticket snapshot of their own.

Usage:

@audit_log('TECHNICIAN.PRESENCE', entity='User', entity_id_key='id', meta_keys=['is_online', 'is_available'])
def update_presence():
    ... return technician_json(user)

Parameters:
  action: activity code (e.g. TECHNICIAN.PRESENCE)
  entity: optional entity label
  entity_id_key: key in the returned JSON whose value becomes entity_id
  entity_id_arg: path parameter used for entity_id when the key is absent
  meta_keys: keys projected from the returned JSON into meta

Handlers may return a dict or a (dict, status) tuple. Only successful handlers are logged;
an exception from the handler propagates untouched.
"""

from functools import wraps
from typing import Any, Iterable, Optional

from flask import current_app
from fieldops.services.audit import add_audit
from fieldops import get_db


def _extract_payload(rv: Any):
    if isinstance(rv, tuple) and rv:
        return rv[0]
    return rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data = _extract_payload(rv)
            entity_id = None
            meta = None
            if isinstance(data, dict):
                if entity_id_key and entity_id_key in data:
                    entity_id = data.get(entity_id_key)
                if meta_keys:
                    meta = {k: data.get(k) for k in meta_keys if k in data}
            if entity_id is None and entity_id_arg:
                entity_id = kwargs.get(entity_id_arg)
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta)
                session.commit()
            except Exception:
                # handler change is already committed
                session.rollback()
                current_app.logger.exception('Activity log write failed for %s', action)
            return rv
        return wrapper
    return outer
