from __future__ import annotations
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, get_jwt
from fieldops import get_db
from fieldops.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None, actor_id: Optional[int] = None):
    """Persist a system activity entry within the current DB session.

    Parameters:
      action: short action code e.g. SETTINGS.AUTO_ASSIGN, TICKET.DELETE, NOTIFICATION.BROADCAST
      entity: optional entity name (Ticket, SystemSetting, User)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
      actor_id: explicit actor; falls back to the JWT identity of the current request
    """
    session = get_db()
    claims = {}
    try:
        claims = get_jwt() or {}
    except RuntimeError:
        pass  # no request/JWT context (service called from CLI or tests)
    actor = actor_id
    if actor is None:
        try:
            ident = get_jwt_identity()
            actor = int(ident) if ident is not None else None
        except RuntimeError:
            actor = None
    log = AuditLog(
        actor_user_id=actor or 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot={'perms': claims.get('perms', [])},
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
