"""Central enum-like definitions to avoid typos in permission/service strings.
Role presets are the only source used when permissions are derived for a roster user.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['TKT', 'NOTIF', 'ADMIN']

SERVICE_ACTIONS = {
    'TKT': ['READ', 'CREATE', 'WORK', 'RATE'],
    'NOTIF': ['READ', 'BROADCAST'],
    'ADMIN': ['TICKET.OVERRIDE', 'ASSIGN', 'AUDIT', 'SETTINGS.MANAGE'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

_TECHNICIAN = ['TKT.READ', 'TKT.WORK', 'NOTIF.READ']

ROLE_PRESETS: Dict[str, List[str]] = {
    'requester': ['TKT.READ', 'TKT.CREATE', 'TKT.RATE', 'NOTIF.READ'],
    'depot_tech': list(_TECHNICIAN),
    'field_tech': list(_TECHNICIAN),
    'admin': ['*'],
}


def permissions_for_role(role: str) -> List[str]:
    codes = ROLE_PRESETS.get(role, [])
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return list(codes)
