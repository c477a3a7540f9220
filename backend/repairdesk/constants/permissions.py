"""Central enum-like definitions to avoid typos in permission/service strings.
Codes follow the SERVICE.ACTION pattern and travel in the JWT ``perms`` claim.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['TKT', 'INV', 'PO']

SERVICE_ACTIONS = {
    'TKT': ['READ', 'CREATE', 'MANAGE', 'PARTS'],
    'INV': ['READ', 'ADJUST'],
    'PO': ['READ', 'CREATE', 'RECEIVE', 'CANCEL'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

# User.role -> permission codes granted at login
ROLE_PRESETS: Dict[str, List[str]] = {
    'RECEPTIONIST': ['TKT.READ', 'TKT.CREATE', 'INV.READ'],
    'TECHNICIAN': ['TKT.READ', 'TKT.CREATE', 'TKT.MANAGE', 'TKT.PARTS', 'INV.READ', 'PO.READ'],
    'ADMIN': ['*'],
}


def permissions_for_role(role: str) -> List[str]:
    codes = ROLE_PRESETS.get(role, [])
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return sorted(codes)
