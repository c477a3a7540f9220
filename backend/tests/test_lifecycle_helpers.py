"""Reusable HTTP helpers for the ticket and purchase lifecycle tests.

Patterns unified:
 - Auth header creation using direct JWT claims (bypassing /auth/login).
 - Creation + transition sequencing with assertion helpers.
"""
from __future__ import annotations
from typing import Dict, List, Optional
from flask_jwt_extended import create_access_token
from repairdesk.constants.permissions import ALL_PERMISSION_CODES

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(user_id: int, perms: List[str]):
    token = create_access_token(identity=str(user_id), additional_claims={
        'perms': perms,
        'roles': [],
    })
    return {'Authorization': f'Bearer {token}'}


def admin_headers(user_id: int):
    return jwt_headers(user_id, sorted(ALL_PERMISSION_CODES))

# ---------- Assertion Helpers ---------- #

def assert_transition(client, url: str, headers: Dict[str, str], expected_status: int,
                      payload: Optional[dict] = None, expected_ticket_status: Optional[str] = None):
    resp = client.post(url, json=payload or {}, headers=headers)
    assert resp.status_code == expected_status, resp.get_json()
    if expected_status < 400 and expected_ticket_status is not None:
        assert resp.get_json()['status'] == expected_ticket_status
    return resp


def create_resource_and_assert(client, url: str, payload: dict, headers: Dict[str, str],
                               expected_initial_status: Optional[str] = None):
    resp = client.post(url, json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    if expected_initial_status:
        assert body['status'] == expected_initial_status
    return body

# ---------- Domain Specific Wrappers ---------- #

def exercise_ticket_to_quoted(client, headers, client_id: int, technician_id: int,
                              labor_cents: int = 5000, parts_cents: int = 3000):
    ticket = create_resource_and_assert(client, '/tickets', {
        'client_id': client_id,
        'reported_fault': 'No display',
        'equipment': {'device_type': 'Phone', 'brand': 'Acme', 'serial_number': 'SN-1'},
    }, headers, expected_initial_status='INTAKE')
    tid = ticket['id']
    assert_transition(client, f'/tickets/{tid}/assign-technician', headers, 200,
                      {'technician_id': technician_id}, 'DIAGNOSING')
    assert_transition(client, f'/tickets/{tid}/diagnosis', headers, 200, {
        'diagnosis': 'Cracked panel',
        'labor_cost_cents': labor_cents,
        'parts_cost_cents': parts_cents,
        'estimated_days': 2,
    }, 'QUOTED')
    return tid


def exercise_ticket_to_delivered(client, headers, tid: int):
    assert_transition(client, f'/tickets/{tid}/approve', headers, 200, expected_ticket_status='APPROVED')
    assert_transition(client, f'/tickets/{tid}/start', headers, 200, expected_ticket_status='REPAIRING')
    assert_transition(client, f'/tickets/{tid}/complete', headers, 200, expected_ticket_status='TESTING')
    assert_transition(client, f'/tickets/{tid}/test-result', headers, 200,
                      {'result': 'All good', 'passed': True}, 'READY')
    assert_transition(client, f'/tickets/{tid}/deliver', headers, 200, {'notes': 'Picked up'}, 'DELIVERED')

__all__ = [
    'jwt_headers', 'admin_headers', 'assert_transition', 'create_resource_and_assert',
    'exercise_ticket_to_quoted', 'exercise_ticket_to_delivered',
]
