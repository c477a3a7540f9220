from __future__ import annotations
from flask import Blueprint, request, current_app
from repairdesk.decorators.auth import require_permissions
from repairdesk import get_db
from repairdesk.config.pagination import build_list_payload
from repairdesk.utils.request_args import json_payload, int_arg, required_int, pagination_args
from repairdesk.models.ticket import Ticket, TicketEquipment
from repairdesk.models.part import PartUsage
from repairdesk.services.sequence import SequenceGenerator
from repairdesk.services.workflow import WorkflowOrchestrator

tickets_bp = Blueprint('tickets', __name__)


def _workflow() -> WorkflowOrchestrator:
    session = get_db()
    return WorkflowOrchestrator(session, sequence=SequenceGenerator.from_config(session, current_app.config))


@tickets_bp.get('')
@require_permissions('TKT.READ')
def list_tickets():
    limit, offset = pagination_args()
    rows, total = _workflow().list_tickets(
        status=request.args.get('status'),
        technician_id=int_arg('technician_id'),
        client_id=int_arg('client_id'),
        search=request.args.get('q'),
        active_only=request.args.get('active') in ('1', 'true'),
        limit=limit,
        offset=offset,
    )
    return build_list_payload([_ticket_json(t) for t in rows], total, limit, offset)


@tickets_bp.post('')
@require_permissions('TKT.CREATE')
def create_ticket():
    data = json_payload()
    equipment = data.get('equipment') or []
    if isinstance(equipment, dict):
        equipment = [equipment]
    t = _workflow().create_ticket(required_int(data, 'client_id'), data.get('reported_fault'), equipment)
    return _ticket_json(t), 201


@tickets_bp.get('/<int:ticket_id>')
@require_permissions('TKT.READ')
def get_ticket(ticket_id: int):
    return _ticket_json(_workflow().get_ticket(ticket_id), detail=True)


@tickets_bp.get('/by-code/<string:code>')
@require_permissions('TKT.READ')
def get_ticket_by_code(code: str):
    return _ticket_json(_workflow().get_ticket_by_code(code.upper()), detail=True)


@tickets_bp.get('/<int:ticket_id>/transitions')
@require_permissions('TKT.READ')
def ticket_transitions(ticket_id: int):
    wf = _workflow()
    t = wf.get_ticket(ticket_id)
    return {'id': t.id, 'status': t.status, 'allowed': wf.legal_destinations(ticket_id)}


@tickets_bp.get('/<int:ticket_id>/transitions/<string:target>')
@require_permissions('TKT.READ')
def ticket_can_transition(ticket_id: int, target: str):
    return {'id': ticket_id, 'target': target.upper(), 'allowed': _workflow().can_transition(ticket_id, target)}


@tickets_bp.post('/<int:ticket_id>/assign-technician')
@require_permissions('TKT.MANAGE')
def assign_technician(ticket_id: int):
    data = json_payload()
    return _ticket_json(_workflow().assign_technician(ticket_id, required_int(data, 'technician_id')))


@tickets_bp.post('/<int:ticket_id>/diagnosis')
@require_permissions('TKT.MANAGE')
def record_diagnosis(ticket_id: int):
    data = json_payload()
    t = _workflow().record_diagnosis(
        ticket_id,
        data.get('diagnosis'),
        data.get('labor_cost_cents'),
        data.get('parts_cost_cents'),
        data.get('estimated_days'),
    )
    return _ticket_json(t)


@tickets_bp.post('/<int:ticket_id>/discount')
@require_permissions('TKT.MANAGE')
def apply_discount(ticket_id: int):
    data = json_payload()
    kind = (data.get('kind') or '').upper()
    return _ticket_json(_workflow().apply_discount(ticket_id, kind, data.get('value'), data.get('reason')))


@tickets_bp.post('/<int:ticket_id>/approve')
@require_permissions('TKT.MANAGE')
def approve_budget(ticket_id: int):
    return _ticket_json(_workflow().approve_budget(ticket_id), detail=True)


@tickets_bp.post('/<int:ticket_id>/reject')
@require_permissions('TKT.MANAGE')
def reject_budget(ticket_id: int):
    return _ticket_json(_workflow().reject_budget(ticket_id, json_payload().get('reason')))


@tickets_bp.post('/<int:ticket_id>/start')
@require_permissions('TKT.MANAGE')
def start_repair(ticket_id: int):
    return _ticket_json(_workflow().start_repair(ticket_id))


@tickets_bp.post('/<int:ticket_id>/notes')
@require_permissions('TKT.MANAGE')
def add_note(ticket_id: int):
    return _ticket_json(_workflow().add_note(ticket_id, json_payload().get('note')), detail=True)


@tickets_bp.post('/<int:ticket_id>/complete')
@require_permissions('TKT.MANAGE')
def complete_repair(ticket_id: int):
    return _ticket_json(_workflow().complete_repair(ticket_id))


@tickets_bp.post('/<int:ticket_id>/test-result')
@require_permissions('TKT.MANAGE')
def record_test_result(ticket_id: int):
    data = json_payload()
    return _ticket_json(_workflow().record_test_result(ticket_id, data.get('result'), data.get('passed')))


@tickets_bp.post('/<int:ticket_id>/ready')
@require_permissions('TKT.MANAGE')
def mark_ready(ticket_id: int):
    return _ticket_json(_workflow().mark_ready(ticket_id))


@tickets_bp.post('/<int:ticket_id>/deliver')
@require_permissions('TKT.MANAGE')
def deliver(ticket_id: int):
    return _ticket_json(_workflow().deliver(ticket_id, json_payload().get('notes')))


@tickets_bp.post('/<int:ticket_id>/cancel')
@require_permissions('TKT.MANAGE')
def cancel(ticket_id: int):
    return _ticket_json(_workflow().cancel(ticket_id, json_payload().get('reason')), detail=True)


# ---------- Parts ---------- #

@tickets_bp.get('/<int:ticket_id>/parts')
@require_permissions('TKT.READ')
def list_parts(ticket_id: int):
    return {'data': [_usage_json(u) for u in _workflow().list_part_usages(ticket_id)]}


@tickets_bp.post('/<int:ticket_id>/parts')
@require_permissions('TKT.PARTS')
def assign_part(ticket_id: int):
    data = json_payload()
    u = _workflow().assign_part(ticket_id, required_int(data, 'part_id'), data.get('quantity'),
                                data.get('unit_price_cents'), data.get('notes'))
    return _usage_json(u), 201


@tickets_bp.patch('/<int:ticket_id>/parts/<int:usage_id>')
@require_permissions('TKT.PARTS')
def update_part_quantity(ticket_id: int, usage_id: int):
    return _usage_json(_workflow().update_part_quantity(ticket_id, usage_id, json_payload().get('quantity')))


@tickets_bp.delete('/<int:ticket_id>/parts/<int:usage_id>')
@require_permissions('TKT.PARTS')
def remove_part(ticket_id: int, usage_id: int):
    return _ticket_json(_workflow().remove_part_usage(ticket_id, usage_id), detail=True)


# ---------- Equipment ---------- #

@tickets_bp.get('/<int:ticket_id>/equipment')
@require_permissions('TKT.READ')
def list_equipment(ticket_id: int):
    return {'data': [_equipment_json(e) for e in _workflow().list_equipment(ticket_id)]}


@tickets_bp.post('/<int:ticket_id>/equipment')
@require_permissions('TKT.MANAGE')
def add_equipment(ticket_id: int):
    return _equipment_json(_workflow().add_equipment(ticket_id, json_payload())), 201


@tickets_bp.get('/<int:ticket_id>/equipment/<int:equipment_id>')
@require_permissions('TKT.READ')
def get_equipment(ticket_id: int, equipment_id: int):
    return _equipment_json(_workflow().get_equipment(ticket_id, equipment_id))


@tickets_bp.patch('/<int:ticket_id>/equipment/<int:equipment_id>')
@require_permissions('TKT.MANAGE')
def update_equipment(ticket_id: int, equipment_id: int):
    return _equipment_json(_workflow().update_equipment(ticket_id, equipment_id, json_payload()))


@tickets_bp.delete('/<int:ticket_id>/equipment/<int:equipment_id>')
@require_permissions('TKT.MANAGE')
def remove_equipment(ticket_id: int, equipment_id: int):
    return _ticket_json(_workflow().remove_equipment(ticket_id, equipment_id), detail=True)


def _iso(dt):
    return dt.isoformat() if dt is not None else None


def _ticket_json(t: Ticket, detail: bool = False):
    body = {
        'id': t.id,
        'code': t.code,
        'status': t.status,
        'client_id': t.client_id,
        'technician_id': t.technician_id,
        'intake_user_id': t.intake_user_id,
        'reported_fault': t.reported_fault,
        'labor_cost_cents': t.labor_cost_cents,
        'parts_cost_cents': t.parts_cost_cents,
        'budget_total_cents': t.budget_total_cents,
        'discount_cents': t.discount_cents,
        'total_due_cents': t.total_due_cents,
    }
    if detail:
        body.update({
            'diagnosis': t.diagnosis,
            'estimated_days': t.estimated_days,
            'discount_kind': t.discount_kind,
            'discount_value': t.discount_value,
            'discount_reason': t.discount_reason,
            'rejection_reason': t.rejection_reason,
            'cancellation_reason': t.cancellation_reason,
            'repair_notes': t.repair_notes,
            'test_result': t.test_result,
            'delivery_notes': t.delivery_notes,
            'created_at': _iso(t.created_at),
            'budget_issued_at': _iso(t.budget_issued_at),
            'client_response_at': _iso(t.client_response_at),
            'repair_started_at': _iso(t.repair_started_at),
            'repair_finished_at': _iso(t.repair_finished_at),
            'delivered_at': _iso(t.delivered_at),
            'equipment': [_equipment_json(e) for e in t.equipment],
            'parts': [_usage_json(u) for u in t.part_usages],
        })
    return body


def _usage_json(u: PartUsage):
    return {
        'id': u.id,
        'ticket_id': u.ticket_id,
        'part_id': u.part_id,
        'quantity': u.quantity,
        'unit_price_cents': u.unit_price_cents,
        'subtotal_cents': u.subtotal_cents,
        'stock_deducted': u.stock_deducted,
        'notes': u.notes,
    }


def _equipment_json(e: TicketEquipment):
    return {
        'id': e.id,
        'ticket_id': e.ticket_id,
        'device_type': e.device_type,
        'brand': e.brand,
        'model': e.model,
        'serial_number': e.serial_number,
        'accessories': e.accessories,
        'notes': e.notes,
    }
