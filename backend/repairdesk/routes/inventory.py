from __future__ import annotations
from flask import Blueprint, request, abort
from repairdesk.decorators.auth import require_permissions
from repairdesk import get_db
from repairdesk.config.pagination import build_list_payload
from repairdesk.models.part import Part, StockMovement
from repairdesk.services.parts_catalog import PartCatalog
from repairdesk.services.policy import current_user_id
from repairdesk.services.stock_ledger import StockLedger
from repairdesk.utils.request_args import json_payload, pagination_args, required_int

inv_bp = Blueprint('inventory', __name__)

ADJUST_DIRECTIONS = {'IN': 1, 'OUT': -1}


def _catalog() -> PartCatalog:
    return PartCatalog(get_db(), current_user=current_user_id)


@inv_bp.get('/parts')
@require_permissions('INV.READ')
def list_parts():
    limit, offset = pagination_args()
    rows, total = _catalog().list_parts(
        search=request.args.get('q'),
        active_only=request.args.get('active') in ('1', 'true'),
        limit=limit,
        offset=offset,
    )
    return build_list_payload([_part_json(p) for p in rows], total, limit, offset)


@inv_bp.post('/parts')
@require_permissions('INV.ADJUST')
def create_part():
    data = json_payload()
    p = _catalog().create_part(
        data.get('code'),
        data.get('name'),
        unit_cost_cents=data.get('unit_cost_cents', 0),
        sale_price_cents=data.get('sale_price_cents', 0),
        min_quantity=data.get('min_quantity', 0),
        initial_quantity=data.get('initial_quantity', 0),
        category=data.get('category'),
    )
    return _part_json(p), 201


@inv_bp.get('/parts/<int:part_id>')
@require_permissions('INV.READ')
def get_part(part_id: int):
    return _part_json(_catalog().get_part(part_id))


@inv_bp.patch('/parts/<int:part_id>')
@require_permissions('INV.ADJUST')
def update_part(part_id: int):
    return _part_json(_catalog().update_part(part_id, json_payload()))


@inv_bp.delete('/parts/<int:part_id>')
@require_permissions('INV.ADJUST')
def delete_part(part_id: int):
    _catalog().delete_part(part_id)
    return '', 204


@inv_bp.post('/parts/<int:part_id>/adjust')
@require_permissions('INV.ADJUST')
def adjust_stock(part_id: int):
    data = json_payload()
    direction = (data.get('direction') or '').upper()
    if direction not in ADJUST_DIRECTIONS:
        abort(400, description='direction must be IN or OUT')
    quantity = required_int(data, 'quantity')
    if quantity <= 0:
        abort(400, description='quantity must be > 0')
    m = StockLedger(get_db()).adjust(part_id, ADJUST_DIRECTIONS[direction] * quantity, data.get('reason'),
                                     actor_id=current_user_id())
    return _movement_json(m), 201


@inv_bp.get('/parts/<int:part_id>/movements')
@require_permissions('INV.READ')
def part_movements(part_id: int):
    limit, offset = pagination_args()
    rows = StockLedger(get_db()).movements_for(part_id, limit=limit, offset=offset)
    return {'data': [_movement_json(m) for m in rows]}


@inv_bp.get('/low-stock')
@require_permissions('INV.READ')
def low_stock():
    return {'data': [_part_json(p) for p in StockLedger(get_db()).parts_below_minimum()]}


def _part_json(p: Part):
    return {
        'id': p.id,
        'code': p.code,
        'name': p.name,
        'category': p.category,
        'quantity': p.quantity,
        'min_quantity': p.min_quantity,
        'unit_cost_cents': p.unit_cost_cents,
        'sale_price_cents': p.sale_price_cents,
        'is_active': p.is_active,
        'needs_restock': p.needs_restock,
    }


def _movement_json(m: StockMovement):
    return {
        'id': m.id,
        'part_id': m.part_id,
        'kind': m.kind,
        'quantity': m.quantity,
        'quantity_before': m.quantity_before,
        'quantity_after': m.quantity_after,
        'ticket_id': m.ticket_id,
        'purchase_id': m.purchase_id,
        'actor_user_id': m.actor_user_id,
        'description': m.description,
        'created_at': m.created_at.isoformat() if m.created_at else None,
    }
