from __future__ import annotations
from flask import Blueprint, request, current_app
from repairdesk.decorators.auth import require_permissions
from repairdesk import get_db
from repairdesk.config.pagination import build_list_payload
from repairdesk.models.purchase import Purchase
from repairdesk.services.purchasing import PurchaseReceiver
from repairdesk.services.sequence import SequenceGenerator
from repairdesk.utils.request_args import json_payload, pagination_args
from repairdesk.utils.validation import require_bool

purchases_bp = Blueprint('purchases', __name__)


def _receiver() -> PurchaseReceiver:
    session = get_db()
    sequence = SequenceGenerator.from_config(
        session, current_app.config, branch_key='PURCHASE_BRANCH_CODE', code_column=Purchase.code,
    )
    return PurchaseReceiver(session, sequence=sequence)


@purchases_bp.get('')
@require_permissions('PO.READ')
def list_purchases():
    limit, offset = pagination_args()
    rows, total = _receiver().list_purchases(
        status=request.args.get('status'),
        supplier=request.args.get('supplier'),
        limit=limit,
        offset=offset,
    )
    return build_list_payload([_purchase_json(p) for p in rows], total, limit, offset)


@purchases_bp.post('')
@require_permissions('PO.CREATE')
def create_purchase():
    data = json_payload()
    p = _receiver().create_purchase(data.get('supplier'), data.get('lines') or [], notes=data.get('notes'))
    return _purchase_json(p), 201


@purchases_bp.get('/<int:purchase_id>')
@require_permissions('PO.READ')
def get_purchase(purchase_id: int):
    return _purchase_json(_receiver().get_purchase(purchase_id))


@purchases_bp.post('/<int:purchase_id>/receive')
@require_permissions('PO.RECEIVE')
def receive_purchase(purchase_id: int):
    update_cost = require_bool(json_payload().get('update_cost', True), 'update_cost')
    return _purchase_json(_receiver().receive(purchase_id, update_cost=update_cost))


@purchases_bp.post('/<int:purchase_id>/cancel')
@require_permissions('PO.CANCEL')
def cancel_purchase(purchase_id: int):
    return _purchase_json(_receiver().cancel(purchase_id))


def _purchase_json(p: Purchase):
    return {
        'id': p.id,
        'code': p.code,
        'supplier': p.supplier,
        'status': p.status,
        'total_cents': p.total_cents,
        'notes': p.notes,
        'received_at': p.received_at.isoformat() if p.received_at else None,
        'lines': [
            {'id': l.id, 'part_id': l.part_id, 'quantity': l.quantity,
             'unit_cost_cents': l.unit_cost_cents, 'subtotal_cents': l.subtotal_cents}
            for l in p.lines
        ],
    }
