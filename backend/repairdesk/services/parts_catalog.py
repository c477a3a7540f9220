from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_

from repairdesk.decorators.transaction import atomic
from repairdesk.errors import NotFoundError, PreconditionFailedError
from repairdesk.models.part import Part, StockMovement
from repairdesk.services.stock_ledger import StockLedger
from repairdesk.utils.validation import require_text, optional_text, non_negative_int, require_bool

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'category', 'min_quantity', 'unit_cost_cents', 'sale_price_cents', 'is_active')


class PartCatalog:
    """Part master data. Quantity is never edited here; it only moves through the ledger."""

    def __init__(self, session, ledger: Optional[StockLedger] = None, current_user=lambda: None):
        self.session = session
        self.ledger = ledger or StockLedger(session)
        self.current_user = current_user

    @atomic
    def create_part(self, code: str, name: str, unit_cost_cents=0, sale_price_cents=0,
                    min_quantity=0, initial_quantity=0, category: Optional[str] = None) -> Part:
        code = require_text(code, 'code').upper()
        exists = self.session.execute(select(Part.id).where(Part.code == code)).first()
        if exists is not None:
            raise PreconditionFailedError(f'Part code {code} already exists', field='code', entity='Part')
        part = Part(
            code=code,
            name=require_text(name, 'name'),
            category=optional_text(category),
            quantity=0,
            min_quantity=non_negative_int(min_quantity, 'min_quantity'),
            unit_cost_cents=non_negative_int(unit_cost_cents, 'unit_cost_cents'),
            sale_price_cents=non_negative_int(sale_price_cents, 'sale_price_cents'),
            is_active=True,
        )
        self.session.add(part)
        self.session.flush()
        initial = non_negative_int(initial_quantity, 'initial_quantity')
        if initial:
            self.ledger.increase(part.id, initial, StockMovement.KIND_MANUAL_INCREASE,
                                 actor_id=self.current_user(), description='Initial stock')
        logger.info('part %s created with %s on hand', part.code, initial)
        return part

    @atomic
    def update_part(self, part_id: int, changes: Dict[str, Any]) -> Part:
        part = self.get_part(part_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if 'quantity' in unknown:
            raise PreconditionFailedError('quantity changes go through stock adjustments', field='quantity')
        if unknown:
            raise PreconditionFailedError(f"unknown fields: {', '.join(sorted(unknown))}")
        for key, value in changes.items():
            if key == 'name':
                value = require_text(value, 'name')
            elif key == 'category':
                value = optional_text(value)
            elif key == 'is_active':
                value = require_bool(value, key)
            else:
                value = non_negative_int(value, key)
            setattr(part, key, value)
        return part

    @atomic
    def delete_part(self, part_id: int) -> Part:
        part = self.get_part(part_id)
        part.deleted_at = datetime.now(timezone.utc)
        part.is_active = False
        return part

    def get_part(self, part_id: int) -> Part:
        part = self.session.get(Part, part_id)
        if part is None or part.deleted_at is not None:
            raise NotFoundError('Part', part_id)
        return part

    def list_parts(self, search: Optional[str] = None, active_only: bool = False,
                   limit: Optional[int] = None, offset: int = 0) -> Tuple[List[Part], int]:
        q = select(Part).where(Part.deleted_at.is_(None))
        if active_only:
            q = q.where(Part.is_active.is_(True))
        if search:
            like = f'%{search.strip()}%'
            q = q.where(or_(Part.code.ilike(like), Part.name.ilike(like)))
        total = self.session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
        q = q.order_by(Part.code).offset(offset)
        if limit is not None:
            q = q.limit(limit)
        return list(self.session.execute(q).scalars()), total
