from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func

from repairdesk.config import ticketing as ticketing_cfg
from repairdesk.decorators.transaction import atomic
from repairdesk.errors import InvalidTransitionError, NotFoundError, PreconditionFailedError
from repairdesk.models.part import Part, StockMovement
from repairdesk.models.purchase import Purchase, PurchaseLine
from repairdesk.services.policy import current_user_id
from repairdesk.services.sequence import SequenceGenerator
from repairdesk.services.stock_ledger import StockLedger
from repairdesk.utils.fsm import TransitionValidator
from repairdesk.utils.validation import require_text, optional_text, positive_int, non_negative_int, validate_choice

logger = logging.getLogger(__name__)

PURCHASE_FSM = TransitionValidator({
    Purchase.STATUS_PENDING: {Purchase.STATUS_RECEIVED, Purchase.STATUS_CANCELLED},
    Purchase.STATUS_RECEIVED: set(),
    Purchase.STATUS_CANCELLED: set(),
})


class PurchaseReceiver:
    """Second entry point into the stock ledger: supplier orders received into inventory."""

    def __init__(self, session, ledger: Optional[StockLedger] = None,
                 sequence: Optional[SequenceGenerator] = None,
                 current_user: Callable[[], Optional[int]] = current_user_id,
                 clock: Optional[Callable[[], datetime]] = None):
        self.session = session
        self.ledger = ledger or StockLedger(session)
        self.sequence = sequence or SequenceGenerator(
            session, branch_code=ticketing_cfg.DEFAULT_PURCHASE_BRANCH_CODE, code_column=Purchase.code)
        self.current_user = current_user
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @atomic
    def create_purchase(self, supplier: str, lines: Iterable[Dict[str, Any]],
                        notes: Optional[str] = None, purchased_at: Optional[datetime] = None) -> Purchase:
        supplier = require_text(supplier, 'supplier')
        purchase = Purchase(
            code=self.sequence.generate(),
            supplier=supplier,
            status=Purchase.STATUS_PENDING,
            notes=optional_text(notes),
            created_by=self.current_user(),
            purchased_at=purchased_at or self.clock(),
        )
        total = 0
        for raw in lines or ():
            if not isinstance(raw, dict):
                raise PreconditionFailedError('lines entries must be objects', field='lines')
            part_id = raw.get('part_id')
            part = self.session.get(Part, part_id) if part_id is not None else None
            if part is None or part.deleted_at is not None:
                raise NotFoundError('Part', part_id)
            qty = positive_int(raw.get('quantity'), 'quantity')
            cost = non_negative_int(raw.get('unit_cost_cents'), 'unit_cost_cents')
            line = PurchaseLine(part_id=part.id, quantity=qty, unit_cost_cents=cost, subtotal_cents=qty * cost)
            line.part = part
            purchase.lines.append(line)
            total += line.subtotal_cents
        if not purchase.lines:
            raise PreconditionFailedError('at least one line required', field='lines')
        purchase.total_cents = total
        self.session.add(purchase)
        self.session.flush()
        logger.info('purchase %s created (%s lines, total %s)', purchase.code, len(purchase.lines), total)
        return purchase

    @atomic
    def receive(self, purchase_id: int, update_cost: bool = True) -> Purchase:
        purchase = self._lock(purchase_id)
        if purchase.status != Purchase.STATUS_PENDING:
            raise InvalidTransitionError(purchase.status, Purchase.STATUS_RECEIVED,
                                         PURCHASE_FSM.legal_destinations(purchase.status),
                                         entity='Purchase', entity_id=purchase.id)
        actor = self.current_user()
        for line in purchase.lines:
            self.ledger.increase(line.part_id, line.quantity, StockMovement.KIND_PURCHASE_RECEIPT,
                                 purchase_id=purchase.id, actor_id=actor,
                                 description=f'Purchase {purchase.code}')
            if update_cost:
                part = self.session.get(Part, line.part_id)
                if part.unit_cost_cents != line.unit_cost_cents:
                    logger.info('part %s unit cost %s -> %s', part.code, part.unit_cost_cents, line.unit_cost_cents)
                    part.unit_cost_cents = line.unit_cost_cents
        purchase.received_at = self.clock()
        PURCHASE_FSM.assert_can_transition(purchase.status, Purchase.STATUS_RECEIVED, entity='Purchase', entity_id=purchase.id)
        purchase.status = Purchase.STATUS_RECEIVED
        logger.info('purchase %s received', purchase.code)
        return purchase

    @atomic
    def cancel(self, purchase_id: int) -> Purchase:
        purchase = self._lock(purchase_id)
        if purchase.status == Purchase.STATUS_RECEIVED:
            raise PreconditionFailedError(f'Purchase {purchase.code} was already received',
                                          entity='Purchase', entity_id=purchase.id, current_state=purchase.status)
        PURCHASE_FSM.assert_can_transition(purchase.status, Purchase.STATUS_CANCELLED, entity='Purchase', entity_id=purchase.id)
        purchase.status = Purchase.STATUS_CANCELLED
        logger.info('purchase %s cancelled', purchase.code)
        return purchase

    def get_purchase(self, purchase_id: int) -> Purchase:
        purchase = self.session.get(Purchase, purchase_id)
        if purchase is None:
            raise NotFoundError('Purchase', purchase_id)
        return purchase

    def list_purchases(self, status: Optional[str] = None, supplier: Optional[str] = None,
                       limit: Optional[int] = None, offset: int = 0) -> Tuple[List[Purchase], int]:
        q = select(Purchase)
        if status:
            q = q.where(Purchase.status == validate_choice(status.upper(), Purchase.ALL_STATUSES, 'status'))
        if supplier:
            q = q.where(Purchase.supplier.ilike(f'%{supplier.strip()}%'))
        total = self.session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
        q = q.order_by(Purchase.id.desc()).offset(offset)
        if limit is not None:
            q = q.limit(limit)
        return list(self.session.execute(q).scalars()), total

    def _lock(self, purchase_id: int) -> Purchase:
        purchase = self.session.get(Purchase, purchase_id, with_for_update=True)
        if purchase is None:
            raise NotFoundError('Purchase', purchase_id)
        return purchase
