from __future__ import annotations
"""Single writer of ``Part.quantity``.

Every change goes through ``increase`` or ``decrease`` and appends one immutable
StockMovement with the before/after quantities. Neither primitive commits; the
caller's unit of work decides durability.

Lost updates are prevented at the storage boundary twice over: the part row is
loaded ``FOR UPDATE`` (a row lock on engines that support it) and the ``parts``
table carries a version column that SQLAlchemy checks on every UPDATE, so a
writer that validated against a stale quantity fails with StaleDataError at
flush instead of overwriting a concurrent change.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select

from repairdesk.decorators.transaction import atomic
from repairdesk.errors import InsufficientStockError, NotFoundError, PreconditionFailedError
from repairdesk.models.part import Part, StockMovement
from repairdesk.utils.validation import require_text, validate_choice

logger = logging.getLogger(__name__)


class StockLedger:
    def __init__(self, session, clock=None):
        self.session = session
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def lock_part(self, part_id: int) -> Part:
        part = self.session.get(Part, part_id, with_for_update=True)
        if part is None or part.deleted_at is not None:
            raise NotFoundError('Part', part_id)
        return part

    def increase(self, part_id: int, quantity: int, kind: str, ticket_id: Optional[int] = None,
                 purchase_id: Optional[int] = None, actor_id: Optional[int] = None,
                 description: Optional[str] = None) -> StockMovement:
        self._check_kind(kind, +1)
        if quantity is None or quantity <= 0:
            raise PreconditionFailedError('quantity must be > 0', field='quantity', entity='Part', entity_id=part_id)
        part = self.lock_part(part_id)
        return self._apply(part, quantity, kind, ticket_id, purchase_id, actor_id, description)

    def decrease(self, part_id: int, quantity: int, kind: str, ticket_id: Optional[int] = None,
                 actor_id: Optional[int] = None, description: Optional[str] = None) -> StockMovement:
        self._check_kind(kind, -1)
        if quantity is None or quantity <= 0:
            raise PreconditionFailedError('quantity must be > 0', field='quantity', entity='Part', entity_id=part_id)
        part = self.lock_part(part_id)
        if quantity > part.quantity:
            raise InsufficientStockError(part.id, part.code, part.quantity, quantity)
        return self._apply(part, quantity, kind, ticket_id, None, actor_id, description)

    @atomic
    def adjust(self, part_id: int, delta: int, reason: str, actor_id: Optional[int] = None) -> StockMovement:
        """Manual stock correction; positive delta adds, negative removes."""
        reason = require_text(reason, 'reason')
        if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
            raise PreconditionFailedError('delta must be a non-zero integer', field='delta', entity='Part', entity_id=part_id)
        if delta > 0:
            return self.increase(part_id, delta, StockMovement.KIND_MANUAL_INCREASE, actor_id=actor_id, description=reason)
        return self.decrease(part_id, -delta, StockMovement.KIND_MANUAL_DECREASE, actor_id=actor_id, description=reason)

    def movements_for(self, part_id: int, limit: Optional[int] = None, offset: int = 0) -> List[StockMovement]:
        if self.session.get(Part, part_id) is None:
            raise NotFoundError('Part', part_id)
        q = (
            select(StockMovement)
            .where(StockMovement.part_id == part_id)
            .order_by(StockMovement.id.desc())
            .offset(offset)
        )
        if limit is not None:
            q = q.limit(limit)
        return list(self.session.execute(q).scalars())

    def parts_below_minimum(self) -> List[Part]:
        q = (
            select(Part)
            .where(Part.deleted_at.is_(None), Part.is_active.is_(True), Part.quantity <= Part.min_quantity)
            .order_by(Part.code)
        )
        return list(self.session.execute(q).scalars())

    def _apply(self, part: Part, quantity: int, kind: str, ticket_id, purchase_id, actor_id, description) -> StockMovement:
        before = part.quantity
        after = before + StockMovement.KIND_SIGNS[kind] * quantity
        part.quantity = after
        movement = StockMovement(
            part_id=part.id,
            kind=kind,
            quantity=quantity,
            quantity_before=before,
            quantity_after=after,
            ticket_id=ticket_id,
            purchase_id=purchase_id,
            actor_user_id=actor_id,
            description=description,
            created_at=self.clock(),
        )
        self.session.add(movement)
        logger.info('stock %s part=%s qty=%s %s->%s ticket=%s purchase=%s',
                    kind, part.code, quantity, before, after, ticket_id, purchase_id)
        if after <= part.min_quantity and before > part.min_quantity:
            logger.warning('part %s at or below minimum (%s <= %s)', part.code, after, part.min_quantity)
        return movement

    @staticmethod
    def _check_kind(kind: str, sign: int):
        validate_choice(kind, StockMovement.ALL_KINDS, 'kind')
        if StockMovement.KIND_SIGNS[kind] != sign:
            raise PreconditionFailedError(f'movement kind {kind} does not match direction', field='kind')
