from __future__ import annotations
"""Parts assigned to tickets and the points where they move stock.

Assignment only reserves on paper (``stock_deducted`` stays False); stock is
taken by ``decrement_all`` when the budget is approved and returned by
``reintegrate_all`` when the ticket is cancelled. The tracker never commits: the
workflow orchestrator's unit of work wraps every call, so a failed decrement
rolls the whole batch back and a retry only touches records still undeducted.
"""
import logging
from typing import List, Optional

from sqlalchemy import select

from repairdesk.errors import InsufficientStockError, NotFoundError, PreconditionFailedError, RepairDeskError
from repairdesk.models.part import Part, PartUsage, StockMovement
from repairdesk.models.ticket import Ticket
from repairdesk.services.stock_ledger import StockLedger
from repairdesk.utils.validation import positive_int, non_negative_int, optional_text

logger = logging.getLogger(__name__)

# Tickets in these states already consumed their parts; late additions are deducted on the spot
DEDUCTED_STATES = (Ticket.STATUS_APPROVED, Ticket.STATUS_REPAIRING, Ticket.STATUS_TESTING, Ticket.STATUS_READY)


class PartUsageTracker:
    def __init__(self, session, ledger: Optional[StockLedger] = None):
        self.session = session
        self.ledger = ledger or StockLedger(session)

    def assign_part(self, ticket: Ticket, part_id: int, quantity, unit_price_cents=None,
                    notes: Optional[str] = None, actor_id: Optional[int] = None) -> PartUsage:
        self._assert_editable(ticket)
        quantity = positive_int(quantity, 'quantity')
        part = self.session.get(Part, part_id)
        if part is None or part.deleted_at is not None:
            raise NotFoundError('Part', part_id)
        if not part.is_active:
            raise PreconditionFailedError(f'Part {part.code} is inactive', entity='Part', entity_id=part.id)
        if part.quantity < quantity:
            raise InsufficientStockError(part.id, part.code, part.quantity, quantity)
        price = part.sale_price_cents if unit_price_cents is None else non_negative_int(unit_price_cents, 'unit_price_cents')
        usage = PartUsage(
            ticket_id=ticket.id,
            part_id=part.id,
            quantity=quantity,
            unit_price_cents=price,
            stock_deducted=False,
            notes=optional_text(notes),
        )
        usage.part = part
        usage.recompute_subtotal()
        ticket.part_usages.append(usage)
        if ticket.status in DEDUCTED_STATES:
            self._deduct(ticket, usage, actor_id)
        ticket.refresh_parts_cost()
        logger.info('ticket %s: assigned part %s x%s', ticket.code, part.code, quantity)
        return usage

    def decrement_all(self, ticket: Ticket, actor_id: Optional[int] = None) -> int:
        """Deduct every usage not yet deducted. Any failure propagates and aborts the batch."""
        count = 0
        for usage in ticket.part_usages:
            if usage.stock_deducted:
                continue
            self._deduct(ticket, usage, actor_id)
            count += 1
        return count

    def reintegrate_all(self, ticket: Ticket, actor_id: Optional[int] = None) -> int:
        """Return deducted stock; per-record failures are logged and skipped."""
        count = 0
        for usage in ticket.part_usages:
            if not usage.stock_deducted:
                continue
            try:
                self._reintegrate(ticket, usage, actor_id)
                count += 1
            except RepairDeskError:
                logger.exception('ticket %s: could not reintegrate usage %s (part %s)', ticket.code, usage.id, usage.part_id)
        return count

    def remove_usage(self, ticket: Ticket, usage_id: int, actor_id: Optional[int] = None):
        self._assert_editable(ticket)
        usage = self._find_usage(ticket, usage_id)
        if usage.stock_deducted:
            self._reintegrate(ticket, usage, actor_id)
        ticket.part_usages.remove(usage)
        ticket.refresh_parts_cost()
        logger.info('ticket %s: removed usage %s (part %s)', ticket.code, usage_id, usage.part_id)

    def update_quantity(self, ticket: Ticket, usage_id: int, new_quantity, actor_id: Optional[int] = None) -> PartUsage:
        self._assert_editable(ticket)
        usage = self._find_usage(ticket, usage_id)
        new_quantity = positive_int(new_quantity, 'quantity')
        delta = new_quantity - usage.quantity
        if delta == 0:
            return usage
        if usage.stock_deducted:
            # move only the difference so stock is never transiently over-committed
            if delta > 0:
                self.ledger.decrease(usage.part_id, delta, StockMovement.KIND_TICKET_CONSUMPTION,
                                     ticket_id=ticket.id, actor_id=actor_id,
                                     description=f'Ticket {ticket.code}: quantity raised to {new_quantity}')
            else:
                self.ledger.increase(usage.part_id, -delta, StockMovement.KIND_TICKET_REINTEGRATION,
                                     ticket_id=ticket.id, actor_id=actor_id,
                                     description=f'Ticket {ticket.code}: quantity lowered to {new_quantity}')
        else:
            part = self.session.get(Part, usage.part_id)
            if part.quantity < new_quantity:
                raise InsufficientStockError(part.id, part.code, part.quantity, new_quantity)
        usage.quantity = new_quantity
        usage.recompute_subtotal()
        ticket.refresh_parts_cost()
        return usage

    def usages_for(self, ticket_id: int) -> List[PartUsage]:
        return list(self.session.execute(
            select(PartUsage).where(PartUsage.ticket_id == ticket_id).order_by(PartUsage.id)
        ).scalars())

    def _deduct(self, ticket: Ticket, usage: PartUsage, actor_id):
        if usage.stock_deducted:
            raise PreconditionFailedError('usage already deducted', entity='PartUsage', entity_id=usage.id)
        self.ledger.decrease(usage.part_id, usage.quantity, StockMovement.KIND_TICKET_CONSUMPTION,
                             ticket_id=ticket.id, actor_id=actor_id,
                             description=f'Ticket {ticket.code}: consumption')
        usage.stock_deducted = True

    def _reintegrate(self, ticket: Ticket, usage: PartUsage, actor_id):
        if not usage.stock_deducted:
            raise PreconditionFailedError('usage was never deducted', entity='PartUsage', entity_id=usage.id)
        self.ledger.increase(usage.part_id, usage.quantity, StockMovement.KIND_TICKET_REINTEGRATION,
                             ticket_id=ticket.id, actor_id=actor_id,
                             description=f'Ticket {ticket.code}: reintegration')
        usage.stock_deducted = False

    @staticmethod
    def _find_usage(ticket: Ticket, usage_id: int) -> PartUsage:
        for usage in ticket.part_usages:
            if usage.id == usage_id:
                return usage
        raise NotFoundError('PartUsage', usage_id)

    @staticmethod
    def _assert_editable(ticket: Ticket):
        if ticket.is_terminal:
            raise PreconditionFailedError(
                f'Ticket {ticket.code} is {ticket.status}; parts can no longer change',
                entity='Ticket', entity_id=ticket.id, current_state=ticket.status,
            )
