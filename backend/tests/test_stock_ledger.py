from datetime import datetime, timezone

import pytest
from sqlalchemy import select, func

from repairdesk.errors import InsufficientStockError, NotFoundError, PreconditionFailedError
from repairdesk.models.part import Part, StockMovement
from repairdesk.services.stock_ledger import StockLedger
from tests.test_utils_seed import ensure_part


def _movements(session, part_id):
    return list(session.execute(
        select(StockMovement).where(StockMovement.part_id == part_id).order_by(StockMovement.id)
    ).scalars())


def test_decrease_records_before_and_after(session):
    part = ensure_part('SCR-01', quantity=5, session=session)
    ledger = StockLedger(session)
    m = ledger.decrease(part.id, 2, StockMovement.KIND_TICKET_CONSUMPTION, ticket_id=None, description='use')
    session.commit()
    assert part.quantity == 3
    assert (m.quantity, m.quantity_before, m.quantity_after) == (2, 5, 3)
    assert m.kind == StockMovement.KIND_TICKET_CONSUMPTION


def test_decrease_to_exactly_zero_then_one_more_fails(session):
    part = ensure_part('SCR-02', quantity=4, session=session)
    ledger = StockLedger(session)
    ledger.decrease(part.id, 4, StockMovement.KIND_MANUAL_DECREASE)
    session.commit()
    assert part.quantity == 0
    with pytest.raises(InsufficientStockError) as exc:
        ledger.decrease(part.id, 1, StockMovement.KIND_MANUAL_DECREASE)
    assert exc.value.available == 0
    assert exc.value.requested == 1
    assert exc.value.status_code == 409
    assert len(_movements(session, part.id)) == 1


def test_increase_and_kind_direction_checks(session):
    part = ensure_part('SCR-03', quantity=1, session=session)
    ledger = StockLedger(session)
    ledger.increase(part.id, 9, StockMovement.KIND_PURCHASE_RECEIPT, purchase_id=None)
    assert part.quantity == 10
    with pytest.raises(PreconditionFailedError):
        ledger.increase(part.id, 1, StockMovement.KIND_TICKET_CONSUMPTION)
    with pytest.raises(PreconditionFailedError):
        ledger.decrease(part.id, 1, StockMovement.KIND_PURCHASE_RECEIPT)
    with pytest.raises(PreconditionFailedError):
        ledger.increase(part.id, 0, StockMovement.KIND_MANUAL_INCREASE)
    with pytest.raises(PreconditionFailedError):
        ledger.increase(part.id, -3, StockMovement.KIND_MANUAL_INCREASE)
    with pytest.raises(PreconditionFailedError):
        ledger.increase(part.id, 1, 'GIFT')


def test_missing_or_deleted_part_is_not_found(session):
    ledger = StockLedger(session)
    with pytest.raises(NotFoundError):
        ledger.increase(999, 1, StockMovement.KIND_MANUAL_INCREASE)
    part = ensure_part('SCR-DEL', quantity=3, session=session)
    part.deleted_at = datetime.now(timezone.utc)
    session.commit()
    with pytest.raises(NotFoundError):
        ledger.decrease(part.id, 1, StockMovement.KIND_MANUAL_DECREASE)


def test_adjust_commits_and_requires_reason(session):
    part = ensure_part('SCR-04', quantity=2, session=session)
    ledger = StockLedger(session)
    m = ledger.adjust(part.id, 5, 'cycle count', actor_id=42)
    assert m.kind == StockMovement.KIND_MANUAL_INCREASE
    assert m.actor_user_id == 42
    m = ledger.adjust(part.id, -3, 'damaged')
    assert m.kind == StockMovement.KIND_MANUAL_DECREASE
    assert part.quantity == 4
    with pytest.raises(PreconditionFailedError):
        ledger.adjust(part.id, 1, '  ')
    with pytest.raises(PreconditionFailedError):
        ledger.adjust(part.id, 0, 'nothing')
    with pytest.raises(InsufficientStockError):
        ledger.adjust(part.id, -5, 'too many')
    db_qty = session.execute(select(Part.quantity).where(Part.id == part.id)).scalar_one()
    assert db_qty == 4


def test_failed_adjust_leaves_no_movement(session):
    part = ensure_part('SCR-05', quantity=1, session=session)
    ledger = StockLedger(session)
    with pytest.raises(InsufficientStockError):
        ledger.adjust(part.id, -2, 'oops')
    count = session.execute(select(func.count()).select_from(StockMovement)).scalar_one()
    assert count == 0


def test_movements_newest_first_and_low_stock(session, caplog):
    part = ensure_part('SCR-06', quantity=6, min_quantity=2, session=session)
    ensure_part('SCR-07', quantity=0, min_quantity=0, session=session)
    ensure_part('SCR-08', quantity=0, min_quantity=5, session=session, is_active=False)
    ledger = StockLedger(session)
    with caplog.at_level('WARNING', logger='repairdesk.services.stock_ledger'):
        ledger.adjust(part.id, -3, 'first')
        ledger.adjust(part.id, -1, 'second')
    assert any('at or below minimum' in r.getMessage() for r in caplog.records)
    rows = ledger.movements_for(part.id)
    assert [m.description for m in rows] == ['second', 'first']
    assert [m.description for m in ledger.movements_for(part.id, limit=1, offset=1)] == ['first']
    assert [p.code for p in ledger.parts_below_minimum()] == ['SCR-06', 'SCR-07']
    with pytest.raises(NotFoundError):
        ledger.movements_for(12345)
