from datetime import datetime, timezone

import pytest
from sqlalchemy import select, func

from repairdesk.errors import (
    ConflictRetryableError, InvalidTransitionError, NotFoundError, PreconditionFailedError,
)
from repairdesk.models.part import Part, StockMovement
from repairdesk.models.ticket import Ticket
from repairdesk.models.user import User
from repairdesk.services import notifications as notif
from repairdesk.services.sequence import SequenceGenerator
from tests.test_utils_seed import ensure_user, ensure_client, ensure_part, build_workflow, new_ticket, advance_to

NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self, session=None, fail=False):
        self.session = session
        self.fail = fail
        self.events = []
        self.in_transaction = []

    def notify(self, event, payload):
        self.events.append((event, payload))
        if self.session is not None:
            self.in_transaction.append(self.session.in_transaction())
        if self.fail:
            raise RuntimeError('mail server down')


class FixedSequence:
    def generate(self):
        return 'RPR-MAIN-20261019-0001'


@pytest.fixture()
def tech(session):
    return ensure_user('tech@example.com', session=session)


@pytest.fixture()
def owner(session):
    return ensure_client('Dana', session=session)


@pytest.fixture()
def notifier(session):
    return RecordingNotifier(session)


@pytest.fixture()
def wf(session, tech, notifier):
    return build_workflow(session, notifier=notifier, user_id=tech.id, clock=lambda: NOW)


def _qty(session, part_id):
    return session.execute(select(Part.quantity).where(Part.id == part_id)).scalar_one()


def _movement_count(session):
    return session.execute(select(func.count()).select_from(StockMovement)).scalar_one()


# ---------- Scenarios ---------- #

def test_scenario_quote_and_approve_deducts_parts(session, wf, tech, owner):
    screen = ensure_part('SCN-1', quantity=5, session=session)
    cable = ensure_part('CBL-1', quantity=1, session=session)
    t = new_ticket(wf, owner)
    assert t.status == Ticket.STATUS_INTAKE
    assert SequenceGenerator.is_valid_format(t.code)
    t = wf.assign_technician(t.id, tech.id)
    wf.assign_part(t.id, screen.id, 2)
    wf.assign_part(t.id, cable.id, 1)
    t = wf.record_diagnosis(t.id, 'Broken screen and flex cable', 500, 300, 4)
    assert t.status == Ticket.STATUS_QUOTED
    assert t.budget_total_cents == 800
    assert t.total_due_cents == 800
    assert t.budget_issued_at == NOW
    t = wf.approve_budget(t.id)
    assert t.status == Ticket.STATUS_APPROVED
    assert t.client_response_at == NOW
    assert all(u.stock_deducted for u in t.part_usages)
    assert (_qty(session, screen.id), _qty(session, cable.id)) == (3, 0)


def test_scenario_reject_then_cancel_never_touches_stock(session, wf, tech, owner):
    part = ensure_part('SCN-2', quantity=5, session=session)
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_QUOTED, tech.id)
    wf.assign_part(t.id, part.id, 2)
    t = wf.reject_budget(t.id, 'too expensive')
    assert t.status == Ticket.STATUS_REJECTED
    assert t.rejection_reason == 'too expensive'
    assert _qty(session, part.id) == 5
    t = wf.cancel(t.id, 'client withdrew')
    assert t.status == Ticket.STATUS_CANCELLED
    assert _qty(session, part.id) == 5
    assert _movement_count(session) == 0


def test_scenario_cancel_after_approval_restores_stock(session, wf, tech, owner):
    a = ensure_part('SCN-3A', quantity=4, session=session)
    b = ensure_part('SCN-3B', quantity=9, session=session)
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_QUOTED, tech.id)
    wf.assign_part(t.id, a.id, 4)
    wf.assign_part(t.id, b.id, 3)
    wf.approve_budget(t.id)
    assert (_qty(session, a.id), _qty(session, b.id)) == (0, 6)
    t = wf.cancel(t.id, 'customer changed mind')
    assert t.status == Ticket.STATUS_CANCELLED
    assert t.cancellation_reason == 'customer changed mind'
    assert (_qty(session, a.id), _qty(session, b.id)) == (4, 9)
    assert not any(u.stock_deducted for u in t.part_usages)


def test_full_happy_path_with_failed_test_loop(session, wf, tech, owner, notifier):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_APPROVED, tech.id)
    t = wf.start_repair(t.id)
    assert t.repair_started_at == NOW
    t = wf.complete_repair(t.id)
    finished = t.repair_finished_at
    t = wf.record_test_result(t.id, 'Battery drains overnight', False)
    assert t.status == Ticket.STATUS_REPAIRING
    t = wf.complete_repair(t.id)
    assert t.repair_finished_at == finished
    t = wf.record_test_result(t.id, 'Holds charge', True)
    assert t.status == Ticket.STATUS_READY
    assert t.test_result == 'Holds charge'
    t = wf.deliver(t.id, '  Paid in cash ')
    assert t.status == Ticket.STATUS_DELIVERED
    assert t.delivery_notes == 'Paid in cash'
    assert t.delivered_at == NOW
    assert [e for e, _ in notifier.events] == [
        notif.EVENT_TICKET_CREATED, notif.EVENT_BUDGET_QUOTED, notif.EVENT_READY_FOR_PICKUP,
    ]


def test_mark_ready_from_testing(session, wf, tech, owner, notifier):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_TESTING, tech.id)
    t = wf.mark_ready(t.id)
    assert t.status == Ticket.STATUS_READY
    assert notifier.events[-1][0] == notif.EVENT_READY_FOR_PICKUP


# ---------- Preconditions & transitions ---------- #

def test_create_ticket_validation(session, wf, tech, owner):
    with pytest.raises(NotFoundError):
        wf.create_ticket(999, 'Dead')
    gone = ensure_client('Gone', session=session)
    gone.deleted_at = NOW
    session.commit()
    with pytest.raises(NotFoundError):
        wf.create_ticket(gone.id, 'Dead')
    with pytest.raises(PreconditionFailedError):
        wf.create_ticket(owner.id, '   ')
    with pytest.raises(PreconditionFailedError):
        wf.create_ticket(owner.id, 'Dead', [{'brand': 'Acme'}])
    with pytest.raises(PreconditionFailedError):
        wf.create_ticket(owner.id, 'Dead', ['Laptop'])
    t = wf.create_ticket(owner.id, ' Dead ', [{'device_type': 'Tablet', 'serial_number': 'T-9'}])
    assert t.reported_fault == 'Dead'
    assert t.intake_user_id == tech.id
    assert t.created_at == NOW
    assert [(e.device_type, e.serial_number, e.brand) for e in t.equipment] == [('Tablet', 'T-9', None)]
    assert session.execute(select(func.count()).select_from(Ticket)).scalar_one() == 1


def test_assign_technician_checks_user(session, wf, owner):
    t = new_ticket(wf, owner)
    clerk = ensure_user('front@example.com', role=User.ROLE_RECEPTIONIST, session=session)
    retired = ensure_user('old@example.com', is_active=False, session=session)
    with pytest.raises(NotFoundError) as exc:
        wf.assign_technician(t.id, 4242)
    assert exc.value.entity == 'Technician'
    with pytest.raises(PreconditionFailedError):
        wf.assign_technician(t.id, clerk.id)
    with pytest.raises(PreconditionFailedError):
        wf.assign_technician(t.id, retired.id)
    assert wf.get_ticket(t.id).technician_id is None
    assert wf.get_ticket(t.id).status == Ticket.STATUS_INTAKE


def test_wrong_state_names_current_and_allowed(session, wf, owner):
    t = new_ticket(wf, owner)
    with pytest.raises(InvalidTransitionError) as exc:
        wf.approve_budget(t.id)
    err = exc.value
    assert err.current == Ticket.STATUS_INTAKE
    assert err.attempted == Ticket.STATUS_APPROVED
    assert err.allowed == [Ticket.STATUS_CANCELLED, Ticket.STATUS_DIAGNOSING]
    assert 'allowed from INTAKE: CANCELLED, DIAGNOSING' in err.message
    assert err.to_dict()['entity'] == 'Ticket'
    assert err.to_dict()['entity_id'] == t.id


@pytest.mark.parametrize('labor,parts,days', [(-1, 0, None), (0, -5, None), ('x', 0, None), (1, 1, 0), (1, 1, 366)])
def test_record_diagnosis_rejects_bad_figures(session, wf, tech, owner, labor, parts, days):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_DIAGNOSING, tech.id)
    with pytest.raises(PreconditionFailedError):
        wf.record_diagnosis(t.id, 'Water damage', labor, parts, days)
    t = wf.get_ticket(t.id)
    assert t.status == Ticket.STATUS_DIAGNOSING
    assert t.labor_cost_cents is None
    assert t.budget_issued_at is None


def test_record_diagnosis_requires_text(session, wf, tech, owner):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_DIAGNOSING, tech.id)
    with pytest.raises(PreconditionFailedError):
        wf.record_diagnosis(t.id, '', 100, 100)
    assert wf.record_diagnosis(t.id, 'ok', 0, 0).budget_total_cents == 0


def test_failed_precondition_keeps_no_partial_writes(session, wf, tech, owner):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_QUOTED, tech.id)
    with pytest.raises(PreconditionFailedError):
        wf.reject_budget(t.id, ' ')
    t = wf.get_ticket(t.id)
    assert t.status == Ticket.STATUS_QUOTED
    assert t.client_response_at is None
    with pytest.raises(PreconditionFailedError):
        wf.cancel(t.id, None)
    assert wf.get_ticket(t.id).cancellation_reason is None


def test_discounts_recompute_total(session, wf, tech, owner):
    t = new_ticket(wf, owner)
    with pytest.raises(PreconditionFailedError):
        wf.apply_discount(t.id, Ticket.DISCOUNT_PERCENT, 10, 'loyal client')
    t = advance_to(wf, t.id, Ticket.STATUS_QUOTED, tech.id, labor_cents=500, parts_cents=300)
    t = wf.apply_discount(t.id, Ticket.DISCOUNT_PERCENT, 10, 'loyal client')
    assert (t.budget_total_cents, t.discount_cents, t.total_due_cents) == (800, 80, 720)
    t = wf.apply_discount(t.id, Ticket.DISCOUNT_AMOUNT, 1000, 'goodwill')
    assert (t.budget_total_cents, t.discount_cents, t.total_due_cents) == (800, 1000, 0)
    for kind, value in ((Ticket.DISCOUNT_PERCENT, 101), (Ticket.DISCOUNT_AMOUNT, 0), ('FREE', 5)):
        with pytest.raises(PreconditionFailedError):
            wf.apply_discount(t.id, kind, value, 'nope')
    with pytest.raises(PreconditionFailedError):
        wf.apply_discount(t.id, Ticket.DISCOUNT_AMOUNT, 10, '')
    assert wf.get_ticket(t.id).discount_reason == 'goodwill'


def test_discount_survives_later_part_changes(session, wf, tech, owner):
    part = ensure_part('DSC-1', quantity=5, sale_price_cents=200, session=session)
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_QUOTED, tech.id, labor_cents=1000, parts_cents=0)
    wf.apply_discount(t.id, Ticket.DISCOUNT_PERCENT, 50, 'promo')
    wf.assign_part(t.id, part.id, 3)
    t = wf.get_ticket(t.id)
    assert (t.budget_total_cents, t.discount_cents, t.total_due_cents) == (1600, 800, 800)


def test_notes_only_while_repairing(session, wf, tech, owner):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_APPROVED, tech.id)
    with pytest.raises(PreconditionFailedError):
        wf.add_note(t.id, 'too early')
    wf.start_repair(t.id)
    wf.add_note(t.id, 'Replaced screen')
    t = wf.add_note(t.id, 'Reflowed board')
    assert t.status == Ticket.STATUS_REPAIRING
    assert t.repair_notes == 'Replaced screen\n\n--- 2026-10-19 10:00:00 ---\nReflowed board'
    with pytest.raises(PreconditionFailedError):
        wf.add_note(t.id, '  ')


def test_test_result_requires_bool_and_text(session, wf, tech, owner):
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_TESTING, tech.id)
    with pytest.raises(PreconditionFailedError):
        wf.record_test_result(t.id, 'fine', 'yes')
    with pytest.raises(PreconditionFailedError):
        wf.record_test_result(t.id, '', True)
    assert wf.get_ticket(t.id).status == Ticket.STATUS_TESTING


@pytest.mark.parametrize('state', [
    Ticket.STATUS_INTAKE, Ticket.STATUS_DIAGNOSING, Ticket.STATUS_QUOTED, Ticket.STATUS_APPROVED,
    Ticket.STATUS_REJECTED, Ticket.STATUS_REPAIRING, Ticket.STATUS_TESTING, Ticket.STATUS_READY,
])
def test_cancel_from_any_non_terminal_state(session, wf, tech, owner, state):
    t = advance_to(wf, new_ticket(wf, owner).id, state, tech.id)
    t = wf.cancel(t.id, 'client withdrew')
    assert t.status == Ticket.STATUS_CANCELLED


@pytest.mark.parametrize('state', [Ticket.STATUS_DELIVERED, Ticket.STATUS_CANCELLED])
def test_terminal_states_refuse_everything(session, wf, tech, owner, state):
    t = advance_to(wf, new_ticket(wf, owner).id, state, tech.id)
    with pytest.raises(InvalidTransitionError) as exc:
        wf.cancel(t.id, 'again')
    assert exc.value.allowed == []
    assert 'none (final state)' in exc.value.message
    with pytest.raises(InvalidTransitionError):
        wf.start_repair(t.id)
    assert wf.legal_destinations(t.id) == []


# ---------- Notifications ---------- #

def test_notifications_are_sent_after_commit(session, tech, owner):
    notifier = RecordingNotifier(session)
    wf = build_workflow(session, notifier=notifier, user_id=tech.id)
    t = advance_to(wf, new_ticket(wf, owner).id, Ticket.STATUS_QUOTED, tech.id, labor_cents=700, parts_cents=0)
    assert [e for e, _ in notifier.events] == [notif.EVENT_TICKET_CREATED, notif.EVENT_BUDGET_QUOTED]
    assert notifier.in_transaction == [False, False]
    payload = notifier.events[-1][1]
    assert payload['ticket_code'] == t.code
    assert payload['total_due_cents'] == 700
    assert payload['status'] == Ticket.STATUS_QUOTED


def test_failing_notifier_never_blocks_workflow(session, tech, owner, caplog):
    wf = build_workflow(session, notifier=RecordingNotifier(fail=True), user_id=tech.id)
    with caplog.at_level('ERROR', logger='repairdesk.services.notifications'):
        t = new_ticket(wf, owner)
    assert t.id is not None
    assert wf.get_ticket(t.id).status == Ticket.STATUS_INTAKE
    assert any('notification ticket_created failed' in r.getMessage() for r in caplog.records)
    assert wf.outbox.pending == []


def test_rolled_back_operation_sends_nothing(session, tech, owner):
    notifier = RecordingNotifier()
    wf = build_workflow(session, notifier=notifier, user_id=tech.id, sequence=FixedSequence())
    new_ticket(wf, owner)
    with pytest.raises(ConflictRetryableError) as exc:
        new_ticket(wf, owner)
    assert exc.value.to_dict()['retryable'] is True
    assert [e for e, _ in notifier.events] == [notif.EVENT_TICKET_CREATED]
    assert wf.outbox.pending == []
    assert session.execute(select(func.count()).select_from(Ticket)).scalar_one() == 1


# ---------- Queries ---------- #

def test_queries_and_transition_lookups(session, wf, tech, owner):
    other = ensure_client('Eve', session=session)
    first = new_ticket(wf, owner, fault='Cracked hinge')
    second = new_ticket(wf, other, fault='No sound')
    advance_to(wf, second.id, Ticket.STATUS_QUOTED, tech.id)
    wf.cancel(first.id, 'duplicate')

    assert wf.get_ticket_by_code(second.code).id == second.id
    with pytest.raises(NotFoundError):
        wf.get_ticket_by_code('RPR-MAIN-19990101-0001')
    with pytest.raises(NotFoundError):
        wf.get_ticket(31337)

    rows, total = wf.list_tickets()
    assert total == 2 and [r.id for r in rows] == [second.id, first.id]
    rows, total = wf.list_tickets(status='quoted')
    assert [r.id for r in rows] == [second.id]
    rows, _ = wf.list_tickets(active_only=True)
    assert [r.id for r in rows] == [second.id]
    rows, _ = wf.list_tickets(client_id=owner.id)
    assert [r.id for r in rows] == [first.id]
    rows, _ = wf.list_tickets(technician_id=tech.id)
    assert [r.id for r in rows] == [second.id]
    rows, _ = wf.list_tickets(search='hinge')
    assert [r.id for r in rows] == [first.id]
    rows, total = wf.list_tickets(limit=1, offset=1)
    assert total == 2 and [r.id for r in rows] == [first.id]
    with pytest.raises(PreconditionFailedError):
        wf.list_tickets(status='LOST')

    assert wf.legal_destinations(second.id) == ['APPROVED', 'CANCELLED', 'REJECTED']
    assert wf.can_transition(second.id, 'approved') is True
    assert wf.can_transition(second.id, 'DELIVERED') is False
    assert wf.can_transition(second.id, 'QUOTED') is True


def test_transition_bumps_updated_at(session, wf, tech, owner):
    t = new_ticket(wf, owner)
    session.execute(Ticket.__table__.update().where(Ticket.id == t.id).values(updated_at=datetime(2000, 1, 1)))
    session.commit()
    wf.assign_technician(t.id, tech.id)
    stamp = session.execute(select(Ticket.updated_at).where(Ticket.id == t.id)).scalar_one()
    assert stamp.year > 2000
