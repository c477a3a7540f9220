from __future__ import annotations
"""Ticket lifecycle orchestration.

One method per lifecycle event. Each follows the same shape: lock the ticket row,
check the state the operation requires, validate the payload, mutate fields, ask
TICKET_FSM for the move, then let ``atomic`` commit. Inventory moves at two points
only (budget approval deducts, cancellation reintegrates) and always inside the
same transaction as the state change.

Notifications are queued on the outbox and sent after commit; they never affect
the outcome of the operation.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func, or_

from repairdesk.decorators.transaction import atomic
from repairdesk.errors import InvalidTransitionError, NotFoundError, PreconditionFailedError
from repairdesk.models.client import Client
from repairdesk.models.part import PartUsage
from repairdesk.models.ticket import Ticket, TicketEquipment
from repairdesk.models.user import User
from repairdesk.services import notifications as notif
from repairdesk.services.notifications import NotificationOutbox, Notifier
from repairdesk.services.part_usage import PartUsageTracker
from repairdesk.services.policy import current_user_id
from repairdesk.services.sequence import SequenceGenerator
from repairdesk.utils.fsm import TransitionValidator
from repairdesk.utils.validation import require_text, optional_text, non_negative_int, positive_int, validate_choice

logger = logging.getLogger(__name__)

TICKET_FSM = TransitionValidator(
    {
        Ticket.STATUS_INTAKE: {Ticket.STATUS_DIAGNOSING},
        Ticket.STATUS_DIAGNOSING: {Ticket.STATUS_QUOTED},
        Ticket.STATUS_QUOTED: {Ticket.STATUS_APPROVED, Ticket.STATUS_REJECTED},
        Ticket.STATUS_APPROVED: {Ticket.STATUS_REPAIRING},
        Ticket.STATUS_REJECTED: {Ticket.STATUS_CANCELLED},
        Ticket.STATUS_REPAIRING: {Ticket.STATUS_TESTING},
        Ticket.STATUS_TESTING: {Ticket.STATUS_READY, Ticket.STATUS_REPAIRING},
        Ticket.STATUS_READY: {Ticket.STATUS_DELIVERED},
        Ticket.STATUS_DELIVERED: set(),
        Ticket.STATUS_CANCELLED: set(),
    },
    escape_state=Ticket.STATUS_CANCELLED,
    terminal=Ticket.TERMINAL_STATUSES,
)

NOTE_HEADER = '\n\n--- {stamp} ---\n'
MAX_ESTIMATED_DAYS = 365

EQUIPMENT_FIELDS = ('device_type', 'brand', 'model', 'serial_number', 'accessories', 'notes')


class WorkflowOrchestrator:
    def __init__(self, session, notifier: Optional[Notifier] = None,
                 sequence: Optional[SequenceGenerator] = None,
                 tracker: Optional[PartUsageTracker] = None,
                 current_user: Callable[[], Optional[int]] = current_user_id,
                 clock: Optional[Callable[[], datetime]] = None):
        self.session = session
        self.outbox = NotificationOutbox(notifier)
        self.sequence = sequence or SequenceGenerator(session)
        self.tracker = tracker or PartUsageTracker(session)
        self.current_user = current_user
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ---------- Lifecycle operations ---------- #

    @atomic
    def create_ticket(self, client_id: int, reported_fault: str,
                      equipment: Optional[Iterable[Dict[str, Any]]] = None) -> Ticket:
        client = self.session.get(Client, client_id)
        if client is None or client.is_deleted:
            raise NotFoundError('Client', client_id)
        reported_fault = require_text(reported_fault, 'reported_fault')
        ticket = Ticket(
            code=self.sequence.generate(),
            status=Ticket.STATUS_INTAKE,
            client_id=client.id,
            intake_user_id=self.current_user(),
            reported_fault=reported_fault,
            discount_cents=0,
            created_at=self.clock(),
        )
        for item in equipment or ():
            ticket.equipment.append(_build_equipment(item))
        self.session.add(ticket)
        self.session.flush()
        logger.info('ticket %s created for client %s', ticket.code, client.id)
        self._queue(notif.EVENT_TICKET_CREATED, ticket)
        return ticket

    @atomic
    def assign_technician(self, ticket_id: int, technician_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_INTAKE, Ticket.STATUS_DIAGNOSING)
        technician = self.session.get(User, technician_id)
        if technician is None:
            raise NotFoundError('Technician', technician_id)
        if not technician.is_technician:
            raise PreconditionFailedError(f'User {technician_id} is not a technician',
                                          entity='User', entity_id=technician_id, role=technician.role)
        if not technician.is_active:
            raise PreconditionFailedError(f'Technician {technician_id} is not active',
                                          entity='User', entity_id=technician_id)
        ticket.technician_id = technician.id
        self._move(ticket, Ticket.STATUS_DIAGNOSING)
        return ticket

    @atomic
    def record_diagnosis(self, ticket_id: int, diagnosis: str, labor_cost_cents, parts_cost_cents,
                         estimated_days=None) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_DIAGNOSING, Ticket.STATUS_QUOTED)
        self._require_technician(ticket)
        diagnosis = require_text(diagnosis, 'diagnosis')
        labor = non_negative_int(labor_cost_cents, 'labor_cost_cents')
        parts = non_negative_int(parts_cost_cents, 'parts_cost_cents')
        if estimated_days is not None:
            estimated_days = positive_int(estimated_days, 'estimated_days')
            if estimated_days > MAX_ESTIMATED_DAYS:
                raise PreconditionFailedError(f'estimated_days must be <= {MAX_ESTIMATED_DAYS}', field='estimated_days')
        ticket.diagnosis = diagnosis
        ticket.labor_cost_cents = labor
        ticket.parts_cost_cents = parts
        ticket.estimated_days = estimated_days
        ticket.recompute_totals()
        ticket.stamp('budget_issued_at', self.clock())
        self._move(ticket, Ticket.STATUS_QUOTED)
        self._queue(notif.EVENT_BUDGET_QUOTED, ticket)
        return ticket

    @atomic
    def apply_discount(self, ticket_id: int, kind: str, value, reason: str) -> Ticket:
        ticket = self._lock(ticket_id)
        if ticket.is_terminal:
            raise PreconditionFailedError(f'Ticket {ticket.code} is {ticket.status}',
                                          entity='Ticket', entity_id=ticket.id, current_state=ticket.status)
        if not ticket.has_budget:
            raise PreconditionFailedError('Ticket has no budget to discount', entity='Ticket', entity_id=ticket.id)
        kind = validate_choice(kind, Ticket.ALL_DISCOUNT_KINDS, 'kind')
        value = positive_int(value, 'value')
        if kind == Ticket.DISCOUNT_PERCENT and value > 100:
            raise PreconditionFailedError('percent discount must be between 1 and 100', field='value')
        ticket.discount_kind = kind
        ticket.discount_value = value
        ticket.discount_reason = require_text(reason, 'reason')
        ticket.recompute_totals()
        logger.info('ticket %s: discount %s %s applied (due %s)', ticket.code, kind, value, ticket.total_due_cents)
        return ticket

    @atomic
    def approve_budget(self, ticket_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_QUOTED, Ticket.STATUS_APPROVED)
        if not ticket.has_budget:
            raise PreconditionFailedError('Ticket has no budget', entity='Ticket', entity_id=ticket.id)
        ticket.stamp('client_response_at', self.clock())
        deducted = self.tracker.decrement_all(ticket, actor_id=self.current_user())
        self._move(ticket, Ticket.STATUS_APPROVED)
        logger.info('ticket %s: budget approved, %s usage(s) deducted', ticket.code, deducted)
        return ticket

    @atomic
    def reject_budget(self, ticket_id: int, reason: str) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_QUOTED, Ticket.STATUS_REJECTED)
        ticket.rejection_reason = require_text(reason, 'reason')
        ticket.stamp('client_response_at', self.clock())
        self._move(ticket, Ticket.STATUS_REJECTED)
        return ticket

    @atomic
    def start_repair(self, ticket_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_APPROVED, Ticket.STATUS_REPAIRING)
        self._require_technician(ticket)
        ticket.stamp('repair_started_at', self.clock())
        self._move(ticket, Ticket.STATUS_REPAIRING)
        return ticket

    @atomic
    def add_note(self, ticket_id: int, note: str) -> Ticket:
        ticket = self._lock(ticket_id)
        if ticket.status != Ticket.STATUS_REPAIRING:
            raise PreconditionFailedError('Notes can only be added while the ticket is being repaired',
                                          entity='Ticket', entity_id=ticket.id, current_state=ticket.status)
        note = require_text(note, 'note')
        if ticket.repair_notes and ticket.repair_notes.strip():
            stamp = self.clock().strftime('%Y-%m-%d %H:%M:%S')
            ticket.repair_notes = ticket.repair_notes + NOTE_HEADER.format(stamp=stamp) + note
        else:
            ticket.repair_notes = note
        return ticket

    @atomic
    def complete_repair(self, ticket_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_REPAIRING, Ticket.STATUS_TESTING)
        ticket.stamp('repair_finished_at', self.clock())
        self._move(ticket, Ticket.STATUS_TESTING)
        return ticket

    @atomic
    def record_test_result(self, ticket_id: int, result: str, passed: bool) -> Ticket:
        ticket = self._lock(ticket_id)
        target = Ticket.STATUS_READY if passed else Ticket.STATUS_REPAIRING
        self._require_state(ticket, Ticket.STATUS_TESTING, target)
        if not isinstance(passed, bool):
            raise PreconditionFailedError('passed must be true or false', field='passed')
        ticket.test_result = require_text(result, 'result')
        self._move(ticket, target)
        if passed:
            self._queue(notif.EVENT_READY_FOR_PICKUP, ticket)
        else:
            logger.info('ticket %s failed testing, back to repair', ticket.code)
        return ticket

    @atomic
    def mark_ready(self, ticket_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_TESTING, Ticket.STATUS_READY)
        self._move(ticket, Ticket.STATUS_READY)
        self._queue(notif.EVENT_READY_FOR_PICKUP, ticket)
        return ticket

    @atomic
    def deliver(self, ticket_id: int, notes: Optional[str] = None) -> Ticket:
        ticket = self._lock(ticket_id)
        self._require_state(ticket, Ticket.STATUS_READY, Ticket.STATUS_DELIVERED)
        ticket.delivery_notes = optional_text(notes)
        ticket.stamp('delivered_at', self.clock())
        self._move(ticket, Ticket.STATUS_DELIVERED)
        return ticket

    @atomic
    def cancel(self, ticket_id: int, reason: str) -> Ticket:
        ticket = self._lock(ticket_id)
        if ticket.is_terminal:
            raise InvalidTransitionError(ticket.status, Ticket.STATUS_CANCELLED,
                                         TICKET_FSM.legal_destinations(ticket.status),
                                         entity='Ticket', entity_id=ticket.id)
        ticket.cancellation_reason = require_text(reason, 'reason')
        returned = self.tracker.reintegrate_all(ticket, actor_id=self.current_user())
        self._move(ticket, Ticket.STATUS_CANCELLED)
        logger.info('ticket %s cancelled, %s usage(s) reintegrated', ticket.code, returned)
        return ticket

    # ---------- Parts ---------- #

    @atomic
    def assign_part(self, ticket_id: int, part_id: int, quantity, unit_price_cents=None,
                    notes: Optional[str] = None) -> PartUsage:
        ticket = self._lock(ticket_id)
        return self.tracker.assign_part(ticket, part_id, quantity, unit_price_cents, notes,
                                        actor_id=self.current_user())

    @atomic
    def remove_part_usage(self, ticket_id: int, usage_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self.tracker.remove_usage(ticket, usage_id, actor_id=self.current_user())
        return ticket

    @atomic
    def update_part_quantity(self, ticket_id: int, usage_id: int, quantity) -> PartUsage:
        ticket = self._lock(ticket_id)
        return self.tracker.update_quantity(ticket, usage_id, quantity, actor_id=self.current_user())

    def list_part_usages(self, ticket_id: int) -> List[PartUsage]:
        self.get_ticket(ticket_id)
        return self.tracker.usages_for(ticket_id)

    # ---------- Equipment ---------- #

    @atomic
    def add_equipment(self, ticket_id: int, item: Dict[str, Any]) -> TicketEquipment:
        ticket = self._lock(ticket_id)
        self._assert_equipment_editable(ticket)
        equipment = _build_equipment(item)
        ticket.equipment.append(equipment)
        self.session.flush()
        logger.info('ticket %s: equipment %s added (%s)', ticket.code, equipment.id, equipment.device_type)
        return equipment

    @atomic
    def update_equipment(self, ticket_id: int, equipment_id: int, changes: Dict[str, Any]) -> TicketEquipment:
        ticket = self._lock(ticket_id)
        self._assert_equipment_editable(ticket)
        equipment = self._find_equipment(ticket, equipment_id)
        if not isinstance(changes, dict):
            raise PreconditionFailedError('equipment changes must be an object', field='equipment')
        unknown = set(changes) - set(EQUIPMENT_FIELDS)
        if unknown:
            raise PreconditionFailedError(f"unknown fields: {', '.join(sorted(unknown))}", field='equipment')
        for key, value in changes.items():
            if key == 'device_type':
                value = require_text(value, 'equipment.device_type')
            else:
                value = optional_text(value)
            setattr(equipment, key, value)
        return equipment

    @atomic
    def remove_equipment(self, ticket_id: int, equipment_id: int) -> Ticket:
        ticket = self._lock(ticket_id)
        self._assert_equipment_editable(ticket)
        ticket.equipment.remove(self._find_equipment(ticket, equipment_id))
        logger.info('ticket %s: equipment %s removed', ticket.code, equipment_id)
        return ticket

    def list_equipment(self, ticket_id: int) -> List[TicketEquipment]:
        return list(self.get_ticket(ticket_id).equipment)

    def get_equipment(self, ticket_id: int, equipment_id: int) -> TicketEquipment:
        return self._find_equipment(self.get_ticket(ticket_id), equipment_id)

    # ---------- Queries ---------- #

    def get_ticket(self, ticket_id: int) -> Ticket:
        ticket = self.session.get(Ticket, ticket_id)
        if ticket is None or ticket.deleted_at is not None:
            raise NotFoundError('Ticket', ticket_id)
        return ticket

    def get_ticket_by_code(self, code: str) -> Ticket:
        ticket = self.session.execute(
            select(Ticket).where(Ticket.code == code, Ticket.deleted_at.is_(None))
        ).scalar_one_or_none()
        if ticket is None:
            raise NotFoundError('Ticket', code)
        return ticket

    def list_tickets(self, status: Optional[str] = None, technician_id: Optional[int] = None,
                     client_id: Optional[int] = None, search: Optional[str] = None,
                     active_only: bool = False, limit: Optional[int] = None,
                     offset: int = 0) -> Tuple[List[Ticket], int]:
        q = select(Ticket).where(Ticket.deleted_at.is_(None))
        if status:
            q = q.where(Ticket.status == validate_choice(status.upper(), Ticket.ALL_STATUSES, 'status'))
        if technician_id is not None:
            q = q.where(Ticket.technician_id == technician_id)
        if client_id is not None:
            q = q.where(Ticket.client_id == client_id)
        if active_only:
            q = q.where(Ticket.status.notin_(Ticket.TERMINAL_STATUSES))
        if search:
            like = f'%{search.strip()}%'
            q = q.where(or_(Ticket.code.ilike(like), Ticket.reported_fault.ilike(like)))
        total = self.session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
        q = q.order_by(Ticket.id.desc()).offset(offset)
        if limit is not None:
            q = q.limit(limit)
        return list(self.session.execute(q).scalars()), total

    def legal_destinations(self, ticket_id: int) -> List[str]:
        ticket = self.get_ticket(ticket_id)
        return sorted(TICKET_FSM.legal_destinations(ticket.status))

    def can_transition(self, ticket_id: int, target: str) -> bool:
        ticket = self.get_ticket(ticket_id)
        return TICKET_FSM.is_legal(ticket.status, (target or '').upper())

    # ---------- Helpers ---------- #

    def _lock(self, ticket_id: int) -> Ticket:
        ticket = self.session.get(Ticket, ticket_id, with_for_update=True)
        if ticket is None or ticket.deleted_at is not None:
            raise NotFoundError('Ticket', ticket_id)
        return ticket

    @staticmethod
    def _require_state(ticket: Ticket, required: str, target: str):
        if ticket.status != required:
            raise InvalidTransitionError(ticket.status, target, TICKET_FSM.legal_destinations(ticket.status),
                                         entity='Ticket', entity_id=ticket.id)

    @staticmethod
    def _require_technician(ticket: Ticket):
        if ticket.technician_id is None:
            raise PreconditionFailedError('Ticket has no technician assigned', entity='Ticket', entity_id=ticket.id)

    @staticmethod
    def _assert_equipment_editable(ticket: Ticket):
        if ticket.is_terminal:
            raise PreconditionFailedError(
                f'Ticket {ticket.code} is {ticket.status}; equipment can no longer change',
                entity='Ticket', entity_id=ticket.id, current_state=ticket.status,
            )

    @staticmethod
    def _find_equipment(ticket: Ticket, equipment_id: int) -> TicketEquipment:
        for equipment in ticket.equipment:
            if equipment.id == equipment_id:
                return equipment
        raise NotFoundError('TicketEquipment', equipment_id)

    def _move(self, ticket: Ticket, target: str):
        TICKET_FSM.assert_can_transition(ticket.status, target, entity='Ticket', entity_id=ticket.id)
        logger.info('ticket %s: %s -> %s', ticket.code, ticket.status, target)
        ticket.status = target

    def _queue(self, event: str, ticket: Ticket):
        self.outbox.queue(event, {
            'ticket_id': ticket.id,
            'ticket_code': ticket.code,
            'client_id': ticket.client_id,
            'status': ticket.status,
            'total_due_cents': ticket.total_due_cents,
        })


def _build_equipment(item: Dict[str, Any]) -> TicketEquipment:
    if not isinstance(item, dict):
        raise PreconditionFailedError('equipment entries must be objects', field='equipment')
    values = {f: optional_text(item.get(f)) for f in EQUIPMENT_FIELDS}
    values['device_type'] = require_text(item.get('device_type'), 'equipment.device_type')
    return TicketEquipment(**values)
