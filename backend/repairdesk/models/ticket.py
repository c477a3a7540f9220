from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime, func
from typing import Optional, List
from datetime import datetime

from .user import Base


class Ticket(Base):
    __tablename__ = 'tickets'
    # Status constants
    STATUS_INTAKE = 'INTAKE'
    STATUS_DIAGNOSING = 'DIAGNOSING'
    STATUS_QUOTED = 'QUOTED'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_REPAIRING = 'REPAIRING'
    STATUS_TESTING = 'TESTING'
    STATUS_READY = 'READY'
    STATUS_DELIVERED = 'DELIVERED'
    STATUS_CANCELLED = 'CANCELLED'
    ALL_STATUSES = (
        STATUS_INTAKE, STATUS_DIAGNOSING, STATUS_QUOTED, STATUS_APPROVED, STATUS_REJECTED,
        STATUS_REPAIRING, STATUS_TESTING, STATUS_READY, STATUS_DELIVERED, STATUS_CANCELLED,
    )
    TERMINAL_STATUSES = (STATUS_DELIVERED, STATUS_CANCELLED)
    # Discount kinds
    DISCOUNT_PERCENT = 'PERCENT'
    DISCOUNT_AMOUNT = 'AMOUNT'
    ALL_DISCOUNT_KINDS = (DISCOUNT_PERCENT, DISCOUNT_AMOUNT)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_INTAKE, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey('clients.id'), nullable=False, index=True)
    technician_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True, index=True)
    intake_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    reported_fault: Mapped[str] = mapped_column(Text, nullable=False)
    diagnosis: Mapped[Optional[str]] = mapped_column(Text)
    estimated_days: Mapped[Optional[int]] = mapped_column(Integer)
    # Money columns are integer cents
    labor_cost_cents: Mapped[Optional[int]] = mapped_column(Integer)
    parts_cost_cents: Mapped[Optional[int]] = mapped_column(Integer)
    budget_total_cents: Mapped[Optional[int]] = mapped_column(Integer)
    discount_kind: Mapped[Optional[str]] = mapped_column(String(16))
    discount_value: Mapped[Optional[int]] = mapped_column(Integer)
    discount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_reason: Mapped[Optional[str]] = mapped_column(String(255))
    total_due_cents: Mapped[Optional[int]] = mapped_column(Integer)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    repair_notes: Mapped[Optional[str]] = mapped_column(Text)
    test_result: Mapped[Optional[str]] = mapped_column(Text)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    budget_issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    client_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    repair_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    repair_finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    part_usages: Mapped[List['PartUsage']] = relationship(
        'PartUsage', cascade='all, delete-orphan', order_by='PartUsage.id',
    )
    equipment: Mapped[List['TicketEquipment']] = relationship(
        'TicketEquipment', cascade='all, delete-orphan', order_by='TicketEquipment.id',
    )

    __mapper_args__ = {'version_id_col': version}

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def has_budget(self) -> bool:
        return self.budget_total_cents is not None

    def usages_subtotal_cents(self) -> int:
        return sum(u.subtotal_cents for u in self.part_usages)

    def refresh_parts_cost(self):
        """Re-derive parts cost from usage subtotals once a budget exists.

        Before diagnosis the budget stays null and the diagnosis sets the initial estimate.
        """
        if self.labor_cost_cents is None:
            return
        self.parts_cost_cents = self.usages_subtotal_cents()
        self.recompute_totals()

    def recompute_totals(self):
        if self.labor_cost_cents is None and self.parts_cost_cents is None:
            self.budget_total_cents = None
            self.total_due_cents = None
            self.discount_cents = 0
            return
        total = (self.labor_cost_cents or 0) + (self.parts_cost_cents or 0)
        discount = 0
        if self.discount_kind == self.DISCOUNT_PERCENT and self.discount_value:
            discount = (total * self.discount_value + 50) // 100
        elif self.discount_kind == self.DISCOUNT_AMOUNT and self.discount_value:
            discount = self.discount_value
        self.budget_total_cents = total
        self.discount_cents = discount
        self.total_due_cents = max(0, total - discount)

    def stamp(self, field: str, when: datetime) -> bool:
        """Set a lifecycle timestamp once; later calls leave it untouched."""
        if getattr(self, field) is not None:
            return False
        setattr(self, field, when)
        return True


class TicketEquipment(Base):
    __tablename__ = 'ticket_equipment'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    device_type: Mapped[str] = mapped_column(String(64), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(64))
    model: Mapped[Optional[str]] = mapped_column(String(64))
    serial_number: Mapped[Optional[str]] = mapped_column(String(64))
    accessories: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)


# Status flow: INTAKE -> DIAGNOSING -> QUOTED -> APPROVED -> REPAIRING -> TESTING -> READY -> DELIVERED
# QUOTED may branch to REJECTED; TESTING loops back to REPAIRING; CANCELLED from any non-terminal state.
