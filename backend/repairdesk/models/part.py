from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, ForeignKey, DateTime, CheckConstraint, text, func
from typing import Optional
from datetime import datetime

from .user import Base


class Part(Base):
    __tablename__ = 'parts'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(64))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sale_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint('quantity >= 0', name='ck_parts_quantity_non_negative'),)
    __mapper_args__ = {'version_id_col': version}

    @property
    def needs_restock(self) -> bool:
        return self.quantity <= self.min_quantity

    @property
    def is_available(self) -> bool:
        return bool(self.is_active) and self.deleted_at is None


class PartUsage(Base):
    __tablename__ = 'ticket_parts'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Back reference by id only; the ticket owns the collection
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    part_id: Mapped[int] = mapped_column(ForeignKey('parts.id'), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))

    part = relationship('Part')

    def recompute_subtotal(self):
        self.subtotal_cents = self.quantity * self.unit_price_cents


class StockMovement(Base):
    __tablename__ = 'stock_movements'
    # Kind constants with their sign on the on-hand quantity
    KIND_PURCHASE_RECEIPT = 'PURCHASE_RECEIPT'
    KIND_MANUAL_INCREASE = 'MANUAL_INCREASE'
    KIND_MANUAL_DECREASE = 'MANUAL_DECREASE'
    KIND_TICKET_CONSUMPTION = 'TICKET_CONSUMPTION'
    KIND_TICKET_REINTEGRATION = 'TICKET_REINTEGRATION'
    KIND_SIGNS = {
        KIND_PURCHASE_RECEIPT: 1,
        KIND_MANUAL_INCREASE: 1,
        KIND_MANUAL_DECREASE: -1,
        KIND_TICKET_CONSUMPTION: -1,
        KIND_TICKET_REINTEGRATION: 1,
    }
    ALL_KINDS = tuple(KIND_SIGNS)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    part_id: Mapped[int] = mapped_column(ForeignKey('parts.id'), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    ticket_id: Mapped[Optional[int]] = mapped_column(ForeignKey('tickets.id'), nullable=True, index=True)
    purchase_id: Mapped[Optional[int]] = mapped_column(ForeignKey('purchases.id'), nullable=True, index=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
