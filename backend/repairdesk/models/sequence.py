from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String

from .user import Base


class TicketSequence(Base):
    """Per-prefix, per-day counter row; incremented in place so concurrent writers serialize on it."""
    __tablename__ = 'ticket_sequences'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    seq_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
