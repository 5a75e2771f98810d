"""Trade capability rows attached to contractors."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from employer_dedup.models.base import Base

if TYPE_CHECKING:
    from employer_dedup.models.employer import Employer


class TradeCapability(Base):
    """A trade an employer is known to perform. One row per (employer, trade)."""

    __tablename__ = "contractor_trade_capabilities"
    __table_args__ = (UniqueConstraint("employer_id", "trade_type"),)

    id: Mapped[UUID] = mapped_column(primary_key=True)
    employer_id: Mapped[UUID] = mapped_column(ForeignKey("employers.id"), index=True)
    trade_type: Mapped[str] = mapped_column(String(64))
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    employer: Mapped[Employer] = relationship(back_populates="capabilities")
