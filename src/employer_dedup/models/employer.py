"""Employer model: the canonical, deduplicated organisation record."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from employer_dedup.models.base import Base

if TYPE_CHECKING:
    from employer_dedup.models.alias import EmployerAlias
    from employer_dedup.models.capability import TradeCapability


class Employer(Base):
    """A persisted real-world employer.

    Owned by the hosted store. The resolution workflow reads these rows, creates
    new ones for "create new" decisions, renames one when an alias is promoted,
    and asks the store to merge duplicates.
    """

    __tablename__ = "employers"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(512), index=True)

    address_line_1: Mapped[str | None] = mapped_column(String(512))
    suburb: Mapped[str | None] = mapped_column(String(255))
    state: Mapped[str | None] = mapped_column(String(32))
    postcode: Mapped[str | None] = mapped_column(String(16))

    phone: Mapped[str | None] = mapped_column(String(64))
    email: Mapped[str | None] = mapped_column(String(255))
    primary_contact_name: Mapped[str | None] = mapped_column(String(255))

    employer_type: Mapped[str | None] = mapped_column(String(64))
    enterprise_agreement_status: Mapped[bool | None] = mapped_column(Boolean)

    external_id: Mapped[str | None] = mapped_column(String(128), index=True)
    """Identifier in an external system (e.g., Incolink). Authoritative when present."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    aliases: Mapped[list[EmployerAlias]] = relationship(back_populates="employer")
    capabilities: Mapped[list[TradeCapability]] = relationship(back_populates="employer")
