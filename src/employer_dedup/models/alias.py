"""EmployerAlias model for secondary names with provenance."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from employer_dedup.models.base import Base

if TYPE_CHECKING:
    from employer_dedup.models.employer import Employer


class EmployerAlias(Base):
    """An alternate name known to refer to an employer.

    alias_normalized is unique per employer only. The same normalized form on
    two different employers is allowed and is surfaced as a conflict during
    duplicate detection.
    """

    __tablename__ = "employer_aliases"
    __table_args__ = (UniqueConstraint("employer_id", "alias_normalized"),)

    id: Mapped[UUID] = mapped_column(primary_key=True)

    employer_id: Mapped[UUID] = mapped_column(ForeignKey("employers.id"), index=True)

    alias: Mapped[str] = mapped_column(String(512))

    alias_normalized: Mapped[str] = mapped_column(String(512), index=True)
    """Case, diacritic and punctuation folded form used for matching."""

    source_system: Mapped[str | None] = mapped_column(String(64))
    """Where the alias came from (e.g., "bci_import", "pending_employer_merge")."""

    source_identifier: Mapped[str | None] = mapped_column(String(255))
    """Record id in the source system."""

    collected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    collected_by: Mapped[str | None] = mapped_column(String(255))

    is_authoritative: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    employer: Mapped[Employer] = relationship(back_populates="aliases")
