"""Enterprise agreement records found through the external agreement search."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from employer_dedup.models.base import Base


class AgreementRecord(Base):
    """An enterprise bargaining agreement attached to an employer."""

    __tablename__ = "company_eba_records"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    employer_id: Mapped[UUID] = mapped_column(ForeignKey("employers.id"), index=True)

    eba_file_number: Mapped[str | None] = mapped_column(String(100))
    fwc_lodgement_number: Mapped[str | None] = mapped_column(String(64))
    fwc_document_url: Mapped[str | None] = mapped_column(String(1024))
    summary_url: Mapped[str | None] = mapped_column(String(1024))

    # Kept as text: the search service returns loosely formatted dates
    nominal_expiry_date: Mapped[str | None] = mapped_column(String(32))
    fwc_certified_date: Mapped[str | None] = mapped_column(String(32))

    comments: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
