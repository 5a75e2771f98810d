"""PendingEmployer model for staged records awaiting a merge/create decision."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from employer_dedup.models.base import Base
from employer_dedup.models.enums import EmployerRole, ImportStatus


class PendingEmployer(Base):
    """A staged employer written by an ingestion pipeline (CSV import, scan parse).

    Never modified after import_status becomes IMPORTED, except by deletion.
    """

    __tablename__ = "pending_employers"

    id: Mapped[UUID] = mapped_column(primary_key=True)

    company_name: Mapped[str] = mapped_column(String(512))

    source: Mapped[str] = mapped_column(String(64))
    """Provenance of the staged row (e.g., "bci_import", "eba_import", "mapping_sheet_scan")."""

    csv_role: Mapped[str | None] = mapped_column(String(128))
    """Role label as it appeared in the source file."""

    raw: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    """Source-specific payload. Validated into a typed payload before use."""

    our_role: Mapped[EmployerRole | None] = mapped_column()

    inferred_trade_type: Mapped[str | None] = mapped_column(String(64))
    user_confirmed_trade_type: Mapped[str | None] = mapped_column(String(64))

    project_associations: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    """[{project_id, project_name, csv_role}] links to create at import time."""

    import_status: Mapped[ImportStatus] = mapped_column(default=ImportStatus.UNSET, index=True)

    imported_employer_id: Mapped[UUID | None] = mapped_column(ForeignKey("employers.id"))
    import_notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
