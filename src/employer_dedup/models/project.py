"""Project tables touched when linking imported employers to projects."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from employer_dedup.models.base import Base


class Project(Base):
    """A construction project. Only the columns used for linking are mapped."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(512))
    bci_project_id: Mapped[str | None] = mapped_column(String(128), index=True)
    builder_id: Mapped[UUID | None] = mapped_column(ForeignKey("employers.id"))


class ProjectEmployerRole(Base):
    """An employer's role on a project (e.g., head contractor)."""

    __tablename__ = "project_employer_roles"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    project_id: Mapped[UUID] = mapped_column(ForeignKey("projects.id"), index=True)
    employer_id: Mapped[UUID] = mapped_column(ForeignKey("employers.id"), index=True)
    role: Mapped[str] = mapped_column(String(64))


class ProjectContractorTrade(Base):
    """A subcontractor's trade on a project."""

    __tablename__ = "project_contractor_trades"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    project_id: Mapped[UUID] = mapped_column(ForeignKey("projects.id"), index=True)
    employer_id: Mapped[UUID] = mapped_column(ForeignKey("employers.id"), index=True)
    trade_type: Mapped[str] = mapped_column(String(64))
