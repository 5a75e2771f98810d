"""Database models for employer-dedup."""

from employer_dedup.models.agreement import AgreementRecord
from employer_dedup.models.alias import EmployerAlias
from employer_dedup.models.base import Base
from employer_dedup.models.capability import TradeCapability
from employer_dedup.models.employer import Employer
from employer_dedup.models.enums import (
    AliasAction,
    AliasMatchMode,
    DecisionKind,
    EmployerRole,
    ImportStatus,
    MatchConfidence,
    MatchType,
    ProjectRole,
)
from employer_dedup.models.pending import PendingEmployer
from employer_dedup.models.project import Project, ProjectContractorTrade, ProjectEmployerRole

__all__ = [
    "AgreementRecord",
    "AliasAction",
    "AliasMatchMode",
    "Base",
    "DecisionKind",
    "Employer",
    "EmployerAlias",
    "EmployerRole",
    "ImportStatus",
    "MatchConfidence",
    "MatchType",
    "PendingEmployer",
    "Project",
    "ProjectContractorTrade",
    "ProjectEmployerRole",
    "ProjectRole",
    "TradeCapability",
]
