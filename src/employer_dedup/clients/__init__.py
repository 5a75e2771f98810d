"""Clients for external services."""

from employer_dedup.clients.agreements import (
    AgreementResult,
    AgreementSearchClient,
    AgreementSearchError,
    EmployerAgreements,
)

__all__ = [
    "AgreementResult",
    "AgreementSearchClient",
    "AgreementSearchError",
    "EmployerAgreements",
]
