"""Async client for the enterprise agreement (EBA) search service.

The service is rate limited, so batch searches run one employer at a time with
a fixed pause between requests. Cancellation is checked before each request;
a request already sent is allowed to finish.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from employer_dedup.resolution.cancel import CancelToken, is_cancelled

if TYPE_CHECKING:
    from employer_dedup.records import EmployerRecord
    from employer_dedup.store.base import CanonicalStore

logger = logging.getLogger(__name__)

# eba_file_number column width
_FILE_NUMBER_MAX = 100


class AgreementSearchError(Exception):
    """The agreement search service could not be reached or returned garbage."""


class AgreementResult(BaseModel):
    """One agreement returned by the search service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    agreement_type: str | None = Field(default=None, alias="agreementType")
    status: str | None = None
    approved_date: str | None = Field(default=None, alias="approvedDate")
    expiry_date: str | None = Field(default=None, alias="expiryDate")
    lodgement_number: str | None = Field(default=None, alias="lodgementNumber")
    document_url: str | None = Field(default=None, alias="documentUrl")
    summary_url: str | None = Field(default=None, alias="summaryUrl")

    def to_record_fields(self) -> dict[str, Any]:
        """Columns for a company_eba_records row."""
        comments = " | ".join(
            part
            for part in (
                f"Status: {self.status}" if self.status else None,
                f"Type: {self.agreement_type}" if self.agreement_type else None,
            )
            if part
        )
        return {
            "eba_file_number": self.title[:_FILE_NUMBER_MAX],
            "fwc_lodgement_number": self.lodgement_number,
            "fwc_document_url": self.document_url,
            "summary_url": self.summary_url,
            "nominal_expiry_date": self.expiry_date,
            "fwc_certified_date": self.approved_date,
            "comments": comments or None,
        }


class _SearchResponse(BaseModel):
    results: list[AgreementResult] = Field(default_factory=list)


@dataclass
class EmployerAgreements:
    """Search outcome for one employer."""

    employer_id: UUID
    employer_name: str
    results: list[AgreementResult] = field(default_factory=list)
    error: str | None = None


class AgreementSearchClient:
    """Client for the agreement search endpoint.

    Usage:
        async with AgreementSearchClient(url, delay_seconds=2.0) as client:
            results = await client.search("ABC Constructions")
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        delay_seconds: float = 2.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Full URL of the search endpoint.
            timeout_seconds: Per-request timeout for the default HTTP client.
            delay_seconds: Pause between requests in search_for_employers().
            http_client: Injected client (tests use httpx.MockTransport).
        """
        self._url = base_url
        self._delay = delay_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def __aenter__(self) -> AgreementSearchClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def search(self, company_name: str) -> list[AgreementResult]:
        """Search agreements for one company name.

        Raises:
            AgreementSearchError: On transport errors, non-2xx responses or an
                unparseable body.
        """
        start_time = time.time()
        try:
            response = await self._client.post(self._url, json={"companyName": company_name})
            response.raise_for_status()
            parsed = _SearchResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise AgreementSearchError(f"search for {company_name!r} failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise AgreementSearchError(f"bad response for {company_name!r}: {e}") from e

        elapsed = (time.time() - start_time) * 1000  # ms
        logger.info(
            "[EBA] %r → %d result(s) (%.0fms)", company_name, len(parsed.results), elapsed
        )
        return parsed.results

    async def search_for_employers(
        self,
        employers: Sequence[EmployerRecord],
        cancel: CancelToken | None = None,
    ) -> list[EmployerAgreements]:
        """Search each employer in turn, pausing between requests.

        A failed search is recorded on that employer's entry and the batch
        carries on.
        """
        outcomes: list[EmployerAgreements] = []
        for i, employer in enumerate(employers):
            if is_cancelled(cancel):
                logger.info("Agreement search cancelled after %d employer(s)", len(outcomes))
                break
            if i > 0 and self._delay > 0:
                await asyncio.sleep(self._delay)

            outcome = EmployerAgreements(employer_id=employer.id, employer_name=employer.name)
            try:
                outcome.results = await self.search(employer.name)
            except AgreementSearchError as e:
                logger.warning("Agreement search for %r failed: %s", employer.name, e)
                outcome.error = str(e)
            outcomes.append(outcome)
        return outcomes


async def save_agreements(
    store: CanonicalStore, employer_id: UUID, results: Sequence[AgreementResult]
) -> list[UUID]:
    """Persist search results as agreement records on an employer."""
    return [
        await store.add_agreement_record(employer_id, result.to_record_fields())
        for result in results
    ]
