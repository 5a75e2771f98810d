"""FastAPI application for employer-dedup."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated
from uuid import UUID, uuid4

from fastapi import Depends, FastAPI
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from employer_dedup import __version__
from employer_dedup.config import settings
from employer_dedup.db import get_session, init_db
from employer_dedup.models import PendingEmployer
from employer_dedup.resolution import CandidateFinder, DuplicateDetector
from employer_dedup.resolution.similarity import confidence_level
from employer_dedup.store import CanonicalStore, SqlCanonicalStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()
    yield


app = FastAPI(
    title="employer-dedup",
    description="Duplicate detection for pending employers",
    version=__version__,
    lifespan=lifespan,
)


async def get_store(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CanonicalStore:
    """Request-scoped canonical store."""
    return SqlCanonicalStore(session, score_scale=settings.search_score_scale)


class DetectRequest(BaseModel):
    name: str = Field(min_length=1)
    external_id: str | None = None
    aliases: list[str] = Field(default_factory=list)


class CandidateOut(BaseModel):
    employer_id: UUID
    name: str
    match_type: str
    score: float
    confidence: str
    address: str = ""
    matched_alias: str | None = None


class AliasOut(BaseModel):
    alias_id: UUID
    alias: str
    employer_id: UUID
    employer_name: str | None = None


class DetectResponse(BaseModel):
    exact_matches: list[CandidateOut]
    similar_matches: list[CandidateOut]
    alias_conflicts: list[AliasOut]


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.post("/detect")
async def detect(
    request: DetectRequest,
    store: Annotated[CanonicalStore, Depends(get_store)],
) -> DetectResponse:
    """Run duplicate detection for a name without staging it."""
    finder = CandidateFinder(
        store,
        high_threshold=settings.match_high_threshold,
        medium_threshold=settings.match_medium_threshold,
        similar_limit=settings.similar_match_limit,
        search_limit=settings.search_limit,
    )
    # Transient row: never added to a session
    pending = PendingEmployer(
        id=uuid4(),
        company_name=request.name,
        source="api",
        raw={"external_id": request.external_id, "aliases": request.aliases},
    )
    detector = DuplicateDetector(
        finder,
        store,
        group_similarity=settings.duplicate_group_similarity,
        group_min_substring=settings.duplicate_group_min_substring,
    )
    detection = await detector.detect(pending)

    def candidates(matches) -> list[CandidateOut]:
        return [
            CandidateOut(
                employer_id=m.employer_id,
                name=m.name,
                match_type=m.match_type.value,
                score=m.score,
                confidence=confidence_level(m.score / 100.0).value,
                address=m.address,
                matched_alias=m.matched_alias,
            )
            for m in matches
        ]

    return DetectResponse(
        exact_matches=candidates(detection.exact_matches),
        similar_matches=candidates(detection.similar_matches),
        alias_conflicts=[
            AliasOut(
                alias_id=a.id,
                alias=a.alias,
                employer_id=a.employer_id,
                employer_name=a.employer_name,
            )
            for a in detection.alias_conflicts
        ],
    )
