"""HTTP route definitions for the discovery service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import Field

from schemas import (
    CamelModel,
    DiscoverySession,
    ReviewedCandidate,
    ReviewState,
    SessionConfig,
    StartSessionResponse,
    VideoResult,
)

from ..config import get_settings
from ..domain.errors import (
    CandidateNotFound,
    DiscoveryError,
    SessionAlreadyRunning,
    SessionNotFound,
)
from ..domain.orchestrator import DiscoveryOrchestrator
from ..domain.taxonomy import Taxonomy
from ..domain.terms import TermOptions, generate_search_terms, taxonomy_stats
from ..limits.factory import build_rate_limiter
from ..providers.video import YouTubeVideoLookup

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class CandidateListResponse(CamelModel):
    """Active candidates of a session awaiting review."""

    session_id: str
    items: list[ReviewedCandidate]


class ReviewRequest(CamelModel):
    approved: bool


class ReviewResponse(CamelModel):
    """Outcome of a review action; ``exerciseId`` is set once a library record exists."""

    search_id: str
    review_state: ReviewState
    exercise_id: str | None = None


class TermPreviewResponse(CamelModel):
    count: int
    terms: list[str]


class TaxonomyStatsResponse(CamelModel):
    families: int
    search_terms: int
    supported_sports: list[str]
    estimated_variations: int


class VideoSearchResponse(CamelModel):
    query: str
    items: list[VideoResult] = Field(default_factory=list)


settings = get_settings()

rate_limiter = build_rate_limiter(
    settings,
    max_requests=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
    key_prefix="ratelimit",
)


def get_orchestrator(request: Request) -> DiscoveryOrchestrator:
    """Resolve the `DiscoveryOrchestrator` stored on the FastAPI application state."""
    orchestrator: DiscoveryOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_taxonomy(request: Request) -> Taxonomy:
    taxonomy: Taxonomy = request.app.state.taxonomy
    return taxonomy


def get_video_lookup(request: Request) -> YouTubeVideoLookup:
    lookup: YouTubeVideoLookup = request.app.state.video_lookup
    return lookup


def _client_key(request: Request, action: str) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{action}:{host}"


def _enforce_rate_limit(request: Request, action: str) -> None:
    if not rate_limiter.allow(_client_key(request, action)):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


@router.post(
    "/discovery/sessions",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_session(
    request: Request,
    config: SessionConfig | None = None,
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
) -> StartSessionResponse:
    """Start a discovery run in the background; poll the session endpoint for progress."""
    _enforce_rate_limit(request, "start")
    try:
        return orchestrator.start(config or SessionConfig(quality_threshold=settings.quality_threshold))
    except DiscoveryError as exc:
        raise _http_error_from_domain_error(exc) from exc


@router.get("/discovery/sessions/{session_id}", response_model=DiscoverySession)
def get_session(
    session_id: str,
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
) -> DiscoverySession:
    """Return the current snapshot of a session."""
    try:
        return orchestrator.status(session_id)
    except DiscoveryError as exc:
        raise _http_error_from_domain_error(exc) from exc


@router.post("/discovery/sessions/{session_id}/cancel", response_model=DiscoverySession)
def cancel_session(
    session_id: str,
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
) -> DiscoverySession:
    try:
        return orchestrator.cancel(session_id)
    except DiscoveryError as exc:
        raise _http_error_from_domain_error(exc) from exc


@router.get("/discovery/sessions/{session_id}/candidates", response_model=CandidateListResponse)
def list_candidates(
    session_id: str,
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
) -> CandidateListResponse:
    try:
        items = orchestrator.candidates(session_id)
    except DiscoveryError as exc:
        raise _http_error_from_domain_error(exc) from exc
    return CandidateListResponse(session_id=session_id, items=items)


@router.put("/discovery/candidates/{search_id}/review", response_model=ReviewResponse)
def review_candidate(
    request: Request,
    search_id: str,
    payload: ReviewRequest,
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
) -> ReviewResponse:
    """Approve (promote to the library) or reject a candidate."""
    _enforce_rate_limit(request, "review")
    try:
        outcome = orchestrator.review(search_id, payload.approved)
    except DiscoveryError as exc:
        raise _http_error_from_domain_error(exc) from exc
    return ReviewResponse(
        search_id=outcome.search_id,
        review_state=outcome.review_state,
        exercise_id=outcome.exercise_id,
    )


@router.get("/discovery/terms", response_model=TermPreviewResponse)
def preview_terms(
    sport: str | None = Query(default=None, min_length=2, max_length=50),
    fitness_component: str | None = Query(default=None, alias="fitnessComponent"),
    purpose: str | None = Query(default=None),
    max_terms: int | None = Query(default=None, ge=1, alias="maxTerms"),
    include_variations: bool = Query(default=False, alias="includeVariations"),
    priority_only: bool = Query(default=False, alias="priorityOnly"),
    taxonomy: Taxonomy = Depends(get_taxonomy),
) -> TermPreviewResponse:
    """List the search terms a run with these filters would process."""
    terms = generate_search_terms(
        taxonomy,
        TermOptions(
            sport_filter=sport,
            fitness_component_filter=fitness_component,
            purpose_filter=purpose,
            max_terms=max_terms,
            include_variations=include_variations,
            priority_only=priority_only,
        ),
        relevant_threshold=settings.relevant_score_threshold,
        priority_threshold=settings.priority_score_threshold,
    )
    return TermPreviewResponse(count=len(terms), terms=terms)


@router.get("/discovery/stats", response_model=TaxonomyStatsResponse)
def get_taxonomy_stats(taxonomy: Taxonomy = Depends(get_taxonomy)) -> TaxonomyStatsResponse:
    stats = taxonomy_stats(taxonomy)
    return TaxonomyStatsResponse(
        families=stats.families,
        search_terms=stats.search_terms,
        supported_sports=stats.supported_sports,
        estimated_variations=stats.estimated_variations,
    )


@router.get("/videos", response_model=VideoSearchResponse)
def search_videos(
    q: str = Query(..., min_length=1, max_length=200),
    max_results: int = Query(default=1, ge=1, le=10, alias="maxResults"),
    lookup: YouTubeVideoLookup = Depends(get_video_lookup),
) -> VideoSearchResponse:
    """Search tutorial videos; provider failures degrade to the fixed fallback list."""
    return VideoSearchResponse(query=q, items=lookup.search(q, max_results))


def _http_error_from_domain_error(exc: DiscoveryError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (SessionNotFound, CandidateNotFound)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, SessionAlreadyRunning):
        status_code = status.HTTP_409_CONFLICT
    logger.info("discovery request rejected (%d): %s", status_code, exc)
    return HTTPException(status_code=status_code, detail=str(exc))
