"""FastAPI application wiring for the discovery service."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.enricher import ExerciseEnricher
from .domain.orchestrator import DiscoveryOrchestrator
from .domain.taxonomy import load_taxonomy
from .limits.factory import build_rate_limiter
from .providers.llm import OpenAIProvider
from .providers.retry import RetryPolicy
from .providers.video import YouTubeVideoLookup
from .repository import DiscoveryRepository

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings, repository: DiscoveryRepository
) -> tuple[DiscoveryOrchestrator, YouTubeVideoLookup]:
    """Assemble taxonomy, providers and quota limiters into an orchestrator."""
    taxonomy = load_taxonomy(settings.taxonomy_path)
    policy = RetryPolicy(
        retries=settings.provider_retries,
        backoff_seconds=settings.provider_backoff_seconds,
    )

    provider = None
    if settings.openai_api_key:
        provider = OpenAIProvider(settings.openai_api_key, model=settings.openai_model)
    enricher = ExerciseEnricher(
        taxonomy,
        provider,
        policy=policy,
        quota=build_rate_limiter(
            settings,
            max_requests=settings.openai_requests_per_minute,
            window_seconds=60,
            key_prefix="quota",
        ),
        temperature=settings.openai_temperature,
        max_tokens=settings.openai_max_tokens,
    )
    video_lookup = YouTubeVideoLookup(
        settings.youtube_api_key,
        policy=policy,
        quota=build_rate_limiter(
            settings,
            max_requests=settings.youtube_requests_per_day,
            window_seconds=86400,
            key_prefix="quota",
        ),
    )
    orchestrator = DiscoveryOrchestrator(
        repository,
        taxonomy,
        enricher,
        video_lookup=video_lookup,
        term_delay_seconds=settings.term_delay_seconds,
        test_mode_max_terms=settings.test_mode_max_terms,
        review_grace_seconds=settings.review_grace_seconds,
        retained_sessions=settings.retained_sessions,
        relevant_threshold=settings.relevant_score_threshold,
        priority_threshold=settings.priority_score_threshold,
    )
    return orchestrator, video_lookup


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, taxonomy, orchestrator) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    orchestrator, video_lookup = build_orchestrator(settings, DiscoveryRepository(pool))
    app.state.orchestrator = orchestrator
    app.state.taxonomy = orchestrator.taxonomy
    app.state.video_lookup = video_lookup
    logger.info("%s %s ready", settings.app_name, settings.version)
    try:
        yield
    finally:
        orchestrator.shutdown()
        pool.close()
        pool.wait_close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for the local admin dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
