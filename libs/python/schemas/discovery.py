"""Discovery session contracts exposed over the status endpoints."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field, computed_field

from .exercise import CamelModel


class SessionStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not SessionStatus.running


class SessionType(str, Enum):
    test_run = "test_run"
    sport_specific = "sport_specific"
    full_discovery = "full_discovery"
    taxonomy_expansion = "taxonomy_expansion"
    quality_review = "quality_review"


class ScoringMode(str, Enum):
    enhanced = "enhanced"
    legacy = "legacy"


class SessionConfig(CamelModel):
    """Options accepted when starting a discovery run."""

    session_type: SessionType = SessionType.test_run
    batch_size: int = Field(25, ge=1, le=100)
    max_exercises_per_term: int = Field(3, ge=1, le=10)
    test_mode: bool = True
    include_video_search: bool = False
    sport_filter: str | None = Field(default=None, min_length=2, max_length=50)
    fitness_component_filter: str | None = None
    purpose_filter: str | None = None
    priority_only: bool = False
    include_variations: bool = False
    max_terms: int | None = Field(default=None, ge=1)
    quality_threshold: int = Field(75, ge=0, le=100)
    scoring_mode: ScoringMode = ScoringMode.enhanced


class SessionProgress(CamelModel):
    total_batches: int = 0
    current_batch: int = 0
    total_search_terms: int = 0
    processed_terms: int = 0
    exercises_found: int = 0
    duplicates_removed: int = 0
    quality_filtered: int = 0
    videos_found: int = 0
    error_count: int = 0

    @computed_field(alias="progressPercent")
    @property
    def progress_percent(self) -> float:
        if self.total_search_terms <= 0:
            return 0.0
        return round(self.processed_terms / self.total_search_terms * 100, 2)


class ApiCallsUsed(CamelModel):
    openai: int = 0
    youtube: int = 0


class SessionResults(CamelModel):
    total_exercises: int = 0
    average_quality: float = 0.0
    duration_seconds: float = 0.0
    sport_mappings: int = 0
    taxonomy_families: int = 0
    api_calls_used: ApiCallsUsed = Field(default_factory=ApiCallsUsed)


class SessionError(CamelModel):
    term: str
    error: str
    timestamp: datetime


class EstimatedDuration(CamelModel):
    seconds: int
    minutes: int
    formatted: str


class DiscoverySession(CamelModel):
    """Snapshot of one discovery run as seen by polling clients."""

    session_id: str
    session_type: SessionType
    config: SessionConfig
    status: SessionStatus = SessionStatus.running
    cancel_requested: bool = False
    progress: SessionProgress = Field(default_factory=SessionProgress)
    results: SessionResults | None = None
    errors: list[SessionError] = Field(default_factory=list)
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class StartSessionResponse(CamelModel):
    session_id: str
    config: SessionConfig
    estimated_duration: EstimatedDuration
    search_terms_count: int
    batch_count: int
