"""Candidate exercise contracts shared by the discovery service and its clients."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ExerciseCategory(str, Enum):
    strength = "strength"
    power = "power"
    endurance = "endurance"
    balance = "balance"
    mobility = "mobility"
    sport_specific = "sport_specific"


class Difficulty(str, Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"
    elite = "elite"


class DiscoveryMethod(str, Enum):
    ai_discovery = "ai_discovery"
    fallback = "fallback"
    taxonomy_fallback = "taxonomy_fallback"


class ReviewState(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class CamelModel(BaseModel):
    """Base model serialising snake_case attributes as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SportRelevance(CamelModel):
    sport_id: str
    relevance_score: int = Field(..., ge=1, le=10)
    purpose: str | None = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    is_primary_target: bool = False


class CandidateExercise(CamelModel):
    """A discovered exercise awaiting human review."""

    name: str
    description: str = ""
    category: ExerciseCategory
    primary_muscle_group: str
    secondary_muscle_groups: list[str] = Field(default_factory=list)
    equipment: str = ""
    difficulty: Difficulty
    instructions: list[str] = Field(default_factory=list)
    coaching_cues: list[str] = Field(default_factory=list)
    common_mistakes: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    set_rep_guidelines: str = ""
    progressions: list[str] = Field(default_factory=list)
    sport_applications: list[str] = Field(default_factory=list)
    safety_notes: str = ""

    quality_score: int = Field(0, ge=0, le=100)
    original_search_term: str
    discovery_method: DiscoveryMethod
    search_id: str
    discovered_at: datetime

    relevant_sports: list[SportRelevance] = Field(default_factory=list)
    fitness_components: list[str] = Field(default_factory=list)
    taxonomy_family: str | None = None
    variation_type: str | None = None
    exercise_purpose: str | None = None
    fingerprint: str | None = None

    video_url: str | None = None
    video_thumbnail: str | None = None
    video_title: str | None = None
    video_channel_title: str | None = None
    video_search_term: str | None = None


class ReviewedCandidate(CamelModel):
    candidate: CandidateExercise
    review_state: ReviewState = ReviewState.pending


class LibraryExercise(CamelModel):
    """Permanent library record created when a candidate is approved."""

    exercise_id: str
    search_id: str
    name: str
    approved: bool = False
    approved_at: datetime | None = None
    created_at: datetime
    payload: CandidateExercise
