"""Shared schema exports."""

from .discovery import (
    ApiCallsUsed,
    DiscoverySession,
    EstimatedDuration,
    ScoringMode,
    SessionConfig,
    SessionError,
    SessionProgress,
    SessionResults,
    SessionStatus,
    SessionType,
    StartSessionResponse,
)
from .exercise import (
    CamelModel,
    CandidateExercise,
    Difficulty,
    DiscoveryMethod,
    ExerciseCategory,
    LibraryExercise,
    ReviewedCandidate,
    ReviewState,
    SportRelevance,
)
from .video import VideoResult

__all__ = [
    "ApiCallsUsed",
    "CamelModel",
    "CandidateExercise",
    "Difficulty",
    "DiscoveryMethod",
    "DiscoverySession",
    "EstimatedDuration",
    "ExerciseCategory",
    "LibraryExercise",
    "ReviewedCandidate",
    "ReviewState",
    "ScoringMode",
    "SessionConfig",
    "SessionError",
    "SessionProgress",
    "SessionResults",
    "SessionStatus",
    "SessionType",
    "SportRelevance",
    "StartSessionResponse",
    "VideoResult",
]
