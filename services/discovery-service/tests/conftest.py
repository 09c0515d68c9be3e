from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone

import pytest

from schemas import CandidateExercise, DiscoverySession, LibraryExercise, ReviewedCandidate, ReviewState

from app.domain.enricher import EnrichmentOutcome, ExerciseEnricher
from app.domain.orchestrator import DiscoveryOrchestrator
from app.domain.taxonomy import Taxonomy

TEST_TAXONOMY = {
    "families": [
        {
            "key": "squat",
            "base_exercise": "Barbell Back Squat",
            "description": "Fundamental compound movement targeting legs, glutes, and core",
            "category": "strength",
            "primary_muscle_group": "Legs",
            "secondary_muscle_groups": ["Glutes", "Core"],
            "equipment": "Barbell",
            "difficulty": "intermediate",
            "sport_relevance": {
                "powerlifting": {"score": 10, "purpose": "competition_lift"},
                "basketball": {"score": 8, "purpose": "power_development"},
                "tennis": {"score": 7, "purpose": "strength_building"},
            },
            "fitness_components": ["max_strength", "power"],
            "variations": [
                {"key": "paused_squat", "group": "technique"},
                {"key": "front_squat", "name": "Front Squat", "group": "equipment", "difficulty": "advanced"},
            ],
            "search_terms": ["squat", "squat variations"],
        },
        {
            "key": "bench",
            "base_exercise": "Barbell Bench Press",
            "description": "Horizontal pushing movement for upper body strength",
            "category": "strength",
            "primary_muscle_group": "Chest",
            "secondary_muscle_groups": ["Triceps"],
            "equipment": "Barbell",
            "sport_relevance": {
                "powerlifting": {"score": 10, "purpose": "competition_lift"},
                "bodybuilding": {"score": 9, "purpose": "muscle_building"},
            },
            "fitness_components": ["max_strength", "hypertrophy"],
            "variations": [
                {"key": "close_grip_bench", "name": "Close Grip Bench Press", "group": "grip"},
            ],
            "search_terms": ["bench press", "close grip bench"],
        },
        {
            "key": "balance",
            "base_exercise": "Single Leg Balance Hold",
            "description": "Static balance work improving proprioception",
            "category": "balance",
            "primary_muscle_group": "Core",
            "equipment": "None",
            "difficulty": "beginner",
            "sport_relevance": {
                "tennis": {"score": 7, "purpose": "prehabilitation"},
                "soccer": {"score": 7, "purpose": "prehabilitation"},
            },
            "fitness_components": ["balance", "stability"],
            "search_terms": ["balance training"],
        },
    ],
    "sports": [
        {
            "id": "tennis",
            "name": "Tennis",
            "strength_foci": ["core_rotation"],
            "balance_needs": ["lateral_movement"],
            "search_terms": ["tennis agility training"],
        }
    ],
}


class FakeRepository:
    """In-memory repository mimicking Postgres-backed behaviors."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.sessions: dict[str, DiscoverySession] = {}
        self.candidates: dict[str, tuple[str, CandidateExercise]] = {}
        self.exercises: dict[str, LibraryExercise] = {}
        self.reviews: dict[str, ReviewState] = {}
        self.session_writes = 0
        self._fail_after = fail_after

    def save_session(self, session: DiscoverySession) -> None:
        self.session_writes += 1
        if self._fail_after is not None and self.session_writes > self._fail_after:
            raise RuntimeError("database unavailable")
        self.sessions[session.session_id] = session.model_copy(deep=True)

    def get_session(self, session_id: str) -> DiscoverySession | None:
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def save_candidates(self, session_id: str, candidates: list[CandidateExercise]) -> None:
        for candidate in candidates:
            self.candidates[candidate.search_id] = (session_id, candidate)

    def list_candidates(
        self, session_id: str, review_state: ReviewState = ReviewState.pending
    ) -> list[CandidateExercise]:
        return [
            candidate
            for owner, candidate in self.candidates.values()
            if owner == session_id and self.reviews.get(candidate.search_id, ReviewState.pending) is review_state
        ]

    def get_candidate(self, search_id: str) -> ReviewedCandidate | None:
        entry = self.candidates.get(search_id)
        if entry is None:
            return None
        return ReviewedCandidate(
            candidate=entry[1].model_copy(deep=True),
            review_state=self.reviews.get(search_id, ReviewState.pending),
        )

    def mark_review(self, search_id: str, review_state: ReviewState) -> None:
        self.reviews[search_id] = review_state

    def create_exercise(self, candidate: CandidateExercise) -> LibraryExercise:
        for exercise in self.exercises.values():
            if exercise.search_id == candidate.search_id:
                return exercise
        exercise = LibraryExercise(
            exercise_id=str(uuid.uuid4()),
            search_id=candidate.search_id,
            name=candidate.name,
            created_at=datetime.now(timezone.utc),
            payload=candidate,
        )
        self.exercises[exercise.exercise_id] = exercise
        return exercise

    def mark_approved(self, exercise_id: str) -> LibraryExercise | None:
        exercise = self.exercises.get(exercise_id)
        if exercise is None:
            return None
        exercise.approved = True
        exercise.approved_at = datetime.now(timezone.utc)
        return exercise


class BlockingEnricher(ExerciseEnricher):
    """Enricher that parks inside :meth:`enrich` until ``release`` is set."""

    def __init__(self, taxonomy: Taxonomy) -> None:
        super().__init__(taxonomy)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.terms: list[str] = []

    def enrich(self, term, max_exercises=3, context=None) -> EnrichmentOutcome:
        self.terms.append(term)
        self.entered.set()
        self.release.wait(5)
        return super().enrich(term, max_exercises, context)


@pytest.fixture
def taxonomy() -> Taxonomy:
    return Taxonomy.model_validate(TEST_TAXONOMY)


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def failing_repository() -> FakeRepository:
    """Accepts the initial session write, then fails every later one."""
    return FakeRepository(fail_after=1)


@pytest.fixture
def enricher(taxonomy) -> ExerciseEnricher:
    return ExerciseEnricher(taxonomy, sleep=lambda _: None)


@pytest.fixture
def blocking_enricher(taxonomy) -> BlockingEnricher:
    enricher = BlockingEnricher(taxonomy)
    yield enricher
    enricher.release.set()


@pytest.fixture
def make_orchestrator(repository, taxonomy):
    """Build orchestrators with zero delays; shut them down after the test."""
    created: list[DiscoveryOrchestrator] = []

    def factory(enricher: ExerciseEnricher, **overrides) -> DiscoveryOrchestrator:
        options = {"term_delay_seconds": 0.0, "review_grace_seconds": 0.0}
        options.update(overrides)
        repo = options.pop("repository", repository)
        orchestrator = DiscoveryOrchestrator(repo, taxonomy, enricher, **options)
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        orchestrator.shutdown()
