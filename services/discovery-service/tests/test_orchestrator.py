from __future__ import annotations

import time

import httpx
import pytest

from schemas import DiscoveryMethod, ReviewState, SessionConfig, SessionStatus

from app.domain.enricher import ExerciseEnricher
from app.domain.errors import (
    CandidateNotFound,
    InvalidSessionState,
    SessionAlreadyRunning,
    SessionNotFound,
)
from app.domain.orchestrator import estimate_duration, format_duration, order_terms
from app.providers.video import YouTubeVideoLookup


class FailingEnricher(ExerciseEnricher):
    """Raises for one term; everything else goes through the fallback."""

    def __init__(self, taxonomy, failing_term: str) -> None:
        super().__init__(taxonomy)
        self._failing_term = failing_term

    def enrich(self, term, max_exercises=3, context=None):
        if term == self._failing_term:
            raise RuntimeError(f"boom on {term}")
        return super().enrich(term, max_exercises, context)


def run_to_completion(orchestrator, config: SessionConfig):
    started = orchestrator.start(config)
    return started, orchestrator.wait(started.session_id, timeout=5)


def test_test_run_processes_capped_terms(make_orchestrator, enricher, repository):
    orchestrator = make_orchestrator(enricher)
    config = SessionConfig(max_terms=3)

    started, session = run_to_completion(orchestrator, config)

    assert started.search_terms_count == 3
    assert started.batch_count == 1
    assert started.estimated_duration.seconds == 9
    assert session.status is SessionStatus.completed
    assert session.progress.processed_terms == 3
    assert session.progress.progress_percent == 100.0
    raw = sum(len(enricher.fallback(term, 3)) for term in orchestrator.preview_terms(config))
    assert session.progress.exercises_found == raw == 5
    assert session.progress.duplicates_removed == 2
    assert session.progress.quality_filtered == 0
    assert session.results.total_exercises == 3
    assert session.results.total_exercises <= session.progress.exercises_found
    assert session.results.average_quality == 80.0
    assert session.results.taxonomy_families == 2
    assert session.results.api_calls_used.openai == 0
    assert session.errors == []
    assert session.completed_at is not None
    assert repository.sessions[started.session_id].status is SessionStatus.completed


def test_results_are_unique_by_fingerprint(make_orchestrator, enricher, repository):
    orchestrator = make_orchestrator(enricher)

    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=3))

    items = orchestrator.candidates(started.session_id)
    fingerprints = [item.candidate.fingerprint for item in items]
    assert len(fingerprints) == len(set(fingerprints))
    assert sorted(c.name for c in (item.candidate for item in items)) == [
        "Barbell Bench Press",
        "Close Grip Bench Press",
        "Single Leg Balance Hold",
    ]
    assert all(item.review_state is ReviewState.pending for item in items)
    assert {search_id for search_id in repository.candidates} == {item.candidate.search_id for item in items}


def test_quality_gate_drops_generic_fallbacks(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)
    config = SessionConfig(sport_filter="tennis", max_exercises_per_term=1)

    started, session = run_to_completion(orchestrator, config)

    generic = [
        candidate
        for term in orchestrator.preview_terms(config)
        for candidate in enricher.fallback(term, 1)
        if candidate.discovery_method is DiscoveryMethod.fallback
    ]
    assert len(generic) == 4
    assert session.progress.quality_filtered == len(generic)
    assert session.progress.exercises_found == 9
    assert session.progress.duplicates_removed == 3
    kept = [item.candidate for item in orchestrator.candidates(started.session_id)]
    assert [c.name for c in kept] == ["Barbell Back Squat", "Single Leg Balance Hold"]
    assert all(c.quality_score >= 75 for c in kept)
    assert all(c.discovery_method is not DiscoveryMethod.fallback for c in kept)


def test_lower_threshold_keeps_generic_fallbacks(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)
    config = SessionConfig(sport_filter="tennis", max_exercises_per_term=1, quality_threshold=70)

    _, session = run_to_completion(orchestrator, config)

    assert session.progress.quality_filtered == 0
    assert session.results.total_exercises == 6


def test_unknown_sport_completes_empty(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)

    started, session = run_to_completion(orchestrator, SessionConfig(sport_filter="curling"))

    assert started.search_terms_count == 0
    assert session.status is SessionStatus.completed
    assert session.results.total_exercises == 0
    assert session.progress.progress_percent == 0.0


def test_second_start_while_running_is_rejected(make_orchestrator, blocking_enricher):
    orchestrator = make_orchestrator(blocking_enricher)
    first = orchestrator.start(SessionConfig(max_terms=2))
    assert blocking_enricher.entered.wait(5)

    with pytest.raises(SessionAlreadyRunning):
        orchestrator.start(SessionConfig(max_terms=1))

    assert orchestrator.status(first.session_id).status is SessionStatus.running
    blocking_enricher.release.set()
    assert orchestrator.wait(first.session_id, timeout=5).status is SessionStatus.completed

    second, session = run_to_completion(orchestrator, SessionConfig(max_terms=1))
    assert session.status is SessionStatus.completed
    assert second.session_id != first.session_id


def test_cancel_stops_after_in_flight_term(make_orchestrator, blocking_enricher):
    orchestrator = make_orchestrator(blocking_enricher)
    started = orchestrator.start(SessionConfig(max_terms=3))
    assert blocking_enricher.entered.wait(5)

    requested = orchestrator.cancel(started.session_id)
    assert requested.status is SessionStatus.running
    assert requested.cancel_requested
    assert requested.completed_at is None
    assert orchestrator.cancel(started.session_id).cancel_requested
    blocking_enricher.release.set()

    session = orchestrator.wait(started.session_id, timeout=5)
    assert session.status is SessionStatus.cancelled
    assert session.completed_at is not None
    assert session.progress.processed_terms == 1
    assert len(blocking_enricher.terms) == 1
    assert session.results is not None
    assert orchestrator.status(started.session_id) == session
    with pytest.raises(InvalidSessionState):
        orchestrator.cancel(started.session_id)


def test_cancel_interrupts_inter_term_delay(make_orchestrator, blocking_enricher):
    orchestrator = make_orchestrator(blocking_enricher, term_delay_seconds=30.0)
    blocking_enricher.release.set()
    started = orchestrator.start(SessionConfig(max_terms=3, test_mode=False))
    assert blocking_enricher.entered.wait(5)

    orchestrator.cancel(started.session_id)
    began = time.monotonic()
    session = orchestrator.wait(started.session_id, timeout=5)

    assert time.monotonic() - began < 5
    assert session.status is SessionStatus.cancelled
    assert len(blocking_enricher.terms) == 1


def test_cancel_rejects_finished_sessions(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=1))

    with pytest.raises(InvalidSessionState):
        orchestrator.cancel(started.session_id)


def test_unknown_session_raises(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)

    with pytest.raises(SessionNotFound):
        orchestrator.status("discovery_missing")
    with pytest.raises(SessionNotFound):
        orchestrator.candidates("discovery_missing")
    with pytest.raises(SessionNotFound):
        orchestrator.cancel("discovery_missing")


def test_status_falls_back_to_repository(make_orchestrator, enricher, taxonomy):
    orchestrator = make_orchestrator(enricher)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=1))
    restarted = make_orchestrator(ExerciseEnricher(taxonomy))

    assert restarted.status(started.session_id).status is SessionStatus.completed
    pending = [item.candidate.search_id for item in orchestrator.candidates(started.session_id)]
    assert pending
    assert [item.candidate.search_id for item in restarted.candidates(started.session_id)] == pending


def test_status_returns_snapshots(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=1))

    snapshot = orchestrator.status(started.session_id)
    snapshot.progress.processed_terms = 99

    assert orchestrator.status(started.session_id).progress.processed_terms == 1


def test_term_errors_are_recorded_and_run_continues(make_orchestrator, taxonomy):
    orchestrator = make_orchestrator(FailingEnricher(taxonomy, "bench press"))

    _, session = run_to_completion(orchestrator, SessionConfig(max_terms=3))

    assert session.status is SessionStatus.completed
    assert session.progress.processed_terms == 3
    assert session.progress.error_count == 1
    assert session.errors[0].term == "bench press"
    assert "boom" in session.errors[0].error
    assert session.results.total_exercises == 3


def test_persistence_failure_fails_session(make_orchestrator, enricher, failing_repository):
    orchestrator = make_orchestrator(enricher, repository=failing_repository)

    _, session = run_to_completion(orchestrator, SessionConfig(max_terms=3))

    assert session.status is SessionStatus.failed
    assert "database unavailable" in session.errors[-1].error
    assert session.progress.processed_terms == 1


def test_approve_creates_library_exercise(make_orchestrator, enricher, repository):
    orchestrator = make_orchestrator(enricher)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=3))
    target = orchestrator.candidates(started.session_id)[0].candidate

    outcome = orchestrator.review(target.search_id, approved=True)

    assert outcome.review_state is ReviewState.approved
    exercise = repository.exercises[outcome.exercise_id]
    assert exercise.approved
    assert exercise.search_id == target.search_id
    assert repository.reviews[target.search_id] is ReviewState.approved
    remaining = [item.candidate.search_id for item in orchestrator.candidates(started.session_id)]
    assert target.search_id not in remaining
    assert len(remaining) == 2
    with pytest.raises(InvalidSessionState):
        orchestrator.review(target.search_id, approved=True)


def test_approved_candidate_lingers_for_grace_period(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher, review_grace_seconds=0.1)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=1))
    target = orchestrator.candidates(started.session_id)[0].candidate

    orchestrator.review(target.search_id, approved=True)

    [item] = [i for i in orchestrator.candidates(started.session_id) if i.candidate.search_id == target.search_id]
    assert item.review_state is ReviewState.approved
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if all(i.candidate.search_id != target.search_id for i in orchestrator.candidates(started.session_id)):
            break
        time.sleep(0.05)
    else:
        pytest.fail("approved candidate was not removed after the grace period")


def test_reject_removes_candidate_immediately(make_orchestrator, enricher, repository):
    orchestrator = make_orchestrator(enricher, review_grace_seconds=30.0)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=3))
    target = orchestrator.candidates(started.session_id)[0].candidate

    outcome = orchestrator.review(target.search_id, approved=False)

    assert outcome.review_state is ReviewState.rejected
    assert outcome.exercise_id is None
    assert repository.exercises == {}
    assert repository.reviews[target.search_id] is ReviewState.rejected
    assert target.search_id not in {i.candidate.search_id for i in orchestrator.candidates(started.session_id)}


def test_review_unknown_candidate(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)

    with pytest.raises(CandidateNotFound):
        orchestrator.review("ai_missing", approved=False)


def test_video_search_attaches_fallback_videos(make_orchestrator, enricher):
    lookup = YouTubeVideoLookup("")
    orchestrator = make_orchestrator(enricher, video_lookup=lookup)

    started, session = run_to_completion(orchestrator, SessionConfig(max_terms=3, include_video_search=True))

    assert started.estimated_duration.seconds == 15
    items = [item.candidate for item in orchestrator.candidates(started.session_id)]
    assert session.progress.videos_found == len(items) == 3
    assert all(c.video_url.startswith("https://www.youtube.com/watch?v=") for c in items)
    assert all(c.video_search_term.startswith(c.name) for c in items)
    assert session.results.api_calls_used.youtube == 0


def test_order_terms_sorts_within_batches():
    terms = ["balance training", "bench press", "tennis footwork", "squat"]

    assert order_terms(terms, 2, "tennis") == ["bench press", "balance training", "tennis footwork", "squat"]
    assert order_terms(terms, 4, None) == ["bench press", "squat", "balance training", "tennis footwork"]


def test_estimate_duration_formats():
    assert format_duration(45) == "45s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3720) == "1h 2m"
    estimate = estimate_duration(10, SessionConfig(include_video_search=True), ai_enabled=True)
    assert estimate.seconds == 100
    assert estimate.minutes == 2


def test_reviewed_candidate_cannot_be_reviewed_again(make_orchestrator, enricher, repository):
    orchestrator = make_orchestrator(enricher, review_grace_seconds=30.0)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=3))
    target = orchestrator.candidates(started.session_id)[0].candidate
    outcome = orchestrator.review(target.search_id, approved=True)

    with pytest.raises(InvalidSessionState):
        orchestrator.review(target.search_id, approved=False)

    assert repository.reviews[target.search_id] is ReviewState.approved
    assert repository.exercises[outcome.exercise_id].approved
    [item] = [i for i in orchestrator.candidates(started.session_id) if i.candidate.search_id == target.search_id]
    assert item.review_state is ReviewState.approved


def test_finished_runs_are_released(make_orchestrator, enricher, repository):
    orchestrator = make_orchestrator(enricher, retained_sessions=2)

    session_ids = [run_to_completion(orchestrator, SessionConfig(max_terms=3))[0].session_id for _ in range(5)]

    assert list(orchestrator._runs) == session_ids[-2:]
    assert all(run.raw == [] for run in orchestrator._runs.values())
    oldest = session_ids[0]
    assert orchestrator.status(oldest).status is SessionStatus.completed
    pending = orchestrator.candidates(oldest)
    assert len(pending) == 3
    assert all(item.review_state is ReviewState.pending for item in pending)

    outcome = orchestrator.review(pending[0].candidate.search_id, approved=False)

    assert outcome.review_state is ReviewState.rejected
    assert len(orchestrator.candidates(oldest)) == 2
    with pytest.raises(InvalidSessionState):
        orchestrator.review(pending[0].candidate.search_id, approved=True)


def test_run_without_candidates_is_released(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)

    started, session = run_to_completion(orchestrator, SessionConfig(sport_filter="curling"))

    assert started.session_id not in orchestrator._runs
    assert session.status is SessionStatus.completed
    assert orchestrator.candidates(started.session_id) == []


def test_fully_reviewed_run_is_released(make_orchestrator, enricher):
    orchestrator = make_orchestrator(enricher)
    started, _ = run_to_completion(orchestrator, SessionConfig(max_terms=3))

    for item in orchestrator.candidates(started.session_id):
        orchestrator.review(item.candidate.search_id, approved=False)

    assert started.session_id not in orchestrator._runs
    assert orchestrator.status(started.session_id).status is SessionStatus.completed


def test_malformed_video_results_do_not_fail_session(make_orchestrator, enricher):
    body = {"items": [{"id": {"videoId": "abc"}, "snippet": {"title": None}}]}
    lookup = YouTubeVideoLookup(
        "yt-key",
        http_client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body))),
        sleep=lambda _: None,
    )
    orchestrator = make_orchestrator(enricher, video_lookup=lookup)

    started, session = run_to_completion(orchestrator, SessionConfig(max_terms=1, include_video_search=True))

    assert session.status is SessionStatus.completed
    assert session.errors == []
    items = [item.candidate for item in orchestrator.candidates(started.session_id)]
    assert session.progress.videos_found == len(items) == 1
    assert session.results.api_calls_used.youtube == 1
    assert items[0].video_url.startswith("https://www.youtube.com/watch?v=")
