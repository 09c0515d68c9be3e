"""Discovery session orchestration: term processing, progress, results and review."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
import threading
import time
import uuid

from schemas import (
    CandidateExercise,
    DiscoverySession,
    EstimatedDuration,
    ReviewedCandidate,
    ReviewState,
    SessionConfig,
    SessionError,
    SessionProgress,
    SessionResults,
    SessionStatus,
    StartSessionResponse,
)

from ..metrics import SESSIONS_FINISHED, SESSIONS_STARTED
from ..providers.video import YouTubeVideoLookup, exercise_video_query
from ..repository import DiscoveryRepository
from .contracts import DiscoveryContext
from .enricher import ExerciseEnricher
from .errors import CandidateNotFound, InvalidSessionState, SessionAlreadyRunning, SessionNotFound
from .scoring import apply_quality_gate, average_quality, deduplicate, rescore
from .taxonomy import RelevanceScore, Taxonomy
from .terms import TermOptions, generate_search_terms, term_priority

logger = logging.getLogger(__name__)

SECONDS_PER_TERM_FALLBACK = 3
SECONDS_PER_TERM_AI = 8
SECONDS_PER_TERM_VIDEO = 2


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(seconds: int) -> str:
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def estimate_duration(term_count: int, config: SessionConfig, ai_enabled: bool) -> EstimatedDuration:
    """Rough wall-clock estimate shown to the caller when a run starts."""
    per_term = SECONDS_PER_TERM_AI if ai_enabled else SECONDS_PER_TERM_FALLBACK
    if config.include_video_search:
        per_term += SECONDS_PER_TERM_VIDEO
    total = term_count * per_term
    return EstimatedDuration(seconds=total, minutes=math.ceil(total / 60), formatted=format_duration(total))


def order_terms(terms: list[str], batch_size: int, sport_filter: str | None) -> list[str]:
    """Split ``terms`` into batches and order each batch by priority, stable within ties."""
    ordered: list[str] = []
    for start in range(0, len(terms), batch_size):
        batch = terms[start : start + batch_size]
        ordered.extend(sorted(batch, key=lambda term: term_priority(term, sport_filter), reverse=True))
    return ordered


@dataclass(slots=True)
class ReviewOutcome:
    search_id: str
    review_state: ReviewState
    exercise_id: str | None = None


@dataclass(slots=True)
class _Run:
    session: DiscoverySession
    terms: list[str]
    context: DiscoveryContext
    cancel: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None
    raw: list[CandidateExercise] = field(default_factory=list)
    candidates: list[CandidateExercise] = field(default_factory=list)
    review: dict[str, ReviewState] = field(default_factory=dict)
    started: float = field(default_factory=time.monotonic)
    # terminal state has reached the repository
    saved: bool = False


class DiscoveryOrchestrator:
    """Drive discovery runs on a single background worker.

    At most one session is ``running`` per instance. Callers poll
    :meth:`status`; every read returns a deep copy so the worker's state is
    never shared.

    Finished runs stay in memory while they still have candidates under
    review, up to ``retained_sessions`` of them. Evicted runs are served from
    the repository.
    """

    def __init__(
        self,
        repository: DiscoveryRepository,
        taxonomy: Taxonomy,
        enricher: ExerciseEnricher,
        *,
        video_lookup: YouTubeVideoLookup | None = None,
        term_delay_seconds: float = 1.5,
        test_mode_max_terms: int = 10,
        review_grace_seconds: float = 2.0,
        retained_sessions: int = 20,
        relevant_threshold: int = RelevanceScore.USEFUL,
        priority_threshold: int = RelevanceScore.IMPORTANT,
    ) -> None:
        self._repository = repository
        self._taxonomy = taxonomy
        self._enricher = enricher
        self._video_lookup = video_lookup
        self._term_delay = term_delay_seconds
        self._test_mode_max_terms = test_mode_max_terms
        self._review_grace = review_grace_seconds
        self._retained_sessions = retained_sessions
        self._relevant_threshold = relevant_threshold
        self._priority_threshold = priority_threshold

        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="discovery")
        self._runs: dict[str, _Run] = {}
        self._active_id: str | None = None
        self._timers: set[threading.Timer] = set()

    @property
    def taxonomy(self) -> Taxonomy:
        return self._taxonomy

    # lifecycle

    def start(self, config: SessionConfig) -> StartSessionResponse:
        """Create a session, materialise its terms and schedule :meth:`drive`."""
        with self._lock:
            active = self._runs.get(self._active_id) if self._active_id else None
            if active is not None and active.session.status is SessionStatus.running:
                raise SessionAlreadyRunning(active.session.session_id)

            now = _now()
            session = DiscoverySession(
                session_id=f"discovery_{uuid.uuid4().hex}",
                session_type=config.session_type,
                config=config,
                created_at=now,
                started_at=now,
            )
            terms: list[str] = []
            try:
                terms = self.preview_terms(config)
            except Exception as exc:
                logger.exception("term generation failed for session %s", session.session_id)
                session.status = SessionStatus.failed
                session.completed_at = _now()
                session.errors.append(SessionError(term="", error=f"term generation failed: {exc}", timestamp=_now()))

            terms = order_terms(terms, config.batch_size, config.sport_filter)
            session.progress = SessionProgress(
                total_batches=math.ceil(len(terms) / config.batch_size),
                total_search_terms=len(terms),
            )
            run = _Run(session=session, terms=terms, context=DiscoveryContext.from_config(config))

            self._repository.save_session(session.model_copy(deep=True))
            run.saved = session.status.terminal
            self._runs[session.session_id] = run
            SESSIONS_STARTED.labels(session_type=config.session_type.value).inc()
            if session.status is SessionStatus.running:
                self._active_id = session.session_id
                run.future = self._executor.submit(self.drive, session.session_id)
            else:
                SESSIONS_FINISHED.labels(status=session.status.value).inc()

        logger.info(
            "session %s started: %d terms in %d batch(es), test_mode=%s",
            session.session_id,
            len(terms),
            session.progress.total_batches,
            config.test_mode,
        )
        return StartSessionResponse(
            session_id=session.session_id,
            config=config,
            estimated_duration=estimate_duration(len(terms), config, self._enricher.ai_enabled),
            search_terms_count=len(terms),
            batch_count=session.progress.total_batches,
        )

    def preview_terms(self, config: SessionConfig) -> list[str]:
        """Terms a run with ``config`` would process, test-mode cap applied."""
        max_terms = config.max_terms
        if config.test_mode:
            max_terms = min(max_terms or self._test_mode_max_terms, self._test_mode_max_terms)
        return generate_search_terms(
            self._taxonomy,
            TermOptions.from_config(config, max_terms=max_terms),
            relevant_threshold=self._relevant_threshold,
            priority_threshold=self._priority_threshold,
        )

    def drive(self, session_id: str) -> None:
        """Process every term of the session serially, then build the final result set."""
        run = self._get_run(session_id)
        config = run.session.config
        current_term = ""
        try:
            for index, term in enumerate(run.terms):
                if run.cancel.is_set():
                    break
                if index and self._term_delay > 0 and not config.test_mode:
                    if run.cancel.wait(self._term_delay):
                        break
                current_term = term
                self._process_term(run, index, term)
                self._persist(run)
            current_term = ""
            self._finalize(run)
        except Exception as exc:
            logger.exception("session %s failed", session_id)
            self._fail(run, current_term, exc)

    def cancel(self, session_id: str) -> DiscoverySession:
        """Stop scheduling further terms.

        The session stays ``running`` with ``cancel_requested`` set until the
        in-flight term finishes; the worker then finalizes the partial results
        and marks it ``cancelled``. Repeated requests return the same snapshot.
        """
        with self._lock:
            run = self._runs.get(session_id)
            current = run.session if run is not None else self._repository.get_session(session_id)
            if current is None:
                raise SessionNotFound(session_id)
            if current.status is not SessionStatus.running:
                raise InvalidSessionState(
                    f"session {session_id} is {current.status.value}; only running sessions can be cancelled"
                )
            if run is None:
                raise InvalidSessionState(f"session {session_id} is not driven by this instance")
            if not current.cancel_requested:
                run.cancel.set()
                current.cancel_requested = True
                logger.info(
                    "cancel requested for session %s after %d term(s)",
                    session_id,
                    current.progress.processed_terms,
                )
            return current.model_copy(deep=True)

    def wait(self, session_id: str, timeout: float | None = None) -> DiscoverySession:
        """Block until the background run of ``session_id`` has finished."""
        with self._lock:
            run = self._runs.get(session_id)
        if run is not None and run.future is not None:
            run.future.result(timeout=timeout)
        return self.status(session_id)

    def shutdown(self) -> None:
        with self._lock:
            for run in self._runs.values():
                run.cancel.set()
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # reads

    def status(self, session_id: str) -> DiscoverySession:
        with self._lock:
            run = self._runs.get(session_id)
            if run is not None:
                return run.session.model_copy(deep=True)
        stored = self._repository.get_session(session_id)
        if stored is None:
            raise SessionNotFound(session_id)
        return stored

    def candidates(self, session_id: str) -> list[ReviewedCandidate]:
        """Active candidates of a finished run with their review state."""
        with self._lock:
            run = self._runs.get(session_id)
            if run is not None:
                return [
                    ReviewedCandidate(
                        candidate=candidate.model_copy(deep=True),
                        review_state=run.review.get(candidate.search_id, ReviewState.pending),
                    )
                    for candidate in run.candidates
                ]
        if self._repository.get_session(session_id) is None:
            raise SessionNotFound(session_id)
        return [ReviewedCandidate(candidate=candidate) for candidate in self._repository.list_candidates(session_id)]

    # review

    def review(self, search_id: str, approved: bool) -> ReviewOutcome:
        """Approve or reject a pending candidate.

        Approval hands the candidate to the repository and removes it from the
        active list after the grace period; rejection removes it at once. A
        candidate is reviewed once; later decisions raise
        :class:`InvalidSessionState`.
        """
        decision = ReviewState.approved if approved else ReviewState.rejected
        with self._lock:
            run, reviewed = self._find_active(search_id)
        if reviewed is None:
            reviewed = self._repository.get_candidate(search_id)
            if reviewed is None:
                raise CandidateNotFound(search_id)
        with self._lock:
            current = run.review.get(search_id, ReviewState.pending) if run is not None else reviewed.review_state
            if current is not ReviewState.pending:
                raise InvalidSessionState(f"candidate {search_id} is already {current.value}")
            if run is not None:
                run.review[search_id] = decision

        candidate = reviewed.candidate
        try:
            exercise_id = self._record_review(candidate, decision)
        except Exception:
            if run is not None:
                with self._lock:
                    run.review[search_id] = ReviewState.pending
            raise

        if run is not None:
            if decision is ReviewState.approved:
                self._schedule_removal(run.session.session_id, search_id)
            else:
                self._remove_candidate(run.session.session_id, search_id)
        logger.info("candidate %s (%s) %s", search_id, candidate.name, decision.value)
        return ReviewOutcome(search_id=search_id, review_state=decision, exercise_id=exercise_id)

    # internals

    def _get_run(self, session_id: str) -> _Run:
        run = self._runs.get(session_id)
        if run is None:
            raise SessionNotFound(session_id)
        return run

    def _find_active(self, search_id: str) -> tuple[_Run | None, ReviewedCandidate | None]:
        for run in self._runs.values():
            for candidate in run.candidates:
                if candidate.search_id == search_id:
                    return run, ReviewedCandidate(candidate=candidate)
        return None, None

    def _record_review(self, candidate: CandidateExercise, decision: ReviewState) -> str | None:
        if decision is ReviewState.rejected:
            self._repository.mark_review(candidate.search_id, decision)
            return None
        exercise = self._repository.create_exercise(candidate)
        self._repository.mark_approved(exercise.exercise_id)
        self._repository.mark_review(candidate.search_id, decision)
        logger.info("candidate %s promoted to library exercise %s", candidate.search_id, exercise.exercise_id)
        return exercise.exercise_id

    def _remove_candidate(self, session_id: str, search_id: str) -> None:
        with self._lock:
            run = self._runs.get(session_id)
            if run is None:
                return
            run.candidates = [c for c in run.candidates if c.search_id != search_id]
            if not run.candidates and run.saved:
                del self._runs[session_id]

    def _evict_finished(self) -> None:
        """Drop saved runs with nothing left to review, then the oldest beyond the retention limit."""
        with self._lock:
            finished = [sid for sid, run in self._runs.items() if run.saved]
            for session_id in [sid for sid in finished if not self._runs[sid].candidates]:
                del self._runs[session_id]
                finished.remove(session_id)
            for session_id in finished[: max(0, len(finished) - self._retained_sessions)]:
                del self._runs[session_id]

    def _schedule_removal(self, session_id: str, search_id: str) -> None:
        if self._review_grace <= 0:
            self._remove_candidate(session_id, search_id)
            return

        def remove() -> None:
            self._remove_candidate(session_id, search_id)
            with self._lock:
                self._timers.discard(timer)

        timer = threading.Timer(self._review_grace, remove)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()

    def _process_term(self, run: _Run, index: int, term: str) -> None:
        config = run.session.config
        try:
            outcome = self._enricher.enrich(term, config.max_exercises_per_term, run.context)
        except Exception as exc:
            logger.warning("term %r failed in session %s: %s", term, run.session.session_id, exc)
            with self._lock:
                self._record_error(run, term, str(exc))
                self._advance(run, index)
            return

        with self._lock:
            run.raw.extend(outcome.candidates)
            progress = run.session.progress
            progress.exercises_found = len(run.raw)
            self._advance(run, index)
            if outcome.error is not None:
                self._record_error(run, term, outcome.error)
            results = self._results(run)
            results.api_calls_used.openai += outcome.ai_calls

    def _advance(self, run: _Run, index: int) -> None:
        progress = run.session.progress
        progress.processed_terms = index + 1
        progress.current_batch = index // run.session.config.batch_size + 1

    def _record_error(self, run: _Run, term: str, message: str) -> None:
        run.session.errors.append(SessionError(term=term, error=message, timestamp=_now()))
        run.session.progress.error_count = len(run.session.errors)

    def _results(self, run: _Run) -> SessionResults:
        if run.session.results is None:
            run.session.results = SessionResults()
        return run.session.results

    def _persist(self, run: _Run) -> None:
        with self._lock:
            snapshot = run.session.model_copy(deep=True)
        self._repository.save_session(snapshot)

    def _finalize(self, run: _Run) -> None:
        """Rescore, de-duplicate and quality-gate the whole accumulated list once."""
        config = run.session.config
        with self._lock:
            raw = list(run.raw)

        scored = [rescore(candidate, run.context, config.scoring_mode) for candidate in raw]
        dedup = deduplicate(scored)
        gate = apply_quality_gate(dedup.candidates, config.quality_threshold)
        kept = gate.kept
        videos_found = 0
        youtube_calls = 0
        if config.include_video_search and self._video_lookup is not None and not run.cancel.is_set():
            calls_before = self._video_lookup.api_calls
            kept, videos_found = self._attach_videos(self._video_lookup, kept)
            youtube_calls = self._video_lookup.api_calls - calls_before

        self._repository.save_candidates(run.session.session_id, kept)

        with self._lock:
            run.raw = []
            run.candidates = kept
            run.review = {candidate.search_id: ReviewState.pending for candidate in kept}
            progress = run.session.progress
            progress.duplicates_removed = dedup.duplicates_removed
            progress.quality_filtered = gate.filtered
            progress.videos_found = videos_found

            results = self._results(run)
            results.total_exercises = len(kept)
            results.average_quality = average_quality(kept)
            results.duration_seconds = round(time.monotonic() - run.started, 2)
            results.sport_mappings = sum(len(candidate.relevant_sports) for candidate in kept)
            results.taxonomy_families = len({c.taxonomy_family for c in kept if c.taxonomy_family})
            results.api_calls_used.youtube += youtube_calls

            if run.session.status is SessionStatus.running:
                run.session.status = SessionStatus.cancelled if run.cancel.is_set() else SessionStatus.completed
                run.session.completed_at = _now()
            if self._active_id == run.session.session_id:
                self._active_id = None

        self._persist(run)
        run.saved = True
        SESSIONS_FINISHED.labels(status=run.session.status.value).inc()
        self._evict_finished()
        logger.info(
            "session %s %s: %d raw, %d duplicates, %d below quality %d, %d kept",
            run.session.session_id,
            run.session.status.value,
            len(raw),
            dedup.duplicates_removed,
            gate.filtered,
            config.quality_threshold,
            len(kept),
        )

    def _attach_videos(
        self, lookup: YouTubeVideoLookup, candidates: list[CandidateExercise]
    ) -> tuple[list[CandidateExercise], int]:
        attached: list[CandidateExercise] = []
        found = 0
        for candidate in candidates:
            video = lookup.find_for_exercise(candidate)
            if video is None:
                attached.append(candidate)
                continue
            found += 1
            attached.append(
                candidate.model_copy(
                    update={
                        "video_url": video.url,
                        "video_thumbnail": video.thumbnail,
                        "video_title": video.title,
                        "video_channel_title": video.channel,
                        "video_search_term": exercise_video_query(candidate),
                    }
                )
            )
        return attached, found

    def _fail(self, run: _Run, term: str, exc: Exception) -> None:
        with self._lock:
            self._record_error(run, term, f"session aborted: {exc}")
            # a terminal state that never reached the repository is overridden
            run.session.status = SessionStatus.failed
            run.session.completed_at = _now()
            SESSIONS_FINISHED.labels(status=SessionStatus.failed.value).inc()
            if self._active_id == run.session.session_id:
                self._active_id = None
        try:
            self._persist(run)
        except Exception:
            logger.exception("could not persist failed state of session %s", run.session.session_id)
        else:
            run.saved = True
