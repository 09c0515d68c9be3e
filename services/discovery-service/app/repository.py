"""Database repository for discovery sessions, candidates and library exercises."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool
from psycopg.types.json import Json

from schemas import CandidateExercise, DiscoverySession, LibraryExercise, ReviewedCandidate, ReviewState


class DiscoveryRepository:
    """Postgres-backed persistence collaborator for the discovery pipeline."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def save_session(self, session: DiscoverySession) -> None:
        """Insert or overwrite the stored snapshot of a session."""
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO discovery_sessions (session_id, session_type, status, payload, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (session_id) DO UPDATE
                    SET status = EXCLUDED.status, payload = EXCLUDED.payload, updated_at = EXCLUDED.updated_at
                    """,
                    (
                        session.session_id,
                        session.session_type.value,
                        session.status.value,
                        Json(session.model_dump(mode="json", by_alias=True)),
                        session.created_at,
                        now,
                    ),
                )
                conn.commit()

    def get_session(self, session_id: str) -> DiscoverySession | None:
        """Load the last persisted snapshot of a session or return ``None``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT payload FROM discovery_sessions WHERE session_id = %s",
                    (session_id,),
                )
                row = cur.fetchone()
                if not row:
                    return None
        return DiscoverySession.model_validate(row[0])

    def save_candidates(self, session_id: str, candidates: list[CandidateExercise]) -> None:
        """Persist the final candidate set of a session as pending review."""
        if not candidates:
            return
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO discovery_candidates
                        (search_id, session_id, name, fingerprint, quality_score, discovery_method, review_state, payload)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (search_id) DO UPDATE
                    SET quality_score = EXCLUDED.quality_score, payload = EXCLUDED.payload
                    """,
                    [
                        (
                            candidate.search_id,
                            session_id,
                            candidate.name,
                            candidate.fingerprint,
                            candidate.quality_score,
                            candidate.discovery_method.value,
                            ReviewState.pending.value,
                            Json(candidate.model_dump(mode="json", by_alias=True)),
                        )
                        for candidate in candidates
                    ],
                )
                conn.commit()

    def list_candidates(
        self, session_id: str, review_state: ReviewState = ReviewState.pending
    ) -> list[CandidateExercise]:
        """Return the stored candidates of a session in the given review state."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT payload FROM discovery_candidates
                    WHERE session_id = %s AND review_state = %s
                    ORDER BY created_at, search_id
                    """,
                    (session_id, review_state.value),
                )
                rows = cur.fetchall()
        return [CandidateExercise.model_validate(row[0]) for row in rows]

    def get_candidate(self, search_id: str) -> ReviewedCandidate | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT payload, review_state FROM discovery_candidates WHERE search_id = %s",
                    (search_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return ReviewedCandidate(
            candidate=CandidateExercise.model_validate(row[0]),
            review_state=ReviewState(row[1]),
        )

    def mark_review(self, search_id: str, review_state: ReviewState) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE discovery_candidates
                    SET review_state = %s, reviewed_at = NOW()
                    WHERE search_id = %s
                    """,
                    (review_state.value, search_id),
                )
                conn.commit()

    def create_exercise(self, candidate: CandidateExercise) -> LibraryExercise:
        """Create the library record for a candidate; replays return the existing row."""
        exercise_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO library_exercises (exercise_id, search_id, name, approved, payload, created_at)
                    VALUES (%s, %s, %s, FALSE, %s, %s)
                    ON CONFLICT (search_id) DO UPDATE SET name = EXCLUDED.name
                    RETURNING exercise_id, search_id, name, approved, approved_at, created_at, payload
                    """,
                    (
                        exercise_id,
                        candidate.search_id,
                        candidate.name,
                        Json(candidate.model_dump(mode="json", by_alias=True)),
                        now,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_exercise(row)

    def mark_approved(self, exercise_id: str) -> LibraryExercise | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE library_exercises
                    SET approved = TRUE, approved_at = COALESCE(approved_at, NOW())
                    WHERE exercise_id = %s
                    RETURNING exercise_id, search_id, name, approved, approved_at, created_at, payload
                    """,
                    (exercise_id,),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            return None
        return self._map_exercise(row)

    def _map_exercise(self, row: tuple) -> LibraryExercise:
        """Convert a library_exercises tuple into the shared DTO."""
        return LibraryExercise(
            exercise_id=str(row[0]),
            search_id=row[1],
            name=row[2],
            approved=row[3],
            approved_at=row[4],
            created_at=row[5],
            payload=CandidateExercise.model_validate(row[6]),
        )
