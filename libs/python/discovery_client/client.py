"""HTTP client for the discovery service session endpoints."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from schemas import (
    DiscoverySession,
    ReviewedCandidate,
    SessionConfig,
    SessionStatus,
    StartSessionResponse,
)

logger = logging.getLogger(__name__)


class DiscoveryClientError(RuntimeError):
    """The discovery service answered with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Error {status_code}: {message}")
        self.status_code = status_code


class PollingTimeout(RuntimeError):
    """The session did not reach a terminal status within the polling budget."""

    def __init__(self, session_id: str, attempts: int) -> None:
        super().__init__(f"session {session_id} still running after {attempts} status checks")
        self.session_id = session_id
        self.attempts = attempts


class DiscoveryFailed(RuntimeError):
    """The session ended in the ``failed`` status."""

    def __init__(self, session: DiscoverySession) -> None:
        errors = "; ".join(error.error for error in session.errors) or "no error recorded"
        super().__init__(f"session {session.session_id} failed: {errors}")
        self.session = session


class DiscoveryClient:
    """Client for starting, polling and reviewing discovery sessions."""

    POLL_INTERVAL_SECONDS = 2.0
    MAX_POLLS = 300

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        http_client: httpx.Client | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_polls: int = MAX_POLLS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the discovery client.

        Args:
            base_url: Root URL of the discovery service
            http_client: Pre-configured client; takes precedence over ``base_url``
            poll_interval: Seconds between status checks
            max_polls: Status checks before :class:`PollingTimeout` is raised
        """
        self._client = http_client or httpx.Client(base_url=base_url, timeout=30.0)
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._client.request(method, f"/v1{path}", **kwargs)
        if response.status_code >= 400:
            raise DiscoveryClientError(response.status_code, response.text)
        return response.json()

    def start(self, config: SessionConfig | None = None) -> StartSessionResponse:
        payload = (config or SessionConfig()).model_dump(mode="json", by_alias=True, exclude_none=True)
        return StartSessionResponse.model_validate(self._request("POST", "/discovery/sessions", json=payload))

    def status(self, session_id: str) -> DiscoverySession:
        return DiscoverySession.model_validate(self._request("GET", f"/discovery/sessions/{session_id}"))

    def cancel(self, session_id: str) -> DiscoverySession:
        return DiscoverySession.model_validate(self._request("POST", f"/discovery/sessions/{session_id}/cancel"))

    def candidates(self, session_id: str) -> list[ReviewedCandidate]:
        data = self._request("GET", f"/discovery/sessions/{session_id}/candidates")
        return [ReviewedCandidate.model_validate(item) for item in data["items"]]

    def review(self, search_id: str, approved: bool) -> dict[str, Any]:
        return self._request("PUT", f"/discovery/candidates/{search_id}/review", json={"approved": approved})

    def wait_for_completion(
        self,
        session_id: str,
        on_progress: Callable[[DiscoverySession], None] | None = None,
    ) -> DiscoverySession:
        """
        Poll the session until it reaches a terminal status.

        Args:
            session_id: Session returned by :meth:`start`
            on_progress: Called with every snapshot, including the last one

        Returns:
            The terminal session snapshot (completed or cancelled)

        Raises:
            DiscoveryFailed: the session ended as ``failed``
            PollingTimeout: the polling budget was spent while still running
        """
        for attempt in range(1, self._max_polls + 1):
            session = self.status(session_id)
            if on_progress is not None:
                on_progress(session)
            if session.status is SessionStatus.failed:
                raise DiscoveryFailed(session)
            if session.status.terminal:
                return session
            logger.debug(
                "session %s at %.1f%% (check %d/%d)",
                session_id,
                session.progress.progress_percent,
                attempt,
                self._max_polls,
            )
            if attempt < self._max_polls:
                self._sleep(self._poll_interval)
        raise PollingTimeout(session_id, self._max_polls)

    def close(self) -> None:
        self._client.close()
