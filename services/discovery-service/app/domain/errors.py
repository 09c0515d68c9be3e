"""Domain exceptions translated to HTTP errors by the API layer."""

from __future__ import annotations


class DiscoveryError(Exception):
    """Base class for discovery workflow errors."""


class SessionNotFound(DiscoveryError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id} not found")
        self.session_id = session_id


class CandidateNotFound(DiscoveryError):
    def __init__(self, search_id: str) -> None:
        super().__init__(f"candidate {search_id} not found")
        self.search_id = search_id


class SessionAlreadyRunning(DiscoveryError):
    """Raised when a second run is started while one is still running."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"discovery session {session_id} is already running")
        self.session_id = session_id


class InvalidSessionState(DiscoveryError):
    """The requested transition is not allowed from the session's current status."""
