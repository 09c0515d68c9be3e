"""Prometheus counters exported at /metrics."""

from __future__ import annotations

from prometheus_client import Counter

SESSIONS_STARTED = Counter(
    "discovery_sessions_started_total",
    "Discovery sessions accepted for processing",
    ["session_type"],
)
SESSIONS_FINISHED = Counter(
    "discovery_sessions_finished_total",
    "Discovery sessions that reached a terminal status",
    ["status"],
)
CANDIDATES_DISCOVERED = Counter(
    "discovery_candidates_total",
    "Candidate exercises produced by the enricher",
    ["method"],
)
PROVIDER_FALLBACKS = Counter(
    "discovery_provider_fallbacks_total",
    "Provider calls that degraded to a local fallback",
    ["provider", "reason"],
)
