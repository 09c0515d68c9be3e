"""Polling client for the discovery service."""

from .client import DiscoveryClient, DiscoveryClientError, DiscoveryFailed, PollingTimeout

__all__ = ["DiscoveryClient", "DiscoveryClientError", "DiscoveryFailed", "PollingTimeout"]
