"""Failure classes for external provider calls."""

from __future__ import annotations


class ProviderError(RuntimeError):
    """A provider call failed in a way retrying will not fix."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.attempts = 1


class TransientProviderError(ProviderError):
    """Network failure, rate limit or 5xx; eligible for retry."""


class MalformedResponseError(ProviderError):
    """The provider answered but the payload is not usable."""


class ProviderNotConfigured(ProviderError):
    """No credential is configured for the provider."""


class QuotaExhausted(ProviderError):
    """The local quota for the provider is used up for the current window."""
