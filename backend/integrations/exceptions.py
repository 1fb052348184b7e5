"""Typed exception hierarchy for market data and price lookup errors.

Provides structured exceptions for differentiated error handling
(transient network errors that are worth retrying vs data issues).
"""


class ProviderError(Exception):
    """Base exception for all market-data-provider errors.

    Carries the provider name so callers can identify which provider failed.
    """

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class ProviderConnectionError(ProviderError):
    """Network failures: timeouts, DNS resolution, connection refused.

    Retriable by default.
    """

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        self.retriable = retriable
        super().__init__(message, provider_name)


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass


class PriceLookupTransientError(Exception):
    """A price lookup failed for a reason that may clear on retry.

    Raised by ``PriceLookup`` implementations. The holdings valuator retries
    these with backoff and, once retries run out, treats the price as
    unavailable for that day. Never surfaced to sync callers.
    """

    def __init__(self, message: str, security_id: str = ""):
        self.security_id = security_id
        super().__init__(message)
