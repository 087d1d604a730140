"""Exception hierarchy for the feed processor.

Feed errors are always recovered inside the feed source that raised them; they
decide which backoff strategy applies to the next attempt and never reach the
cache or the consumer.
"""

from typing import Mapping, Optional


class FeedProcessorError(Exception):
    """Base class for all feed processor errors."""


class ConfigurationError(FeedProcessorError):
    """Raised when the configuration cannot be loaded or is invalid."""


class CredentialsError(ConfigurationError):
    """Raised at feed construction when a provider's credentials are missing."""


class FeedError(FeedProcessorError):
    """Base class for failures of a single poll cycle."""


class TransportError(FeedError):
    """No response was received (connection refused, DNS failure, timeout)."""


class ProtocolError(FeedError):
    """The provider answered, but signalled a failure."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after
        self.headers = dict(headers or {})


class ParseError(FeedError):
    """The response could not be turned into feed items."""
