#!/usr/bin/env python3
"""
Exception taxonomy for the Sentinel keyword scanner
Recoverable source errors are contained per fetcher; persistence and credential errors propagate
"""


class SentinelError(Exception):
    """Base exception for keyword scanner errors"""
    pass


class InvalidJob(SentinelError):
    """FetchJob failed validation"""
    pass


class SourceError(SentinelError):
    """Base for errors raised by a single source fetcher"""

    kind = 'source_error'

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class QuotaExceeded(SourceError):
    """Rate limit guard denied the request, or the remote returned 429"""

    kind = 'quota_exceeded'

    def __init__(self, source: str, endpoint: str, retry_in: float = 0.0):
        super().__init__(source, f"quota exhausted for endpoint '{endpoint}' (reset in {retry_in:.0f}s)")
        self.endpoint = endpoint
        self.retry_in = retry_in


class SourceUnavailable(SourceError):
    """Source could not be reached or kept failing after retries"""

    kind = 'source_unavailable'


class SelectorMismatch(SourceError):
    """Page structure no longer matches the configured CSS selectors"""

    kind = 'selector_mismatch'

    def __init__(self, source: str, url: str, selector: str):
        super().__init__(source, f"selector '{selector}' matched nothing on {url}")
        self.url = url
        self.selector = selector


class PersistenceFailure(SentinelError):
    """A write to the persistence gateway failed after retries"""
    pass


class MisconfiguredCredential(SentinelError):
    """Credential missing or rejected; needs operator intervention"""
    pass
