#!/usr/bin/env python3
"""
Source fetcher contract and registry
Every source is a SourceFetcher registered under its source id; adding a source is a registration
"""
import logging
from typing import Dict, Iterable, List, Optional

from .models import CandidateRecord, FetchJob

logger = logging.getLogger(__name__)

# Words shorter than this are ignored when matching keyword parts
MIN_KEYWORD_PART = 3

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36'
)


def keyword_matches(text: str, keyword: str) -> bool:
    """Full phrase match, or any keyword word of 3+ chars (case-insensitive)"""
    haystack = (text or '').lower()
    needle = (keyword or '').lower().strip()
    if not needle:
        return False
    if needle in haystack:
        return True
    return any(len(part) >= MIN_KEYWORD_PART and part in haystack for part in needle.split())


class SourceFetcher:
    """Turns a keyword into candidate records for one source.

    A bad item is skipped, not raised. Browser pages and contexts are
    released on every exit path.
    """

    source_id = ''
    capability = 'base'
    # True when fetch() stops at job.deadline and returns what it gathered
    honours_deadline = False

    async def fetch(self, job: FetchJob) -> List[CandidateRecord]:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class SourceRegistry:
    """Lookup table from source id to fetcher"""

    def __init__(self, fetchers: Optional[Iterable[SourceFetcher]] = None):
        self._fetchers: Dict[str, SourceFetcher] = {}
        for fetcher in fetchers or ():
            self.register(fetcher)

    def register(self, fetcher: SourceFetcher) -> None:
        if not fetcher.source_id:
            raise ValueError(f"{type(fetcher).__name__} has no source_id")
        if fetcher.source_id in self._fetchers:
            logger.warning(f"Replacing fetcher for source '{fetcher.source_id}'")
        self._fetchers[fetcher.source_id] = fetcher

    def get(self, source_id: str) -> Optional[SourceFetcher]:
        return self._fetchers.get(source_id)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._fetchers

    def ids(self) -> List[str]:
        return list(self._fetchers)

    async def aclose(self) -> None:
        for source_id, fetcher in self._fetchers.items():
            try:
                await fetcher.aclose()
            except Exception as e:
                logger.warning(f"Error closing fetcher {source_id}: {e}")
