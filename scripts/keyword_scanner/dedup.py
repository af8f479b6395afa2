#!/usr/bin/env python3
"""
Deduplication utilities for the Sentinel keyword scanner
Stable URL identities for scraped content and two-phase dedup against persisted keys
"""
import hashlib
import logging
import re
from urllib.parse import urlparse
from typing import Iterable, List, Optional, Set

from .models import CandidateRecord

logger = logging.getLogger(__name__)

# Persistence gateway accepts at most this many equality terms per lookup
MAX_LOOKUP_TERMS = 10

# Pre-compiled regex patterns for URL normalization
RE_FILE_EXTENSION = re.compile(r'\.(?:html?|php|aspx?)$')
RE_LANG_PREFIX = re.compile(r'^/(?:fr|en)/')
TRACKING_PARAMS = ('utm_', 'fbclid', 'gclid', 'oc=')


def normalize_url(url: str) -> str:
    """Scheme-less, www-less, tracking-free form of an article URL"""
    try:
        parsed = urlparse(url.strip())
        domain = parsed.netloc.lower()
        if domain.startswith('www.'):
            domain = domain[4:]
        path = parsed.path.rstrip('/')
        path = RE_FILE_EXTENSION.sub('', path)
        path = RE_LANG_PREFIX.sub('/', path)
        query = '&'.join(
            part for part in parsed.query.split('&')
            if part and not part.startswith(TRACKING_PARAMS)
        )
        return f"{domain}{path}" + (f"?{query}" if query else '')
    except (AttributeError, ValueError):
        return url


def url_identity(url: str) -> str:
    """Stable external id for content that has no id of its own"""
    return hashlib.sha1(normalize_url(url).encode('utf-8')).hexdigest()[:16]


def content_identity(*parts: str) -> str:
    """Fallback identity when a scraped item has no URL"""
    joined = '|'.join((p or '').strip().lower() for p in parts)
    return hashlib.sha1(joined.encode('utf-8')).hexdigest()[:16]


def chunked(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class Deduplicator:
    """Drops candidates already seen in this batch or already persisted"""

    def __init__(self, gateway=None, chunk_size: int = MAX_LOOKUP_TERMS):
        if chunk_size < 1 or chunk_size > MAX_LOOKUP_TERMS:
            raise ValueError(f"chunk_size must be between 1 and {MAX_LOOKUP_TERMS}")
        self.gateway = gateway
        self.chunk_size = chunk_size

    @staticmethod
    def collapse(candidates: Iterable[CandidateRecord]) -> List[CandidateRecord]:
        """Phase 1: keep the first occurrence of each dedup key"""
        seen: Set[str] = set()
        unique = []
        for candidate in candidates:
            key = candidate.dedup_key
            if key in seen:
                continue
            seen.add(key)
            unique.append(candidate)
        return unique

    def existing_keys(self, keys: Iterable[str]) -> Set[str]:
        """Look keys up in chunks the gateway accepts and union the hits"""
        keys = list(dict.fromkeys(keys))
        if not keys or self.gateway is None:
            return set()
        found: Set[str] = set()
        for chunk in chunked(keys, self.chunk_size):
            found |= set(self.gateway.query_existing_ids(chunk))
        logger.debug(f"Dedup lookup: {len(found)}/{len(keys)} keys already persisted")
        return found

    def filter_new(self, candidates: Iterable[CandidateRecord],
                   already_persisted: Optional[Set[str]] = None) -> List[CandidateRecord]:
        """Phase 1 + phase 2 against a known persisted-key set"""
        persisted = already_persisted or set()
        unique = self.collapse(candidates)
        fresh = [c for c in unique if c.dedup_key not in persisted]
        logger.info(f"Dedup: {len(unique)} unique → {len(fresh)} new")
        return fresh

    def dedupe(self, candidates: Iterable[CandidateRecord]) -> List[CandidateRecord]:
        unique = self.collapse(candidates)
        persisted = self.existing_keys(c.dedup_key for c in unique)
        return self.filter_new(unique, persisted)
