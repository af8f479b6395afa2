#!/usr/bin/env python3
"""
X (Twitter) v2 recent search client for the Sentinel keyword scanner
Authenticated search guarded by the rate limit guard, with retry on 5xx and timeouts
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

import httpx

from .errors import MisconfiguredCredential, QuotaExceeded, SourceUnavailable
from .models import API_SOURCE, CandidateRecord, Engagement, FetchJob, utcnow
from .rate_limit import RateLimitGuard
from .sources import SourceFetcher

logger = logging.getLogger(__name__)

SEARCH_URL = 'https://api.twitter.com/2/tweets/search/recent'
SEARCH_ENDPOINT = 'search'

# Recent search accepts 10..100 results per request
MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

BACKOFF_DELAYS = (0.25, 0.5, 1.0, 2.0, 4.0)


class XSearchFetcher(SourceFetcher):
    """Authenticated-search fetcher backed by the X v2 recent search endpoint"""

    source_id = API_SOURCE
    capability = 'authenticated_search'

    def __init__(self, bearer_token: Optional[str], guard: RateLimitGuard,
                 client: Optional[httpx.AsyncClient] = None, timeout_s: float = 15.0,
                 max_retries: int = 3, backoff_delays=BACKOFF_DELAYS, base_url: str = SEARCH_URL):
        self.bearer_token = bearer_token
        self.guard = guard
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_delays = tuple(backoff_delays) or (0.0,)
        self.base_url = base_url
        self._client = client
        self._owns_client = client is None
        self.api_calls = 0

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _delay(self, attempt: int) -> float:
        return self.backoff_delays[min(attempt, len(self.backoff_delays) - 1)]

    async def _request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET with staged backoff on 5xx/timeouts; quota and auth errors raise immediately"""
        if not self.bearer_token:
            raise MisconfiguredCredential("TWITTER_BEARER_TOKEN is not configured")

        headers = {'Authorization': f"Bearer {self.bearer_token}"}
        last_error = 'no attempt made'

        for attempt in range(self.max_retries):
            if not self.guard.can_admit(SEARCH_ENDPOINT, 1):
                raise QuotaExceeded(self.source_id, SEARCH_ENDPOINT, self.guard.time_until_reset(SEARCH_ENDPOINT))

            backoff = self.guard.suggested_backoff(SEARCH_ENDPOINT)
            if backoff > 0:
                logger.info(f"[RATE_LIMIT] {SEARCH_ENDPOINT} usage high, sleeping {backoff:.1f}s")
                await asyncio.sleep(backoff)

            try:
                response = await self._http().get(self.base_url, params=params, headers=headers,
                                                   timeout=self.timeout_s)
            except httpx.TimeoutException:
                # the request may have reached the API, so it still counts against the window
                self.guard.record_usage(SEARCH_ENDPOINT, 1)
                delay = self._delay(attempt)
                last_error = 'timeout'
                logger.warning(f"Search request timeout, retrying in {delay}s (attempt {attempt+1}/{self.max_retries})")
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                raise SourceUnavailable(self.source_id, f"transport error: {e}") from e
            finally:
                self.api_calls += 1

            self.guard.record_usage(SEARCH_ENDPOINT, 1)

            if response.status_code == 200:
                return response.json()
            if response.status_code == 429:
                reset_in = _reset_in(response.headers.get('x-rate-limit-reset'))
                raise QuotaExceeded(self.source_id, SEARCH_ENDPOINT, reset_in)
            if response.status_code in (401, 403):
                raise MisconfiguredCredential(f"X API rejected credentials (HTTP {response.status_code})")
            if response.status_code >= 500:
                delay = self._delay(attempt)
                last_error = f"HTTP {response.status_code}"
                logger.warning(f"Server error {response.status_code}, retrying in {delay}s (attempt {attempt+1}/{self.max_retries})")
                await asyncio.sleep(delay)
                continue

            raise SourceUnavailable(self.source_id, f"HTTP {response.status_code}: {response.text[:200]}")

        raise SourceUnavailable(self.source_id, f"gave up after {self.max_retries} attempts ({last_error})")

    async def fetch(self, job: FetchJob) -> List[CandidateRecord]:
        page_size = max(MIN_PAGE_SIZE, min(job.max_results, MAX_PAGE_SIZE))
        params = {
            'query': job.keyword,
            'max_results': page_size,
            'sort_order': 'recency',
            'tweet.fields': 'public_metrics,created_at,author_id,lang,entities',
            'user.fields': 'verified,username',
            'expansions': 'author_id',
        }
        logger.info(f"Searching X for keyword: {job.keyword}")
        data = await self._request(params)

        users = {u.get('id'): u for u in (data.get('includes') or {}).get('users', [])}
        records = []
        for item in data.get('data') or []:
            try:
                records.append(self._to_candidate(item, users.get(item.get('author_id'))))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed tweet {item.get('id', '?')}: {e}")

        logger.info(f"Found {len(records)} posts for keyword: {job.keyword}")
        return records[:job.max_results]

    def _to_candidate(self, tweet: Dict[str, Any], author: Optional[Dict[str, Any]]) -> CandidateRecord:
        metrics = tweet.get('public_metrics')
        if metrics:
            engagement = Engagement(
                likes=int(metrics.get('like_count', 0)),
                shares=int(metrics.get('retweet_count', 0)),
                replies=int(metrics.get('reply_count', 0)),
                quotes=int(metrics.get('quote_count', 0)),
                impressions=int(metrics.get('impression_count', 0)),
                bookmarks=metrics.get('bookmark_count'),
                estimated_fields=frozenset() if 'impression_count' in metrics else frozenset({'impressions'}),
            )
        else:
            engagement = Engagement.unobserved()

        created = tweet.get('created_at')
        timestamp = datetime.fromisoformat(created.replace('Z', '+00:00')) if created else utcnow()
        entities = tweet.get('entities') or {}
        username = (author or {}).get('username') or 'unknown'

        return CandidateRecord(
            source=self.source_id,
            external_id=str(tweet['id']),
            content=tweet['text'],
            author=username,
            author_id=tweet.get('author_id') or '',
            author_verified=bool((author or {}).get('verified', False)),
            url=f"https://x.com/{username}/status/{tweet['id']}",
            language=tweet.get('lang') or 'unknown',
            timestamp=timestamp,
            timestamp_estimated=created is None,
            engagement=engagement,
            hashtags=tuple(h.get('tag', '') for h in entities.get('hashtags', [])),
            mentions=tuple(m.get('username', '') for m in entities.get('mentions', [])),
        )


def _reset_in(header: Optional[str]) -> float:
    if not header:
        return 0.0
    try:
        return max(0.0, float(header) - datetime.now().timestamp())
    except ValueError:
        return 0.0
