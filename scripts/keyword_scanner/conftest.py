#!/usr/bin/env python3
"""
Shared test doubles for the keyword scanner tests
In-memory persistence gateway and canned source fetchers
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from scripts.keyword_scanner.errors import PersistenceFailure
from scripts.keyword_scanner.models import CandidateRecord, Engagement
from scripts.keyword_scanner.sources import SourceFetcher


class FakeGateway:
    """Mirrors the SentinelDatabase surface over plain dicts"""

    max_lookup_terms = 10

    def __init__(self, keywords: Optional[List[Dict[str, Any]]] = None,
                 scraping_config: Optional[Dict[str, Any]] = None):
        self.keywords: Dict[str, Dict[str, Any]] = {str(k['id']): dict(k) for k in keywords or []}
        self.scraping_config = scraping_config
        self.mentions: Dict[str, Dict[str, Any]] = {}
        self.snapshots: Dict[str, Dict[str, Any]] = {}
        self.history: List[Dict[str, Any]] = []
        self.run_logs: List[Dict[str, Any]] = []
        self.lookups: List[List[str]] = []
        self.processed: List[str] = []
        self.fail_on: set = set()

    def _check(self, method: str):
        if method in self.fail_on:
            raise PersistenceFailure(f"{method} failed: injected")

    def batch_upsert(self, rows):
        self._check('batch_upsert')
        written = 0
        for row in rows:
            if row['dedup_key'] not in self.mentions:
                self.mentions[row['dedup_key']] = row
                written += 1
        return written

    def query_existing_ids(self, dedup_keys):
        if len(dedup_keys) > self.max_lookup_terms:
            raise ValueError(f"at most {self.max_lookup_terms} keys per lookup")
        self._check('query_existing_ids')
        self.lookups.append(list(dedup_keys))
        return [key for key in dedup_keys if key in self.mentions]

    def query_by_keyword(self, term, limit=100, cursor=None):
        rows = [r for r in self.mentions.values() if r['keyword'] == term]
        rows.sort(key=lambda r: r['timestamp'], reverse=True)
        if cursor:
            rows = [r for r in rows if r['timestamp'] < cursor]
        return rows[:limit]

    def get_active_keywords(self):
        return [dict(k) for k in self.keywords.values() if k.get('is_active', True)]

    def get_keyword_by_id(self, keyword_id):
        row = self.keywords.get(str(keyword_id))
        return dict(row) if row else None

    def update_keyword_last_processed(self, keyword_id):
        self._check('update_keyword_last_processed')
        self.processed.append(keyword_id)
        if keyword_id in self.keywords:
            self.keywords[keyword_id]['last_processed_at'] = datetime.now(timezone.utc).isoformat()

    def update_snapshot(self, keyword_id, snapshot):
        self._check('update_snapshot')
        self.snapshots[keyword_id] = snapshot

    def append_snapshot_history(self, keyword_id, trend_point):
        self.history.append(dict(trend_point, keyword_id=keyword_id))

    def append_run_log(self, entry):
        self.run_logs.append(entry)

    def get_scraping_config(self):
        self._check('get_scraping_config')
        return self.scraping_config


class StaticFetcher(SourceFetcher):
    """Returns canned records, or raises, after an optional delay"""

    capability = 'static'

    def __init__(self, source_id: str, records=None, error: Optional[BaseException] = None,
                 delay: float = 0.0, api_calls_per_fetch: int = 0):
        self.source_id = source_id
        self.records = list(records or [])
        self.error = error
        self.delay = delay
        self.api_calls_per_fetch = api_calls_per_fetch
        self.api_calls = 0
        self.jobs = []
        self.closed = False

    async def fetch(self, job):
        self.jobs.append(job)
        self.api_calls += self.api_calls_per_fetch
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.records[:job.max_results]

    async def aclose(self):
        self.closed = True


def make_candidate(source: str, external_id: str, content: str = 'Kinshasa news item',
                   engagement: Optional[Engagement] = None, **kwargs) -> CandidateRecord:
    return CandidateRecord(
        source=source,
        external_id=external_id,
        content=content,
        engagement=engagement if engagement is not None else Engagement(likes=1, impressions=10),
        timestamp=kwargs.pop('timestamp', datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)),
        **kwargs,
    )

