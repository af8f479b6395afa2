#!/usr/bin/env python3
"""
Sentinel Database Module
Supabase persistence gateway for keywords, mentions, analytics, run logs and scraping config
"""
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from supabase import create_client, Client
from tenacity import retry, stop_after_attempt, wait_exponential

from config import get_config
from scripts.keyword_scanner.errors import PersistenceFailure

logger = logging.getLogger(__name__)

# PostgREST `in` filters are kept to this many terms per query
MAX_IN_TERMS = 10

SCRAPING_CONFIG_KEY = 'scraping_config'


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SentinelDatabase:
    """Persistence gateway used by the keyword scanner; every failure surfaces as PersistenceFailure"""

    def __init__(self, app_config=None, client: Optional[Client] = None):
        self.config = app_config or get_config()
        self.client: Client = client or create_client(
            self.config.supabase_url,
            self.config.supabase_key
        )

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=8), reraise=True)
    def _execute(self, query):
        return query.execute()

    def _run(self, query, action: str):
        try:
            return self._execute(query)
        except Exception as e:
            logger.error(f"Error during {action}: {e}")
            raise PersistenceFailure(f"{action} failed: {e}") from e

    # =============================================================================
    # MENTION OPERATIONS
    # =============================================================================

    def batch_upsert(self, rows: List[Dict[str, Any]]) -> int:
        """
        Upsert enriched mention rows, idempotent by dedup_key

        Returns:
            Number of rows written
        """
        if not rows:
            return 0
        result = self._run(
            self.client.table('mentions').upsert(rows, on_conflict='dedup_key', ignore_duplicates=True),
            f"batch upsert of {len(rows)} mentions"
        )
        written = len(result.data or [])
        logger.info(f"Upserted {written}/{len(rows)} mentions")
        return written

    def query_existing_ids(self, dedup_keys: List[str]) -> List[str]:
        """Return which of ``dedup_keys`` are already stored; at most 10 keys per call"""
        if len(dedup_keys) > MAX_IN_TERMS:
            raise ValueError(f"query_existing_ids accepts at most {MAX_IN_TERMS} keys, got {len(dedup_keys)}")
        if not dedup_keys:
            return []
        result = self._run(
            self.client.table('mentions').select('dedup_key').in_('dedup_key', list(dedup_keys)),
            "existing id lookup"
        )
        return [row['dedup_key'] for row in result.data or []]

    def query_by_keyword(self, term: str, limit: int = 100, cursor: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent mentions for a keyword; ``cursor`` is the timestamp of the last row seen"""
        query = self.client.table('mentions')\
            .select('*')\
            .eq('keyword', term)\
            .order('timestamp', desc=True)\
            .limit(limit)
        if cursor:
            query = query.lt('timestamp', cursor)
        result = self._run(query, f"mention query for '{term}'")
        return result.data or []

    # =============================================================================
    # KEYWORD OPERATIONS
    # =============================================================================

    def get_active_keywords(self) -> List[Dict[str, Any]]:
        result = self._run(
            self.client.table('keywords').select('*').eq('is_active', True),
            "active keyword load"
        )
        return result.data or []

    def get_keyword_by_id(self, keyword_id: str) -> Optional[Dict[str, Any]]:
        result = self._run(
            self.client.table('keywords').select('*').eq('id', keyword_id).limit(1),
            f"keyword lookup {keyword_id}"
        )
        return result.data[0] if result.data else None

    def update_keyword_last_processed(self, keyword_id: str) -> None:
        self._run(
            self.client.table('keywords').update({'last_processed_at': _now()}).eq('id', keyword_id),
            f"last_processed update for {keyword_id}"
        )

    # =============================================================================
    # ANALYTICS OPERATIONS
    # =============================================================================

    def update_snapshot(self, keyword_id: str, snapshot: Dict[str, Any]) -> None:
        """Merge-style write: only the analytics column is touched"""
        self._run(
            self.client.table('keywords').update({'analytics': snapshot, 'updated_at': _now()}).eq('id', keyword_id),
            f"snapshot update for {keyword_id}"
        )
        logger.debug(f"Snapshot updated for keyword {keyword_id}")

    def append_snapshot_history(self, keyword_id: str, trend_point: Dict[str, Any]) -> None:
        row = dict(trend_point, keyword_id=keyword_id, created_at=_now())
        self._run(self.client.table('keyword_analytics').insert(row), f"history append for {keyword_id}")

    # =============================================================================
    # RUN LOG OPERATIONS
    # =============================================================================

    def append_run_log(self, entry: Dict[str, Any]) -> None:
        self._run(self.client.table('scraping_logs').insert(entry), f"run log append for '{entry.get('keyword')}'")

    # =============================================================================
    # SCRAPING CONFIG OPERATIONS
    # =============================================================================

    def get_scraping_config(self) -> Optional[Dict[str, Any]]:
        result = self._run(
            self.client.table('config').select('value').eq('key', SCRAPING_CONFIG_KEY).limit(1),
            "scraping config load"
        )
        if not result.data:
            return None
        return result.data[0].get('value')

    def update_scraping_config(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        current = self.get_scraping_config() or {}
        merged = dict(current)
        for key, value in updates.items():
            if key == 'scraping_sources' and isinstance(value, dict):
                merged[key] = dict(current.get(key) or {}, **value)
            else:
                merged[key] = value
        merged['last_updated'] = _now()
        self._run(
            self.client.table('config').upsert({'key': SCRAPING_CONFIG_KEY, 'value': merged}, on_conflict='key'),
            "scraping config update"
        )
        logger.info(f"Scraping config updated: {sorted(updates)}")
        return merged

    def toggle_data_source(self, use_official_api: bool) -> Dict[str, Any]:
        """Switch between the official API and scraping mode"""
        mode = 'official API' if use_official_api else 'scraping'
        logger.info(f"Switching data source to {mode}")
        return self.update_scraping_config({
            'use_official_api': use_official_api,
            'enable_scraping': not use_official_api,
        })
