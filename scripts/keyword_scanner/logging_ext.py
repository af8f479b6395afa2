#!/usr/bin/env python3
"""
Logging extensions for the Sentinel keyword scanner
Run summary counters, JSONL audit writer and the selector drift channel
"""
import json
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Any, Optional, TextIO

from .errors import SelectorMismatch

logger = logging.getLogger(__name__)

# Dedicated channel so operators can alert on scraper markup changes
drift_logger = logging.getLogger('keyword_scanner.drift')


def log_selector_drift(error: SelectorMismatch) -> None:
    drift_logger.warning(
        f"[SELECTOR_DRIFT] source={error.source} url={error.url} selector={error.selector!r}",
        extra={'source': error.source, 'url': error.url, 'selector': error.selector},
    )


class RunSummary:
    """Run summary with counters for keyword scanner statistics"""

    def __init__(self):
        self.keywords_processed = 0
        self.keywords_skipped = 0
        self.keywords_failed = 0
        self.api_calls = 0
        self.candidates_total = 0
        self.new_records = 0
        self.duplicates = 0
        self.upserts_total = 0
        self.source_records = Counter()
        self.source_failures = Counter()
        self.stopped_reason: Optional[str] = None

    def record_keyword(self, status: str):
        if status == 'skipped':
            self.keywords_skipped += 1
        elif status == 'error':
            self.keywords_failed += 1
        else:
            self.keywords_processed += 1

    def record_source(self, source: str, count: int, failed: bool = False):
        self.source_records[source] += count
        if failed:
            self.source_failures[source] += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'keywords_processed': self.keywords_processed,
            'keywords_skipped': self.keywords_skipped,
            'keywords_failed': self.keywords_failed,
            'api_calls': self.api_calls,
            'candidates_total': self.candidates_total,
            'new_records': self.new_records,
            'duplicates': self.duplicates,
            'upserts_total': self.upserts_total,
            'source_records': dict(self.source_records),
            'source_failures': dict(self.source_failures),
            'stopped_reason': self.stopped_reason,
        }

    def print_summary(self):
        """Print formatted summary to console"""
        print("\n" + "="*50)
        print("SENTINEL KEYWORD SCANNER - RUN SUMMARY")
        print("="*50)
        print(f"Keywords processed: {self.keywords_processed}")
        print(f"Keywords skipped (quota): {self.keywords_skipped}")
        print(f"Keywords failed: {self.keywords_failed}")
        print(f"API calls: {self.api_calls}")
        print(f"Candidates found: {self.candidates_total}")
        print(f"Duplicates dropped: {self.duplicates}")
        print(f"New records: {self.new_records}")
        print(f"Upserts: {self.upserts_total}")

        if self.source_records:
            print("Records by source:")
            for source, count in self.source_records.most_common():
                failures = self.source_failures.get(source, 0)
                suffix = f" ({failures} failed)" if failures else ''
                print(f"  {source}: {count}{suffix}")

        if self.stopped_reason:
            print(f"Stopped early: {self.stopped_reason}")
        print("="*50)


class JSONLWriter:
    """JSONL writer with append-only mode and immediate flushing"""

    def __init__(self, filepath: str, config: Optional[Dict[str, Any]] = None, cli_jsonl: bool = False):
        self.filepath = filepath
        self.jsonl_file: Optional[TextIO] = None
        self.enabled = cli_jsonl
        if not cli_jsonl and config and 'keyword_scanner' in config:
            self.enabled = bool(config['keyword_scanner'].get('logging', {}).get('jsonl', False))

    def initialize(self):
        """Initialize JSONL output file if enabled"""
        if not self.enabled:
            return

        try:
            self.jsonl_file = open(self.filepath, 'a', encoding='utf-8')
            logger.debug(f"JSONL output initialized: {self.filepath}")
        except OSError as e:
            logger.error(f"Failed to initialize JSONL output {self.filepath}: {e}")
            self.jsonl_file = None

    def write_record(self, record, decision: str):
        """Write one enriched record decision (``persisted`` / ``dry_run``)"""
        if not self.enabled or not self.jsonl_file:
            return

        entry = {
            'dedup_key': record.dedup_key,
            'keyword': record.keyword,
            'keyword_id': record.keyword_id,
            'source': record.candidate.source,
            'url': record.candidate.url,
            'sentiment': record.sentiment.label.value,
            'sentiment_score': record.sentiment.score,
            'estimated_fields': sorted(record.engagement.estimated_fields),
            'decision': decision,
            'ts': datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.jsonl_file.write(json.dumps(entry, ensure_ascii=False) + '\n')
            self.jsonl_file.flush()
        except OSError as e:
            logger.error(f"Failed to write JSONL entry: {e}")

    def close(self):
        """Close JSONL output file"""
        if self.jsonl_file:
            try:
                self.jsonl_file.close()
            except OSError as e:
                logger.error(f"Error closing JSONL file: {e}")
            self.jsonl_file = None
