#!/usr/bin/env python3
"""
Sentinel Keyword Scanner
Per-keyword pipeline: fetch -> dedup -> score -> persist -> analytics, plus batch and critical lanes
"""
import asyncio
import time
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence
from contextlib import contextmanager

from .analytics import MODE_CUMULATIVE, AnalyticsAggregator
from .browser_fetcher import TwitterWebFetcher, VoiceOfCongoFetcher
from .config_resolver import resolve_config
from .content_fetcher import DRCNewsFetcher, GoogleNewsFetcher, RadioOkapiFetcher
from .dedup import Deduplicator
from .errors import MisconfiguredCredential, PersistenceFailure, SentinelError
from .logging_ext import JSONLWriter, RunSummary
from .models import (
    AnalyticsSnapshot, EnrichedRecord, Keyword, Priority, RunStatus, ScrapeRunLog, ScrapingConfig,
)
from .orchestrator import Distribution, SourceOrchestrator
from .rate_limit import RateLimitGuard
from .search_client import XSearchFetcher
from .sentiment import Lexicon, SentimentScorer
from .sources import SourceRegistry

logger = logging.getLogger(__name__)


@contextmanager
def performance_timer(operation: str, keyword: str = None, extra_context: dict = None):
    """Context manager for structured performance logging"""
    start_time = time.perf_counter()
    context = {"operation": operation}
    if keyword:
        context["keyword"] = keyword
    if extra_context:
        context.update(extra_context)

    try:
        yield context
    except Exception as e:
        context["error"] = str(e)
        context["success"] = False
        raise
    else:
        context["success"] = True
    finally:
        end_time = time.perf_counter()
        context["duration_ms"] = round((end_time - start_time) * 1000, 2)
        logger.info(f"[PERF] {operation}: {context['duration_ms']}ms", extra=context)


@dataclass
class KeywordRunResult:
    keyword: str
    keyword_id: Optional[str]
    status: RunStatus
    records_found: int = 0
    new_records: int = 0
    duplicates: int = 0
    api_calls: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    sources: Dict[str, Any] = field(default_factory=dict)
    snapshot: Optional[AnalyticsSnapshot] = None


@dataclass
class BatchResult:
    results: List[KeywordRunResult]
    summary: RunSummary
    stopped_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return all(r.status != RunStatus.ERROR for r in self.results)


def sort_by_priority(keywords: Sequence[Keyword]) -> List[Keyword]:
    """critical, high, medium, low; stable within a priority"""
    return sorted(keywords, key=lambda k: k.priority.rank)


class KeywordScanner:
    """Drives the acquisition and enrichment pipeline for keywords"""

    def __init__(self, gateway, orchestrator: SourceOrchestrator, config: Optional[Dict[str, Any]] = None,
                 scorer: Optional[SentimentScorer] = None, deduplicator: Optional[Deduplicator] = None,
                 aggregator: Optional[AnalyticsAggregator] = None, jsonl_writer: Optional[JSONLWriter] = None,
                 dry_run: bool = False, clock=time.monotonic):
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.config = config if config is not None else resolve_config(base_config={})
        settings = self.config['keyword_scanner']
        self.max_results = settings['max_results']
        self.run_deadline_s = float(settings['run_deadline_s'])
        self.critical_limit = settings['critical_limit']
        self.critical_max_results = settings['critical_max_results']
        self.created_max_results = settings['created_max_results']
        self.analytics_mode = settings['analytics']['mode']
        self.analytics_window = settings['analytics']['window']

        self.scorer = scorer or SentimentScorer(Lexicon.from_config(self.config['sentiment']['lexicon']))
        self.deduplicator = deduplicator or Deduplicator(gateway)
        self.aggregator = aggregator or AnalyticsAggregator(
            include_estimated=settings['analytics']['include_estimated'])
        self.jsonl_writer = jsonl_writer
        self.dry_run = dry_run
        self._clock = clock
        self.summary = RunSummary()

    async def _db(self, method: str, *args, **kwargs):
        """Run a synchronous gateway call off the event loop"""
        return await asyncio.to_thread(getattr(self.gateway, method), *args, **kwargs)

    async def _write(self, method: str, *args, **kwargs):
        if self.dry_run:
            logger.info(f"[DRY_RUN] skipped {method}")
            return None
        return await self._db(method, *args, **kwargs)

    async def load_scraping_config(self) -> ScrapingConfig:
        try:
            document = await self._db('get_scraping_config')
        except PersistenceFailure as e:
            logger.warning(f"Could not read scraping config, using defaults: {e}")
            document = None
        scraping_config = ScrapingConfig.from_document(document)
        mode = 'official_api' if scraping_config.use_official_api else 'scraping'
        logger.info(f"Scraping mode: {mode}, sources: {self.orchestrator.select_sources(scraping_config)}")
        return scraping_config

    async def _analytics_records(self, keyword: Keyword, batch: List[EnrichedRecord]) -> List[EnrichedRecord]:
        if self.analytics_mode != MODE_CUMULATIVE:
            return batch
        rows = await self._db('query_by_keyword', keyword.term, self.analytics_window)
        records = []
        for row in rows:
            try:
                records.append(EnrichedRecord.from_row(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable mention row for '{keyword.term}': {e}")
        if self.dry_run:
            known = {r.dedup_key for r in records}
            records.extend(r for r in batch if r.dedup_key not in known)
        return records

    async def _append_run_log(self, entry: ScrapeRunLog):
        try:
            await self._write('append_run_log', entry.to_row())
        except PersistenceFailure as e:
            logger.error(f"Failed to append run log for '{entry.keyword}': {e}")

    async def process_keyword(self, keyword: Keyword, scraping_config: ScrapingConfig,
                              timeout_s: Optional[float] = None,
                              max_results: Optional[int] = None) -> KeywordRunResult:
        """Run the full pipeline for one keyword and record the outcome"""
        start = time.perf_counter()
        result = KeywordRunResult(keyword=keyword.term, keyword_id=keyword.id, status=RunStatus.ERROR)

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        sources = self.orchestrator.select_sources(scraping_config)
        with performance_timer('process_keyword', keyword.term, {'sources': sources}):
            try:
                distribution: Distribution = await self.orchestrator.distribute(
                    keyword.term, sources, keyword_id=keyword.id,
                    max_results=max_results or self.max_results, timeout_s=timeout_s)
            except MisconfiguredCredential as e:
                await self._append_run_log(ScrapeRunLog(
                    keyword=keyword.term, status=RunStatus.ERROR, records_found=0,
                    duration_ms=elapsed_ms(), error=f"misconfigured credential: {e}"))
                raise

            result.status = distribution.status()
            result.sources = distribution.source_summary()
            result.api_calls = distribution.api_calls
            result.error = distribution.error_text()
            self.summary.api_calls += distribution.api_calls
            for outcome in distribution.outcomes:
                self.summary.record_source(outcome.source, len(outcome.records), failed=not outcome.ok)

            if result.status == RunStatus.SKIPPED:
                if distribution.outcomes:
                    logger.warning(f"[QUOTA] '{keyword.term}' skipped this run, every source was quota-denied")
                else:
                    logger.warning(f"'{keyword.term}' skipped this run, no sources are selectable")
                result.duration_ms = elapsed_ms()
                await self._append_run_log(self._run_log(result))
                self.summary.record_keyword(result.status.value)
                return result

            candidates = distribution.records
            result.records_found = len(candidates)
            self.summary.candidates_total += len(candidates)

            try:
                fresh = await asyncio.to_thread(self.deduplicator.dedupe, candidates)
                result.new_records = len(fresh)
                result.duplicates = len(candidates) - len(fresh)

                enriched = [
                    EnrichedRecord(candidate=c, keyword=keyword.term,
                                   sentiment=self.scorer.score(c.content), keyword_id=keyword.id)
                    for c in fresh
                ]
                if enriched:
                    await self._write('batch_upsert', [r.to_row() for r in enriched])
                    if not self.dry_run:
                        self.summary.upserts_total += len(enriched)
                if self.jsonl_writer:
                    decision = 'dry_run' if self.dry_run else 'persisted'
                    for record in enriched:
                        self.jsonl_writer.write_record(record, decision)

                snapshot = self.aggregator.recompute(keyword.id, await self._analytics_records(keyword, enriched))
                if snapshot is not None:
                    result.snapshot = snapshot
                    await self._write('update_snapshot', keyword.id, snapshot.to_dict())
                    await self._write('append_snapshot_history', keyword.id,
                                      self.aggregator.trend_point(snapshot).to_dict())

                await self._write('update_keyword_last_processed', keyword.id)
            except PersistenceFailure as e:
                logger.error(f"Persistence failed for '{keyword.term}': {e}")
                result.status = RunStatus.ERROR
                result.error = f"persistence failure: {e}"

            self.summary.new_records += result.new_records
            self.summary.duplicates += result.duplicates

        result.duration_ms = elapsed_ms()
        await self._append_run_log(self._run_log(result))
        self.summary.record_keyword(result.status.value)
        logger.info(f"LOG[{result.status.value.upper()}] '{keyword.term}': {result.records_found} found, "
                    f"{result.new_records} new, {result.duplicates} duplicates in {result.duration_ms}ms")
        return result

    def _run_log(self, result: KeywordRunResult) -> ScrapeRunLog:
        return ScrapeRunLog(
            keyword=result.keyword,
            status=result.status,
            records_found=result.records_found,
            duration_ms=result.duration_ms,
            api_calls_used=result.api_calls,
            error=result.error,
            sources=result.sources,
        )

    async def run_batch(self, keywords: Optional[Sequence[Keyword]] = None,
                        deadline_s: Optional[float] = None,
                        max_results: Optional[int] = None) -> BatchResult:
        """Process keywords in priority order until done or the wall-clock deadline passes"""
        budget = self.run_deadline_s if deadline_s is None else deadline_s
        deadline = self._clock() + budget
        scraping_config = await self.load_scraping_config()

        if keywords is None:
            rows = await self._db('get_active_keywords')
            keywords = [Keyword.from_row(row) for row in rows]
        ordered = sort_by_priority([k for k in keywords if k.is_active])
        logger.info(f"Processing {len(ordered)} keywords (deadline {budget:.0f}s)")

        results: List[KeywordRunResult] = []
        stopped_reason = None
        with performance_timer('run_batch', extra_context={'keywords': len(ordered)}):
            for index, keyword in enumerate(ordered):
                remaining = deadline - self._clock()
                if remaining <= 0:
                    stopped_reason = f"deadline reached after {index}/{len(ordered)} keywords"
                    logger.warning(f"⏱️ {stopped_reason}")
                    break
                source_timeout = min(self.orchestrator.source_timeout_s, remaining)
                try:
                    results.append(await self.process_keyword(
                        keyword, scraping_config, timeout_s=source_timeout, max_results=max_results))
                except MisconfiguredCredential:
                    logger.error("Aborting run: credentials are missing or rejected")
                    raise
                except SentinelError as e:
                    logger.error(f"Keyword '{keyword.term}' failed: {e}")
                    failed = KeywordRunResult(keyword=keyword.term, keyword_id=keyword.id,
                                              status=RunStatus.ERROR, error=str(e))
                    await self._append_run_log(self._run_log(failed))
                    self.summary.record_keyword(failed.status.value)
                    results.append(failed)

        self.summary.stopped_reason = stopped_reason
        return BatchResult(results=results, summary=self.summary, stopped_reason=stopped_reason)

    async def run_critical(self, limit: Optional[int] = None) -> BatchResult:
        """Fast lane: least recently processed critical keywords first"""
        rows = await self._db('get_active_keywords')
        critical = [k for k in (Keyword.from_row(r) for r in rows) if k.priority == Priority.CRITICAL]
        critical.sort(key=lambda k: (k.last_processed_at is not None,
                                     k.last_processed_at.timestamp() if k.last_processed_at else 0))
        selected = critical[:limit or self.critical_limit]
        logger.info(f"Critical lane: {len(selected)}/{len(critical)} keywords")
        return await self.run_batch(selected, max_results=self.critical_max_results)

    async def process_keyword_id(self, keyword_id: str,
                                 max_results: Optional[int] = None) -> Optional[KeywordRunResult]:
        """Manual or on-create trigger for a single keyword"""
        row = await self._db('get_keyword_by_id', keyword_id)
        if not row:
            logger.error(f"Keyword {keyword_id} not found")
            return None
        keyword = Keyword.from_row(row)
        if not keyword.is_active:
            logger.warning(f"Keyword '{keyword.term}' is inactive, processing anyway on explicit request")
        scraping_config = await self.load_scraping_config()
        return await self.process_keyword(keyword, scraping_config, max_results=max_results)

    async def on_keyword_created(self, keyword_id: str) -> Optional[KeywordRunResult]:
        """Immediate small fetch for a new keyword; quota denial leaves it to the next batch"""
        logger.info(f"New keyword created: {keyword_id}")
        return await self.process_keyword_id(keyword_id, max_results=self.created_max_results)

    async def aclose(self):
        await self.orchestrator.registry.aclose()
        if self.jsonl_writer:
            self.jsonl_writer.close()


def build_registry(config: Dict[str, Any], guard: RateLimitGuard, bearer_token: Optional[str]) -> SourceRegistry:
    settings = config['keyword_scanner']
    browser = settings['browser']
    delay = settings['request_delay_s']
    return SourceRegistry([
        XSearchFetcher(bearer_token, guard),
        TwitterWebFetcher(headless=browser['headless'],
                          navigation_timeout_ms=browser['navigation_timeout_ms'],
                          selector_timeout_ms=browser['selector_timeout_ms']),
        VoiceOfCongoFetcher(headless=browser['headless'],
                            navigation_timeout_ms=browser['navigation_timeout_ms'],
                            selector_timeout_ms=browser['selector_timeout_ms']),
        GoogleNewsFetcher(request_delay_s=delay),
        RadioOkapiFetcher(request_delay_s=delay),
        DRCNewsFetcher(request_delay_s=delay),
    ])


def build_scanner(gateway, config: Dict[str, Any], bearer_token: Optional[str],
                  dry_run: bool = False, jsonl_out: Optional[str] = None) -> KeywordScanner:
    """Wire guard, fetchers, orchestrator and scanner from resolved config"""
    guard = RateLimitGuard.from_config(config['rate_limits'])
    registry = build_registry(config, guard, bearer_token)
    settings = config['keyword_scanner']
    orchestrator = SourceOrchestrator(registry, source_timeout_s=float(settings['source_timeout_s']),
                                      default_max_results=settings['max_results'])
    jsonl_writer = None
    if jsonl_out:
        jsonl_writer = JSONLWriter(jsonl_out, config=config, cli_jsonl=True)
        jsonl_writer.initialize()
    return KeywordScanner(gateway, orchestrator, config=config, jsonl_writer=jsonl_writer, dry_run=dry_run)


async def _run(args) -> int:
    from config import get_config
    from db import SentinelDatabase

    app_config = get_config()
    config = resolve_config(args, base_config=app_config.raw)
    scanner = build_scanner(SentinelDatabase(app_config), config, app_config.twitter_bearer_token,
                            dry_run=args.dry_run, jsonl_out=args.jsonl_out)
    try:
        if args.keyword_id:
            result = await scanner.process_keyword_id(args.keyword_id)
            if result is None:
                return 1
            print(f"\n🎯 '{result.keyword}': {result.status.value}, {result.new_records} new records")
            return 0 if result.status != RunStatus.ERROR else 1
        batch = await (scanner.run_critical() if args.critical else scanner.run_batch())
        batch.summary.print_summary()
        return 0 if batch.ok else 1
    finally:
        await scanner.aclose()


def main():
    """CLI interface for the Sentinel keyword scanner"""
    import argparse

    parser = argparse.ArgumentParser(description='Sentinel Keyword Scanner (batch, critical lane or single keyword)')
    parser.add_argument('--keyword-id', help='Process a single keyword by id')
    parser.add_argument('--critical', action='store_true', help='Only the critical-priority fast lane')
    parser.add_argument('--max-results', type=int, help='Max results per source (1..500)')
    parser.add_argument('--deadline', type=float, help='Batch wall-clock budget in seconds')
    parser.add_argument('--jsonl-out', help='Output JSONL file path')
    parser.add_argument('--dry-run', action='store_true', help='Fetch and score without writing')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        return asyncio.run(_run(args))
    except MisconfiguredCredential as e:
        logger.error(f"Credential error: {e}")
        return 2
    except (SentinelError, ValueError) as e:
        logger.error(f"Scanner error: {e}")
        if args.debug:
            import traceback
            logger.error(traceback.format_exc())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
