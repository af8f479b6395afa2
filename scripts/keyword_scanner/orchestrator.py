#!/usr/bin/env python3
"""
Source orchestrator for the Sentinel keyword scanner
Selects the enabled sources, fans fetches out concurrently and settles every outcome independently
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence

from .errors import MisconfiguredCredential, SelectorMismatch, SourceError
from .logging_ext import log_selector_drift
from .models import API_SOURCE, CandidateRecord, FetchJob, RunStatus, ScrapingConfig
from .sources import SourceRegistry

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TIMEOUT_S = 60.0
DEFAULT_MAX_RESULTS = 100
# Extra time a deadline-aware fetcher gets to hand back its partial results
DEADLINE_GRACE_S = 1.0

QUOTA_EXCEEDED = 'quota_exceeded'
SOURCE_UNAVAILABLE = 'source_unavailable'
TIMEOUT = 'timeout'
UNREGISTERED = 'unregistered'
UNEXPECTED = 'unexpected_error'


@dataclass
class SourceOutcome:
    """What one source produced for one keyword"""
    source: str
    records: List[CandidateRecord] = field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    api_calls: int = 0

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @property
    def quota_denied(self) -> bool:
        return self.error_kind == QUOTA_EXCEEDED

    def summary(self) -> Dict[str, Any]:
        entry = {'records': len(self.records), 'duration_ms': round(self.duration_ms, 2)}
        if not self.ok:
            entry['error_kind'] = self.error_kind
            entry['error'] = self.error
        return entry


@dataclass
class Distribution:
    keyword: str
    outcomes: List[SourceOutcome]

    @property
    def records(self) -> List[CandidateRecord]:
        return [record for outcome in self.outcomes for record in outcome.records]

    @property
    def succeeded(self) -> List[SourceOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[SourceOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def api_calls(self) -> int:
        return sum(o.api_calls for o in self.outcomes)

    def status(self) -> RunStatus:
        if not self.outcomes:
            return RunStatus.SKIPPED
        failed = self.failed
        if not failed:
            return RunStatus.SUCCESS
        if all(o.quota_denied for o in failed) and not self.succeeded:
            return RunStatus.SKIPPED
        if self.succeeded:
            return RunStatus.PARTIAL
        return RunStatus.ERROR

    def error_text(self) -> Optional[str]:
        if not self.failed:
            return None
        return '; '.join(f"{o.source}: {o.error}" for o in self.failed)

    def source_summary(self) -> Dict[str, Any]:
        return {o.source: o.summary() for o in self.outcomes}


class SourceOrchestrator:
    """Runs one fetch per enabled source and isolates per-source failure"""

    def __init__(self, registry: SourceRegistry, source_timeout_s: float = DEFAULT_SOURCE_TIMEOUT_S,
                 default_max_results: int = DEFAULT_MAX_RESULTS):
        self.registry = registry
        self.source_timeout_s = source_timeout_s
        self.default_max_results = default_max_results

    def select_sources(self, scraping_config: ScrapingConfig) -> List[str]:
        """Official API alone, or the enabled scrape sources; never both"""
        if scraping_config.use_official_api:
            return [API_SOURCE]

        selected = []
        for source_id in scraping_config.enabled_scrape_sources():
            if source_id in self.registry:
                selected.append(source_id)
            else:
                logger.warning(f"Source '{source_id}' enabled in config but no fetcher is registered")
        return selected

    def _hard_timeout(self, job: FetchJob, timeout: float) -> float:
        """Cancellation point for one job; deadline-aware fetchers stop on their own first"""
        if getattr(self.registry.get(job.source), 'honours_deadline', False):
            return timeout + DEADLINE_GRACE_S
        return timeout

    async def _fetch(self, job: FetchJob, durations: Dict[str, float], calls: Dict[str, int]):
        fetcher = self.registry.get(job.source)
        calls_before = getattr(fetcher, 'api_calls', 0)
        start = time.perf_counter()
        try:
            return await fetcher.fetch(job)
        finally:
            durations[job.source] = (time.perf_counter() - start) * 1000
            calls[job.source] = getattr(fetcher, 'api_calls', 0) - calls_before

    async def distribute(self, keyword: str, sources: Sequence[str], keyword_id: Optional[str] = None,
                         max_results: Optional[int] = None, timeout_s: Optional[float] = None) -> Distribution:
        """Fetch ``keyword`` from every source concurrently; settle all before returning.

        A MisconfiguredCredential from any source is re-raised once every
        other source has settled.
        """
        limit = max_results or self.default_max_results
        timeout = timeout_s if timeout_s is not None else self.source_timeout_s

        deadline = time.monotonic() + timeout

        outcomes: Dict[str, SourceOutcome] = {}
        jobs = []
        for source_id in dict.fromkeys(sources):
            if source_id not in self.registry:
                outcomes[source_id] = SourceOutcome(source_id, error_kind=UNREGISTERED,
                                                    error="no fetcher registered")
                continue
            jobs.append(FetchJob(keyword=keyword, source=source_id, max_results=limit, keyword_id=keyword_id,
                                 deadline=deadline))

        durations: Dict[str, float] = {}
        calls: Dict[str, int] = {}
        results = await asyncio.gather(
            *(asyncio.wait_for(self._fetch(job, durations, calls), timeout=self._hard_timeout(job, timeout))
              for job in jobs),
            return_exceptions=True,
        )

        fatal: Optional[MisconfiguredCredential] = None
        for job, result in zip(jobs, results):
            outcome = SourceOutcome(job.source, duration_ms=durations.get(job.source, 0.0),
                                    api_calls=calls.get(job.source, 0))
            if isinstance(result, list):
                outcome.records = result
            elif isinstance(result, MisconfiguredCredential):
                fatal = fatal or result
                outcome.error_kind = 'misconfigured_credential'
                outcome.error = str(result)
            elif isinstance(result, asyncio.TimeoutError):
                outcome.error_kind = TIMEOUT
                outcome.error = f"timed out after {timeout:.1f}s"
            elif isinstance(result, SourceError):
                outcome.error_kind = result.kind
                outcome.error = str(result)
                if isinstance(result, SelectorMismatch):
                    log_selector_drift(result)
            elif isinstance(result, Exception):
                logger.error(f"[SOURCE_FAILED] {job.source} raised unexpectedly for '{keyword}'",
                             exc_info=result)
                outcome.error_kind = UNEXPECTED
                outcome.error = f"{type(result).__name__}: {result}"
            else:
                raise result

            if outcome.quota_denied:
                logger.warning(f"[QUOTA] {job.source} denied for '{keyword}': {outcome.error}")
            elif not outcome.ok:
                logger.warning(f"[SOURCE_FAILED] {job.source} for '{keyword}' ({outcome.error_kind}): {outcome.error}")
            else:
                logger.info(f"{job.source}: {len(outcome.records)} records for '{keyword}' "
                            f"in {outcome.duration_ms:.0f}ms")
            outcomes[job.source] = outcome

        if fatal is not None:
            raise fatal

        ordered = [outcomes[s] for s in dict.fromkeys(sources) if s in outcomes]
        return Distribution(keyword=keyword, outcomes=ordered)
