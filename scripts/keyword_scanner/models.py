#!/usr/bin/env python3
"""
Data models for the Sentinel keyword scanner
Keywords, candidate/enriched records, analytics snapshots, run logs and fetch jobs
"""
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional, FrozenSet

from .errors import InvalidJob


class Priority(str, Enum):
    CRITICAL = 'critical'
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'

    @property
    def rank(self) -> int:
        return PRIORITY_ORDER[self]


PRIORITY_ORDER = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class SentimentLabel(str, Enum):
    POSITIVE = 'positive'
    NEUTRAL = 'neutral'
    NEGATIVE = 'negative'


class RunStatus(str, Enum):
    SUCCESS = 'success'
    PARTIAL = 'partial'
    ERROR = 'error'
    SKIPPED = 'skipped'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


ENGAGEMENT_FIELDS = ('likes', 'shares', 'replies', 'quotes', 'impressions')


@dataclass(frozen=True)
class Engagement:
    """Raw engagement counts.

    Sources that cannot observe a metric report 0 and list the field in
    ``estimated_fields`` so analytics can tell observed numbers apart.
    """
    likes: int = 0
    shares: int = 0
    replies: int = 0
    quotes: int = 0
    impressions: int = 0
    bookmarks: Optional[int] = None
    estimated_fields: FrozenSet[str] = frozenset()

    @classmethod
    def unobserved(cls) -> 'Engagement':
        """Engagement for a source that exposes no metrics at all"""
        return cls(estimated_fields=frozenset(ENGAGEMENT_FIELDS))

    @property
    def is_estimated(self) -> bool:
        return bool(self.estimated_fields)

    def observed(self, name: str) -> int:
        """Value of a field, or 0 when that field is only an estimate"""
        if name in self.estimated_fields:
            return 0
        return getattr(self, name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'like_count': self.likes,
            'retweet_count': self.shares,
            'reply_count': self.replies,
            'quote_count': self.quotes,
            'impression_count': self.impressions,
            'bookmark_count': self.bookmarks,
            'estimated_fields': sorted(self.estimated_fields),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Engagement':
        data = data or {}
        return cls(
            likes=int(data.get('like_count') or 0),
            shares=int(data.get('retweet_count') or 0),
            replies=int(data.get('reply_count') or 0),
            quotes=int(data.get('quote_count') or 0),
            impressions=int(data.get('impression_count') or 0),
            bookmarks=data.get('bookmark_count'),
            estimated_fields=frozenset(data.get('estimated_fields') or ()),
        )


@dataclass
class Keyword:
    id: str
    term: str
    priority: Priority = Priority.MEDIUM
    is_active: bool = True
    last_processed_at: Optional[datetime] = None
    analytics: Optional['AnalyticsSnapshot'] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Keyword':
        try:
            priority = Priority(row.get('priority') or Priority.MEDIUM.value)
        except ValueError:
            priority = Priority.MEDIUM
        analytics = row.get('analytics')
        return cls(
            id=str(row['id']),
            term=row['term'],
            priority=priority,
            is_active=bool(row.get('is_active', True)),
            last_processed_at=_parse_ts(row.get('last_processed_at')),
            analytics=AnalyticsSnapshot.from_dict(analytics) if analytics else None,
        )


@dataclass(frozen=True)
class CandidateRecord:
    """One piece of content from one source, before dedup and scoring"""
    source: str
    external_id: str
    content: str
    author: str = 'unknown'
    title: str = ''
    url: str = ''
    language: str = 'unknown'
    timestamp: datetime = field(default_factory=utcnow)
    timestamp_estimated: bool = False
    engagement: Engagement = field(default_factory=Engagement.unobserved)
    author_id: str = ''
    author_verified: bool = False
    hashtags: tuple = ()
    mentions: tuple = ()

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.source, self.external_id)


def dedup_key(source: str, external_id: str) -> str:
    return f"{source}_{external_id}"


@dataclass(frozen=True)
class SentimentResult:
    label: SentimentLabel
    score: float
    confidence: float


@dataclass(frozen=True)
class EnrichedRecord:
    candidate: CandidateRecord
    keyword: str
    sentiment: SentimentResult
    keyword_id: Optional[str] = None
    scraped_at: datetime = field(default_factory=utcnow)

    @property
    def dedup_key(self) -> str:
        return self.candidate.dedup_key

    @property
    def label(self) -> SentimentLabel:
        return self.sentiment.label

    @property
    def engagement(self) -> Engagement:
        return self.candidate.engagement

    def to_row(self) -> Dict[str, Any]:
        """Row for the ``mentions`` table"""
        c = self.candidate
        return {
            'dedup_key': self.dedup_key,
            'platform': c.source,
            'external_id': c.external_id,
            'keyword': self.keyword,
            'keyword_id': self.keyword_id,
            'content': c.content,
            'title': c.title,
            'author': c.author,
            'author_id': c.author_id,
            'author_verified': c.author_verified,
            'url': c.url,
            'language': c.language,
            'timestamp': c.timestamp.isoformat(),
            'timestamp_estimated': c.timestamp_estimated,
            'scraped_at': self.scraped_at.isoformat(),
            'sentiment': self.sentiment.label.value,
            'sentiment_score': self.sentiment.score,
            'sentiment_confidence': self.sentiment.confidence,
            'engagement': c.engagement.to_dict(),
            'hashtags': list(c.hashtags),
            'mentions': list(c.mentions),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'EnrichedRecord':
        candidate = CandidateRecord(
            source=row['platform'],
            external_id=row['external_id'],
            content=row.get('content') or '',
            author=row.get('author') or 'unknown',
            title=row.get('title') or '',
            url=row.get('url') or '',
            language=row.get('language') or 'unknown',
            timestamp=_parse_ts(row.get('timestamp')) or utcnow(),
            timestamp_estimated=bool(row.get('timestamp_estimated')),
            engagement=Engagement.from_dict(row.get('engagement')),
            author_id=row.get('author_id') or '',
            author_verified=bool(row.get('author_verified')),
            hashtags=tuple(row.get('hashtags') or ()),
            mentions=tuple(row.get('mentions') or ()),
        )
        sentiment = SentimentResult(
            label=SentimentLabel(row.get('sentiment') or SentimentLabel.NEUTRAL.value),
            score=float(row.get('sentiment_score') or 0.0),
            confidence=float(row.get('sentiment_confidence') or 0.0),
        )
        return cls(
            candidate=candidate,
            keyword=row.get('keyword') or '',
            sentiment=sentiment,
            keyword_id=row.get('keyword_id'),
            scraped_at=_parse_ts(row.get('scraped_at')) or utcnow(),
        )


@dataclass(frozen=True)
class AnalyticsSnapshot:
    total_mentions: int
    sentiment_breakdown: Dict[str, float]
    total_engagement: int
    total_impressions: int
    engagement_rate: float
    virality_score: int
    average_sentiment: float
    estimated_records: int = 0
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['last_updated'] = self.last_updated.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalyticsSnapshot':
        return cls(
            total_mentions=int(data.get('total_mentions', 0)),
            sentiment_breakdown=dict(data.get('sentiment_breakdown') or {}),
            total_engagement=int(data.get('total_engagement', 0)),
            total_impressions=int(data.get('total_impressions', 0)),
            engagement_rate=float(data.get('engagement_rate', 0.0)),
            virality_score=int(data.get('virality_score', 0)),
            average_sentiment=float(data.get('average_sentiment', 0.0)),
            estimated_records=int(data.get('estimated_records', 0)),
            last_updated=_parse_ts(data.get('last_updated')) or utcnow(),
        )


@dataclass(frozen=True)
class TrendPoint:
    date: str
    mentions: int
    sentiment: float
    engagement: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeRunLog:
    keyword: str
    status: RunStatus
    records_found: int
    duration_ms: int
    api_calls_used: int = 0
    error: Optional[str] = None
    sources: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_row(self) -> Dict[str, Any]:
        row = {
            'keyword': self.keyword,
            'timestamp': self.timestamp.isoformat(),
            'status': self.status.value,
            'records_found': self.records_found,
            'api_calls_used': self.api_calls_used,
            'duration_ms': self.duration_ms,
            'sources': self.sources,
        }
        if self.error:
            row['error'] = self.error
        return row


@dataclass(frozen=True)
class FetchJob:
    """Validated unit of work handed from the orchestrator to one fetcher"""
    keyword: str
    source: str
    max_results: int
    keyword_id: Optional[str] = None
    # time.monotonic() value after which the fetcher returns what it has
    deadline: Optional[float] = None
    job_id: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.keyword or not self.keyword.strip():
            raise InvalidJob("FetchJob.keyword must be a non-empty term")
        if not self.source:
            raise InvalidJob("FetchJob.source is required")
        if self.max_results <= 0:
            raise InvalidJob(f"FetchJob.max_results must be positive, got {self.max_results}")

    def remaining_s(self) -> Optional[float]:
        """Seconds left before the deadline, None when the job is unbounded"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


SOURCE_FLAGS = {
    'twitter': 'twitter_web',
    'radio_okapi': 'radio_okapi',
    'voice_of_congo': 'voice_of_congo',
    'drc_news': 'drc_news',
    'google_news': 'google_news',
}

API_SOURCE = 'x_api'


@dataclass
class ScrapingConfig:
    """Mode switch plus per-source toggles, read once per cycle"""
    use_official_api: bool = True
    sources: Dict[str, bool] = field(default_factory=lambda: {name: True for name in SOURCE_FLAGS})
    last_updated: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> 'ScrapingConfig':
        if not doc:
            return cls()
        toggles = {name: True for name in SOURCE_FLAGS}
        for name, enabled in (doc.get('scraping_sources') or {}).items():
            if name in toggles:
                toggles[name] = bool(enabled)
        return cls(
            use_official_api=bool(doc.get('use_official_api', True)),
            sources=toggles,
            last_updated=_parse_ts(doc.get('last_updated')),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'use_official_api': self.use_official_api,
            'enable_scraping': not self.use_official_api,
            'scraping_sources': dict(self.sources),
        }

    def enabled_scrape_sources(self) -> List[str]:
        return [SOURCE_FLAGS[name] for name, enabled in self.sources.items() if enabled]
