#!/usr/bin/env python3
"""
Keyword rollup analytics
Recomputes a keyword snapshot from a set of enriched records
"""
import logging
from typing import Optional, Sequence

from .models import AnalyticsSnapshot, EnrichedRecord, SentimentLabel, TrendPoint, utcnow

logger = logging.getLogger(__name__)

MODE_BATCH = 'batch'
MODE_CUMULATIVE = 'cumulative'


class AnalyticsAggregator:
    """Derives AnalyticsSnapshot values from records; never edits snapshots in place"""

    def __init__(self, include_estimated: bool = False):
        # Estimated engagement fields stay out of the sums unless asked for
        self.include_estimated = include_estimated

    def _value(self, record: EnrichedRecord, name: str) -> int:
        engagement = record.engagement
        if self.include_estimated:
            return getattr(engagement, name)
        return engagement.observed(name)

    def recompute(self, keyword_id: str, records: Sequence[EnrichedRecord]) -> Optional[AnalyticsSnapshot]:
        """Return a fresh snapshot, or None for an empty record set.

        None means "leave the stored snapshot alone": an empty batch must not
        zero out a keyword's history.
        """
        if not records:
            logger.debug(f"Analytics: no records for keyword {keyword_id}, snapshot left untouched")
            return None

        total = len(records)
        counts = {label.value: 0 for label in SentimentLabel}
        total_engagement = 0
        total_impressions = 0
        virality = 0
        sentiment_sum = 0.0
        estimated = 0

        for record in records:
            counts[record.label.value] += 1
            likes = self._value(record, 'likes')
            shares = self._value(record, 'shares')
            replies = self._value(record, 'replies')
            quotes = self._value(record, 'quotes')
            total_engagement += likes + shares + replies + quotes
            total_impressions += self._value(record, 'impressions')
            virality += shares + quotes
            sentiment_sum += record.sentiment.score
            if record.engagement.is_estimated:
                estimated += 1

        engagement_rate = (total_engagement / total_impressions) * 100 if total_impressions > 0 else 0.0

        snapshot = AnalyticsSnapshot(
            total_mentions=total,
            sentiment_breakdown={label: (count / total) * 100 for label, count in counts.items()},
            total_engagement=total_engagement,
            total_impressions=total_impressions,
            engagement_rate=engagement_rate,
            virality_score=virality,
            average_sentiment=sentiment_sum / total,
            estimated_records=estimated,
            last_updated=utcnow(),
        )
        logger.info(
            f"Analytics for {keyword_id}: {total} mentions, avg sentiment {snapshot.average_sentiment:.3f}, "
            f"engagement {total_engagement} ({estimated} estimated records)"
        )
        return snapshot

    @staticmethod
    def trend_point(snapshot: AnalyticsSnapshot) -> TrendPoint:
        return TrendPoint(
            date=snapshot.last_updated.date().isoformat(),
            mentions=snapshot.total_mentions,
            sentiment=snapshot.average_sentiment,
            engagement=snapshot.total_engagement,
        )
