#!/usr/bin/env python3
"""
Sentinel Keyword Scanner - Modular Components
Rate-limited multi-source acquisition, dedup, sentiment and analytics for monitored keywords
"""

# Main scanner class
from .scanner import KeywordScanner, build_scanner

# Core components
from .rate_limit import RateLimitGuard
from .sources import SourceFetcher, SourceRegistry
from .orchestrator import SourceOrchestrator, SourceOutcome
from .dedup import Deduplicator
from .sentiment import SentimentScorer, Lexicon
from .analytics import AnalyticsAggregator

# Utilities
from .errors import *
from .models import *
from .config_resolver import load_config, resolve_config
from .logging_ext import JSONLWriter, RunSummary

__all__ = [
    'KeywordScanner',
    'build_scanner',
    'RateLimitGuard',
    'SourceFetcher',
    'SourceRegistry',
    'SourceOrchestrator',
    'SourceOutcome',
    'Deduplicator',
    'SentimentScorer',
    'Lexicon',
    'AnalyticsAggregator',
    'JSONLWriter',
    'RunSummary',
    'load_config',
    'resolve_config',
]
