#!/usr/bin/env python3
"""
Document fetcher tests - feed parsing, HTML selectors, fallbacks and drift logging
"""
import asyncio
import logging
from datetime import datetime, timezone

import httpx
import pytest

from scripts.keyword_scanner.content_fetcher import (
    Article, DRCNewsFetcher, GoogleNewsFetcher, NewsSite, RadioOkapiFetcher,
    collapse_titles, parse_feed, parse_html,
)
from scripts.keyword_scanner.dedup import url_identity
from scripts.keyword_scanner.errors import SelectorMismatch, SourceUnavailable
from scripts.keyword_scanner.models import FetchJob, RunStatus
from scripts.keyword_scanner.orchestrator import SourceOrchestrator
from scripts.keyword_scanner.sources import SourceRegistry, keyword_matches

OKAPI_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Radio Okapi</title>
<item>
  <title>Kinshasa : reprise des cours dans les écoles publiques</title>
  <link>https://www.radiookapi.net/2024/05/01/actualite/kinshasa-reprise-des-cours</link>
  <description>Les écoles de Kinshasa rouvrent après la grève des enseignants.</description>
  <pubDate>Wed, 01 May 2024 10:00:00 +0000</pubDate>
</item>
<item>
  <title>Goma : la situation humanitaire se dégrade</title>
  <link>https://www.radiookapi.net/2024/05/01/actualite/goma-humanitaire</link>
  <description>Les déplacés affluent autour de la ville.</description>
</item>
</channel></rss>"""

GOOGLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Google News</title>
<item>
  <title>Tshisekedi reçoit les gouverneurs à Kinshasa</title>
  <link>https://news.google.com/articles/abc?oc=5</link>
  <description>Réunion au Palais de la Nation sur la sécurité.</description>
  <source url="https://actualite.cd">Actualite.cd</source>
</item>
<item>
  <title>Tshisekedi reçoit les gouverneurs à Kinshasa!</title>
  <link>https://news.google.com/articles/def</link>
  <description>Même dépêche reprise par un autre média.</description>
</item>
</channel></rss>"""

OKAPI_HOMEPAGE = """<html><body>
<div class="views-row">
  <div class="views-field-title"><a href="/2024/05/02/kinshasa-eau">Kinshasa : pénurie d'eau dans la commune de Limete</a></div>
  <div class="views-field-body"><span class="field-content">Les habitants de Limete dénoncent des coupures répétées.</span></div>
</div>
<div class="views-row">
  <div class="views-field-title"><a href="/2024/05/02/bukavu">Bukavu : ouverture du marché central rénové</a></div>
  <div class="views-field-body"><span class="field-content">Les commerçants saluent les travaux.</span></div>
</div>
</body></html>"""

SEARCH_PAGE = """<html><body>
<script>var tracking = 'Kinshasa';</script>
<article>
  <h2>Kinshasa : le gouverneur lance les travaux du boulevard</h2>
  <p>Les travaux doivent durer six mois selon l'hôtel de ville.</p>
  <a href="/article/boulevard-kinshasa">Lire</a>
</article>
<article><h2>Sport</h2><p>Kinshasa</p></article>
</body></html>"""


def job(max_results=20, keyword='Kinshasa', source='radio_okapi'):
    return FetchJob(keyword=keyword, source=source, max_results=max_results)


def run_fetch(fetcher_cls, routes, fetch_job, **kwargs):
    """Run ``fetcher_cls.fetch`` with requests answered from ``routes`` (url prefix -> response)"""
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requested.append(url)
        for prefix, response in routes.items():
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                return response
        return httpx.Response(404)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = fetcher_cls(client=client, request_delay_s=0, **kwargs)
            return await fetcher.fetch(fetch_job)

    return asyncio.run(scenario()), requested


class TestParsing:

    def test_parse_feed_filters_on_keyword(self):
        articles = parse_feed(OKAPI_RSS, 'Kinshasa', 'Radio Okapi', 10)

        assert len(articles) == 1
        article = articles[0]
        assert article.title.startswith('Kinshasa : reprise')
        assert article.author == 'Radio Okapi'
        assert article.published_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_feed_without_keyword_keeps_all(self):
        assert len(parse_feed(OKAPI_RSS, None, 'Radio Okapi', 10)) == 2
        assert len(parse_feed(OKAPI_RSS, None, 'Radio Okapi', 1)) == 1

    def test_parse_feed_uses_entry_source_as_author(self):
        articles = parse_feed(GOOGLE_RSS, None, 'Google News', 10)
        assert articles[0].author == 'Actualite.cd'
        assert articles[1].author == 'Google News'

    def test_parse_html_matches_selectors(self):
        articles = parse_html(SEARCH_PAGE, 'Kinshasa', 'Actualité.cd', 'https://actualite.cd',
                              ('article',), limit=10)

        assert len(articles) == 1
        assert articles[0].url == 'https://actualite.cd/article/boulevard-kinshasa'
        assert 'six mois' in articles[0].content

    def test_parse_html_raises_when_layout_changed(self):
        with pytest.raises(SelectorMismatch) as exc:
            parse_html('<html><body><div>rien</div></body></html>', 'Kinshasa', 'Actualité.cd',
                       'https://actualite.cd', ('.la_une_2023_600x600',), limit=10, source='drc_news')

        assert exc.value.source == 'drc_news'
        assert exc.value.selector == '.la_une_2023_600x600'

    def test_collapse_titles(self):
        articles = [
            Article('Kinshasa: reprise!', 'a', 'u1', 'x'),
            Article('kinshasa reprise', 'b', 'u2', 'y'),
            Article('Goma', 'c', 'u3', 'z'),
        ]
        assert [a.url for a in collapse_titles(articles)] == ['u1', 'u3']

    @pytest.mark.parametrize('text,keyword,expected', [
        ('Le président Tshisekedi à Goma', 'Félix Tshisekedi', True),
        ('La loi du roi', 'le roi', True),
        ('Le match de ce soir', 'le roi', False),
        ('KINSHASA sous la pluie', 'kinshasa', True),
        ('anything', '', False),
    ])
    def test_keyword_matches(self, text, keyword, expected):
        assert keyword_matches(text, keyword) is expected


class TestRadioOkapiFetcher:

    def test_rss_hits_become_candidates(self):
        records, requested = run_fetch(RadioOkapiFetcher, {
            RadioOkapiFetcher.rss_url: httpx.Response(200, text=OKAPI_RSS),
        }, job())

        assert len(requested) == 1
        record = records[0]
        assert record.source == 'radio_okapi'
        assert record.external_id == url_identity(record.url)
        assert record.language == 'fr'
        assert record.timestamp_estimated is False
        assert record.engagement.estimated_fields == frozenset(
            {'likes', 'shares', 'replies', 'quotes', 'impressions'})

    def test_falls_back_to_homepage(self):
        records, requested = run_fetch(RadioOkapiFetcher, {
            RadioOkapiFetcher.rss_url: httpx.Response(500),
            RadioOkapiFetcher.homepage_url: httpx.Response(200, text=OKAPI_HOMEPAGE),
        }, job())

        assert requested[-1] == RadioOkapiFetcher.homepage_url
        assert [r.url for r in records] == ['https://www.radiookapi.net/2024/05/02/kinshasa-eau']
        assert records[0].timestamp_estimated is True

    def test_homepage_layout_change_logs_drift(self, caplog):
        caplog.set_level(logging.WARNING, logger='keyword_scanner.drift')

        records, _ = run_fetch(RadioOkapiFetcher, {
            RadioOkapiFetcher.rss_url: httpx.Response(200, text=OKAPI_RSS.replace('Kinshasa', 'Kisangani')),
            RadioOkapiFetcher.homepage_url: httpx.Response(200, text='<html><body></body></html>'),
        }, job())

        assert records == []
        assert '[SELECTOR_DRIFT] source=radio_okapi' in caplog.text

    def test_unreachable_source_raises(self):
        with pytest.raises(SourceUnavailable):
            run_fetch(RadioOkapiFetcher, {
                RadioOkapiFetcher.rss_url: httpx.ConnectError('refused'),
            }, job())


class TestGoogleNewsFetcher:

    def test_queries_every_variant_and_collapses_titles(self):
        records, requested = run_fetch(GoogleNewsFetcher, {
            GoogleNewsFetcher.base_url: httpx.Response(200, text=GOOGLE_RSS),
        }, job(source='google_news', keyword='Tshisekedi'))

        assert len(requested) == 5
        assert all('Tshisekedi' in url for url in requested)
        assert len(records) == 1
        assert records[0].author == 'Actualite.cd'

    def test_partial_feed_failures_are_tolerated(self):
        calls = []

        def flaky(request):
            calls.append(request)
            if len(calls) < 5:
                return httpx.Response(503)
            return httpx.Response(200, text=GOOGLE_RSS)

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(flaky)) as client:
                fetcher = GoogleNewsFetcher(client=client, request_delay_s=0)
                return await fetcher.fetch(job(source='google_news'))

        assert len(asyncio.run(scenario())) == 1


class TestDRCNewsFetcher:

    def setup_method(self):
        self.site = NewsSite('Actualité.cd', 'https://actualite.cd', rss='https://actualite.cd/rss',
                             search_url='https://actualite.cd/search?q=', selectors=('article',))

    def test_rss_then_search_fallback(self):
        records, requested = run_fetch(DRCNewsFetcher, {
            'https://actualite.cd/rss': httpx.Response(500),
            'https://actualite.cd/search': httpx.Response(200, text=SEARCH_PAGE),
        }, job(source='drc_news'), sites=[self.site])

        assert requested == ['https://actualite.cd/rss', 'https://actualite.cd/search?q=Kinshasa']
        assert len(records) == 1
        assert records[0].author == 'Actualité.cd'
        assert records[0].source == 'drc_news'

    def test_homepage_drift_is_logged_not_raised(self, caplog):
        caplog.set_level(logging.WARNING, logger='keyword_scanner.drift')
        site = NewsSite('Congo Liberty', 'https://www.congo-liberty.org', selectors=('.une',))

        records, _ = run_fetch(DRCNewsFetcher, {
            'https://www.congo-liberty.org': httpx.Response(200, text='<html><body><p>x</p></body></html>'),
        }, job(source='drc_news'), sites=[site])

        assert records == []
        assert "selector='.une'" in caplog.text

    def test_every_site_down_raises(self):
        with pytest.raises(SourceUnavailable):
            run_fetch(DRCNewsFetcher, {}, job(source='drc_news'), sites=[self.site])

    def test_site_rss_limits(self):
        assert NewsSite('a', 'u', priority='high').rss_limit == 200
        assert NewsSite('b', 'u').rss_limit == 50


class TestFetchDeadline:

    def setup_method(self):
        self.fast = NewsSite('Fast', 'https://fast.cd', rss='https://fast.cd/rss')
        self.slow = NewsSite('Slow', 'https://slow.cd', rss='https://slow.cd/rss')

    def distribute(self, sites, timeout_s=0.5):
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == 'slow.cd':
                await asyncio.sleep(5)
            return httpx.Response(200, text=OKAPI_RSS)

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                fetcher = DRCNewsFetcher(client=client, request_delay_s=0, sites=sites)
                orchestrator = SourceOrchestrator(SourceRegistry([fetcher]), source_timeout_s=timeout_s)
                return await orchestrator.distribute('Kinshasa', ['drc_news'])

        return asyncio.run(scenario())

    def test_hanging_site_keeps_articles_already_gathered(self, caplog):
        caplog.set_level(logging.WARNING)

        distribution = self.distribute([self.fast, self.slow])

        outcome = distribution.outcomes[0]
        assert outcome.ok
        assert len(distribution.records) == 1
        assert distribution.records[0].author == 'Fast'
        assert distribution.status() == RunStatus.SUCCESS
        assert '[DEADLINE] drc_news out of time at Slow' in caplog.text

    def test_nothing_answered_before_deadline_is_a_timeout(self):
        distribution = self.distribute([self.slow], timeout_s=0.3)

        outcome = distribution.outcomes[0]
        assert outcome.error_kind == 'timeout'
        assert outcome.error == 'timed out after 0.3s'
        assert distribution.records == []

    def test_unbounded_job_has_no_remaining_time(self):
        assert job().remaining_s() is None
