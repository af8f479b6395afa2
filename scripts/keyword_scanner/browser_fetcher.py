#!/usr/bin/env python3
"""
Browser-rendered fetchers for the Sentinel keyword scanner
Playwright Chromium pages for sources that only render content client-side
"""
import logging
import random
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import quote_plus, urljoin

from playwright.async_api import (
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .dedup import content_identity, url_identity
from .errors import SelectorMismatch, SourceUnavailable
from .logging_ext import log_selector_drift
from .models import CandidateRecord, Engagement, FetchJob, utcnow
from .sources import SourceFetcher, keyword_matches

logger = logging.getLogger(__name__)

USER_AGENTS = (
    'Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 '
    '(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
)

EXTRA_HEADERS = {
    'Accept-Language': 'fr-FR,fr;q=0.9,en;q=0.8',
    'DNT': '1',
}

RE_COUNT = re.compile(r'(\d+(?:[.,]\d+)?)\s*([KkMm])?')


def parse_count(text: Optional[str]) -> int:
    """Parse rendered counters like '12', '1,234', '1.2K', '3,4 M'; blank means zero"""
    if not text:
        return 0
    compact = text.replace('\u202f', '').replace('\xa0', '').replace(' ', '')
    match = RE_COUNT.search(compact)
    if not match:
        return 0
    number, suffix = match.groups()
    if suffix:
        value = float(number.replace(',', '.'))
        return int(round(value * (1_000 if suffix.lower() == 'k' else 1_000_000)))
    return int(number.replace(',', '').replace('.', ''))


async def _first_text(element, selectors) -> str:
    for selector in selectors:
        found = await element.query_selector(selector)
        if found is not None:
            text = (await found.inner_text() or '').strip()
            if text:
                return text
    return ''


class BrowserFetcher(SourceFetcher):
    """Base for Playwright sources.

    The browser is launched lazily and shared; every fetch gets a fresh
    context with a rotated viewport and user agent, closed on every exit path.
    """

    capability = 'browser_scrape'
    item_selector = ''
    max_items = 15

    def __init__(self, browser=None, headless: bool = True, navigation_timeout_ms: int = 30000,
                 selector_timeout_ms: int = 15000, rng: Optional[random.Random] = None):
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms
        self._rng = rng or random.Random()
        self._browser = browser
        self._owns_browser = browser is None
        self._playwright = None

    async def _get_browser(self):
        if self._browser is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=['--no-sandbox', '--disable-dev-shm-usage'],
            )
            logger.info(f"Chromium launched for {self.source_id}")
        return self._browser

    async def aclose(self) -> None:
        if self._owns_browser and self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    def context_options(self) -> Dict[str, object]:
        return {
            'viewport': {
                'width': 1366 + self._rng.randrange(100),
                'height': 768 + self._rng.randrange(100),
            },
            'user_agent': self._rng.choice(USER_AGENTS),
            'locale': 'fr-FR',
            'extra_http_headers': EXTRA_HEADERS,
        }

    @asynccontextmanager
    async def page(self):
        browser = await self._get_browser()
        context = await browser.new_context(**self.context_options())
        try:
            page = await context.new_page()
            try:
                yield page
            finally:
                await page.close()
        finally:
            await context.close()

    def page_url(self, keyword: str) -> str:
        raise NotImplementedError

    async def extract(self, element, job: FetchJob, page_url: str) -> Optional[CandidateRecord]:
        raise NotImplementedError

    async def fetch(self, job: FetchJob) -> List[CandidateRecord]:
        url = self.page_url(job.keyword)
        logger.info(f"Scraping {self.source_id} for keyword: {job.keyword}")
        records: List[CandidateRecord] = []

        async with self.page() as page:
            try:
                await page.goto(url, wait_until='domcontentloaded', timeout=self.navigation_timeout_ms)
            except PlaywrightTimeoutError as e:
                raise SourceUnavailable(self.source_id, f"navigation timeout for {url}") from e
            except PlaywrightError as e:
                raise SourceUnavailable(self.source_id, f"navigation failed for {url}: {e}") from e

            try:
                await page.wait_for_selector(self.item_selector, timeout=self.selector_timeout_ms)
            except PlaywrightTimeoutError:
                log_selector_drift(SelectorMismatch(self.source_id, url, self.item_selector))
                return records

            elements = await page.query_selector_all(self.item_selector)
            limit = min(job.max_results, self.max_items)
            for element in elements:
                if len(records) >= limit:
                    break
                try:
                    candidate = await self.extract(element, job, url)
                except (PlaywrightError, ValueError) as e:
                    logger.debug(f"Skipping {self.source_id} item: {e}")
                    continue
                if candidate is not None:
                    records.append(candidate)

        logger.info(f"Scraped {len(records)} items from {self.source_id} for keyword: {job.keyword}")
        return records


TWEET_TEXT_SELECTORS = ('[data-testid="tweetText"]', 'div[lang]', 'span[lang]')
TWEET_AUTHOR_SELECTORS = ('[data-testid="User-Name"] a[href^="/"] span', '[data-testid="User-Name"] span')
TWEET_COUNTERS = {
    'likes': '[data-testid="like"], [data-testid="unlike"]',
    'shares': '[data-testid="retweet"], [data-testid="unretweet"]',
    'replies': '[data-testid="reply"]',
}


class TwitterWebFetcher(BrowserFetcher):
    """Logged-out X live search results"""

    source_id = 'twitter_web'
    item_selector = '[data-testid="tweet"]'
    search_url = 'https://x.com/search?q={q}&src=typed_query&f=live'

    def page_url(self, keyword: str) -> str:
        return self.search_url.format(q=quote_plus(keyword))

    async def extract(self, element, job, page_url):
        content = await _first_text(element, TWEET_TEXT_SELECTORS)
        if not content:
            return None

        author = (await _first_text(element, TWEET_AUTHOR_SELECTORS)).lstrip('@') or 'unknown'

        status_id = ''
        status_link = await element.query_selector('a[href*="/status/"]')
        if status_link is not None:
            href = await status_link.get_attribute('href') or ''
            status_id = href.rstrip('/').split('/status/')[-1].split('/')[0]

        timestamp = None
        time_el = await element.query_selector('time')
        if time_el is not None:
            stamp = await time_el.get_attribute('datetime')
            if stamp:
                timestamp = datetime.fromisoformat(stamp.replace('Z', '+00:00'))

        counts = {}
        estimated = {'quotes', 'impressions'}
        for name, selector in TWEET_COUNTERS.items():
            counter = await element.query_selector(selector)
            if counter is None:
                counts[name] = 0
                estimated.add(name)
            else:
                counts[name] = parse_count(await counter.inner_text())

        hashtags = []
        for link in await element.query_selector_all('a[href*="/hashtag/"]'):
            hashtags.append((await link.inner_text()).lstrip('#'))
        mentions = []
        for link in await element.query_selector_all('[data-testid="tweetText"] a[href^="/"]'):
            text = await link.inner_text()
            if text.startswith('@'):
                mentions.append(text[1:])

        return CandidateRecord(
            source=self.source_id,
            external_id=status_id or content_identity(author, content),
            content=content,
            author=author,
            author_id=f"twitter_{author}",
            url=f"https://x.com/{author}/status/{status_id}" if status_id else page_url,
            language='unknown',
            timestamp=timestamp or utcnow(),
            timestamp_estimated=timestamp is None,
            engagement=Engagement(estimated_fields=frozenset(estimated), **counts),
            hashtags=tuple(hashtags),
            mentions=tuple(mentions),
        )


class VoiceOfCongoFetcher(BrowserFetcher):
    """Voice of Congo homepage articles filtered by keyword"""

    source_id = 'voice_of_congo'
    item_selector = 'article, .post, .news-item, .content-item'
    homepage_url = 'https://voiceofcongo.net/'

    def page_url(self, keyword: str) -> str:
        return self.homepage_url

    async def extract(self, element, job, page_url):
        title = await _first_text(element, ('h1', 'h2', 'h3', '.title'))
        excerpt = await _first_text(element, ('.excerpt', '.content', 'p'))
        content = f"{title}. {excerpt}".strip(' .')
        if not content or not keyword_matches(content, job.keyword):
            return None

        url = ''
        link = await element.query_selector('a[href]')
        if link is not None:
            url = urljoin(page_url, await link.get_attribute('href') or '')

        return CandidateRecord(
            source=self.source_id,
            external_id=url_identity(url) if url else content_identity(self.source_id, title, content),
            content=content,
            title=title,
            author='Voice of Congo',
            author_id='voice_of_congo',
            author_verified=True,
            url=url or page_url,
            language='fr',
            timestamp=utcnow(),
            timestamp_estimated=True,
            engagement=Engagement.unobserved(),
        )
