#!/usr/bin/env python3
"""
Document fetchers for the Sentinel keyword scanner
RSS/Atom feeds via feedparser and HTML article lists via BeautifulSoup CSS selectors
"""
import asyncio
import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote_plus, urljoin

import feedparser
import httpx
from bs4 import BeautifulSoup

from .dedup import content_identity, url_identity
from .errors import SelectorMismatch, SourceUnavailable
from .logging_ext import log_selector_drift
from .models import CandidateRecord, Engagement, FetchJob, utcnow
from .sources import DEFAULT_USER_AGENT, SourceFetcher, keyword_matches

logger = logging.getLogger(__name__)

MIN_FEED_CONTENT = 20
MIN_HTML_CONTENT = 50
MAX_HTML_CONTENT = 800

RE_TITLE_PUNCT = re.compile(r'[^\w\s]')

TITLE_SELECTOR = 'h1, h2, h3, h4, .title, .headline, .entry-title'
GENERIC_ARTICLE_SELECTORS = ('article', '.article', '.post', '.news', '.story', '.content-item', '.entry')

REQUEST_HEADERS = {
    'User-Agent': DEFAULT_USER_AGENT,
    'Accept-Language': 'fr-FR,fr;q=0.9,en;q=0.8',
}


@dataclass
class Article:
    title: str
    content: str
    url: str
    author: str
    published_at: Optional[datetime] = None


def _title_key(title: str) -> str:
    return RE_TITLE_PUNCT.sub('', (title or '').lower()).strip()


def collapse_titles(articles: Sequence[Article]) -> List[Article]:
    """Keep the first article for each normalised title"""
    seen = set()
    unique = []
    for article in articles:
        key = _title_key(article.title)
        if key in seen:
            continue
        seen.add(key)
        unique.append(article)
    return unique


def _entry_time(entry) -> Optional[datetime]:
    parsed = entry.get('published_parsed') or entry.get('updated_parsed')
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def _strip_html(text: str) -> str:
    if not text or '<' not in text:
        return (text or '').strip()
    return BeautifulSoup(text, 'html.parser').get_text(' ', strip=True)


def parse_feed(text: str, keyword: Optional[str], author: str, limit: int,
               min_content: int = MIN_FEED_CONTENT) -> List[Article]:
    """Parse RSS/Atom text; keep items matching ``keyword`` (None keeps everything)"""
    feed = feedparser.parse(text)
    articles = []
    for entry in feed.entries:
        if len(articles) >= limit:
            break
        try:
            title = _strip_html(entry.get('title', ''))
            description = _strip_html(entry.get('summary', ''))
            content = f"{title}. {description}".strip()
            if len(content) <= min_content:
                continue
            if keyword is not None and not keyword_matches(content, keyword):
                continue
            entry_source = entry.get('source') or {}
            articles.append(Article(
                title=title,
                content=content,
                url=(entry.get('link') or '').strip(),
                author=entry_source.get('title') or author,
                published_at=_entry_time(entry),
            ))
        except (AttributeError, TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed feed entry from {author}: {e}")
    return articles


def parse_html(html: str, keyword: str, author: str, base_url: str,
               selectors: Sequence[str], limit: int, source: str = '') -> List[Article]:
    """Extract keyword-matching article blocks from an HTML page.

    Raises SelectorMismatch when none of ``selectors`` match any element,
    which means the page layout moved away from what we expect.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style']):
        tag.decompose()

    articles = []
    matched_any = False
    for selector in selectors:
        if len(articles) >= limit:
            break
        elements = soup.select(selector)
        matched_any = matched_any or bool(elements)
        for element in elements:
            if len(articles) >= limit:
                break
            try:
                title_el = element.select_one(TITLE_SELECTOR)
                title = title_el.get_text(' ', strip=True) if title_el else element.get_text(' ', strip=True)[:120]
                paragraphs = ' '.join(p.get_text(' ', strip=True) for p in element.select('p'))
                content = f"{title}. {paragraphs}".strip()
                if len(content) <= MIN_HTML_CONTENT or not keyword_matches(content, keyword):
                    continue
                link = element if element.name == 'a' else element.select_one('a[href]')
                href = link.get('href') if link is not None else ''
                articles.append(Article(
                    title=title,
                    content=content[:MAX_HTML_CONTENT],
                    url=urljoin(base_url, href) if href else '',
                    author=author,
                ))
            except (AttributeError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed HTML block from {author}: {e}")

    if not matched_any:
        raise SelectorMismatch(source or author, base_url, ', '.join(selectors))
    return articles


class DocumentFetcher(SourceFetcher):
    """Base for plain-HTTP sources; subclasses implement ``collect``"""

    capability = 'document_fetch'
    honours_deadline = True
    language = 'fr'

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout_s: float = 20.0,
                 request_delay_s: float = 1.0):
        self.timeout_s = timeout_s
        self.request_delay_s = request_delay_s
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=REQUEST_HEADERS, timeout=self.timeout_s,
                                             follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str) -> Optional[str]:
        """Body text, or None on transport error or non-2xx status"""
        try:
            response = await self._http().get(url, timeout=self.timeout_s)
        except httpx.HTTPError as e:
            logger.warning(f"Fetch failed for {url}: {e}")
            return None
        if response.status_code >= 400:
            logger.warning(f"Fetch failed for {url}: HTTP {response.status_code}")
            return None
        return response.text

    async def _pause(self):
        if self.request_delay_s > 0:
            await asyncio.sleep(self.request_delay_s)

    @staticmethod
    async def _bounded(job: FetchJob, awaitable):
        """Await one step within the job's remaining time; asyncio.TimeoutError once it is spent"""
        return await asyncio.wait_for(awaitable, timeout=job.remaining_s())

    def _stop_early(self, job: FetchJob, step: str, gathered: int, reached: bool):
        """Log the early stop; re-raise when no request answered before the deadline"""
        if not reached:
            raise asyncio.TimeoutError(f"{self.source_id}: deadline reached before any request answered")
        logger.warning(f"[DEADLINE] {self.source_id} out of time at {step} for '{job.keyword}', "
                       f"keeping {gathered} articles gathered so far")

    def _parse_html_safely(self, html: str, keyword: str, author: str, base_url: str,
                           selectors: Sequence[str], limit: int) -> List[Article]:
        try:
            return parse_html(html, keyword, author, base_url, selectors, limit, source=self.source_id)
        except SelectorMismatch as e:
            log_selector_drift(e)
            return []

    async def collect(self, job: FetchJob) -> Tuple[List[Article], bool]:
        """Return (articles, reached) where ``reached`` is False if every request failed"""
        raise NotImplementedError

    async def fetch(self, job: FetchJob) -> List[CandidateRecord]:
        articles, reached = await self.collect(job)
        if not reached:
            raise SourceUnavailable(self.source_id, "every request failed")

        records = []
        for article in collapse_titles(articles)[:job.max_results]:
            try:
                records.append(self._to_candidate(article))
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping article {article.url}: {e}")
        logger.info(f"Found {len(records)} {self.source_id} articles for keyword: {job.keyword}")
        return records

    def _to_candidate(self, article: Article) -> CandidateRecord:
        if article.url:
            external_id = url_identity(article.url)
        else:
            external_id = content_identity(self.source_id, article.title, article.content)
        return CandidateRecord(
            source=self.source_id,
            external_id=external_id,
            content=article.content,
            author=article.author or 'unknown',
            author_id=(article.author or '').lower().replace(' ', '_'),
            author_verified=True,
            title=article.title,
            url=article.url,
            language=self.language,
            timestamp=article.published_at or utcnow(),
            timestamp_estimated=article.published_at is None,
            engagement=Engagement.unobserved(),
        )


GOOGLE_NEWS_QUERIES = (
    '"{q}"+DRC&hl=fr&gl=CD&ceid=CD:fr',
    '"{q}"+Congo&hl=fr&gl=CD&ceid=CD:fr',
    '"{q}"+RDC&hl=fr&gl=CD&ceid=CD:fr',
    '"{q}"+when:7d&hl=fr&gl=CD&ceid=CD:fr',
    '"{q}"&hl=fr&ceid=CD:fr',
)


class GoogleNewsFetcher(DocumentFetcher):
    """Google News RSS search, regional and recency variants"""

    source_id = 'google_news'
    base_url = 'https://news.google.com/rss/search?q='
    per_feed_limit = 40

    def feed_urls(self, keyword: str) -> List[str]:
        q = quote_plus(keyword)
        return [self.base_url + template.format(q=q) for template in GOOGLE_NEWS_QUERIES]

    async def collect(self, job: FetchJob):
        articles: List[Article] = []
        reached = False
        for i, url in enumerate(self.feed_urls(job.keyword)):
            try:
                if i:
                    await self._bounded(job, self._pause())
                text = await self._bounded(job, self._get(url))
            except asyncio.TimeoutError:
                self._stop_early(job, f"feed {i + 1}", len(articles), reached)
                break
            if text is None:
                continue
            reached = True
            found = parse_feed(text, None, 'Google News', self.per_feed_limit)
            logger.debug(f"Google News feed returned {len(found)} articles")
            articles.extend(found)
        return articles, reached


class RadioOkapiFetcher(DocumentFetcher):
    """Radio Okapi: feedburner RSS, falling back to the homepage view rows"""

    source_id = 'radio_okapi'
    rss_url = 'https://feeds.feedburner.com/radiookapi/actu?format=xml'
    homepage_url = 'https://www.radiookapi.net/'
    homepage_selectors = ('.views-row',)

    async def collect(self, job: FetchJob):
        reached = False
        try:
            text = await self._bounded(job, self._get(self.rss_url))
        except asyncio.TimeoutError:
            self._stop_early(job, 'RSS', 0, reached)
            return [], reached
        if text is not None:
            reached = True
            articles = parse_feed(text, job.keyword, 'Radio Okapi', job.max_results)
            logger.info(f"Found {len(articles)} Radio Okapi articles via RSS")
            if articles:
                return articles, reached

        logger.info("Trying Radio Okapi homepage for more content")
        try:
            html = await self._bounded(job, self._get(self.homepage_url))
        except asyncio.TimeoutError:
            self._stop_early(job, 'homepage', 0, reached)
            return [], reached
        if html is None:
            return [], reached
        return self._parse_homepage(html, job.keyword, job.max_results), True

    def _parse_homepage(self, html: str, keyword: str, limit: int) -> List[Article]:
        soup = BeautifulSoup(html, 'html.parser')
        rows = soup.select(self.homepage_selectors[0])
        if not rows:
            log_selector_drift(SelectorMismatch(self.source_id, self.homepage_url, self.homepage_selectors[0]))
            return []

        articles = []
        for row in rows:
            if len(articles) >= limit:
                break
            try:
                link = row.select_one('.views-field-title a, h2.title a')
                title = link.get_text(' ', strip=True) if link else ''
                body = row.select_one('.views-field-body .field-content, .news-excerpt')
                content = f"{title}. {body.get_text(' ', strip=True) if body else ''}".strip()
                if len(content) <= MIN_HTML_CONTENT or not keyword_matches(content, keyword):
                    continue
                href = link.get('href', '') if link else ''
                articles.append(Article(
                    title=title,
                    content=content,
                    url=urljoin(self.homepage_url, href) if href else '',
                    author='Radio Okapi',
                ))
            except (AttributeError, TypeError) as e:
                logger.debug(f"Skipping Radio Okapi row: {e}")
        return articles


@dataclass(frozen=True)
class NewsSite:
    name: str
    url: str
    rss: Optional[str] = None
    search_url: Optional[str] = None
    priority: str = 'medium'
    selectors: Tuple[str, ...] = GENERIC_ARTICLE_SELECTORS

    @property
    def rss_limit(self) -> int:
        return 200 if self.priority == 'high' else 50


DRC_NEWS_SITES = (
    NewsSite('Media Congo', 'https://www.mediacongo.net',
             rss='https://www.mediacongo.net/flux_rss.html?type=actualite',
             search_url='https://www.mediacongo.net/search.html?q=', priority='high',
             selectors=('.hot_news_list_item', '.hot_news', 'a[href*="article-actualite-"]')),
    NewsSite('7sur7.cd', 'https://7sur7.cd', rss='https://7sur7.cd/rss.xml', priority='high'),
    NewsSite('Congo Page', 'https://www.congopage.com',
             rss='https://feeds.feedburner.com/congopage',
             search_url='https://www.congopage.com/spip.php?page=recherche&recherche=', priority='high'),
    NewsSite('Actualité.cd', 'https://actualite.cd', search_url='https://actualite.cd/search?q=',
             selectors=('.la_une_2023_600x600', 'article', '.news-item')),
    NewsSite('Congo Liberty', 'https://www.congo-liberty.org'),
    NewsSite('La Prospérité', 'https://laprosperiteonline.net'),
)

SEARCH_PAGE_LIMIT = 100
HOMEPAGE_LIMIT = 3


class DRCNewsFetcher(DocumentFetcher):
    """Congolese news sites, each tried RSS first, then site search, then homepage"""

    source_id = 'drc_news'

    def __init__(self, sites: Sequence[NewsSite] = DRC_NEWS_SITES, **kwargs):
        super().__init__(**kwargs)
        self.sites = tuple(sites)

    async def collect(self, job: FetchJob):
        articles: List[Article] = []
        reached = False
        for i, site in enumerate(self.sites):
            try:
                if i:
                    await self._bounded(job, self._pause())
                found, site_reached = await self._bounded(job, self._collect_site(site, job.keyword))
            except asyncio.TimeoutError:
                self._stop_early(job, site.name, len(articles), reached)
                break
            reached = reached or site_reached
            articles.extend(found)
        return articles, reached

    async def _collect_site(self, site: NewsSite, keyword: str) -> Tuple[List[Article], bool]:
        logger.debug(f"HTTP scraping {site.name} for keyword: {keyword}")
        if site.rss:
            text = await self._get(site.rss)
            if text is not None:
                found = parse_feed(text, keyword, site.name, site.rss_limit)
                logger.info(f"Found {len(found)} articles from {site.name} RSS (priority: {site.priority})")
                return found, True

        if site.search_url:
            html = await self._get(site.search_url + quote_plus(keyword))
            if html is not None:
                found = self._parse_html_safely(html, keyword, site.name, site.url, site.selectors, SEARCH_PAGE_LIMIT)
                logger.info(f"Found {len(found)} articles from {site.name} search")
                return found, True

        html = await self._get(site.url)
        if html is None:
            return [], False
        found = self._parse_html_safely(html, keyword, site.name, site.url, site.selectors, HOMEPAGE_LIMIT)
        logger.info(f"Found {len(found)} articles from {site.name} HTML")
        return found, True
