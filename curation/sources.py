"""Feed fetching and parsing into candidate items."""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import List, Optional

import aiohttp
import feedparser
from bs4 import BeautifulSoup
from dateutil.parser import parse as parse_date

from shared.config import settings
from shared.errors import SourceFetchError
from shared.utils import truncate

logger = logging.getLogger(__name__)

# Common timezone abbreviations found in RSS pubDate fields
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
}


@dataclass
class CandidateItem:
    """A freshly fetched, not-yet-decided piece of content."""
    source_url: str
    title: str
    raw_content: str
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    source_id: Optional[str] = None


class SourceAdapter(ABC):
    """Fetches a feed and parses it into candidate items."""

    @abstractmethod
    async def fetch(self, source_url: str) -> List[CandidateItem]:
        """Raise SourceFetchError when the feed is unreachable or malformed."""


class FeedSourceAdapter(SourceAdapter):
    """RSS/Atom adapter: aiohttp for transport, feedparser for parsing."""

    def __init__(
        self,
        timeout: int = None,
        min_content_length: int = None,
        max_content_length: int = None
    ):
        self.timeout = timeout or settings.fetch_timeout
        self.min_content_length = min_content_length if min_content_length is not None else settings.min_content_length
        self.max_content_length = max_content_length or settings.max_content_length
        self.headers = {
            "User-Agent": "curation-orchestrator/1.0 (RSS reader)",
            "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
        }

    async def fetch(self, source_url: str) -> List[CandidateItem]:
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers
            ) as session:
                async with session.get(source_url) as response:
                    if response.status >= 400:
                        raise SourceFetchError(source_url, f"HTTP Error {response.status}")
                    body = await response.read()
        except asyncio.TimeoutError:
            raise SourceFetchError(source_url, f"Timeout after {self.timeout} seconds")
        except aiohttp.ClientError as e:
            raise SourceFetchError(source_url, f"Network error: {e}")

        return self.parse_feed(body, source_url)

    def parse_feed(self, body, source_url: str) -> List[CandidateItem]:
        """Parse a feed document. Entries missing a link or title are skipped."""
        feed = feedparser.parse(body)
        if feed.bozo and not feed.entries:
            raise SourceFetchError(source_url, f"Malformed feed: {feed.get('bozo_exception')}")

        items = []
        for entry in feed.entries:
            link = entry.get("link")
            title = (entry.get("title") or "").strip()
            if not link or not title:
                continue

            content = self.clean_html(self._raw_content(entry))
            if len(content) < self.min_content_length:
                continue

            items.append(CandidateItem(
                source_url=link,
                title=title,
                raw_content=truncate(content, self.max_content_length),
                author=entry.get("author") or None,
                published_at=self._parse_published_date(entry),
            ))

        logger.info(f"Parsed {len(items)} items from {source_url} ({len(feed.entries)} entries)")
        return items

    @staticmethod
    def _raw_content(entry) -> str:
        """Prefer full content, then description/summary."""
        for block in entry.get("content") or []:
            value = block.get("value")
            if value:
                return value
        return entry.get("description") or entry.get("summary") or ""

    @staticmethod
    def clean_html(html: str) -> str:
        """Strip markup and collapse whitespace."""
        soup = BeautifulSoup(html, "html.parser")
        for element in soup.find_all(["script", "style", "iframe", "img", "video"]):
            element.decompose()
        return " ".join(soup.get_text(separator=" ").split())

    @staticmethod
    def _parse_published_date(entry) -> Optional[datetime]:
        published = entry.get("published") or entry.get("updated")
        if not published:
            return None

        try:
            dt = parse_date(published, tzinfos=TZINFOS)
        except (ValueError, OverflowError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
