"""Turns per-category term lists into running feed sources."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from feed_processor.collector.feed_source import FeedSource, HealthCallback, ItemsCallback, SourceRuntime
from feed_processor.collector.http_client import FeedHttpClient
from feed_processor.collector.name_cache import IdLookupCache
from feed_processor.collector.rate_limiter import RateLimiter
from feed_processor.collector.streaming import StreamingFeedSource
from feed_processor.config import Config
from feed_processor.exceptions import CredentialsError, FeedError
from feed_processor.filtering.filter_engine import AUTHOR_MARKER, GROUP_MARKER, NEGATIVE_MARKER
from feed_processor.models.enums import SourceType
from feed_processor.providers.facebook import FacebookPageAdapter
from feed_processor.providers.flickr import (
    MAX_TAGS_PER_FEED,
    FlickrGroupAdapter,
    FlickrSearchAdapter,
    FlickrUserAdapter,
    require_api_key,
    resolve_flickr_group,
    resolve_flickr_user,
)
from feed_processor.providers.news import NewsFeedAdapter
from feed_processor.providers.twitter import (
    MAX_QUERY_LENGTH,
    TwitterSearchAdapter,
    TwitterStreamAdapter,
    TwitterUserAdapter,
    resolve_twitter_user,
)

logger = logging.getLogger(__name__)

TWITTER_QUERY_SEPARATOR = " OR "


def normalize_terms(terms: Iterable[str]) -> List[str]:
    """Trim terms, drop empty ones and remove duplicates, keeping the first occurrence."""
    normalized: List[str] = []
    seen = set()
    for term in terms:
        term = (term or "").strip()
        if not term or term in seen:
            continue
        seen.add(term)
        normalized.append(term)
    return normalized


@dataclass
class PartitionedTerms:
    """A category's terms split by marker."""

    inclusion: List[str] = field(default_factory=list)
    authors: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    negatives: List[str] = field(default_factory=list)

    @property
    def feed_terms(self) -> List[str]:
        """Every term that can create a feed, in a stable order."""
        return self.inclusion + [AUTHOR_MARKER + a for a in self.authors] + [GROUP_MARKER + g for g in self.groups]


def partition_terms(terms: Iterable[str]) -> PartitionedTerms:
    """
    Split terms into inclusion, author, group and negative terms.

    Args:
        terms: Raw term list for one category

    Returns:
        PartitionedTerms with the markers stripped from author and group names
    """
    parts = PartitionedTerms()
    for term in normalize_terms(terms):
        if term.startswith(NEGATIVE_MARKER):
            if len(term) > 1:
                parts.negatives.append(term)
        elif term.startswith(AUTHOR_MARKER):
            if len(term) > 1:
                parts.authors.append(term[1:])
        elif term.startswith(GROUP_MARKER):
            if len(term) > 1:
                parts.groups.append(term[1:])
        else:
            parts.inclusion.append(term)
    return parts


def pack_twitter_queries(terms: List[str], max_length: int = MAX_QUERY_LENGTH) -> List[str]:
    """
    Join terms with OR into as few queries as the length limit allows.

    A single term longer than the limit gets a query of its own.
    """
    queries: List[str] = []
    current = ""
    for term in terms:
        candidate = f"{current}{TWITTER_QUERY_SEPARATOR}{term}" if current else term
        if current and len(candidate) > max_length:
            queries.append(current)
            current = term
        else:
            current = candidate
    if current:
        queries.append(current)
    return queries


def chunk_tags(terms: List[str], size: int = MAX_TAGS_PER_FEED) -> List[List[str]]:
    return [terms[i:i + size] for i in range(0, len(terms), size)]


def is_absolute_url(term: str) -> bool:
    lowered = term.lower()
    return lowered.startswith("http://") or lowered.startswith("https://")


class QueryRouter:
    """
    Owns the feed sources of every category.

    Each edit to a category's terms tears down all of its sources and builds
    new ones; the configured interval is multiplied by the number of sources
    so the category's request rate stays the same.
    """

    def __init__(
        self,
        config: Config,
        client: FeedHttpClient,
        name_cache: IdLookupCache,
        rate_limiters: Optional[Dict[SourceType, RateLimiter]] = None,
        on_items: Optional[ItemsCallback] = None,
        on_health: Optional[HealthCallback] = None,
        prometheus_exporter=None,
    ):
        self.config = config
        self.client = client
        self.name_cache = name_cache
        self.rate_limiters = rate_limiters or {}
        self.on_items = on_items
        self.on_health = on_health
        self.prometheus_exporter = prometheus_exporter
        self.feeds: Dict[SourceType, List[SourceRuntime]] = {st: [] for st in SourceType}
        self._locks: Dict[SourceType, asyncio.Lock] = {}

    @property
    def feed_count(self) -> int:
        return sum(len(feeds) for feeds in self.feeds.values())

    def feeds_for(self, source_type: SourceType) -> List[SourceRuntime]:
        return list(self.feeds[source_type])

    def _lock_for(self, source_type: SourceType) -> asyncio.Lock:
        if source_type not in self._locks:
            self._locks[source_type] = asyncio.Lock()
        return self._locks[source_type]

    def _min_date(self) -> datetime:
        return datetime.now(timezone.utc) - timedelta(days=self.config.max_item_age_days)

    async def rebuild(self, source_type: SourceType, terms: Iterable[str]) -> List[SourceRuntime]:
        """
        Replace every feed of a category with feeds built from ``terms``.

        Args:
            source_type: Category to rebuild
            terms: Full term list for the category

        Returns:
            The newly started sources
        """
        async with self._lock_for(source_type):
            await self._teardown(source_type)

            parts = partition_terms(terms)
            try:
                adapters = await self._build_adapters(source_type, parts)
            except CredentialsError as e:
                logger.error(f"Not creating {source_type.value} feeds: {e}")
                adapters = []

            interval = self.config.polling.interval_for(source_type) * max(1, len(adapters))
            min_date = self._min_date()
            rate_limiter = self.rate_limiters.get(source_type)

            sources: List[SourceRuntime] = []
            for adapter in adapters:
                if hasattr(adapter, "build_stream_request"):
                    source: SourceRuntime = StreamingFeedSource(
                        adapter,
                        self.client,
                        min_date,
                        self.config.backoff,
                        on_items=self.on_items,
                        on_health=self.on_health,
                        rate_limiter=rate_limiter,
                        prometheus_exporter=self.prometheus_exporter,
                    )
                else:
                    source = FeedSource(
                        adapter,
                        self.client,
                        interval,
                        min_date,
                        self.config.backoff,
                        on_items=self.on_items,
                        on_health=self.on_health,
                        rate_limiter=rate_limiter,
                        prometheus_exporter=self.prometheus_exporter,
                    )
                sources.append(source)

            for source in sources:
                source.start()
                logger.info(f"Added feed {source.name}")

            self.feeds[source_type] = sources
            if self.prometheus_exporter:
                self.prometheus_exporter.set_active_feeds(source_type.value, len(sources))
            logger.info(f"{source_type.value}: {len(sources)} feeds, interval {interval:.0f}s each")
            return sources

    async def shutdown(self) -> None:
        """Stop and dispose every feed."""
        for source_type in SourceType:
            async with self._lock_for(source_type):
                await self._teardown(source_type)

    async def _teardown(self, source_type: SourceType) -> None:
        old, self.feeds[source_type] = self.feeds[source_type], []
        for source in old:
            await source.stop()
            source.dispose()
            logger.info(f"Removed feed {source.name}")
        if old and self.prometheus_exporter:
            self.prometheus_exporter.set_active_feeds(source_type.value, 0)

    async def _build_adapters(self, source_type: SourceType, parts: PartitionedTerms) -> list:
        if source_type is SourceType.FLICKR:
            return await self._flickr_adapters(parts)
        if source_type is SourceType.TWITTER:
            if self.config.twitter_use_streaming:
                return await self._twitter_stream_adapters(parts)
            return self._twitter_adapters(parts)
        if source_type is SourceType.NEWS:
            return self._news_adapters(parts)
        if source_type is SourceType.FACEBOOK:
            return self._facebook_adapters(parts)
        raise ValueError(f"Unknown source type {source_type}")

    async def _flickr_adapters(self, parts: PartitionedTerms) -> list:
        if not (parts.inclusion or parts.authors or parts.groups):
            return []
        api_key = self.config.flickr_api_key
        require_api_key(api_key)
        rate_limiter = self.rate_limiters.get(SourceType.FLICKR)
        adapters: list = [FlickrSearchAdapter(api_key, tags, self.name_cache) for tags in chunk_tags(parts.inclusion)]

        for user in parts.authors:
            user_id = await self._resolve(
                f"Flickr user '{user}'",
                resolve_flickr_user(self.name_cache, self.client, api_key, user, rate_limiter),
            )
            if user_id:
                adapters.append(FlickrUserAdapter(api_key, user_id, user, self.name_cache))

        for group in parts.groups:
            group_id = await self._resolve(
                f"Flickr group '{group}'",
                resolve_flickr_group(self.name_cache, self.client, api_key, group, rate_limiter),
            )
            if group_id:
                adapters.append(FlickrGroupAdapter(api_key, group_id, group, self.name_cache))
        return adapters

    def _twitter_adapters(self, parts: PartitionedTerms) -> list:
        adapters: list = [TwitterSearchAdapter(query) for query in pack_twitter_queries(parts.inclusion)]
        adapters += [TwitterUserAdapter(user) for user in parts.authors]
        if parts.groups:
            logger.warning(f"Ignoring Twitter group terms {parts.groups}")
        return adapters

    async def _twitter_stream_adapters(self, parts: PartitionedTerms) -> list:
        if not parts.inclusion and not parts.authors:
            return []
        rate_limiter = self.rate_limiters.get(SourceType.TWITTER)
        follow: List[str] = []
        for user in parts.authors:
            user_id = await self._resolve(
                f"Twitter user '{user}'",
                resolve_twitter_user(self.name_cache, self.client, user, rate_limiter),
            )
            if user_id:
                follow.append(user_id)
        track = [term.lstrip("#") for term in parts.inclusion if term.lstrip("#")]
        if not track and not follow:
            return []
        return [TwitterStreamAdapter(track, follow, self.config.twitter_username, self.config.twitter_password)]

    def _news_adapters(self, parts: PartitionedTerms) -> list:
        adapters = []
        for term in parts.inclusion:
            if is_absolute_url(term):
                adapters.append(NewsFeedAdapter(term))
            else:
                logger.warning(f"Ignoring news term '{term}': not an absolute URL")
        return adapters

    def _facebook_adapters(self, parts: PartitionedTerms) -> list:
        pages = parts.authors + [g for g in parts.groups if g not in parts.authors]
        return [
            FacebookPageAdapter(
                page,
                self.config.facebook_client_id,
                self.config.facebook_client_secret,
                self.config.backoff,
                include_others=self.config.display_fb_content_from_others,
            )
            for page in pages
        ]

    async def _resolve(self, label: str, lookup) -> Optional[str]:
        try:
            resolved = await lookup
        except FeedError as e:
            logger.warning(f"Could not resolve {label}: {e}")
            return None
        if not resolved:
            logger.warning(f"Skipping {label}: not found")
        return resolved
