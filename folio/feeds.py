"""Feed generation for Folio.

Feeds (sitemap.xml, RSS) are generated from the Site Context as synthetic
artifacts. They read collections through the tracked Collection API, so the
posts and collections they list become their dependencies.

Classes:
    FeedGenerator: Base class for feed generators.
    SitemapGenerator: Generates sitemap.xml files.
    RSSGenerator: Generates RSS 2.0 feed files.
    FeedRegistry: Registry for managing feed generators.

Functions:
    create_default_feed_registry: Create a registry with default generators.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from markupsafe import escape

from .collections import SiteContext
from .content import Document
from .tracking import collection_input, record_input

RFC822 = "%a, %d %b %Y %H:%M:%S +0000"


class FeedGenerator(ABC):
    """Base class for feed generators.

    Attributes:
        option: Key under config["feeds"] that enables this generator.
    """

    option: str = ""

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the output filename for this feed."""
        ...

    def enabled(self, config: Mapping[str, Any]) -> bool:
        feeds = config.get("feeds") or {}
        return bool(config.get("url")) and bool(feeds.get(self.option, False))

    @abstractmethod
    def generate(self, site: SiteContext, pages: Iterable[Document]) -> str | None:
        """Generate feed content.

        Args:
            site: Site Context of the build.
            pages: Every document that renders to a page.

        Returns:
            Feed content as a string, or None if the feed cannot be
            generated (e.g., no base URL configured).
        """
        ...


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml following the sitemaps.org protocol.

    Requires 'url' in the config to generate absolute URLs.
    """

    option = "sitemap"

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def generate(self, site: SiteContext, pages: Iterable[Document]) -> str | None:
        base_url = str(site.config.get("url", "")).rstrip("/")
        if not base_url:
            return None

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for page in sorted(pages, key=lambda p: p.url):
            if page.synthetic:
                for input_id in page.listing:
                    record_input(input_id)
            else:
                record_input(page.input_id)
                record_input(collection_input(page.collection))
            full_url = escape(f"{base_url}{page.url}")
            if page.synthetic and not page.listing:
                lines.append(f"  <url><loc>{full_url}</loc></url>")
                continue
            lastmod = page.date.strftime("%Y-%m-%d")
            lines.append(f"  <url><loc>{full_url}</loc><lastmod>{lastmod}</lastmod></url>")
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed of the newest posts.

    Uses 'title' and 'description' from the config for the channel, and
    feeds.limit for the number of items.
    """

    option = "rss"

    def __init__(self, collection: str = "posts"):
        self.collection = collection

    @property
    def filename(self) -> str:
        return "feed.xml"

    def generate(self, site: SiteContext, pages: Iterable[Document]) -> str | None:
        config = site.config
        base_url = str(config.get("url", "")).rstrip("/")
        if not base_url:
            return None
        limit = int((config.get("feeds") or {}).get("limit", 20))
        posts = site.collections.get(self.collection)
        if posts is None:
            record_input(collection_input(self.collection))
            latest: list[Document] = []
        else:
            latest = list(posts[:limit])

        items = []
        for post in latest:
            link = escape(f"{base_url}{post.url}")
            description = post.description or post.excerpt or post.title
            items.append(
                f"<item><title>{escape(post.title)}</title><link>{link}</link>"
                f"<guid>{link}</guid>"
                f"<description>{escape(description)}</description>"
                f"<pubDate>{post.date.strftime(RFC822)}</pubDate></item>"
            )

        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape(config.get('title', 'Folio Feed'))}</title>",
            f"<link>{escape(base_url)}/</link>",
            f"<description>{escape(config.get('description', ''))}</description>",
        ]
        if latest:
            newest = max(post.date for post in latest)
            rss.append(f"<lastBuildDate>{newest.strftime(RFC822)}</lastBuildDate>")
        rss.extend(items)
        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


class FeedRegistry:
    """Registry for managing feed generators.

    Attributes:
        _generators: List of registered feed generators.
    """

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def active(self, config: Mapping[str, Any]) -> list[FeedGenerator]:
        """Return the generators enabled by config, in registration order."""
        return [g for g in self._generators if g.enabled(config)]


def create_default_feed_registry() -> FeedRegistry:
    """Create a registry with sitemap and RSS generators."""
    registry = FeedRegistry()
    registry.register(SitemapGenerator())
    registry.register(RSSGenerator())
    return registry
