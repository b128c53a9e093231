from datetime import datetime
from pathlib import Path

from folio.collections import build_site_context, synthesize_documents
from folio.config import DEFAULT_CONFIG
from folio.content import Document
from folio.feeds import RSSGenerator, SitemapGenerator, create_default_feed_registry
from folio.tracking import tracking


def make_doc(source_id, date, collection="posts", title=None, **extra):
    slug = Path(source_id).stem
    return Document(
        source_id=source_id,
        title=title or slug.title(),
        body="",
        content="",
        permalink=f"/{slug}/",
        slug=slug,
        date=date,
        collection=collection,
        layout="post",
        source=Path("site") / source_id,
        dated=True,
        **extra,
    )


def make_site(url="https://example.com", **config):
    docs = [
        make_doc("posts/old.md", datetime(2024, 1, 1), excerpt="Old excerpt"),
        make_doc("posts/new.md", datetime(2024, 3, 5, 8, 30), title="New & shiny", description="Fresh"),
        make_doc("about.md", datetime(2023, 6, 1), collection="pages"),
    ]
    site = build_site_context(docs, {**DEFAULT_CONFIG, "url": url, **config})
    return site, docs


def test_registry_enables_feeds_with_url():
    registry = create_default_feed_registry()
    config = {**DEFAULT_CONFIG, "url": "https://example.com"}
    assert [g.filename for g in registry.active(config)] == ["sitemap.xml", "feed.xml"]
    assert registry.active(DEFAULT_CONFIG) == []
    no_rss = {**config, "feeds": {"rss": False, "sitemap": True}}
    assert [g.filename for g in registry.active(no_rss)] == ["sitemap.xml"]


def test_rss_lists_newest_posts():
    site, docs = make_site(title="Blog & Co", feeds={"rss": True, "sitemap": True, "limit": 1})
    with tracking("artifact:feed.xml") as tracker:
        rss = RSSGenerator().generate(site, docs)
    assert "<title>Blog &amp; Co</title>" in rss
    assert "<title>New &amp; shiny</title>" in rss
    assert "<guid>https://example.com/new/</guid>" in rss
    assert "<description>Fresh</description>" in rss
    assert "Old" not in rss
    assert "<lastBuildDate>Tue, 05 Mar 2024 08:30:00 +0000</lastBuildDate>" in rss
    assert tracker.inputs == {"collection:posts", "content:posts/new.md"}


def test_rss_without_collection():
    site, docs = make_site()
    with tracking("artifact:feed.xml") as tracker:
        rss = RSSGenerator(collection="notes").generate(site, docs)
    assert "<item>" not in rss
    assert "lastBuildDate" not in rss
    assert tracker.inputs == {"collection:notes"}


def test_feeds_need_a_base_url():
    site, docs = make_site(url="")
    assert RSSGenerator().generate(site, docs) is None
    assert SitemapGenerator().generate(site, docs) is None


def test_sitemap_lists_every_page():
    site, docs = make_site(url="https://example.com/")
    generated, _ = synthesize_documents(site, lambda name: name == "home")
    with tracking("artifact:sitemap.xml") as tracker:
        xml = SitemapGenerator().generate(site, docs + generated)
    lines = xml.splitlines()
    assert lines[2] == "  <url><loc>https://example.com/</loc><lastmod>2024-03-05</lastmod></url>"
    assert "  <url><loc>https://example.com/about/</loc><lastmod>2023-06-01</lastmod></url>" in lines
    assert lines[-1] == "</urlset>"
    assert "content:about.md" in tracker.inputs
    assert "collection:pages" in tracker.inputs
