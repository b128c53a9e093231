from datetime import datetime
from pathlib import Path

import pytest

from folio.collections import (
    Collection,
    TrackedData,
    build_pagers,
    build_site_context,
    check_permalinks,
    paginate,
    sort_documents,
    synthesize_documents,
)
from folio.config import DEFAULT_CONFIG
from folio.content import Document
from folio.errors import BuildError, DuplicatePermalink
from folio.tracking import tracking


def make_doc(source_id, date=None, collection="posts", tags=None, categories=None, **extra):
    slug = Path(source_id).stem
    return Document(
        source_id=source_id,
        title=extra.pop("title", slug.title()),
        body="",
        content="",
        permalink=extra.pop("permalink", f"/{slug}/"),
        slug=slug,
        date=date or datetime(2024, 1, 1),
        collection=collection,
        layout="post",
        source=Path("site") / source_id,
        tags=tags or [],
        categories=categories or [],
        dated=True,
        **extra,
    )


def test_posts_order_by_descending_date():
    docs = [
        make_doc("posts/2024-01-01-a.md", datetime(2024, 1, 1)),
        make_doc("posts/2024-01-03-c.md", datetime(2024, 1, 3)),
        make_doc("posts/2024-01-02-b.md", datetime(2024, 1, 2)),
    ]
    site = build_site_context(docs, DEFAULT_CONFIG)
    assert [d.date.day for d in site.posts.documents] == [3, 2, 1]


def test_ties_break_by_descending_source_path():
    same = datetime(2024, 1, 1)
    docs = [make_doc("posts/a.md", same), make_doc("posts/c.md", same), make_doc("posts/b.md", same)]
    assert [d.source_id for d in sort_documents(docs)] == ["posts/c.md", "posts/b.md", "posts/a.md"]
    ascending = sort_documents(docs, sort_by="title", reverse=False)
    assert [d.title for d in ascending] == ["A", "B", "C"]


def test_collections_and_taxonomies():
    docs = [
        make_doc("posts/a.md", datetime(2023, 5, 1), tags=["python"], categories=["code"]),
        make_doc("posts/b.md", datetime(2024, 1, 2), tags=["python", "web"]),
        make_doc("about.md", collection="pages"),
    ]
    site = build_site_context(docs, DEFAULT_CONFIG)
    assert len(site.collections["pages"]) == 1
    assert list(site.tags) == ["python", "web"]
    assert [d.source_id for d in site.tags["python"].documents] == ["posts/b.md", "posts/a.md"]
    assert site.tags["web"].slug == "web"
    assert list(site.categories) == ["code"]
    assert list(site.archives) == ["2023", "2024"]
    assert site.title == DEFAULT_CONFIG["title"]
    with pytest.raises(AttributeError):
        site.nothing_here


def test_collection_records_inputs_when_read():
    docs = [make_doc("posts/a.md"), make_doc("posts/b.md")]
    collection = Collection("posts", docs)
    with tracking("artifact:index.html") as tracker:
        assert len(collection) == 2
    assert tracker.inputs == {"collection:posts"}

    with tracking("artifact:index.html") as tracker:
        titles = [d.title for d in collection[:1]]
    assert titles == ["A"]
    assert tracker.inputs == {"collection:posts", "content:posts/a.md"}

    assert [d.title for d in collection.with_tag("none")] == []
    assert len(collection.in_category("none")) == 0


def test_tracked_data_attributes_reads_to_files():
    data = TrackedData({"title": "From site.yaml", "nav": [1]}, file_keys=["nav"])
    with tracking("artifact:x") as tracker:
        assert data["nav"] == [1]
        assert data["title"] == "From site.yaml"
        with pytest.raises(KeyError):
            data["menu"]
    assert tracker.inputs == {"data:nav", "data:site", "data:menu"}


def test_paginate_sizes():
    docs = [make_doc(f"posts/{i:02d}.md") for i in range(25)]
    assert [len(page) for page in paginate(docs, 10)] == [10, 10, 5]
    assert paginate([], 10) == []
    with pytest.raises(ValueError):
        paginate(docs, 0)


def test_pagers_link_neighbours():
    docs = [make_doc(f"posts/{i:02d}.md") for i in range(25)]
    pagers = build_pagers(docs, 10, "/", "/page/:num/")
    assert [p.url for p in pagers] == ["/", "/page/2/", "/page/3/"]
    assert pagers[0].previous is None and pagers[0].next == 2
    assert pagers[1].previous_url == "/" and pagers[1].next_url == "/page/3/"
    assert pagers[2].next is None and pagers[2].total_documents == 25
    relative = build_pagers(docs, 10, "/blog/", "page/:num/")
    assert relative[1].url == "/blog/page/2/"


def test_synthesize_listing_pages():
    docs = [
        make_doc("posts/a.md", datetime(2023, 5, 1), tags=["python"]),
        make_doc("posts/b.md", datetime(2024, 1, 2), tags=["Web Dev"]),
    ]
    site = build_site_context(docs, DEFAULT_CONFIG)
    generated, hosts = synthesize_documents(site, lambda name: name in ("home", "tag", "archive"))
    by_url = {d.permalink: d for d in generated}
    assert hosts == set()
    assert set(by_url) == {"/", "/tags/python/", "/tags/web-dev/", "/archive/2023/", "/archive/2024/"}
    home = by_url["/"]
    assert home.synthetic and home.layout == "home"
    assert "collection:posts" in home.listing
    assert home.bindings["paginator"].documents[0].source_id == "posts/b.md"
    tag = by_url["/tags/web-dev/"]
    assert tag.bindings["term"].name == "Web Dev"
    assert tag.listing == ("term:tags/web-dev", "content:posts/b.md")
    assert tag.date == datetime(2024, 1, 2)


def test_synthesize_uses_host_document():
    host = make_doc("index.html", collection="pages", permalink="/", title="Home")
    host.frontmatter["paginate"] = "posts"
    docs = [host] + [make_doc(f"posts/{i:02d}.md") for i in range(12)]
    site = build_site_context(docs, DEFAULT_CONFIG)
    generated, hosts = synthesize_documents(site, lambda name: False)
    assert hosts == {"index.html"}
    assert [d.permalink for d in generated] == ["/", "/page/2/"]
    assert all(d.title == "Home" and "content:index.html" in d.listing for d in generated)


def test_duplicate_permalink_names_every_source():
    docs = [
        make_doc("posts/2025-09-25-post.md", permalink="/2025/09/25/post/"),
        make_doc("posts/post.md", permalink="/2025/09/25/post/"),
    ]
    with pytest.raises(DuplicatePermalink) as excinfo:
        check_permalinks(docs)
    assert excinfo.value.permalink == "/2025/09/25/post/"
    assert len(excinfo.value.sources) == 2
    assert any("2025-09-25-post.md" in s for s in excinfo.value.sources)
    assert any(s.endswith("posts/post.md") for s in excinfo.value.sources)


def test_memberships_cover_collections_and_terms():
    docs = [make_doc("posts/a.md", tags=["x"]), make_doc("about.md", collection="pages")]
    memberships = build_site_context(docs, DEFAULT_CONFIG).memberships()
    assert memberships["collection:posts"] == ["posts/a.md"]
    assert memberships["collection:pages"] == ["about.md"]
    assert memberships["taxonomy:tags"] == ["x"]
    assert memberships["term:tags/x"] == ["posts/a.md"]


def test_terms_that_slugify_alike_share_one_page():
    docs = [
        make_doc("posts/a.md", datetime(2024, 1, 1), tags=["Python", "C++"]),
        make_doc("posts/b.md", datetime(2024, 1, 2), tags=["python", "C#", "c"]),
    ]
    site = build_site_context(docs, DEFAULT_CONFIG)
    assert list(site.tags) == ["C++", "Python"]
    assert site.tags["C++"].slug == "c"
    assert [d.source_id for d in site.tags["C++"].documents] == ["posts/b.md", "posts/a.md"]
    assert [d.source_id for d in site.tags["Python"].documents] == ["posts/b.md", "posts/a.md"]

    generated, _ = synthesize_documents(site, lambda name: name == "tag")
    assert sorted(d.permalink for d in generated) == ["/tags/c/", "/tags/python/"]
    check_permalinks(generated)


def test_repeated_tag_lists_document_once():
    docs = [make_doc("posts/a.md", tags=["web", "Web"])]
    site = build_site_context(docs, DEFAULT_CONFIG)
    assert len(site.tags["web"]) == 1


def test_all_documents_record_inputs_when_read():
    docs = [make_doc("posts/a.md"), make_doc("about.md", collection="pages")]
    site = build_site_context(docs, DEFAULT_CONFIG)
    with tracking("artifact:all/index.html") as tracker:
        titles = [d.title for d in site.documents]
    assert titles == ["A", "About"]
    assert tracker.inputs == {"collection:*", "content:posts/a.md", "content:about.md"}

    with tracking("artifact:index.html") as tracker:
        assert len(site.posts.documents) == 1
    assert tracker.inputs == {"collection:posts", "content:posts/a.md"}

    assert site.memberships()["collection:*"] == ["posts/a.md", "about.md"]


def test_permalink_climbing_out_of_output_is_rejected():
    docs = [make_doc("evil.md", collection="pages", permalink="/../../escaped/")]
    with pytest.raises(BuildError) as excinfo:
        check_permalinks(docs)
    assert "outside the output directory" in excinfo.value.message
    assert excinfo.value.source_path == Path("site") / "evil.md"
