from datetime import datetime
from pathlib import Path

import pytest

from folio.config import DEFAULT_CONFIG
from folio.content import (
    CollectionResolver,
    ContentProcessor,
    DocumentBuilder,
    FileContentLoader,
    LayoutResolver,
    PermalinkDeriver,
)
from folio.errors import InvalidDateInFilename, MalformedFrontMatter


def make_site(tmp_path: Path) -> Path:
    site = tmp_path / "site"
    (site / "posts").mkdir(parents=True)
    (site / "_layouts").mkdir()
    (site / "_layouts" / "default.html").write_text("{{ content }}", encoding="utf-8")
    (site / "_layouts" / "post.html").write_text("{{ content }}", encoding="utf-8")
    return site


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_loader_skips_internal_dirs_and_drafts(tmp_path):
    site = make_site(tmp_path)
    write(site / "index.md", "# Home")
    write(site / "_draft.md", "draft")
    write(site / ".hidden.md", "hidden")
    write(site / "_partials" / "nav.html", "nav")
    write(site / "images" / "logo.svg", "<svg/>")
    loader = FileContentLoader(site, DEFAULT_CONFIG["extensions"])

    names = [p.name for p in loader.iter_files()]
    assert "index.md" in names
    assert "_draft.md" not in names
    assert ".hidden.md" not in names
    assert "nav.html" not in names and "default.html" not in names
    assert "_draft.md" in [p.name for p in loader.iter_files(include_drafts=True)]
    assert [p.name for p in loader.iter_static_files()] == ["logo.svg"]


def test_collection_resolver():
    resolver = CollectionResolver(DEFAULT_CONFIG["collections"])
    assert resolver.resolve(Path("posts/2024-01-01-x.md"), {}) == "posts"
    assert resolver.resolve(Path("posts/2024/x.md"), {}) == "posts"
    assert resolver.resolve(Path("about.md"), {}) == "pages"
    assert resolver.resolve(Path("notes/x.md"), {}) == "pages"
    assert resolver.resolve(Path("about.md"), {"collection": "extras"}) == "extras"


def test_layout_resolver(tmp_path):
    site = make_site(tmp_path)
    resolver = LayoutResolver(site / "_layouts", "default")
    assert resolver.resolve({}, {"layout": "post"}) == "post"
    assert resolver.resolve({}, {"layout": "missing"}) == "default"
    assert resolver.resolve({"layout": "custom"}, {"layout": "post"}) == "custom"
    assert resolver.resolve({"layout": None}, {}) is None
    assert resolver.resolve({"layout": "none"}, {}) is None


def test_permalink_deriver():
    deriver = PermalinkDeriver()
    date = datetime(2025, 9, 5)
    assert (
        deriver.derive(Path("posts/x.md"), "post", date, "posts", [], {}, "/:year/:month/:day/:slug/")
        == "/2025/09/05/post/"
    )
    assert (
        deriver.derive(Path("posts/x.md"), "post", date, "posts", ["Web Dev"], {}, "/:categories/:slug/")
        == "/web-dev/post/"
    )
    assert deriver.derive(Path("about.md"), "about", date, "pages", [], {}, None) == "/about/"
    assert deriver.derive(Path("index.md"), "index", date, "pages", [], {}, None) == "/"
    assert deriver.derive(Path("docs/index.md"), "index", date, "pages", [], {}, None) == "/docs/"
    assert (
        deriver.derive(Path("about.md"), "about", date, "pages", [], {"permalink": "/me/"}, None)
        == "/me/"
    )
    # No categories leaves no empty segment behind.
    assert deriver.expand("/:categories/:slug/", {"categories": "", "slug": "x"}) == "/x/"


def test_document_builder_post(tmp_path):
    site = make_site(tmp_path)
    path = write(
        site / "posts" / "2024-01-03-hello-world.md",
        "---\ntitle: Hello\ntags: python web\n---\n# Heading\n\nFirst paragraph.\n",
    )
    doc = DocumentBuilder(site, DEFAULT_CONFIG).build(path)
    assert doc.source_id == "posts/2024-01-03-hello-world.md"
    assert doc.title == "Hello"
    assert doc.slug == "hello-world"
    assert doc.collection == "posts"
    assert doc.layout == "post"
    assert doc.permalink == "/2024/01/03/hello-world/"
    assert doc.output_path == "2024/01/03/hello-world/index.html"
    assert doc.tags == ["python", "web"]
    assert doc.excerpt == "First paragraph."
    assert '<h1 id="heading">Heading</h1>' in doc.content
    assert doc.dated and not doc.draft
    assert doc.input_id == "content:posts/2024-01-03-hello-world.md"


def test_document_builder_page_without_frontmatter(tmp_path):
    site = make_site(tmp_path)
    path = write(site / "about.md", "About me.")
    doc = DocumentBuilder(site, DEFAULT_CONFIG).build(path)
    assert doc.collection == "pages"
    assert doc.title == "About"
    assert doc.permalink == "/about/"
    assert doc.layout == "default"
    assert doc.frontmatter == {}


def test_document_builder_errors(tmp_path):
    site = make_site(tmp_path)
    builder = DocumentBuilder(site, DEFAULT_CONFIG)
    with pytest.raises(MalformedFrontMatter):
        builder.build(write(site / "posts" / "2024-01-01-bare.md", "no front matter"))
    with pytest.raises(InvalidDateInFilename):
        builder.build(write(site / "posts" / "2024-13-45-x.md", "---\ntitle: x\n---\n"))
    with pytest.raises(MalformedFrontMatter):
        builder.build(write(site / "posts" / "open.md", "---\ntitle: x\n"))


def test_document_frontmatter_attribute_fallback(tmp_path):
    site = make_site(tmp_path)
    path = write(site / "page.md", "---\nhero: big.png\n---\nBody")
    doc = DocumentBuilder(site, DEFAULT_CONFIG).build(path)
    assert doc.hero == "big.png"
    with pytest.raises(AttributeError):
        doc.missing


def test_content_processor_drafts(tmp_path):
    site = make_site(tmp_path)
    write(site / "posts" / "2024-01-01-a.md", "---\ntitle: A\n---\n")
    write(site / "posts" / "2024-01-02-b.md", "---\ntitle: B\ndraft: true\n---\n")
    write(site / "posts" / "_2024-01-03-c.md", "---\ntitle: C\n---\n")
    processor = ContentProcessor(site, DEFAULT_CONFIG)
    assert [d.title for d in processor.load()] == ["A"]
    assert sorted(d.title for d in processor.load(include_drafts=True)) == ["A", "B", "C"]


def test_content_processor_reload_reuses_unchanged(tmp_path):
    site = make_site(tmp_path)
    a = write(site / "posts" / "2024-01-01-a.md", "---\ntitle: A\n---\n")
    b = write(site / "posts" / "2024-01-02-b.md", "---\ntitle: B\n---\n")
    processor = ContentProcessor(site, DEFAULT_CONFIG)
    first = {d.source_id: d for d in processor.load()}

    write(a, "---\ntitle: A2\n---\n")
    write(b, "---\ntitle: B2\n---\n")
    reloaded = {d.source_id: d for d in processor.reload(first, {a})}
    assert reloaded["posts/2024-01-01-a.md"].title == "A2"
    assert reloaded["posts/2024-01-02-b.md"] is first["posts/2024-01-02-b.md"]
