from datetime import datetime
from pathlib import Path

import pytest

from folio.collections import build_site_context
from folio.config import DEFAULT_CONFIG
from folio.content import Document
from folio.errors import BuildError, CyclicDependency, CyclicLayout, MissingPartial
from folio.templates import TemplateEngine, TemplateRegistry, date_format
from folio.tracking import tracking


def make_registry(tmp_path: Path, layouts: dict, partials: dict | None = None) -> TemplateRegistry:
    layouts_dir = tmp_path / "site" / "_layouts"
    partials_dir = tmp_path / "site" / "_partials"
    layouts_dir.mkdir(parents=True, exist_ok=True)
    partials_dir.mkdir(parents=True, exist_ok=True)
    for root, files in ((layouts_dir, layouts), (partials_dir, partials or {})):
        for name, text in files.items():
            (root / name).parent.mkdir(parents=True, exist_ok=True)
            (root / name).write_text(text, encoding="utf-8")
    return TemplateRegistry(layouts_dir, partials_dir).load()


def make_doc(layout="post", content="<p>Hi</p>", source_type="markdown", **frontmatter):
    return Document(
        source_id="posts/2024-01-01-hello.md",
        title=frontmatter.get("title", "Hello"),
        body="Hi",
        content=content,
        permalink="/2024/01/01/hello/",
        slug="hello",
        date=datetime(2024, 1, 1),
        collection="posts",
        layout=layout,
        source=Path("site/posts/2024-01-01-hello.md"),
        frontmatter=dict(frontmatter),
        source_type=source_type,
    )


def make_engine(registry, config=None, data=None):
    site = build_site_context(
        [], {**DEFAULT_CONFIG, "title": "My Site", **(config or {})}, data or {}, list(data or {})
    )
    return TemplateEngine(registry, site)


LAYOUTS = {
    "default.html": "<title>{{ title }}</title><body>{% include 'nav' %}{{ content }}</body>",
    "post.html": "---\nlayout: default\n---\n<article>{{ content }}</article>",
}
PARTIALS = {
    "nav.html": "{% for item in data.nav %}<a href=\"{{ url_for(item.url) }}\">{{ item.title }}</a>{% endfor %}",
}
NAV = {"nav": [{"title": "About", "url": "/about/"}]}


def test_registry_resolves_names(tmp_path):
    registry = make_registry(
        tmp_path,
        {"default.html": "x", "feed.xml": "y", "shared.html": "layout"},
        {"nav.html": "n", "shared.html": "partial", "cards/item.html.jinja": "c"},
    )
    assert registry.resolve("default").key == "layouts/default.html"
    assert registry.resolve("default.html").key == "layouts/default.html"
    assert registry.resolve("feed").key == "layouts/feed.xml"
    assert registry.resolve("cards/item").key == "partials/cards/item.html.jinja"
    assert registry.resolve("shared").key == "partials/shared.html"
    assert registry.resolve("layouts/shared").key == "layouts/shared.html"
    assert registry.layout("shared").source == "layout"
    assert registry.resolve("ghost") is None


def test_registry_strips_frontmatter_and_reads_parent(tmp_path):
    registry = make_registry(tmp_path, LAYOUTS, PARTIALS)
    post = registry.layout("post")
    assert post.parent == "default"
    assert post.source.startswith("<article>")
    assert registry.layout("default").references == frozenset({"nav"})
    assert [t.key for t in registry.layout_chain("post")] == [
        "layouts/post.html",
        "layouts/default.html",
    ]


def test_registry_reports_syntax_errors(tmp_path):
    with pytest.raises(BuildError) as excinfo:
        make_registry(tmp_path, {"broken.html": "line one\n{% if %}"})
    assert "line 2" in excinfo.value.message


def test_check_missing_partial(tmp_path):
    registry = make_registry(tmp_path, {"default.html": "{% include 'ghost' %}"})
    with pytest.raises(MissingPartial) as excinfo:
        registry.check()
    assert excinfo.value.name == "ghost"
    assert excinfo.value.source_path.name == "default.html"


def test_check_include_cycle(tmp_path):
    registry = make_registry(
        tmp_path,
        {"default.html": "{% include 'nav' %}{{ content }}"},
        {"nav.html": "{% include 'default' %}"},
    )
    with pytest.raises(CyclicDependency) as excinfo:
        registry.check()
    assert "template:partials/nav.html" in excinfo.value.cycle
    assert "template:layouts/default.html" in excinfo.value.cycle


def test_check_self_inclusion(tmp_path):
    registry = make_registry(tmp_path, {}, {"loop.html": "{% include 'loop' %}"})
    with pytest.raises(CyclicDependency):
        registry.check()


def test_check_layout_cycle(tmp_path):
    registry = make_registry(
        tmp_path,
        {
            "a.html": "---\nlayout: b\n---\nA{{ content }}",
            "b.html": "---\nlayout: a\n---\nB{{ content }}",
        },
    )
    with pytest.raises(CyclicLayout) as excinfo:
        registry.check()
    assert excinfo.value.chain[0] == excinfo.value.chain[-1]


def test_long_layout_chain_does_not_overflow(tmp_path):
    depth = 600
    layouts = {f"l{i}.html": f"---\nlayout: l{i + 1}\n---\n{{{{ content }}}}" for i in range(depth)}
    layouts[f"l{depth}.html"] = "<root>{{ content }}</root>"
    registry = make_registry(tmp_path, layouts)
    registry.check()
    assert len(registry.layout_chain("l0")) == depth + 1
    html = make_engine(registry).render_document(make_doc(layout="l0"))
    assert html == "<root><p>Hi</p></root>"


def test_render_document_wraps_layout_chain(tmp_path):
    registry = make_registry(tmp_path, LAYOUTS, PARTIALS)
    engine = make_engine(registry, data=NAV)
    with tracking("artifact:2024/01/01/hello/index.html") as tracker:
        html = engine.render_document(make_doc(title="Hello"))
    assert html == (
        '<title>Hello</title><body><a href="/about/">About</a>'
        "<article><p>Hi</p></article></body>"
    )
    assert tracker.inputs == {
        "template:layouts/post.html",
        "template:layouts/default.html",
        "template:partials/nav.html",
        "data:nav",
    }
    assert tracker.warnings == []


def test_globals_fill_in_when_page_does_not_shadow(tmp_path):
    registry = make_registry(tmp_path, LAYOUTS, PARTIALS)
    html = make_engine(registry, data=NAV).render_document(make_doc(layout="default"))
    assert html.startswith("<title>My Site</title>")


def test_autoescape_keeps_content_markup(tmp_path):
    registry = make_registry(tmp_path, {"default.html": "{{ page.title }}|{{ content }}"})
    html = make_engine(registry).render_document(
        make_doc(layout="default", title="<b>T</b>", content="<em>ok</em>")
    )
    assert html == "&lt;b&gt;T&lt;/b&gt;|<em>ok</em>"


def test_undefined_variables_render_empty_with_warning(tmp_path):
    registry = make_registry(tmp_path, {})
    engine = make_engine(registry)
    doc = make_doc(layout=None, source_type="html", content="<p>{{ nope }}{{ nope.deeper }}</p>")
    with tracking("artifact:x") as tracker:
        html = engine.render_document(doc)
    assert html == "<p></p>"
    assert any("nope" in warning for warning in tracker.warnings)


def test_missing_layout_renders_body_with_warning(tmp_path):
    registry = make_registry(tmp_path, {})
    with tracking("artifact:x") as tracker:
        html = make_engine(registry).render_document(make_doc(layout="ghost"))
    assert html == "<p>Hi</p>"
    assert tracker.warnings == ["Layout 'ghost' not found; rendering body only"]


def test_markdown_bodies_are_not_expanded(tmp_path):
    registry = make_registry(tmp_path, {})
    doc = make_doc(layout=None, content="<p>{{ raw }}</p>")
    assert make_engine(registry).render_document(doc) == "<p>{{ raw }}</p>"


def test_runtime_missing_partial(tmp_path):
    registry = make_registry(tmp_path, {"dyn.html": "{% include which %}"})
    with tracking("artifact:x.html"):
        with pytest.raises(MissingPartial) as excinfo:
            make_engine(registry).render_document(make_doc(layout="dyn", which="ghost"))
    assert excinfo.value.name == "ghost"
    assert excinfo.value.artifact == "x.html"
    assert excinfo.value.source_path.name == "dyn.html"


def test_include_list_selects_first_existing(tmp_path):
    registry = make_registry(
        tmp_path,
        {"default.html": "{% include ['missing', 'nav'] %}{{ content }}"},
        {"nav.html": "[nav]"},
    )
    html = make_engine(registry).render_document(make_doc(layout="default"))
    assert html == "[nav]<p>Hi</p>"


def test_bindings_for_listing_pages(tmp_path):
    registry = make_registry(tmp_path, {"tag.html": "{{ term }}:{% for d in documents %}{{ d }}{% endfor %}"})
    doc = make_doc(layout="tag")
    doc.bindings.update({"term": "python", "documents": ["a", "b"]})
    assert make_engine(registry).render_document(doc) == "python:ab"


def test_url_helpers(tmp_path):
    registry = make_registry(tmp_path, {})
    engine = make_engine(registry, {"url": "https://example.com", "baseurl": "/blog"})
    assert engine.url_for("/about/") == "/blog/about/"
    assert engine.absolute_url("/about/") == "https://example.com/blog/about/"
    assert engine.url_for("https://cdn.example.com/x.js") == "https://cdn.example.com/x.js"

    plain = make_engine(registry)
    assert plain.url_for("about/") == "/about/"
    assert plain.absolute_url("/about/") == "/about/"


def test_date_format_filter():
    assert date_format(datetime(2024, 1, 3)) == "Jan 03, 2024"
    assert date_format(datetime(2024, 1, 3), "%Y") == "2024"
    assert date_format(None) == ""
