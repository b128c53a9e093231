"""Folio static site generator.

Folio turns a tree of Markdown posts and pages plus Jinja2 layouts and
partials into a static HTML site, with pagination, tag, category and
archive pages, feeds, and incremental rebuilds driven by a persisted
dependency graph.

The main entry point is the CLI module, which provides commands for
scaffolding new projects, building sites, watching for changes and
creating posts.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
