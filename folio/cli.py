"""Command-line interface for Folio.

This module defines the CLI commands using the Click framework.

Commands:
- new: Scaffold a new Folio project.
- build: Build the site into the output directory.
- watch: Build, then rebuild incrementally whenever inputs change.
- post: Create a new dated post.
"""

from __future__ import annotations

import shutil
from datetime import datetime
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .errors import BuildError
from .log import configure_logging
from .utils import DATE_PREFIX_RE, slugify

_SCAFFOLD_DIR = Path(__file__).parent / "scaffold"


@click.group()
@click.version_option(version=__version__, prog_name="folio")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
def cli(verbose: bool, log_json: bool):
    """Folio static site generator."""
    configure_logging(verbose=verbose, log_json=log_json)


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Folio project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Folio site created at {target}")


@cli.command()
@click.option("--full", is_flag=True, help="Re-render every artifact")
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--clean", is_flag=True, help="Empty the output directory first")
@click.option("--workers", type=click.IntRange(min=1), help="Render threads")
def build(full: bool, drafts: bool, clean: bool, workers: int | None):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import Builder

    builder = Builder(project_root, workers=workers)
    try:
        result = builder.build(full=full, include_drafts=drafts, clean=clean)
    except BuildError as exc:
        _report_failure(exc, project_root)
        raise SystemExit(1) from None
    for warning in result.warnings:
        click.echo(click.style(f"Warning: {warning}", fg="yellow"), err=True)
    mode = "full" if result.full else "incremental"
    click.echo(
        f"Built {len(result.rendered)} artifacts ({mode}): "
        f"{len(result.written)} written, {len(result.skipped)} unchanged, "
        f"{len(result.deleted)} deleted into {result.output_dir}"
    )


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
def watch(drafts: bool):
    """Build, then rebuild incrementally on changes."""
    project_root = Path.cwd()
    from .build import Builder
    from .watch import SiteWatcher

    builder = Builder(project_root)
    try:
        result = builder.build(include_drafts=drafts)
        click.echo(f"Built {len(result.rendered)} artifacts into {result.output_dir}")
    except BuildError as exc:
        _report_failure(exc, project_root)

    def on_rebuild(result) -> None:
        click.echo(
            f"Rebuilt {len(result.rendered)} artifacts, {len(result.written)} written, "
            f"{len(result.deleted)} deleted"
        )

    watcher = SiteWatcher(
        builder,
        include_drafts=drafts,
        on_rebuild=on_rebuild,
        on_error=lambda exc: _report_failure(exc, project_root),
    )
    click.echo("Watching for changes (Ctrl+C to stop)")
    watcher.run()


@cli.command()
@click.option("--title", help="Post title")
@click.option("--tags", help="Space-separated tags")
@click.option("--draft", is_flag=True, help="Create the post as a draft")
def post(title: str | None, tags: str | None, draft: bool):
    """Create a new dated post."""
    project_root = Path.cwd()
    from .config import load_config

    config = load_config(project_root)
    content_dir = project_root / str(config["content_dir"])
    if not content_dir.exists():
        raise click.ClickException(
            f"No {config['content_dir']}/ directory found. Run this command from a Folio project root."
        )
    posts = (config.get("collections") or {}).get("posts") or {}
    target_dir = content_dir / str(posts.get("dir", "posts"))

    if title is None:
        title = questionary.text(
            "Post title:",
            validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
            style=_questionary_style(),
        ).ask()
        if title is None:
            raise click.Abort()
        if tags is None:
            tags = questionary.text(
                "Tags (space-separated, optional):", style=_questionary_style()
            ).ask()
            if tags is None:
                raise click.Abort()

    title = title.strip()
    if not any(c.isascii() and c.isalnum() for c in title):
        raise click.ClickException("Title must contain at least one letter or digit")
    slug = slugify(title)

    if slug in _get_existing_slugs(target_dir):
        conflicting = [f for f in target_dir.iterdir() if _extract_slug(f.name) == slug]
        raise click.ClickException(
            f"A post with slug '{slug}' already exists: {conflicting[0].name}"
        )

    now = datetime.now()
    prefix = "_" if draft else ""
    target_path = target_dir / f"{prefix}{now.strftime('%Y-%m-%d')}-{slug}.md"
    frontmatter = {
        "title": title,
        "date": now.strftime("%Y-%m-%d %H:%M:%S"),
        "tags": (tags or "").split(),
    }
    target_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(
        "---\n" + yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True) + "---\n\n",
        encoding="utf-8",
    )
    click.echo(f"Created {target_path.relative_to(project_root)}")


def _report_failure(exc: BuildError, project_root: Path) -> None:
    """Print a build failure in colour."""
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if exc.source_path is not None:
        source = Path(exc.source_path)
        try:
            source = source.resolve().relative_to(project_root.resolve())
        except ValueError:
            pass
        click.echo(click.style(f"  File: {source}", fg="yellow"), err=True)
    if exc.artifact:
        click.echo(click.style(f"  Output: {exc.artifact}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)


def _get_existing_slugs(folder: Path) -> set[str]:
    """Get set of existing slugs in a folder."""
    slugs = set()
    if folder.exists():
        for f in folder.iterdir():
            if f.is_file() and f.suffix in (".md", ".markdown", ".html", ".jinja"):
                slugs.add(_extract_slug(f.name))
    return slugs


def _extract_slug(filename: str) -> str:
    """Extract slug from filename, removing draft marker, date prefix and extension."""
    name = filename.split(".")[0].lstrip("_")
    match = DATE_PREFIX_RE.match(name)
    if match:
        name = name[match.end() :]
    return slugify(name)


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new Folio project.

    Args:
        root: Root directory for the new project.
    """
    for src_path in _SCAFFOLD_DIR.rglob("*"):
        if src_path.is_dir() or src_path.name == "__pycache__":
            continue
        rel_path = src_path.relative_to(_SCAFFOLD_DIR)
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)
