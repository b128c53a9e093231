"""Utility functions for Folio.

This module contains string, path and hashing helpers used throughout the
Folio codebase.

Key functions:
    slugify: Convert filenames and terms to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Extract date from a YYYY-MM-DD filename prefix.
    strip_date_prefix: Remove the draft underscore and YYYY-MM-DD prefix of a stem.
    first_paragraph: Extract the first prose paragraph as plain text.
    content_hash: SHA-256 hex digest of text or bytes.
    join_root_url: Join a base URL with a path.
    is_markdown / is_template / is_html: Source type checks.
"""

from __future__ import annotations

import hashlib
import re
import shutil
from datetime import datetime
from pathlib import Path

from .errors import InvalidDateInFilename

DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:-|$)")


def strip_date_prefix(name: str) -> str:
    """Remove the draft underscore and YYYY-MM-DD- prefix of a filename stem.

    Args:
        name: Filename stem.

    Returns:
        The stem without its prefixes.
    """
    name = name.lstrip("_")
    match = DATE_PREFIX_RE.match(name)
    if not match:
        return name
    return name[match.end() :]


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem or free text.

    Returns:
        URL-friendly slug.
    """
    cleaned = strip_date_prefix(name)
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'

        >>> titleize("getting-started.md")
        'Getting Started'
    """
    base = strip_date_prefix(Path(filename).name.split(".")[0])
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(path: Path) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        path: Path to the source file.

    Returns:
        datetime if the filename carries a date prefix, None otherwise.

    Raises:
        InvalidDateInFilename: If the prefix is shaped like a date but does
            not name a real calendar day.
    """
    match = DATE_PREFIX_RE.match(path.name.lstrip("_"))
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day)
    except ValueError as exc:
        raise InvalidDateInFilename(
            path, f"Invalid date in filename: {match.group(0).rstrip('-')}", exc
        ) from exc


def first_paragraph(text: str) -> str:
    """Extract the first prose paragraph from Markdown or HTML text.

    Skips headings, images, fenced code and rules. Strips HTML tags and
    Jinja syntax and collapses whitespace.

    Args:
        text: Source text.

    Returns:
        The first paragraph as plain text, or an empty string.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "![", "```", "---", "{%")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        para = re.sub(r"\{[%#{].*?[%#}]\}", "", para)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed
    return ""


def truncate(text: str, limit: int = 160) -> str:
    """Truncate text to limit characters on a word boundary."""
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0]
    return cut.rstrip(",.;:") + "…"


def content_hash(payload: str | bytes) -> str:
    """Return the SHA-256 hex digest of text or bytes."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def file_hash(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def join_root_url(root_url: str, path: str) -> str:
    """Join a base URL with a path, avoiding doubled slashes.

    Examples:
        >>> join_root_url("https://example.com/", "/about/")
        'https://example.com/about/'
    """
    if not root_url:
        return path
    return root_url.rstrip("/") + "/" + path.lstrip("/")


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path))
    path.mkdir(parents=True, exist_ok=True)


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file (.md or .markdown)."""
    return path.suffix.lower() in (".md", ".markdown")


def is_template(path: Path) -> bool:
    """Check if a path is a Jinja template file (.jinja, .html.jinja)."""
    return path.suffix.lower() == ".jinja"


def is_html(path: Path) -> bool:
    """Check if a path is a plain HTML file (not a Jinja template)."""
    return path.suffix.lower() in (".html", ".htm")


def output_path_for(permalink: str) -> str:
    """Map a permalink to a path relative to the output directory.

    Permalinks ending in a slash, or without a file extension, become a
    directory holding index.html.

    Examples:
        >>> output_path_for("/2024/01/03/hello/")
        '2024/01/03/hello/index.html'

        >>> output_path_for("/feed.xml")
        'feed.xml'
    """
    trimmed = permalink.strip("/")
    if not trimmed:
        return "index.html"
    if permalink.endswith("/") or "." not in trimmed.rsplit("/", 1)[-1]:
        return f"{trimmed}/index.html"
    return trimmed
