"""Metadata extractors for Folio.

This module splits front-matter from content and derives the metadata a
Document needs. Each extractor handles a single kind of metadata and the
CompositeMetadataExtractor merges their results.

Key classes:
- TitleExtractor: Title from front-matter or filename.
- DateExtractor: Date from front-matter, filename prefix, or file mtime.
- TaxonomyExtractor: Tags and categories from front-matter.
- DescriptionExtractor: Excerpt and description from the body.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Union

import yaml

from .errors import MalformedFrontMatter
from .protocols import MetadataExtractor
from .utils import extract_date_from_name, first_paragraph, titleize, truncate

FRONTMATTER_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")
FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)

# Values an author may put in front-matter.
FrontMatterValue = Union[
    str,
    int,
    float,
    bool,
    date,
    datetime,
    None,
    list["FrontMatterValue"],
    dict[str, "FrontMatterValue"],
]

_SCALARS = (str, int, float, bool, date, datetime, type(None))

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M %z",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)


def normalize_frontmatter(value: Any, path: Path, key_path: str = "") -> FrontMatterValue:
    """Validate a parsed YAML value against the front-matter value union.

    Tuples become lists; mappings must have string keys.

    Raises:
        MalformedFrontMatter: On non-string keys or unsupported value types.
    """
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, (list, tuple)):
        return [
            normalize_frontmatter(item, path, f"{key_path}[{i}]")
            for i, item in enumerate(value)
        ]
    if isinstance(value, dict):
        normalized: dict[str, FrontMatterValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                where = f" under '{key_path}'" if key_path else ""
                raise MalformedFrontMatter(
                    path, f"Front-matter keys must be strings, got {key!r}{where}"
                )
            child = f"{key_path}.{key}" if key_path else key
            normalized[key] = normalize_frontmatter(item, path, child)
        return normalized
    raise MalformedFrontMatter(
        path, f"Unsupported front-matter value at '{key_path}': {type(value).__name__}"
    )


def extract_frontmatter(text: str, path: Path) -> tuple[dict[str, Any], str, bool]:
    """Split a leading YAML front-matter block from content.

    Args:
        text: Raw file content.
        path: Path to the source file, used for error reporting.

    Returns:
        Tuple of (front-matter mapping, body, whether a block was present).

    Raises:
        MalformedFrontMatter: If the block is unterminated, is not valid
            YAML, or does not hold a mapping.
    """
    text = text.lstrip("\ufeff")
    if not FRONTMATTER_OPEN_RE.match(text):
        return {}, text, False
    match = FRONTMATTER_RE.match(text)
    if not match:
        raise MalformedFrontMatter(path, "Front-matter block is not closed with '---'")
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise MalformedFrontMatter(path, f"Front-matter is not valid YAML: {exc}", exc) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedFrontMatter(
            path, f"Front-matter must be a mapping, got {type(data).__name__}"
        )
    return normalize_frontmatter(data, path), text[match.end() :], True


def parse_date(value: Any, path: Path) -> datetime:
    """Coerce a front-matter date value to a naive datetime.

    Aware datetimes keep their wall-clock time.

    Raises:
        MalformedFrontMatter: If a string value cannot be parsed.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=None)
        except ValueError:
            continue
    raise MalformedFrontMatter(path, f"Unparsable date in front-matter: {text!r}")


def split_terms(value: Any) -> list[str]:
    """Normalize a tags/categories value to a list of unique strings.

    Strings split on commas when present, otherwise on whitespace.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",") if "," in value else value.split()
    elif isinstance(value, list):
        parts = [str(item) for item in value if item is not None]
    else:
        parts = [str(value)]
    seen: list[str] = []
    for part in parts:
        cleaned = part.strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class TitleExtractor:
    """Extracts the title from front-matter, falling back to the filename."""

    def extract(self, frontmatter: dict[str, Any], body: str, path: Path) -> dict[str, Any]:
        title = frontmatter.get("title")
        if title is None or str(title).strip() == "":
            return {"title": titleize(path.name)}
        return {"title": str(title)}


class DateExtractor:
    """Extracts the date from front-matter, filename prefix, or mtime.

    The filename prefix is always validated, even when front-matter
    provides a date, so an impossible prefix is reported either way.
    """

    def extract(self, frontmatter: dict[str, Any], body: str, path: Path) -> dict[str, Any]:
        from_name = extract_date_from_name(path)
        if frontmatter.get("date") is not None:
            return {"date": parse_date(frontmatter["date"], path), "dated": True}
        if from_name is not None:
            return {"date": from_name, "dated": True}
        return {"date": datetime.fromtimestamp(path.stat().st_mtime), "dated": False}


class TaxonomyExtractor:
    """Extracts tags and categories (plural or singular keys)."""

    def extract(self, frontmatter: dict[str, Any], body: str, path: Path) -> dict[str, Any]:
        tags = split_terms(frontmatter.get("tags")) + split_terms(frontmatter.get("tag"))
        categories = split_terms(frontmatter.get("categories")) + split_terms(
            frontmatter.get("category")
        )
        return {
            "tags": list(dict.fromkeys(tags)),
            "categories": list(dict.fromkeys(categories)),
        }


class DescriptionExtractor:
    """Extracts the excerpt and description.

    The excerpt is the first prose paragraph of the body unless front-matter
    sets one; the description falls back to the truncated excerpt.
    """

    def extract(self, frontmatter: dict[str, Any], body: str, path: Path) -> dict[str, Any]:
        excerpt = frontmatter.get("excerpt")
        excerpt = str(excerpt) if excerpt is not None else first_paragraph(body)
        description = frontmatter.get("description")
        description = str(description) if description is not None else truncate(excerpt)
        return {"excerpt": excerpt, "description": description}


class CompositeMetadataExtractor:
    """Splits front-matter and combines multiple metadata extractors.

    Later extractors can override keys set by earlier ones.
    """

    def __init__(self, extractors: list[MetadataExtractor] | None = None):
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                DateExtractor(),
                TaxonomyExtractor(),
                DescriptionExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor: MetadataExtractor) -> None:
        self._extractors.append(extractor)

    def extract(
        self, content: str, path: Path, require_frontmatter: bool = False
    ) -> dict[str, Any]:
        """Extract all metadata from content.

        Args:
            content: Raw source content.
            path: Path to the source file.
            require_frontmatter: Whether a missing front-matter block is an
                error (collection documents).

        Returns:
            Dictionary with 'frontmatter', 'body' and every extracted key.

        Raises:
            MalformedFrontMatter: If front-matter is required but absent, or
                cannot be parsed.
        """
        frontmatter, body, present = extract_frontmatter(content, path)
        if require_frontmatter and not present:
            raise MalformedFrontMatter(
                path, "Collection documents must start with a front-matter block"
            )
        result: dict[str, Any] = {"frontmatter": frontmatter, "body": body}
        for extractor in self._extractors:
            result.update(extractor.extract(frontmatter, body, path))
        return result


default_metadata_extractor = CompositeMetadataExtractor()
