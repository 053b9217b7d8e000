"""
Content discovery, classification and ordering.

``ContentIndex`` walks the content root, parses every Markdown file through
the front matter parser, classifies it as a post, draft or page, derives its
date, slug and permalink, and returns an ordered ``SiteIndex``.
"""

import os
import re
import logging
from dataclasses import dataclass
from datetime import datetime, date, timezone
from fnmatch import fnmatch
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import (
    ConfigurationError,
    DuplicateSlugError,
    EmptyDocumentError,
    MissingDateError,
)
from .frontmatter import read_document_file

MARKDOWN_EXTENSIONS = ('.md', '.markdown')
DATED_FILENAME = re.compile(r'^(\d{4})-(\d{2})-(\d{2})-(.+)$')
DATE_FORMATS = [
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d',
    '%b %d, %Y',
    '%B %d, %Y',
]
DEFAULT_LAYOUT = 'default'


def slugify(text: str) -> str:
    """Convert text to a lowercase, hyphen-separated URL-safe slug."""
    text = str(text).lower()
    text = re.sub(r'[^\w\s-]', '', text)
    text = re.sub(r'[\s_]+', '-', text)
    return re.sub(r'-+', '-', text).strip('-')


def parse_date(value) -> Optional[datetime]:
    """Parse a front matter date into a naive datetime, or None."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        value = value.strip()
        try:
            return parse_date(datetime.fromisoformat(value))
        except ValueError:
            pass
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
    return None


def url_to_output_path(url: str) -> str:
    """Map a permalink to a file path relative to the output directory."""
    path = url.strip('/')
    if not path:
        return 'index.html'
    if url.endswith('/') or '.' not in os.path.basename(path):
        return f'{path}/index.html'
    return path


def split_categories(value) -> Tuple[str, ...]:
    """Front matter categories: a list, or a whitespace separated string."""
    if not value:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value if item is not None and str(item).strip())
    return tuple(str(value).split())


@dataclass(frozen=True, eq=False)
class Document:
    """One parsed content file. Immutable after construction."""

    path: str
    source: str
    metadata: Mapping[str, Any]
    body: str
    kind: str
    layout: str
    slug: str
    url: str
    date: Optional[datetime] = None
    categories: Tuple[str, ...] = ()

    @property
    def title(self) -> str:
        title = self.metadata.get('title')
        if title:
            return str(title)
        return self.slug.replace('-', ' ').title()

    @property
    def output_path(self) -> str:
        return url_to_output_path(self.url)


def _sort_by_date(documents):
    # Stable sorts: path ascending first, then date descending keeps path order on ties
    ordered = sorted(documents, key=lambda d: d.source)
    return sorted(ordered, key=lambda d: d.date or datetime.min, reverse=True)


class SiteIndex:
    """Ordered collections of the documents in one build."""

    def __init__(self, posts, pages, drafts=(), include_drafts=False):
        self.posts: List[Document] = _sort_by_date(posts)
        self.drafts: List[Document] = _sort_by_date(drafts)
        self.pages: List[Document] = sorted(pages, key=lambda d: d.source)
        self.include_drafts = include_drafts

        if include_drafts and self.drafts:
            self._listed = _sort_by_date(self.posts + self.drafts)
        else:
            self._listed = list(self.posts)
        self._positions = {id(document): position for position, document in enumerate(self._listed)}

    @property
    def listed(self) -> List[Document]:
        """Entries shown on listing pages."""
        return self._listed

    @property
    def documents(self) -> List[Document]:
        """Every document that gets its own output page."""
        documents = self.posts + self.pages
        if self.include_drafts:
            documents += self.drafts
        return documents

    def categories(self) -> Dict[str, List[Document]]:
        """
        Group listed entries by category.

        Names that slugify alike (``C`` and ``C++``) share one listing; it is
        keyed by the first spelling met in listing order.
        """
        names: Dict[str, str] = {}
        grouped: Dict[str, List[Document]] = {}
        for document in self.listed:
            for category in document.categories:
                slug = slugify(category)
                name = names.setdefault(slug, category)
                entries = grouped.setdefault(name, [])
                if not entries or entries[-1] is not document:
                    entries.append(document)
        return {name: grouped[name] for name in sorted(grouped)}

    def neighbours(self, document) -> Tuple[Optional[Document], Optional[Document]]:
        """Return ``(previous, next)``: the older and the newer listed entry."""
        position = self._positions.get(id(document))
        if position is None:
            return None, None
        listed = self._listed
        previous = listed[position + 1] if position + 1 < len(listed) else None
        following = listed[position - 1] if position > 0 else None
        return previous, following


class ContentIndex:
    """Discover, parse, classify and order all documents under a content root."""

    def __init__(self, config):
        self.config = config
        self.content_dir = config.content_dir
        self.logger = logging.getLogger('Quire.ContentIndex')

    def discover(self) -> List[str]:
        """Return every Markdown file under the content root, in sorted order."""
        if not os.path.isdir(self.content_dir):
            raise ConfigurationError("content directory does not exist", self.content_dir)

        files = []
        for root, dirs, filenames in os.walk(self.content_dir):
            dirs[:] = sorted(d for d in dirs if not d.startswith('.') and not self._excluded(os.path.join(root, d)))
            for filename in sorted(filenames):
                if filename.startswith('.') or not filename.lower().endswith(MARKDOWN_EXTENSIONS):
                    continue
                filepath = os.path.join(root, filename)
                if not self._excluded(filepath):
                    files.append(filepath)
        return files

    def _excluded(self, filepath):
        relative = os.path.relpath(filepath, self.content_dir).replace(os.sep, '/')
        return any(fnmatch(relative, pattern) or fnmatch(os.path.basename(relative), pattern)
                   for pattern in self.config.exclude)

    def classify(self, relative_path: str) -> Tuple[str, str]:
        """
        Work out a file's kind from its directories.

        Returns:
            Tuple of kind and the directory of the file inside its content area
            (``''`` or ``'a/b/'``)
        """
        parts = relative_path.replace(os.sep, '/').split('/')[:-1]
        for position, part in enumerate(parts):
            for pattern, kind in self.config.kinds.items():
                if fnmatch(part, pattern):
                    return kind, ''.join(p + '/' for p in parts[position + 1:])
        return 'page', ''.join(p + '/' for p in parts)

    def load(self, filepath) -> Optional[Document]:
        """Parse one file into a Document, or None for a skipped draft."""
        source = os.path.relpath(filepath, self.content_dir).replace(os.sep, '/')
        kind, area_path = self.classify(source)
        if kind == 'draft' and not self.config.include_drafts:
            self.logger.debug(f"Skipping draft: {source}")
            return None

        metadata, body = read_document_file(filepath)
        if not body.strip():
            raise EmptyDocumentError("document has no body", filepath)

        stem = os.path.splitext(os.path.basename(filepath))[0]
        dated = DATED_FILENAME.match(stem)
        document_date = self._derive_date(metadata, dated, kind, filepath)

        slug = slugify(metadata.get('slug') or (dated.group(4) if dated else stem))
        if not slug:
            raise ConfigurationError("cannot derive a slug from the filename", filepath)
        categories = split_categories(metadata.get('categories') or metadata.get('category'))

        url = self._permalink(metadata, kind, slug, area_path, document_date, categories, filepath)
        layout = metadata.get('layout') or self.config.default_layouts.get(kind) or DEFAULT_LAYOUT

        return Document(
            path=str(filepath),
            source=source,
            metadata=MappingProxyType(dict(metadata)),
            body=body,
            kind=kind,
            layout=str(layout),
            slug=slug,
            url=url,
            date=document_date,
            categories=categories,
        )

    def _derive_date(self, metadata, dated, kind, filepath):
        if metadata.get('date') is not None:
            parsed = parse_date(metadata['date'])
            if parsed is not None:
                return parsed
            if kind == 'post':
                raise MissingDateError(f"unparseable date '{metadata['date']}'", filepath)
            self.logger.warning(f"Ignoring unparseable date in {filepath}: {metadata['date']}")

        if dated:
            try:
                return datetime(int(dated.group(1)), int(dated.group(2)), int(dated.group(3)))
            except ValueError:
                if kind == 'post':
                    raise MissingDateError(f"invalid date in filename '{os.path.basename(filepath)}'", filepath)

        if kind == 'post':
            raise MissingDateError("post has no date in its front matter or filename", filepath)
        if kind == 'draft':
            return datetime.fromtimestamp(int(os.path.getmtime(filepath)))
        return None

    def _permalink(self, metadata, kind, slug, area_path, document_date, categories, filepath):
        pattern = metadata.get('permalink') or self.config.permalinks[kind]
        if kind == 'page' and slug == 'index' and '{slug}' in pattern:
            pattern = pattern.replace('{slug}/', '').replace('{slug}', '')

        tokens = {
            'slug': slug,
            'path': area_path,
            'categories': '/'.join(slugify(c) for c in categories),
            'year': '',
            'month': '',
            'day': '',
        }
        if document_date is not None:
            tokens.update(
                year=f'{document_date.year:04d}',
                month=f'{document_date.month:02d}',
                day=f'{document_date.day:02d}',
            )

        try:
            url = str(pattern).format(**tokens)
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(f"invalid permalink pattern '{pattern}': {e}", filepath)

        url = '/' + re.sub(r'/{2,}', '/', url).lstrip('/')
        return url

    def build(self) -> SiteIndex:
        """Read every document and return the ordered index."""
        posts, drafts, pages = [], [], []
        buckets = {'post': posts, 'draft': drafts, 'page': pages}

        for filepath in self.discover():
            document = self.load(filepath)
            if document is not None:
                buckets[document.kind].append(document)

        index = SiteIndex(posts, pages, drafts, include_drafts=self.config.include_drafts)
        check_unique_outputs((d.output_path, d.path) for d in index.documents)

        self.logger.debug(
            f"Indexed {len(posts)} posts, {len(pages)} pages and {len(drafts)} drafts"
        )
        return index


def check_unique_outputs(entries):
    """Raise DuplicateSlugError if two entries share an output path."""
    seen = {}
    for output_path, source in entries:
        if output_path in seen:
            raise DuplicateSlugError(output_path, seen[output_path], source)
        seen[output_path] = source
    return seen
