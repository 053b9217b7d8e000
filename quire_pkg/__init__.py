"""
Quire - a minimal static site builder for blogs.

Quire reads Markdown files with YAML front matter, sorts them into posts,
drafts and pages, renders them through Jinja2 layouts and writes a static
site with listing pages, an RSS feed, a sitemap and a compiled stylesheet.
"""

__version__ = "1.0.0"

from .core import Quire, DocumentRenderer, BuildResult
from .index import ContentIndex, SiteIndex, Document
from .settings import QuireSettings, SiteConfig

__all__ = [
    'Quire',
    'DocumentRenderer',
    'BuildResult',
    'ContentIndex',
    'SiteIndex',
    'Document',
    'QuireSettings',
    'SiteConfig',
]
