"""
Layout registry.

A layout is a named Jinja2 template that wraps a document's rendered body.
Layouts come from three places, later ones taking precedence:

1. the default templates shipped with the package,
2. every ``*.html`` file at the top of the site's templates directory
   (layout name = file stem),
3. explicit ``layouts:`` entries in the configuration (name -> template file).
"""

import os
import logging
from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    TemplateNotFound,
    TemplateSyntaxError,
)

from .errors import TemplateResolutionError

PACKAGE_LAYOUTS = ('default', 'post', 'page', 'listing')


def absolute_url(path, site_url=None):
    """Join a site-relative path onto the base URL."""
    if not site_url:
        return path
    return site_url.rstrip('/') + '/' + path.lstrip('/')


class Layout:
    """A named template. ``render`` has no side effects."""

    def __init__(self, name, template):
        self.name = name
        self.template = template

    def render(self, body_html, metadata, site):
        return self.template.render(content=body_html, page=metadata, site=site)

    def __repr__(self):
        return f"Layout({self.name!r}, {self.template.name!r})"


class LayoutRegistry:
    """Map layout names to templates for one build."""

    def __init__(self, templates_dir=None, layouts=None, site_url=None):
        self.templates_dir = templates_dir
        self.logger = logging.getLogger('Quire.LayoutRegistry')

        loaders = []
        if templates_dir and os.path.isdir(templates_dir):
            loaders.append(FileSystemLoader(templates_dir))
        loaders.append(PackageLoader('quire_pkg', 'templates'))
        self.env = Environment(loader=ChoiceLoader(loaders))
        self.env.filters['absolute_url'] = lambda path: absolute_url(path, site_url)
        self.env.filters['date_format'] = lambda value, fmt='%B %d, %Y': value.strftime(fmt) if value else ''

        self.sources = {name: f'{name}.html' for name in PACKAGE_LAYOUTS}
        if templates_dir and os.path.isdir(templates_dir):
            for file in sorted(os.listdir(templates_dir)):
                if file.endswith('.html'):
                    self.sources[os.path.splitext(file)[0]] = file
        self.sources.update(layouts or {})
        self._cache = {}

        self.logger.debug(f"Registered layouts: {', '.join(sorted(self.sources))}")

    def __contains__(self, name):
        return name in self.sources

    def names(self):
        return sorted(self.sources)

    def resolve(self, name, path=None):
        """
        Look up a layout by name.

        Args:
            name: Layout identifier from a document's front matter
            path: Source document, used for error reporting

        Returns:
            The Layout instance

        Raises:
            TemplateResolutionError: when no layout is registered under ``name``
                or its template cannot be loaded
        """
        if name in self._cache:
            return self._cache[name]
        if name not in self.sources:
            raise TemplateResolutionError(name, path)

        try:
            template = self.env.get_template(self.sources[name])
        except TemplateNotFound as e:
            raise TemplateResolutionError(name, path, f"template file not found: {e}")
        except TemplateSyntaxError as e:
            raise TemplateResolutionError(name, path, f"syntax error on line {e.lineno}: {e.message}")

        layout = Layout(name, template)
        self._cache[name] = layout
        return layout
