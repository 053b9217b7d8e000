import os
import re
import shutil
import logging
import calendar
import threading
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import formatdate
from xml.sax.saxutils import escape
from concurrent.futures import ThreadPoolExecutor
from typing import List

import csscompressor
from jinja2 import TemplateError

from .errors import ConfigurationError, RenderError
from .index import ContentIndex, check_unique_outputs, slugify, url_to_output_path
from .layouts import LayoutRegistry, absolute_url
from .markup import MarkdownConverter
from .stylesheet import compile_stylesheet_file

# Rendering switches to a thread pool once a build has this many documents
PARALLEL_THRESHOLD = 12
FEED_SIZE = 20
EXCERPT_WORDS = 30

# Thread-local storage for DocumentRenderer instances
thread_local = threading.local()


def initializer(config, layouts, site, index):
    """Initialize a DocumentRenderer in thread-local storage for each worker thread."""
    thread_local.renderer = DocumentRenderer(config, layouts, site, index)


def render_document(document):
    return thread_local.renderer.render(document)


def generate_excerpt(content):
    """Generate an excerpt from rendered content."""
    plain_text = re.sub(r'<[^>]+>', '', content)
    words = plain_text.split()
    if len(words) > EXCERPT_WORDS:
        return ' '.join(words[:EXCERPT_WORDS]) + '...'
    return ' '.join(words)


def calculate_relative_path(output_path):
    """Calculate relative path from an output file's directory to the site root."""
    rel_path = os.path.relpath('.', os.path.dirname(output_path) or '.')
    # Ensure relative path ends with '/' for proper asset linking
    if rel_path == '.':
        return ''
    return rel_path.replace(os.sep, '/') + '/'


def link_summary(document):
    if document is None:
        return None
    return {'title': document.title, 'url': document.url, 'date': document.date}


@dataclass
class RenderedDocument:
    document: object
    output_path: str
    html: str
    body_html: str


@dataclass
class ListingPage:
    url: str
    title: str
    entries: list
    paginator: dict
    category: str = None

    @property
    def output_path(self):
        return url_to_output_path(self.url)


@dataclass
class BuildResult:
    posts: int = 0
    drafts: int = 0
    pages: int = 0
    listings: int = 0
    written: List[str] = field(default_factory=list)


class DocumentRenderer:
    """Render single documents: Markdown to HTML, then through their layout."""

    def __init__(self, config, layouts, site, index):
        self.config = config
        self.layouts = layouts
        self.site = site
        self.index = index
        self.logger = logging.getLogger('Quire.DocumentRenderer')
        self.converter = MarkdownConverter()

    def markdown_filter(self, document):
        """Convert a document's markdown body to HTML."""
        try:
            return self.converter.convert(document.body)
        except Exception as e:
            raise RenderError(document.path, e)

    def page_metadata(self, document, output_path):
        """Front matter plus the fields every layout can rely on."""
        previous, following = self.index.neighbours(document)
        metadata = dict(document.metadata)
        metadata.update(
            title=document.title,
            url=document.url,
            date=document.date,
            slug=document.slug,
            kind=document.kind,
            layout=document.layout,
            categories=list(document.categories),
            relative_path=calculate_relative_path(output_path),
            previous=link_summary(previous),
            next=link_summary(following),
        )
        return metadata

    def render(self, document):
        """Render one document to its final HTML."""
        output_path = document.output_path
        body_html = self.markdown_filter(document)
        layout = self.layouts.resolve(document.layout, document.path)
        try:
            html = layout.render(body_html, self.page_metadata(document, output_path), self.site)
        except TemplateError as e:
            raise RenderError(document.path, e)
        self.logger.debug(f"Rendered {document.source} -> {output_path}")
        return RenderedDocument(document, output_path, html, body_html)


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages to be shown in the console."""
    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        allowed_messages = [
            "Site build completed in",
            "Total posts generated:",
            "Total pages generated:",
            "Total drafts generated:",
            "Total listing pages generated:",
            "Building listing pages",
            "Compiling stylesheet",
            "Generating RSS feed",
            "Generating XML sitemap",
        ]
        return any(msg in record.getMessage() for msg in allowed_messages)


class Quire:
    """Build a site: index the content, render it, then write it out."""

    def __init__(self, config):
        self.config = config
        self.setup_logging()
        self.layouts = LayoutRegistry(config.templates_dir, config.layouts, config.site_url)

    def setup_logging(self):
        """Set up logging configuration."""
        self.logger = logging.getLogger('Quire')
        self.logger.setLevel(logging.DEBUG)

        if not self.logger.handlers:
            # Console handler with filter
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.addFilter(InfoFilter())
            console_formatter = logging.Formatter('%(message)s')
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

            # File handler for all logs
            if self.config.log_dir:
                os.makedirs(self.config.log_dir, exist_ok=True)
                log_filename = datetime.now().strftime('quire_%Y-%m-%d_%H-%M-%S.log')
                log_filepath = os.path.join(self.config.log_dir, log_filename)

                file_handler = logging.FileHandler(log_filepath)
                file_handler.setLevel(logging.DEBUG)
                file_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
                file_handler.setFormatter(file_formatter)
                self.logger.addHandler(file_handler)

    def site_context(self, index):
        """The ``site`` variable shared by every layout."""
        stylesheet = self.config.stylesheet_output.lstrip('/') if self.config.stylesheet else None
        return {
            'title': self.config.site_title,
            'description': self.config.site_description,
            'url': self.config.site_url,
            'stylesheet': stylesheet,
            'feed': '/feed.xml' if self.config.site_url else None,
            'pages': [
                {'title': page.title, 'url': page.url}
                for page in index.pages if page.metadata.get('nav', True)
            ],
            'posts': [link_summary(post) for post in index.listed],
            'categories': list(index.categories()),
        }

    def resolve_layouts(self, index):
        """Resolve every layout up front so unknown names fail before rendering."""
        for document in index.documents:
            self.layouts.resolve(document.layout, document.path)
        if self.config.home or index.categories():
            self.layouts.resolve(self.config.listing_layout)

    def get_pagination_links(self, current_page, total_pages):
        """
        Returns a list of page numbers (or ellipses) to display in pagination.
        Always shows page 1 and total_pages.
        Shows two pages before and after the current page.
        Inserts '...' when there is a gap.
        """
        delta = 2  # how many pages to show before and after current page
        links = [1]

        start = max(current_page - delta, 2)
        end = min(current_page + delta, total_pages - 1)

        if start > 2:
            links.append('...')
        links.extend(range(start, end + 1))
        if end < total_pages - 1:
            links.append('...')

        if total_pages > 1:
            links.append(total_pages)

        return links

    def paginate(self, entries, base_url, title, category=None):
        """Split listed entries into listing pages under ``base_url``."""
        per_page = self.config.posts_per_page or len(entries) or 1
        total_pages = max(1, (len(entries) + per_page - 1) // per_page)

        def page_url(number):
            return base_url if number == 1 else f"{base_url.rstrip('/')}/page/{number}/"

        listings = []
        for number in range(1, total_pages + 1):
            page_entries = entries[(number - 1) * per_page:number * per_page]
            paginator = {
                'page': number,
                'per_page': per_page,
                'total_pages': total_pages,
                'total_posts': len(entries),
                'previous_url': page_url(number - 1) if number > 1 else None,
                'next_url': page_url(number + 1) if number < total_pages else None,
                'page_numbers': self.get_pagination_links(number, total_pages),
            }
            page_title = title if number == 1 else f'{title} - Page {number}'
            listings.append(ListingPage(page_url(number), page_title, page_entries, paginator, category))
        return listings

    def plan_listings(self, index):
        """Work out every listing page before anything is rendered."""
        listings = []
        listed = index.listed
        if self.config.home:
            listings.extend(self.paginate(listed, '/', self.config.site_title or 'Home'))
        for category, entries in index.categories().items():
            try:
                base_url = self.config.category_permalink.format(category=slugify(category))
            except (KeyError, IndexError, ValueError) as e:
                raise ConfigurationError(f"invalid category permalink '{self.config.category_permalink}': {e}")
            listings.extend(self.paginate(entries, base_url, category, category))
        return listings

    def check_outputs(self, index, listings):
        """Fail before writing anything if two outputs share a path."""
        entries = [(d.output_path, d.path) for d in index.documents]
        entries += [(listing.output_path, f'<listing {listing.url}>') for listing in listings]
        if self.config.site_url:
            entries.append(('feed.xml', '<feed>'))
            entries.append(('sitemap.xml', '<sitemap>'))
        if self.config.stylesheet:
            entries.append((self.config.stylesheet_output.lstrip('/'), self.config.stylesheet))
        check_unique_outputs(entries)

    def render_documents(self, index, site):
        """Render every document, on a thread pool for larger sites."""
        documents = index.documents
        workers = self.config.workers or os.cpu_count() or 1

        if len(documents) >= PARALLEL_THRESHOLD and workers > 1:
            self.logger.info(f"Using {workers} threads for {len(documents)} documents")
            with ThreadPoolExecutor(
                max_workers=workers,
                initializer=initializer,
                initargs=(self.config, self.layouts, site, index)
            ) as executor:
                # map yields in submission order, so the first failing document raises first
                return list(executor.map(render_document, documents))

        self.logger.info(f"Using single-threaded processing for {len(documents)} documents")
        renderer = DocumentRenderer(self.config, self.layouts, site, index)
        return [renderer.render(document) for document in documents]

    def listing_entry(self, rendered):
        document = rendered.document
        return {
            'title': document.title,
            'url': document.url,
            'date': document.date,
            'kind': document.kind,
            'categories': list(document.categories),
            'excerpt': document.metadata.get('excerpt') or generate_excerpt(rendered.body_html),
        }

    def render_listings(self, listings, rendered, site):
        """Render listing pages. Needs every document rendered first."""
        if not listings:
            return {}
        self.logger.info(f"Building listing pages ({len(listings)})")
        by_document = {id(r.document): r for r in rendered}
        layout = self.layouts.resolve(self.config.listing_layout)

        outputs = {}
        for listing in listings:
            paginator = dict(listing.paginator)
            paginator['posts'] = [self.listing_entry(by_document[id(d)]) for d in listing.entries]
            metadata = {
                'title': listing.title,
                'url': listing.url,
                'kind': 'listing',
                'category': listing.category,
                'paginator': paginator,
                'relative_path': calculate_relative_path(listing.output_path),
            }
            try:
                outputs[listing.output_path] = layout.render('', metadata, site)
            except TemplateError as e:
                raise RenderError(f'<listing {listing.url}>', e)
        return outputs

    def generate_rss_feed(self, index, rendered):
        """Generate an RSS 2.0 feed of the newest listed posts."""
        site_url = self.config.site_url
        site_name = self.config.site_title or site_url
        by_document = {id(r.document): r for r in rendered}
        recent_posts = index.listed[:FEED_SIZE]

        last_build = formatdate(calendar.timegm(recent_posts[0].date.timetuple())) if recent_posts else formatdate(0)
        rss_content = f'''<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>{escape(site_name)}</title>
<link>{escape(site_url)}/</link>
<description>{escape(self.config.site_description or f"Latest posts from {site_name}")}</description>
<lastBuildDate>{last_build}</lastBuildDate>
'''

        for post in recent_posts:
            link = absolute_url(post.url, site_url)
            description = post.metadata.get('excerpt') or generate_excerpt(by_document[id(post)].body_html)
            pub_date = formatdate(calendar.timegm(post.date.timetuple()))
            rss_content += f'''
<item>
<title>{escape(post.title)}</title>
<link>{escape(link)}</link>
<description>{escape(str(description))}</description>
<pubDate>{pub_date}</pubDate>
<guid>{escape(link)}</guid>
</item>'''

        rss_content += '''
</channel>
</rss>
'''
        self.logger.info("Generating RSS feed")
        return rss_content

    def format_xml_sitemap_entry(self, url, lastmod=None):
        """Format a single sitemap entry."""
        entry = f'<url>\n<loc>{escape(url)}</loc>\n'
        if lastmod is not None:
            entry += f"<lastmod>{lastmod.strftime('%Y-%m-%d')}</lastmod>\n"
        return entry + '</url>\n'

    def generate_xml_sitemap(self, index, listings):
        """Generate XML sitemap."""
        site_url = self.config.site_url
        newest = index.listed[0].date if index.listed else None

        sitemap_content = '''<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
'''
        for listing in listings:
            if listing.paginator['page'] == 1 and listing.category is None:
                sitemap_content += self.format_xml_sitemap_entry(absolute_url(listing.url, site_url), newest)
        for document in index.documents:
            if document.kind == 'draft' or document.metadata.get('sitemap') is False:
                continue
            sitemap_content += self.format_xml_sitemap_entry(absolute_url(document.url, site_url), document.date)
        sitemap_content += '</urlset>\n'

        self.logger.info("Generating XML sitemap")
        return sitemap_content

    def compile_stylesheet(self):
        """Compile the stylesheet source once per build."""
        self.logger.info(f"Compiling stylesheet {self.config.stylesheet}")
        css = compile_stylesheet_file(self.config.stylesheet, self.config.stylesheet_environment)
        if self.config.minify:
            css = csscompressor.compress(css)
        return css

    def copy_assets_to_output(self):
        """Copy the assets directory into the output directory."""
        assets_dir = self.config.assets_dir
        if not assets_dir or not os.path.exists(assets_dir):
            return
        output_assets_dir = os.path.join(self.config.output_dir, os.path.basename(os.path.normpath(assets_dir)))
        try:
            shutil.copytree(assets_dir, output_assets_dir, dirs_exist_ok=True)
            self.logger.debug(f"Copied assets from {assets_dir}")
        except (IOError, OSError) as e:
            self.logger.error(f"Failed to copy assets from {assets_dir}: {e}")
            raise

    def write_outputs(self, outputs):
        written = []
        for relative_path in sorted(outputs):
            output_file_path = os.path.join(self.config.output_dir, relative_path)
            try:
                os.makedirs(os.path.dirname(output_file_path), exist_ok=True)
                with open(output_file_path, 'w', encoding='utf-8') as output_file:
                    output_file.write(outputs[relative_path])
            except (IOError, OSError) as e:
                self.logger.error(f"Failed to write {output_file_path}: {e}")
                raise
            self.logger.debug(f"Generated: {output_file_path}")
            written.append(relative_path)
        return written

    def build(self):
        """Main build process. Writes nothing unless every step succeeds."""
        self.logger.info("Starting site build...")

        index = ContentIndex(self.config).build()
        site = self.site_context(index)

        self.resolve_layouts(index)
        listings = self.plan_listings(index)
        self.check_outputs(index, listings)

        rendered = self.render_documents(index, site)
        outputs = {r.output_path: r.html for r in rendered}
        outputs.update(self.render_listings(listings, rendered, site))

        if self.config.site_url:
            outputs['feed.xml'] = self.generate_rss_feed(index, rendered)
            outputs['sitemap.xml'] = self.generate_xml_sitemap(index, listings)
        else:
            self.logger.debug("Skipping RSS feed and XML sitemap (no site_url).")

        if self.config.stylesheet:
            outputs[self.config.stylesheet_output.lstrip('/')] = self.compile_stylesheet()

        os.makedirs(self.config.output_dir, exist_ok=True)
        self.copy_assets_to_output()
        written = self.write_outputs(outputs)

        kinds = [r.document.kind for r in rendered]
        return BuildResult(
            posts=kinds.count('post'),
            drafts=kinds.count('draft'),
            pages=kinds.count('page'),
            listings=len(listings),
            written=written,
        )
