"""Tests for content discovery, classification and ordering."""

import os
import random
import pytest
from datetime import datetime, timezone, timedelta

from quire_pkg.errors import (
    ConfigurationError,
    DuplicateSlugError,
    EmptyDocumentError,
    MalformedFrontMatterError,
    MissingDateError,
)
from quire_pkg.index import ContentIndex, parse_date, slugify, split_categories, url_to_output_path
from quire_pkg.settings import QuireSettings, SiteConfig

PERMALINKS = QuireSettings.DEFAULT_SETTINGS['permalinks']


class TestContentIndex:
    """Test cases for ContentIndex."""

    def test_dated_post_scenario(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir)).build()

        example = next(post for post in index.posts if post.slug == 'example')
        assert example.kind == 'post'
        assert example.layout == 'post'
        assert example.title == 'Example'
        assert example.date == datetime(2021, 6, 2)
        assert example.url == '/2021/example/'
        assert example.output_path == '2021/example/index.html'
        assert example.body == "# Hi\n"

        # Eve (2021-07-15) > Example (2021-06-02) > Older (2021-05-01)
        assert [post.slug for post in index.posts] == ['eve', 'example', 'older']

    def test_front_matter_date_wins_over_filename(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir)).build()

        eve = index.posts[0]
        assert eve.date == datetime(2021, 7, 15)
        assert eve.url == '/2021/eve/'

    def test_pages_are_classified_and_undated(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir)).build()

        assert [page.source for page in index.pages] == ['about.md']
        about = index.pages[0]
        assert about.kind == 'page'
        assert about.date is None
        assert about.url == '/about/'

    def test_drafts_skipped_by_default(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir)).build()

        assert index.drafts == []
        assert all(document.kind != 'draft' for document in index.documents)
        assert all(document.kind == 'post' for document in index.listed)

    def test_drafts_not_parsed_when_excluded(self, content_dir, make_config, write_file):
        write_file(content_dir, 'drafts/broken.md', "---\ntitle: never closed\n")

        index = ContentIndex(make_config(content_dir)).build()

        assert index.drafts == []

    def test_drafts_included(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir, include_drafts=True)).build()

        assert [draft.slug for draft in index.drafts] == ['idea']
        draft = index.drafts[0]
        assert draft.kind == 'draft'
        assert draft.url == '/drafts/idea/'
        # Undated drafts take the file's modification time
        assert draft.date is not None
        assert draft in index.documents
        assert draft in index.listed

    def test_ties_broken_by_path(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-01-01-b.md', "Second by path.\n")
        write_file(content_dir, 'posts/2021-01-01-a.md', "First by path.\n")
        write_file(content_dir, 'posts/2021-01-02-c.md', "Newest.\n")

        index = ContentIndex(make_config(content_dir)).build()

        assert [post.slug for post in index.posts] == ['c', 'a', 'b']

    def test_distinct_dates_sorted_strictly_descending(self, content_dir, make_config, write_file):
        rng = random.Random(7)
        start = datetime(2015, 1, 1)
        days = rng.sample(range(0, 3000), 40)
        for number, offset in enumerate(days):
            day = start + timedelta(days=offset)
            write_file(content_dir, f"posts/{day:%Y-%m-%d}-post-{number}.md", f"Post {number}\n")

        index = ContentIndex(make_config(content_dir, permalinks={**PERMALINKS, 'post': '/{year}/{month}/{day}/{slug}/'})).build()

        dates = [post.date for post in index.posts]
        assert len(dates) == 40
        assert all(newer > older for newer, older in zip(dates, dates[1:]))

    def test_post_without_date_raises(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/undated.md', "---\ntitle: Undated\n---\nNo date anywhere.\n")

        with pytest.raises(MissingDateError) as exc_info:
            ContentIndex(make_config(content_dir)).build()

        assert exc_info.value.path.endswith('undated.md')

    def test_post_with_unparseable_date_raises(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-01-01-bad.md', "---\ndate: someday\n---\nBody\n")

        with pytest.raises(MissingDateError, match="unparseable"):
            ContentIndex(make_config(content_dir)).build()

    def test_invalid_filename_date_raises(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-13-45-bad.md', "Body\n")

        with pytest.raises(MissingDateError):
            ContentIndex(make_config(content_dir)).build()

    def test_duplicate_output_paths_raise(self, content_dir, make_config, write_file):
        first = write_file(content_dir, 'posts/2021-06-02-example.md', "First.\n")
        second = write_file(content_dir, 'posts/2021-07-01-example.md', "Second.\n")

        with pytest.raises(DuplicateSlugError) as exc_info:
            ContentIndex(make_config(content_dir)).build()

        error = exc_info.value
        assert error.output_path == '2021/example/index.html'
        assert {error.first, error.second} == {str(first), str(second)}

    def test_malformed_front_matter_aborts(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-01-01-open.md', "---\ntitle: Open\n")

        with pytest.raises(MalformedFrontMatterError):
            ContentIndex(make_config(content_dir)).build()

    def test_empty_body_raises(self, content_dir, make_config, write_file):
        write_file(content_dir, 'notes.md', "---\ntitle: Nothing\n---\n\n   \n")

        with pytest.raises(EmptyDocumentError):
            ContentIndex(make_config(content_dir)).build()

    def test_missing_layout_falls_back_to_default(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-01-01-plain.md', "Plain post.\n")
        write_file(content_dir, 'plain.md', "Plain page.\n")

        config = make_config(content_dir, default_layouts={'post': 'post', 'draft': 'post'})
        index = ContentIndex(config).build()

        assert index.posts[0].layout == 'post'
        assert index.pages[0].layout == 'default'

    def test_custom_classification_rules(self, content_dir, make_config, write_file):
        write_file(content_dir, 'articles/2020-02-02-custom.md', "Custom area.\n")
        write_file(content_dir, 'wip/later.md', "Not yet.\n")

        config = make_config(content_dir, kinds={'articles': 'post', 'wip': 'draft'})
        index = ContentIndex(config).build()

        assert [post.slug for post in index.posts] == ['custom']
        assert index.pages == []

    def test_nested_pages_and_index(self, content_dir, make_config, write_file):
        write_file(content_dir, 'index.md', "Home page.\n")
        write_file(content_dir, 'docs/guide.md', "Guide.\n")
        write_file(content_dir, 'docs/index.md', "Docs home.\n")

        index = ContentIndex(make_config(content_dir)).build()

        urls = {page.source: page.url for page in index.pages}
        assert urls == {'index.md': '/', 'docs/guide.md': '/docs/guide/', 'docs/index.md': '/docs/'}

    def test_permalink_and_slug_overrides(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-03-04-file-name.md', "---\nslug: Better Name\n---\nBody\n")
        write_file(content_dir, 'posts/2021-03-05-fixed.md', "---\npermalink: /fixed/location.html\n---\nBody\n")

        index = ContentIndex(make_config(content_dir)).build()

        urls = {post.source: post.url for post in index.posts}
        assert urls['posts/2021-03-04-file-name.md'] == '/2021/better-name/'
        assert urls['posts/2021-03-05-fixed.md'] == '/fixed/location.html'
        assert index.posts[0].output_path == 'fixed/location.html'

    def test_configurable_post_permalink(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-06-02-example.md', "---\ncategories: notes\n---\nBody\n")

        config = make_config(content_dir, permalinks={**PERMALINKS, 'post': '/{categories}/{year}/{month}/{day}/{slug}.html'})
        index = ContentIndex(config).build()

        assert index.posts[0].url == '/notes/2021/06/02/example.html'

    def test_invalid_permalink_pattern(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-06-02-example.md', "Body\n")

        config = make_config(content_dir, permalinks={**PERMALINKS, 'post': '/{unknown}/'})
        with pytest.raises(ConfigurationError):
            ContentIndex(config).build()

    def test_hidden_and_excluded_files_skipped(self, content_dir, make_config, write_file):
        write_file(content_dir, '.hidden.md', "Hidden.\n")
        write_file(content_dir, '.git/notes.md', "Hidden dir.\n")
        write_file(content_dir, 'README.md', "Excluded.\n")
        write_file(content_dir, 'notes.txt', "Not markdown.\n")
        write_file(content_dir, 'kept.markdown', "Kept.\n")

        index = ContentIndex(make_config(content_dir, exclude=['README.md'])).build()

        assert [page.source for page in index.pages] == ['kept.markdown']

    def test_missing_content_dir(self, temp_dir, make_config):
        with pytest.raises(ConfigurationError):
            ContentIndex(make_config(os.path.join(temp_dir, 'nope'))).build()

    def test_categories_and_neighbours(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir)).build()

        categories = index.categories()
        assert list(categories) == ['notes', 'python']
        assert [post.slug for post in categories['notes']] == ['example', 'older']
        assert [post.slug for post in categories['python']] == ['older']

        eve, example, older = index.posts
        assert index.neighbours(example) == (older, eve)
        assert index.neighbours(eve) == (example, None)
        assert index.neighbours(older) == (None, example)

    def test_categories_sharing_a_slug_are_merged(self, content_dir, make_config, write_file):
        write_file(content_dir, 'posts/2021-02-01-both.md', "---\ncategories: [C++, C]\n---\nBoth.\n")
        write_file(content_dir, 'posts/2021-01-01-plain.md', "---\ncategories: c\n---\nPlain.\n")

        index = ContentIndex(make_config(content_dir)).build()

        categories = index.categories()
        assert list(categories) == ['C++']
        assert [post.slug for post in categories['C++']] == ['both', 'plain']

    def test_listed_and_neighbours_with_drafts(self, mock_content_dir, make_config):
        index = ContentIndex(make_config(mock_content_dir, include_drafts=True)).build()

        draft = index.drafts[0]
        assert index.listed is index.listed
        assert index.listed[0] is draft
        assert index.neighbours(draft) == (index.posts[0], None)
        assert index.neighbours(index.pages[0]) == (None, None)


class TestSiteConfigKinds:

    def test_unknown_kind_rejected(self, content_dir):
        with pytest.raises(ConfigurationError, match="unknown kind"):
            SiteConfig(content_dir=str(content_dir), kinds={'posts': 'article'})


class TestHelpers:

    def test_slugify(self):
        assert slugify('Hello, World!') == 'hello-world'
        assert slugify('  many   spaces_and_underscores ') == 'many-spaces-and-underscores'
        assert slugify('already-a-slug') == 'already-a-slug'

    def test_parse_date_formats(self):
        assert parse_date('2023-01-01') == datetime(2023, 1, 1)
        assert parse_date('2023-01-01T12:00:00') == datetime(2023, 1, 1, 12, 0, 0)
        assert parse_date('2023-01-01 08:30') == datetime(2023, 1, 1, 8, 30)
        assert parse_date('Jan 01, 2023') == datetime(2023, 1, 1)
        assert parse_date('not a date') is None
        assert parse_date(None) is None

    def test_parse_date_aware_converted_to_utc(self):
        aware = datetime(2023, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert parse_date(aware) == datetime(2023, 1, 1, 10, 0)

    def test_url_to_output_path(self):
        assert url_to_output_path('/') == 'index.html'
        assert url_to_output_path('/2021/example/') == '2021/example/index.html'
        assert url_to_output_path('/about') == 'about/index.html'
        assert url_to_output_path('/feed.xml') == 'feed.xml'

    def test_split_categories(self):
        assert split_categories('notes python') == ('notes', 'python')
        assert split_categories(['notes', 'web dev']) == ('notes', 'web dev')
        assert split_categories(None) == ()
