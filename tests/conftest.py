"""Test configuration and fixtures for Quire tests."""

import pytest
import tempfile
import shutil
import os
import logging
from pathlib import Path

from quire_pkg.settings import SiteConfig


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def content_dir(temp_dir):
    """An empty content directory with a posts area."""
    content_dir = Path(temp_dir) / 'content'
    (content_dir / 'posts').mkdir(parents=True)
    return content_dir


@pytest.fixture
def mock_content_dir(content_dir):
    """Create a mock content directory structure."""
    posts_dir = content_dir / 'posts'
    drafts_dir = content_dir / 'drafts'
    drafts_dir.mkdir()

    (posts_dir / '2021-06-02-example.md').write_text("""---
layout: post
title: Example
categories: notes
---
# Hi
""")

    (posts_dir / '2021-05-01-older.md').write_text("""---
title: Older post
categories: [notes, python]
---
Some *older* text.
""")

    # Front matter date wins over the filename
    (posts_dir / '2020-12-24-eve.md').write_text("""---
title: Eve
date: 2021-07-15
---
Front matter date wins.
""")

    (drafts_dir / 'idea.md').write_text("""---
title: Idea
---
A draft that is not ready yet.
""")

    (content_dir / 'about.md').write_text("""---
layout: page
title: About
---
About this blog.
""")

    return str(content_dir)


@pytest.fixture
def mock_templates_dir(temp_dir):
    """Create a mock templates directory."""
    templates_dir = Path(temp_dir) / 'templates'
    templates_dir.mkdir()

    (templates_dir / 'base.html').write_text("""<!DOCTYPE html>
<html>
<head>
    <title>{{ page.title }}</title>
</head>
<body>
    {% block content %}{{ content }}{% endblock %}
</body>
</html>""")

    (templates_dir / 'post.html').write_text("""{% extends "base.html" %}
{% block content %}
<article class="post-layout">
    <h1 class="title">{{ page.title }}</h1>
    {{ content }}
</article>
{% endblock %}""")

    (templates_dir / 'page.html').write_text("""{% extends "base.html" %}
{% block content %}
<div class="page-layout">
    {{ content }}
</div>
{% endblock %}""")

    (templates_dir / 'listing.html').write_text("""{% extends "base.html" %}
{% block content %}
<ul class="listing">
    {% for post in page.paginator.posts %}
    <li><a href="{{ post.url }}">{{ post.title }}</a> {{ post.excerpt }}</li>
    {% endfor %}
</ul>
<span class="page-number">{{ page.paginator.page }}/{{ page.paginator.total_pages }}</span>
{% endblock %}""")

    return str(templates_dir)


@pytest.fixture
def mock_output_dir(temp_dir):
    """Create a mock output directory."""
    output_dir = Path(temp_dir) / 'output'
    output_dir.mkdir()
    return str(output_dir)


@pytest.fixture
def make_config(mock_templates_dir, mock_output_dir):
    """Build a SiteConfig pointing at the mock directories."""
    def factory(content_dir, **overrides):
        settings = {
            'content_dir': str(content_dir),
            'templates_dir': mock_templates_dir,
            'output_dir': mock_output_dir,
            'log_dir': None,
        }
        settings.update(overrides)
        return SiteConfig(**settings)
    return factory


def write(root, relative_path, text):
    """Write a content file, creating parent directories."""
    path = Path(root) / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')
    return path


@pytest.fixture
def write_file():
    return write


def list_output(output_dir):
    """All files under an output directory, relative and sorted."""
    found = []
    for root, _, files in os.walk(output_dir):
        for name in files:
            found.append(os.path.relpath(os.path.join(root, name), output_dir).replace(os.sep, '/'))
    return sorted(found)


@pytest.fixture
def output_files():
    return list_output


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers added by Quire.setup_logging between tests."""
    yield
    logger = logging.getLogger('Quire')
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
