#!/usr/bin/env python3
"""
Command-line interface for Quire - static site builder.
"""

import os
import sys
import time
import argparse
from importlib import resources

from . import __version__
from .core import Quire
from .errors import BuildError
from .settings import QuireSettings, SiteConfig

SAMPLE_POST = """---
layout: post
title: Hello, world
categories: notes
---

# Hello, world

This is the first post. Posts live in `content/posts/` and are named
`YYYY-MM-DD-slug.md`; the date in the filename is used unless the front
matter sets its own `date`.

```python
print("fenced code is kept verbatim")
```
"""

SAMPLE_DRAFT = """---
title: Work in progress
---

Drafts are only built with `quire --drafts`.
"""

SAMPLE_PAGE = """---
layout: page
title: About
---

This page was built with **Quire**.
"""

SAMPLE_STYLESHEET = """// Site stylesheet, compiled to assets/css/style.css
$measure: 42rem;

:root {
  --bg: #ffffff;
  --fg: #1a1a1a;
  --link: #0b5ed7;
}

@media (prefers-color-scheme: dark) {
  :root {
    --bg: #111111;
    --fg: #e8e8e8;
    --link: #6ea8fe;
  }
}

body {
  max-width: $measure;
  margin: 0 auto;
  background: var(--bg);
  color: var(--fg);

  a {
    color: var(--link);
    &:hover { text-decoration: none; }
  }
}
"""


def _write_sample(path, content, label):
    if os.path.exists(path):
        print(f"{label} already exists: {os.path.relpath(path)}")
        return
    with open(path, 'w', encoding='utf-8') as f:
        f.write(content)
    print(f"Created {label.lower()}: {os.path.relpath(path)}")


def create_starter_structure() -> None:
    """Create complete starter structure with templates, content, and a stylesheet."""
    current_dir = os.getcwd()

    directories = [
        'templates',
        'content/posts',
        'content/drafts',
        'assets',
    ]

    for directory in directories:
        dir_path = os.path.join(current_dir, directory)
        if os.path.exists(dir_path):
            print(f"Directory already exists: {directory}")
        else:
            os.makedirs(dir_path, exist_ok=True)
            print(f"Created directory: {directory}")

    # Copy template files from package
    template_dest = os.path.join(current_dir, 'templates')
    for entry in resources.files('quire_pkg').joinpath('templates').iterdir():
        if entry.name.endswith('.html'):
            _write_sample(os.path.join(template_dest, entry.name), entry.read_text(encoding='utf-8'), 'Template')

    today = time.strftime('%Y-%m-%d')
    _write_sample(os.path.join(current_dir, 'content', 'posts', f'{today}-hello-world.md'), SAMPLE_POST, 'Sample post')
    _write_sample(os.path.join(current_dir, 'content', 'drafts', 'work-in-progress.md'), SAMPLE_DRAFT, 'Sample draft')
    _write_sample(os.path.join(current_dir, 'content', 'about.md'), SAMPLE_PAGE, 'Sample page')
    _write_sample(os.path.join(current_dir, 'style.scss'), SAMPLE_STYLESHEET, 'Stylesheet')

    print("\nStarter structure created successfully!")
    print("\nNext steps:")
    print("1. Edit the configuration file (quire.yml)")
    print("2. Customize layouts in the 'templates/' directory")
    print("3. Write posts in 'content/posts/' and pages anywhere else under 'content/'")
    print("4. Run 'quire' to build your site")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Quire - Static Site Builder')
    parser.add_argument('--output', type=str,
                        help='Output directory for generated site')
    parser.add_argument('--content', type=str,
                        help='Content directory containing markdown files')
    parser.add_argument('--templates', type=str,
                        help='Templates (layouts) directory')
    parser.add_argument('--assets', type=str,
                        help='Assets directory to copy to output')
    parser.add_argument('--stylesheet', type=str,
                        help='Stylesheet source to compile')
    parser.add_argument('--posts-per-page', type=int,
                        help='Number of posts per listing page (0 disables pagination)')
    parser.add_argument('--site-title', type=str, help='Site title for metadata')
    parser.add_argument('--site-url', type=str,
                        help='Base URL, enables the RSS feed and sitemap')
    parser.add_argument('--drafts', dest='include_drafts', action='store_true', default=None,
                        help='Include drafts in the build')
    parser.add_argument('--minify', action='store_true', default=None,
                        help='Minify the compiled stylesheet')
    parser.add_argument('--workers', type=int,
                        help='Number of rendering threads for larger sites')
    parser.add_argument('--exclude', type=str,
                        help='Comma-separated list of content patterns to skip')
    parser.add_argument('--init', type=str, choices=['yml', 'yaml', 'json'],
                        help='Create a sample configuration file and starter site')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    # Handle init command
    if args.init:
        settings_loader = QuireSettings()
        config_path = settings_loader.create_sample_config(args.init)
        print(f"Created sample configuration file: {config_path}")

        print("\nCreating starter project structure...")
        create_starter_structure()
        return

    overall_start_time = time.time()

    try:
        # Load settings from configuration file
        settings_loader = QuireSettings()
        settings_loader.load_settings()

        # Command line arguments take precedence over the config file
        args_dict = {k: v for k, v in vars(args).items() if v is not None and k != 'init'}
        final_settings = settings_loader.merge_with_args(args_dict)

        config = SiteConfig.from_settings(final_settings)
        generator = Quire(config)
        result = generator.build()
    except (BuildError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Show build statistics
    total_time = time.time() - overall_start_time
    generator.logger.info(f"Site build completed in {total_time:.6f} seconds.")
    generator.logger.info(f"Total posts generated: {result.posts}")
    generator.logger.info(f"Total pages generated: {result.pages}")
    if config.include_drafts:
        generator.logger.info(f"Total drafts generated: {result.drafts}")
    generator.logger.info(f"Total listing pages generated: {result.listings}")


if __name__ == '__main__':
    main()
