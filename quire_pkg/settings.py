#!/usr/bin/env python3
"""
Settings loader for Quire static site generator.
Supports configuration from quire.yml, quire.yaml, or quire.json files.
"""

import os
import json
import yaml
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple

from .errors import ConfigurationError

KINDS = ('post', 'draft', 'page')


class QuireSettings:
    """Load and manage Quire configuration settings."""

    # Default configuration
    DEFAULT_SETTINGS = {
        'output': 'output',
        'content': 'content',
        'templates': 'templates',
        'assets': None,
        'stylesheet': None,
        'stylesheet_output': 'assets/css/style.css',
        'stylesheet_environment': None,
        'site_url': None,
        'site_title': None,
        'site_description': None,
        'include_drafts': False,
        'kinds': {
            'posts': 'post',
            '_posts': 'post',
            'drafts': 'draft',
            '_drafts': 'draft',
        },
        'permalinks': {
            'post': '/{year}/{slug}/',
            'draft': '/drafts/{slug}/',
            'page': '/{path}{slug}/',
        },
        'category_permalink': '/category/{category}/',
        'layouts': {},
        'default_layouts': {
            'post': 'post',
            'draft': 'post',
            'page': 'page',
        },
        'listing_layout': 'listing',
        'posts_per_page': 10,
        'home': True,
        'exclude': [],
        'minify': False,
        'workers': None,
        'log_dir': 'logs',
    }

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['quire.yml', 'quire.yaml', 'quire.json']

    def __init__(self, config_dir: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
        """
        self.config_dir = config_dir or os.getcwd()
        self.settings = self.DEFAULT_SETTINGS.copy()
        self.config_file_path = None

    def load_settings(self) -> Dict[str, Any]:
        """
        Load settings from configuration file if it exists.

        Returns:
            Dictionary of configuration settings
        """
        config_file = self._find_config_file()

        if config_file:
            self.config_file_path = config_file
            loaded_settings = self._load_config_file(config_file)
            if loaded_settings:
                if not isinstance(loaded_settings, dict):
                    raise ConfigurationError("configuration must be a mapping", config_file)
                # Merge with defaults, giving preference to loaded settings
                self.settings.update(loaded_settings)
                print(f"Loaded configuration from: {os.path.relpath(config_file)}")

        return self.settings.copy()

    def _find_config_file(self) -> Optional[str]:
        """
        Find the first available configuration file.

        Returns:
            Path to config file or None if not found
        """
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dictionary of configuration settings
        """
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    return yaml.safe_load(f) or {}
                elif file_ext == '.json':
                    return json.load(f) or {}
                else:
                    raise ConfigurationError(f"Unsupported config file format: {file_ext}", config_path)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}", config_path)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}", config_path)

    def create_sample_config(self, file_format: str = 'yml') -> str:
        """
        Create a sample configuration file.

        Args:
            file_format: Format for config file ('yml', 'yaml', or 'json')

        Returns:
            Path to created sample config file
        """
        sample_config = {
            'site_url': 'https://example.com',
            'site_title': 'My Blog',
            'site_description': 'Notes and posts',
            'content': 'content',
            'output': 'output',
            'templates': 'templates',
            'assets': 'assets',
            'stylesheet': 'style.scss',
            'posts_per_page': 10,
            'include_drafts': False,
            'minify': False,
        }

        filename = f'quire.{file_format}'
        config_path = os.path.join(self.config_dir, filename)

        with open(config_path, 'w', encoding='utf-8') as f:
            if file_format in ['yml', 'yaml']:
                # Custom YAML output with comments
                f.write("# Quire Configuration File\n\n")
                f.write("# Site information\n")
                f.write("site_url: https://example.com\n")
                f.write("site_title: My Blog\n")
                f.write("site_description: Notes and posts\n\n")
                f.write("# Build settings\n")
                f.write("content: content\n")
                f.write("output: output\n")
                f.write("templates: templates\n")
                f.write("assets: assets\n")
                f.write("stylesheet: style.scss\n\n")
                f.write("# Listing settings\n")
                f.write("posts_per_page: 10  # 0 disables pagination\n\n")
                f.write("# URL scheme\n")
                f.write("permalinks:\n")
                f.write("  post: /{year}/{slug}/\n")
                f.write("  page: /{path}{slug}/\n\n")
                f.write("# Development settings\n")
                f.write("include_drafts: false\n")
                f.write("minify: false\n")
            elif file_format == 'json':
                json.dump(sample_config, f, indent=2)

        return config_path

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.

        Args:
            args_dict: Dictionary of command-line arguments

        Returns:
            Merged configuration dictionary
        """
        merged = self.settings.copy()

        # Override with non-None command line arguments
        for key, value in args_dict.items():
            if value is not None:
                if key == 'exclude' and isinstance(value, str):
                    # Convert comma-separated string to list
                    merged[key] = [pattern.strip() for pattern in value.split(',')]
                else:
                    merged[key] = value

        return merged


def _merged_mapping(settings, key):
    """Overlay a user mapping on top of the default one for ``key``."""
    value = settings.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping")
    merged = dict(QuireSettings.DEFAULT_SETTINGS[key])
    merged.update(value)
    return merged


@dataclass(frozen=True)
class SiteConfig:
    """Immutable build configuration threaded through the whole pipeline."""

    content_dir: str = 'content'
    output_dir: str = 'output'
    templates_dir: Optional[str] = 'templates'
    assets_dir: Optional[str] = None
    stylesheet: Optional[str] = None
    stylesheet_output: str = 'assets/css/style.css'
    stylesheet_environment: Optional[Dict[str, Any]] = None
    site_url: Optional[str] = None
    site_title: Optional[str] = None
    site_description: Optional[str] = None
    include_drafts: bool = False
    kinds: Dict[str, str] = field(default_factory=lambda: dict(QuireSettings.DEFAULT_SETTINGS['kinds']))
    permalinks: Dict[str, str] = field(default_factory=lambda: dict(QuireSettings.DEFAULT_SETTINGS['permalinks']))
    category_permalink: str = '/category/{category}/'
    layouts: Dict[str, str] = field(default_factory=dict)
    default_layouts: Dict[str, str] = field(default_factory=lambda: dict(QuireSettings.DEFAULT_SETTINGS['default_layouts']))
    listing_layout: str = 'listing'
    posts_per_page: int = 10
    home: bool = True
    exclude: Tuple[str, ...] = ()
    minify: bool = False
    workers: Optional[int] = None
    log_dir: Optional[str] = None

    def __post_init__(self):
        for pattern, kind in self.kinds.items():
            if kind not in KINDS:
                raise ConfigurationError(f"unknown kind '{kind}' for content area '{pattern}'")
        for kind in KINDS:
            if kind not in self.permalinks:
                raise ConfigurationError(f"no permalink pattern for kind '{kind}'")
        if self.posts_per_page is None or self.posts_per_page < 0:
            raise ConfigurationError("'posts_per_page' must be zero or a positive integer")
        if self.site_url:
            object.__setattr__(self, 'site_url', self.site_url.rstrip('/'))
        object.__setattr__(self, 'exclude', tuple(self.exclude or ()))

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'SiteConfig':
        """Build a config from a (merged) settings dictionary."""
        output_dir = settings.get('output') or 'output'
        if output_dir.startswith('~/'):
            output_dir = os.path.expanduser(output_dir)

        return cls(
            content_dir=settings.get('content') or 'content',
            output_dir=output_dir,
            templates_dir=settings.get('templates'),
            assets_dir=settings.get('assets'),
            stylesheet=settings.get('stylesheet'),
            stylesheet_output=settings.get('stylesheet_output') or 'assets/css/style.css',
            stylesheet_environment=settings.get('stylesheet_environment'),
            site_url=settings.get('site_url'),
            site_title=settings.get('site_title'),
            site_description=settings.get('site_description'),
            include_drafts=bool(settings.get('include_drafts')),
            kinds=_merged_mapping(settings, 'kinds'),
            permalinks=_merged_mapping(settings, 'permalinks'),
            category_permalink=settings.get('category_permalink') or '/category/{category}/',
            layouts=dict(settings.get('layouts') or {}),
            default_layouts=_merged_mapping(settings, 'default_layouts'),
            listing_layout=settings.get('listing_layout') or 'listing',
            posts_per_page=int(settings.get('posts_per_page') or 0),
            home=bool(settings.get('home', True)),
            exclude=settings.get('exclude') or (),
            minify=bool(settings.get('minify')),
            workers=settings.get('workers'),
            log_dir=settings.get('log_dir'),
        )
