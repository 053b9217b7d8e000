"""
Front matter parsing.

A content file may start with a block of YAML metadata between two ``---``
lines. Everything after the closing line is the Markdown body, returned
untouched.
"""

import yaml
from typing import Any, Dict, Tuple

from .errors import MalformedFrontMatterError

DELIMITER = '---'
CLOSING_DELIMITERS = ('---', '...')


def parse_front_matter(text: str, path=None) -> Tuple[Dict[str, Any], str]:
    """
    Split raw file text into ``(metadata, body)``.

    Args:
        text: The raw content of the file
        path: Source path, only used for error messages

    Returns:
        Tuple of the metadata mapping and the body text
    """
    if text.startswith('\ufeff'):
        text = text[1:]

    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip() != DELIMITER:
        return {}, text

    for index in range(1, len(lines)):
        if lines[index].rstrip() in CLOSING_DELIMITERS:
            block = ''.join(lines[1:index])
            body = ''.join(lines[index + 1:])
            return _load_metadata(block, path), body

    raise MalformedFrontMatterError("front matter opened with '---' but never closed", path)


def _load_metadata(block, path):
    try:
        metadata = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise MalformedFrontMatterError(f"invalid YAML in front matter: {e}", path)

    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise MalformedFrontMatterError(
            f"front matter must be a mapping, got {type(metadata).__name__}", path
        )
    return {str(key): value for key, value in metadata.items()}


def dump_front_matter(metadata: Dict[str, Any], body: str) -> str:
    """Serialize metadata and body back into a front-matter document."""
    if not metadata:
        return f"{DELIMITER}\n{DELIMITER}\n{body}"
    block = yaml.safe_dump(dict(metadata), default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"{DELIMITER}\n{block}{DELIMITER}\n{body}"


def read_document_file(filepath) -> Tuple[Dict[str, Any], str]:
    """Read a content file as UTF-8 and parse its front matter."""
    with open(filepath, 'r', encoding='utf-8') as f:
        content = f.read()
    return parse_front_matter(content, filepath)
