"""Markdown to HTML conversion built on mistune."""

import re
import mistune

FENCE_OPEN = re.compile(r'^ {0,3}(`{3,}|~{3,})(.*)$')
# Blockquote marker or list item marker in front of a line
CONTAINER_PREFIX = re.compile(r'^ {0,3}(?:> ?|(?:[-*+]|\d{1,9}[.)])(?: +|$))')


class MarkdownError(ValueError):
    """Raised for Markdown that cannot be converted faithfully."""


class CodeBlockRenderer(mistune.HTMLRenderer):
    """HTML renderer that keeps fenced code verbatim and allows raw HTML."""

    def __init__(self):
        super().__init__(escape=False)

    def block_code(self, code, info=None):
        escaped_code = mistune.escape(code)
        if info:
            lang = info.strip().split(None, 1)[0]
            return '<pre><code class="language-{}">{}</code></pre>\n'.format(
                mistune.escape(lang), escaped_code
            )
        return '<pre><code>{}</code></pre>\n'.format(escaped_code)


def create_markdown_parser():
    """Create a Mistune markdown parser with the code block renderer."""
    return mistune.create_markdown(
        renderer=CodeBlockRenderer(),
        plugins=['table', 'task_lists', 'strikethrough']
    )


def strip_containers(line):
    """Remove blockquote and list item markers from the start of a line."""
    while True:
        match = CONTAINER_PREFIX.match(line)
        if not match:
            return line
        line = line[match.end():]


def check_fences(text):
    """Fail on a code fence that is never closed, including inside quotes and lists."""
    open_fence = None
    open_line = 0
    nested = False
    for number, line in enumerate(text.splitlines(), start=1):
        if open_fence is None:
            content = strip_containers(line)
            match = FENCE_OPEN.match(content)
            if not match:
                continue
            marker, info = match.groups()
            if marker[0] == '`' and '`' in info:
                # Inline code span, not a fence
                continue
            open_fence, open_line = marker, number
            nested = content != line
        else:
            # Lines of a top-level fence are literal code, markers included
            if nested:
                line = strip_containers(line)
            stripped = line.strip()
            if (stripped and set(stripped) == {open_fence[0]}
                    and len(stripped) >= len(open_fence)
                    and len(line) - len(line.lstrip(' ')) <= 3):
                open_fence = None

    if open_fence is not None:
        raise MarkdownError(f"unterminated code fence opened on line {open_line}")


class MarkdownConverter:
    """Convert Markdown bodies to HTML."""

    def __init__(self):
        self.parser = create_markdown_parser()

    def convert(self, text):
        check_fences(text)
        return self.parser(text)
