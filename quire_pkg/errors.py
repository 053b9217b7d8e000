"""
Exceptions raised while building a Quire site.

Every error aborts the build. Each one carries the path of the offending
source file (when there is one) so the content can be fixed.
"""


class BuildError(Exception):
    """Base class for all errors that abort a site build."""

    def __init__(self, message, path=None):
        self.path = str(path) if path is not None else None
        self.message = message
        super().__init__(f"{self.path}: {message}" if self.path else message)


class ConfigurationError(BuildError):
    """Invalid settings (unknown kind, bad permalink pattern, ...)."""


class MalformedFrontMatterError(BuildError):
    pass


class EmptyDocumentError(BuildError):
    pass


class MissingDateError(BuildError):
    pass


class DuplicateSlugError(BuildError):
    """Two outputs resolve to the same path within one build."""

    def __init__(self, output_path, first, second):
        self.output_path = output_path
        self.first = str(first)
        self.second = str(second)
        super().__init__(
            f"output path '{output_path}' is produced by both {self.first} and {self.second}"
        )


class TemplateResolutionError(BuildError):
    """A document names a layout that is not registered (or cannot be loaded)."""

    def __init__(self, layout, path=None, reason=None):
        self.layout = layout
        message = f"unknown layout '{layout}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message, path)


class RenderError(BuildError):
    """Markdown conversion or template rendering failed for a document."""

    def __init__(self, path, cause):
        self.cause = cause
        super().__init__(f"render failed: {cause}", path)


class StylesheetError(BuildError):
    pass
