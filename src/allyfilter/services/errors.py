"""Exceptions raised while resolving file links."""

from allyfilter.models.files import FileReference


class FilterError(Exception):
    """Base class for per-element failures. Never fatal to a filter pass."""


class MalformedReference(FilterError):
    """The URL does not have a supported file-serving shape."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"url not supported - {url} ({reason})")
        self.url = url
        self.reason = reason


class ContextResolutionError(FilterError):
    """The context id in a URL does not resolve to a known context."""

    def __init__(self, context_id: int) -> None:
        super().__init__(f"Context {context_id} does not exist")
        self.context_id = context_id


class FileNotFound(FilterError):
    """The referenced file is not part of its storage area."""

    def __init__(self, ref: FileReference) -> None:
        super().__init__(f"Failed to get the file {ref.file_path}")
        self.ref = ref
