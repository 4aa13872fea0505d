"""Decomposition of file-serving URLs into file references."""

import re
from urllib.parse import unquote

from allyfilter.models.files import FileReference, UrlForm
from allyfilter.services.errors import MalformedReference

DEFAULT_MARKER = "pluginfile.php"

# "/<contextid>/<rest>" as found after the marker
_CONTEXT_PATH = re.compile(r"^/([0-9]+)/(.*)$")
_ITEM_ID = re.compile(r"[0-9]+")


def classify_segments(segments: list[str]) -> UrlForm:
    """Classify the path segments that follow the context id."""
    if len(segments) == 3:
        return UrlForm.THREE_SEGMENT
    if len(segments) == 4:
        return UrlForm.FOUR_SEGMENT
    return UrlForm.UNSUPPORTED


def _file_query_param(query: str) -> str | None:
    """Return the raw (still percent-encoded) 'file' parameter of a query string, if any."""
    for part in query.split("&"):
        name, _, value = part.partition("=")
        if name == "file" and value:
            return value
    return None


def _locate_file_path(url: str, marker: str) -> tuple[str, bool]:
    """Return the path after the last marker and whether it came from the 'file' query parameter."""
    index = url.rfind(marker)
    if index == -1:
        raise MalformedReference(url, "missing file marker")

    rest = url[index + len(marker) :].split("#", 1)[0]
    path, _, query = rest.partition("?")

    if path.strip("/"):
        return path, False

    from_query = _file_query_param(query)
    if from_query is None:
        raise MalformedReference(url, "no file path after marker")
    return from_query, True


def extract_file_path(url: str, marker: str = DEFAULT_MARKER) -> str:
    """
    Return the path that follows the marker, e.g. "/7/mod_resource/content/0/doc.pdf".

    Supports both "pluginfile.php/7/..." and "pluginfile.php?file=/7/...".
    The query string and fragment are not part of the returned path. A path
    taken from the 'file' parameter is returned decoded.
    """
    path, from_query = _locate_file_path(url, marker)
    return unquote(path) if from_query else path


def decompose_url(url: str, marker: str = DEFAULT_MARKER) -> FileReference:
    """
    Decompose a file-serving URL into a FileReference.

    Segments are percent-decoded exactly once: after splitting for slash
    arguments, before splitting for the 'file' query parameter (which may
    encode its slashes).

    Args:
        url: URL containing the marker, e.g.
            "https://x/pluginfile.php/7/mod_resource/content/0/doc.pdf"
        marker: The file-serving marker

    Returns:
        The referenced file

    Raises:
        MalformedReference: If the URL shape is not supported
    """
    path, from_query = _locate_file_path(url, marker)
    if from_query:
        path = unquote(path)

    match = _CONTEXT_PATH.match(path)
    if match is None:
        raise MalformedReference(url, "missing context id")

    context_id = int(match.group(1))
    segments = match.group(2).split("/")
    form = classify_segments(segments)

    if form is UrlForm.THREE_SEGMENT:
        component, file_area, filename = segments
        item_id = "0"
    elif form is UrlForm.FOUR_SEGMENT:
        component, file_area, item_id, filename = segments
    else:
        raise MalformedReference(url, f"{len(segments)} path segments")

    if not all(segments):
        raise MalformedReference(url, "empty path segment")
    if not _ITEM_ID.fullmatch(item_id):
        raise MalformedReference(url, f"item id {item_id!r} is not numeric")

    if not from_query:
        component, file_area, filename = unquote(component), unquote(file_area), unquote(filename)

    return FileReference(
        context_id=context_id,
        component=component,
        file_area=file_area,
        item_id=int(item_id),
        filename=filename,
        form=form,
    )
