"""Discovery of anchors and images that reference stored files."""

import re
from html.parser import HTMLParser
from typing import Iterator

from allyfilter.models.files import CandidateElement, ElementKind
from allyfilter.services.references import DEFAULT_MARKER


class FileLinkCollector(HTMLParser):
    """
    Collects anchors and images whose URL contains the file marker.

    Records each element's source offsets so its markup can be taken verbatim
    from the document instead of being re-serialized.
    """

    def __init__(self, html: str, marker: str = DEFAULT_MARKER) -> None:
        super().__init__()
        self.html = html
        self.marker = marker
        self.elements: list[CandidateElement] = []
        self._line_starts = [0] + [m.end() for m in re.finditer("\n", html)]
        # (start offset, url, start tag text) of the anchor being read
        self._open_link: tuple[int, str, str] | None = None

    def _offset(self) -> int:
        """Absolute offset of the construct currently being handled."""
        line, column = self.getpos()
        return self._line_starts[line - 1] + column

    def _matching_url(self, attrs: list[tuple[str, str | None]], name: str) -> str | None:
        for attr, value in attrs:
            if attr == name and value and self.marker in value:
                return value
        return None

    def _add(self, kind: ElementKind, url: str, start: int, end: int) -> None:
        self.elements.append(
            CandidateElement(kind=kind, url=url, markup=self.html[start:end], start=start, end=end)
        )

    def _close_open_link(self) -> None:
        """Record an anchor that never got its own end tag, by its start tag only."""
        if self._open_link is None:
            return
        start, url, starttag = self._open_link
        self._add(ElementKind.LINK, url, start, start + len(starttag))
        self._open_link = None

    def _handle_tag(self, tag: str, attrs: list[tuple[str, str | None]], self_closing: bool) -> None:
        starttag = self.get_starttag_text() or ""
        start = self._offset()

        if tag == "a":
            # An anchor cannot contain another one; a new <a> closes the previous
            self._close_open_link()
            url = self._matching_url(attrs, ElementKind.LINK.url_attribute)
            if url is None:
                return
            if self_closing:
                self._add(ElementKind.LINK, url, start, start + len(starttag))
            else:
                self._open_link = (start, url, starttag)
        elif tag == "img":
            url = self._matching_url(attrs, ElementKind.IMAGE.url_attribute)
            if url is not None:
                self._add(ElementKind.IMAGE, url, start, start + len(starttag))

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._handle_tag(tag, attrs, self_closing=False)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._handle_tag(tag, attrs, self_closing=True)

    def handle_endtag(self, tag: str) -> None:
        if tag != "a" or self._open_link is None:
            return
        start, url, _ = self._open_link
        close = self.html.find(">", self._offset())
        end = close + 1 if close != -1 else len(self.html)
        self._add(ElementKind.LINK, url, start, end)
        self._open_link = None

    def close(self) -> None:
        super().close()
        self._close_open_link()


def scan_elements(html: str, marker: str = DEFAULT_MARKER) -> Iterator[CandidateElement]:
    """
    Yield the anchors and images of a document that reference stored files.

    Elements are yielded in document order. Documents without the marker are
    not parsed at all.
    """
    if marker not in html:
        return

    collector = FileLinkCollector(html, marker)
    collector.feed(html)
    collector.close()

    yield from sorted(collector.elements, key=lambda element: element.start)
