"""Rewriting of file links and images into accessibility wrappers."""

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Literal

from allyfilter.config import Settings
from allyfilter.models.files import CandidateElement, ElementKind, FilterStats, PermissionSet, WrapperContext
from allyfilter.services.errors import ContextResolutionError, FileNotFound, MalformedReference
from allyfilter.services.file_index import AreaFileIndex
from allyfilter.services.permissions import VIEW_DOWNLOAD, VIEW_FEEDBACK, PermissionGate
from allyfilter.services.references import DEFAULT_MARKER, decompose_url
from allyfilter.services.scanner import scan_elements
from allyfilter.services.storage import CapabilityChecker, ContextResolver, FileStorage
from allyfilter.services.wrapper import WrapperRenderer

logger = logging.getLogger("allyfilter.rewriter")

ReplaceScope = Literal["document", "element"]


def new_processed_token() -> str:
    """Return a marker unique to one pass, flagging markup that was already wrapped."""
    return f"#P-{secrets.token_hex(4)}#"


def mark_processed(markup: str, kind: ElementKind, token: str) -> str:
    """Insert the token right after the tag name: '<a href=...' -> '<a#P-..# href=...'."""
    cut = len(kind.value) + 1
    return markup[:cut] + token + markup[cut:]


def build_replace_pattern(markup: str) -> re.Pattern[str]:
    """
    Build a regex matching the markup whether it ends with '>' or '/>'.

    The markup is escaped, so URLs with '?', '.' or '+' match literally.
    """
    if markup.endswith("/>"):
        stem = markup[:-2]
    elif markup.endswith(">"):
        stem = markup[:-1]
    else:
        return re.compile(re.escape(markup))
    return re.compile(re.escape(stem) + r"\s*/?>")


@dataclass
class ResolvedElement:
    """A candidate that passed every check and will be wrapped."""

    element: CandidateElement
    file_id: str
    permissions: PermissionSet


class FileLinkFilter:
    """
    Wraps anchors and images pointing at stored files for the accessibility layer.

    Each call to rewrite() is an independent pass with its own area index,
    permission memo and processed token.
    """

    def __init__(
        self,
        storage: FileStorage,
        contexts: ContextResolver,
        checker: CapabilityChecker,
        renderer: WrapperRenderer,
        is_authenticated: bool,
        marker: str = DEFAULT_MARKER,
        replace_scope: ReplaceScope = "document",
        view_feedback: str = VIEW_FEEDBACK,
        view_download: str = VIEW_DOWNLOAD,
        cache_permissions: bool = True,
    ) -> None:
        self.storage = storage
        self.contexts = contexts
        self.checker = checker
        self.renderer = renderer
        self.is_authenticated = is_authenticated
        self.marker = marker
        self.replace_scope = replace_scope
        self.view_feedback = view_feedback
        self.view_download = view_download
        self.cache_permissions = cache_permissions
        self.last_stats = FilterStats()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        storage: FileStorage,
        contexts: ContextResolver,
        checker: CapabilityChecker,
        renderer: WrapperRenderer,
        is_authenticated: bool,
    ) -> "FileLinkFilter":
        """Create a filter configured from application settings."""
        return cls(
            storage,
            contexts,
            checker,
            renderer,
            is_authenticated,
            marker=settings.file_marker,
            replace_scope=settings.replace_scope,
            view_feedback=settings.capability_view_feedback,
            view_download=settings.capability_view_download,
            cache_permissions=settings.cache_permissions,
        )

    async def _resolve(
        self,
        element: CandidateElement,
        index: AreaFileIndex,
        gate: PermissionGate,
        stats: FilterStats,
    ) -> ResolvedElement | None:
        """Run every check for one element; None means leave it untouched."""
        try:
            ref = decompose_url(element.url, self.marker)
        except MalformedReference as e:
            stats.malformed += 1
            logger.debug("%s", e)
            return None

        try:
            context = await self.contexts.get_context(ref.context_id)
            permissions = await gate.evaluate(context)
            if not permissions.any:
                stats.not_permitted += 1
                return None
            file_id = await index.require(ref)
        except ContextResolutionError as e:
            stats.unresolved_context += 1
            logger.debug("Skipping %s: %s", element.url, e)
            return None
        except FileNotFound as e:
            stats.missing_file += 1
            logger.debug("%s", e)
            return None
        except Exception as e:
            # Storage or capability lookups failing only cost this element
            stats.collaborator_errors += 1
            logger.warning(f"Failed to resolve {element.url}: {e}")
            return None

        return ResolvedElement(element=element, file_id=file_id, permissions=permissions)

    def _render(self, item: ResolvedElement, markup: str, token: str, stats: FilterStats) -> str | None:
        """Render the wrapper for one element; None when the renderer fails."""
        context = WrapperContext(
            file_id=item.file_id,
            url=item.element.url,
            kind=item.element.kind,
            can_download=item.permissions.can_download,
            can_view_feedback=item.permissions.can_view_feedback,
            html=mark_processed(markup, item.element.kind, token),
        )
        try:
            return self.renderer.render(context)
        except Exception as e:
            stats.collaborator_errors += 1
            logger.warning(f"Failed to render wrapper for {item.element.url}: {e}")
            return None

    def _replace_everywhere(self, text: str, item: ResolvedElement, token: str, stats: FilterStats) -> str:
        """Replace every copy of the element's markup that was not wrapped yet."""
        wrapped = self._render(item, item.element.markup, token, stats)
        if wrapped is None:
            return text
        pattern = build_replace_pattern(item.element.markup)
        text, count = pattern.subn(lambda _: wrapped, text)
        if count == 0:
            logger.debug("Markup for %s was already wrapped", item.element.url)
        stats.wrapped += count
        return text

    def _replace_elements(self, html: str, items: list[ResolvedElement], token: str, stats: FilterStats) -> str:
        """Replace only the scanned elements, innermost and last first."""
        spans = [[item, item.element.start, item.element.end] for item in items]
        text = html

        for i in range(len(spans) - 1, -1, -1):
            item, start, end = spans[i]
            wrapped = self._render(item, text[start:end], token, stats)
            if wrapped is None:
                continue
            delta = len(wrapped) - (end - start)
            text = text[:start] + wrapped + text[end:]
            stats.wrapped += 1

            # Earlier elements ending at or after this one enclose it
            for span in spans[:i]:
                if span[2] >= end:
                    span[2] += delta

        return text

    async def rewrite(self, html: str) -> str:
        """
        Wrap every qualifying file link and image of a document.

        Args:
            html: Rendered HTML

        Returns:
            The HTML with qualifying elements wrapped; identical to the input
            everywhere else.
        """
        stats = FilterStats()
        self.last_stats = stats

        if self.marker not in html:
            # No files referenced, don't do anything expensive
            return html

        if not self.is_authenticated:
            return html

        index = AreaFileIndex(self.storage)
        gate = PermissionGate(
            self.checker,
            view_feedback=self.view_feedback,
            view_download=self.view_download,
            memoize=self.cache_permissions,
        )
        token = new_processed_token()

        text = html
        resolved: list[ResolvedElement] = []
        elements = list(scan_elements(html, self.marker))
        if self.replace_scope == "document":
            # Links first: an image replaced earlier would rewrite a copy inside a link
            elements.sort(key=lambda element: element.kind is ElementKind.IMAGE)

        for element in elements:
            stats.candidates += 1
            item = await self._resolve(element, index, gate, stats)
            if item is None:
                continue
            if self.replace_scope == "document":
                text = self._replace_everywhere(text, item, token, stats)
            else:
                resolved.append(item)

        if self.replace_scope == "element":
            text = self._replace_elements(html, resolved, token, stats)

        stats.storage_queries = index.queries

        # Remove temporary processed flags
        return text.replace(token, "")
