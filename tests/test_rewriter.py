"""Tests for wrapping file links and images in rendered HTML."""

import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from allyfilter.models.files import ContextInfo, ElementKind, StoredFileInfo
from allyfilter.services.errors import ContextResolutionError
from allyfilter.services.permissions import VIEW_DOWNLOAD, VIEW_FEEDBACK
from allyfilter.services.rewriter import (
    FileLinkFilter,
    build_replace_pattern,
    mark_processed,
    new_processed_token,
)

DOC_URL = "https://x/pluginfile.php/7/mod_resource/content/0/doc.pdf"
NOTES_URL = "https://x/pluginfile.php/7/mod_resource/content/0/notes.txt"
PIC_URL = "https://x/pluginfile.php/12/mod_label/intro/pic.png"

DOC_LINK = f'<a href="{DOC_URL}">doc</a>'
NOTES_LINK = f'<a href="{NOTES_URL}">notes</a>'
PIC_IMAGE = f'<img src="{PIC_URL}" alt="Pic" />'

DOC_HASH = hashlib.sha1(b"/7/mod_resource/content/0/doc.pdf").hexdigest()
NOTES_HASH = hashlib.sha1(b"/7/mod_resource/content/0/notes.txt").hexdigest()
PIC_HASH = hashlib.sha1(b"/12/mod_label/intro/0/pic.png").hexdigest()


class FakeStorage:
    """Storage listing a fixed set of files, recording every query."""

    def __init__(self, files: list[StoredFileInfo]) -> None:
        self.files = files
        self.calls: list[tuple[int, str, str, int]] = []

    async def get_area_files(self, context_id, component, file_area, item_id):
        self.calls.append((context_id, component, file_area, item_id))
        return [
            f
            for f in self.files
            if (f.context_id, f.component, f.file_area, f.item_id) == (context_id, component, file_area, item_id)
        ]


@pytest.fixture
def storage():
    return FakeStorage(
        [
            StoredFileInfo(context_id=7, component="mod_resource", file_area="content", filename="doc.pdf"),
            StoredFileInfo(context_id=7, component="mod_resource", file_area="content", filename="notes.txt"),
            StoredFileInfo(context_id=12, component="mod_label", file_area="intro", filename="pic.png"),
        ]
    )


@pytest.fixture
def contexts():
    contexts = AsyncMock()

    async def get_context(context_id):
        if context_id in (7, 12):
            return ContextInfo(id=context_id)
        raise ContextResolutionError(context_id)

    contexts.get_context.side_effect = get_context
    return contexts


def _checker(*granted: str) -> AsyncMock:
    checker = AsyncMock()
    checker.has_capability.side_effect = lambda capability, context: capability in granted
    return checker


@pytest.fixture
def make_filter(storage, contexts, renderer):
    """Build a filter; capabilities default to both granted."""

    def _make(
        granted: tuple[str, ...] = (VIEW_FEEDBACK, VIEW_DOWNLOAD),
        authenticated: bool = True,
        **kwargs,
    ) -> FileLinkFilter:
        return FileLinkFilter(storage, contexts, _checker(*granted), renderer, authenticated, **kwargs)

    return _make


class TestHelpers:
    """Tests for the token and pattern helpers."""

    def test_tokens_are_unique(self):
        assert new_processed_token() != new_processed_token()

    def test_mark_processed_link(self):
        assert mark_processed(DOC_LINK, ElementKind.LINK, "#P#") == f'<a#P# href="{DOC_URL}">doc</a>'

    def test_mark_processed_image(self):
        assert mark_processed(PIC_IMAGE, ElementKind.IMAGE, "#P#").startswith("<img#P# src=")

    def test_mark_processed_keeps_case(self):
        assert mark_processed('<A HREF="x">', ElementKind.LINK, "#P#") == '<A#P# HREF="x">'

    def test_pattern_matches_either_terminator(self):
        pattern = build_replace_pattern('<img src="a.png" />')
        assert pattern.fullmatch('<img src="a.png" />')
        assert pattern.fullmatch('<img src="a.png" >')

        pattern = build_replace_pattern('<img src="a.png">')
        assert pattern.fullmatch('<img src="a.png">')
        assert pattern.fullmatch('<img src="a.png"/>')

    def test_pattern_escapes_metacharacters(self):
        pattern = build_replace_pattern('<a href="doc.pdf?x=(1)+[2]">d</a>')
        assert pattern.fullmatch('<a href="doc.pdf?x=(1)+[2]">d</a>')
        assert not pattern.search('<a href="docXpdf?x=(1)+[2]">d</a>')

    def test_pattern_does_not_match_processed_markup(self):
        pattern = build_replace_pattern(DOC_LINK)
        assert not pattern.search(mark_processed(DOC_LINK, ElementKind.LINK, "#P-1#"))


class TestRewritePreconditions:
    """Inputs that must come back unchanged without any lookups."""

    @pytest.mark.asyncio
    async def test_text_without_marker_unchanged(self, make_filter, contexts, storage):
        html = '<p>Hello <a href="https://x/page.html">page</a></p>'
        assert await make_filter().rewrite(html) == html
        contexts.get_context.assert_not_awaited()
        assert storage.calls == []

    @pytest.mark.asyncio
    async def test_unauthenticated_unchanged(self, make_filter, contexts, storage):
        html = f"<p>{DOC_LINK}</p>"
        assert await make_filter(authenticated=False).rewrite(html) == html
        contexts.get_context.assert_not_awaited()
        assert storage.calls == []

    @pytest.mark.asyncio
    async def test_empty_text(self, make_filter):
        assert await make_filter().rewrite("") == ""


class TestRewrite:
    """Tests for FileLinkFilter.rewrite."""

    @pytest.mark.asyncio
    async def test_end_to_end_download_only(self, make_filter):
        result = await make_filter(granted=(VIEW_DOWNLOAD,)).rewrite(DOC_LINK)

        assert result.startswith(f'<span class="ally-file-wrapper" data-file-id="{DOC_HASH}"')
        assert DOC_LINK in result
        assert 'class="ally-download"' in result
        assert 'class="ally-feedback"' not in result
        assert "#P" not in result

    @pytest.mark.asyncio
    async def test_surrounding_text_untouched(self, make_filter):
        html = f"<div>\n  <p>Read {DOC_LINK} first.</p>\n</div>"
        result = await make_filter().rewrite(html)

        prefix, rest = result.split("<span", 1)
        assert prefix == "<div>\n  <p>Read "
        assert rest.endswith("</span> first.</p>\n</div>")

    @pytest.mark.asyncio
    async def test_not_permitted_unchanged(self, make_filter):
        html = f"<p>{DOC_LINK}</p>"
        file_link_filter = make_filter(granted=())
        assert await file_link_filter.rewrite(html) == html
        assert file_link_filter.last_stats.not_permitted == 1

    @pytest.mark.asyncio
    async def test_image_wrapped(self, make_filter):
        result = await make_filter().rewrite(f"<p>{PIC_IMAGE}</p>")
        assert f'<span class="ally-image-wrapper" data-file-id="{PIC_HASH}"' in result
        assert PIC_IMAGE in result

    @pytest.mark.asyncio
    async def test_distinct_elements_wrapped_once(self, make_filter):
        html = f"<ul><li>{DOC_LINK}</li><li>{NOTES_LINK}</li></ul>"
        file_link_filter = make_filter()
        result = await file_link_filter.rewrite(html)

        assert result.count('class="ally-file-wrapper"') == 2
        assert result.count(DOC_LINK) == 1
        assert result.count(NOTES_LINK) == 1
        assert f'data-file-id="{DOC_HASH}"' in result
        assert f'data-file-id="{NOTES_HASH}"' in result
        assert "#P" not in result
        assert file_link_filter.last_stats.wrapped == 2

    @pytest.mark.asyncio
    async def test_one_storage_query_per_area(self, make_filter, storage):
        html = f"{DOC_LINK}{NOTES_LINK}{PIC_IMAGE}"
        file_link_filter = make_filter()
        await file_link_filter.rewrite(html)

        assert storage.calls == [(7, "mod_resource", "content", 0), (12, "mod_label", "intro", 0)]
        assert file_link_filter.last_stats.storage_queries == 2

    @pytest.mark.asyncio
    async def test_cache_does_not_leak_between_passes(self, make_filter, storage):
        file_link_filter = make_filter()
        await file_link_filter.rewrite(DOC_LINK)
        await file_link_filter.rewrite(DOC_LINK)
        assert len(storage.calls) == 2

    @pytest.mark.asyncio
    async def test_three_segment_url(self, make_filter):
        result = await make_filter().rewrite(PIC_IMAGE)
        assert f'data-file-id="{PIC_HASH}"' in result

    @pytest.mark.asyncio
    async def test_unsupported_segment_counts_unchanged(self, make_filter):
        html = (
            '<a href="https://x/pluginfile.php/7/mod_resource/doc.pdf">two</a>'
            '<a href="https://x/pluginfile.php/7/mod_resource/content/0/sub/doc.pdf">five</a>'
        )
        file_link_filter = make_filter()
        assert await file_link_filter.rewrite(html) == html
        assert file_link_filter.last_stats.malformed == 2

    @pytest.mark.asyncio
    async def test_missing_file_unchanged(self, make_filter):
        html = f'<p><a href="{DOC_URL.replace("doc.pdf", "gone.pdf")}">gone</a>{NOTES_LINK}</p>'
        file_link_filter = make_filter()
        result = await file_link_filter.rewrite(html)

        assert '<p><a href="https://x/pluginfile.php/7/mod_resource/content/0/gone.pdf">gone</a><span' in result
        assert f'data-file-id="{NOTES_HASH}"' in result
        assert file_link_filter.last_stats.missing_file == 1

    @pytest.mark.asyncio
    async def test_unknown_context_unchanged(self, make_filter):
        html = '<a href="https://x/pluginfile.php/99/mod_resource/content/0/doc.pdf">doc</a>'
        file_link_filter = make_filter()
        assert await file_link_filter.rewrite(html) == html
        assert file_link_filter.last_stats.unresolved_context == 1

    @pytest.mark.asyncio
    async def test_storage_failure_skips_element(self, contexts, renderer):
        storage = AsyncMock()
        storage.get_area_files.side_effect = RuntimeError("database is locked")
        file_link_filter = FileLinkFilter(storage, contexts, _checker(VIEW_DOWNLOAD), renderer, True)

        assert await file_link_filter.rewrite(DOC_LINK) == DOC_LINK
        assert file_link_filter.last_stats.collaborator_errors == 1

    @pytest.mark.asyncio
    async def test_non_ascii_digit_item_id_skips_element(self, make_filter):
        bad = '<a href="https://x/pluginfile.php/7/mod_resource/content/²/doc.pdf">d</a>'
        html = f"{bad}{NOTES_LINK}"
        file_link_filter = make_filter()
        result = await file_link_filter.rewrite(html)

        assert result.startswith(f"{bad}<span")
        assert f'data-file-id="{NOTES_HASH}"' in result
        assert file_link_filter.last_stats.malformed == 1

    @pytest.mark.asyncio
    async def test_renderer_failure_skips_element(self, storage, contexts):
        renderer = MagicMock()
        renderer.render.side_effect = RuntimeError("template broke")
        file_link_filter = FileLinkFilter(storage, contexts, _checker(VIEW_DOWNLOAD), renderer, True)

        assert await file_link_filter.rewrite(DOC_LINK) == DOC_LINK
        assert file_link_filter.last_stats.collaborator_errors == 1
        assert file_link_filter.last_stats.wrapped == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scope", ["document", "element"])
    async def test_renderer_failure_spares_other_elements(self, storage, contexts, renderer, scope):
        def render(context):
            if context.is_image:
                raise RuntimeError("template broke")
            return renderer.render(context)

        failing = MagicMock()
        failing.render.side_effect = render
        file_link_filter = FileLinkFilter(storage, contexts, _checker(VIEW_DOWNLOAD), failing, True, replace_scope=scope)
        html = f"<p>{PIC_IMAGE}</p><p>{DOC_LINK}</p>"
        result = await file_link_filter.rewrite(html)

        assert result.startswith(f'<p>{PIC_IMAGE}</p><p><span class="ally-file-wrapper"')
        assert "#P" not in result
        assert file_link_filter.last_stats.collaborator_errors == 1

    @pytest.mark.asyncio
    async def test_capability_failure_skips_element(self, storage, contexts, renderer):
        checker = AsyncMock()
        checker.has_capability.side_effect = RuntimeError("boom")
        file_link_filter = FileLinkFilter(storage, contexts, checker, renderer, True)

        assert await file_link_filter.rewrite(DOC_LINK) == DOC_LINK

    @pytest.mark.asyncio
    async def test_url_with_query_string(self, make_filter):
        link = f'<a href="{DOC_URL}?forcedownload=1">doc</a>'
        result = await make_filter().rewrite(link)
        assert f'data-file-id="{DOC_HASH}"' in result
        assert link in result

    @pytest.mark.asyncio
    async def test_encoded_attribute_markup(self, make_filter):
        link = f'<a href="{DOC_URL}?a=1&amp;b=2" title="Doc &amp; notes">doc</a>'
        result = await make_filter().rewrite(link)
        assert link in result
        assert "ally-file-wrapper" in result

    @pytest.mark.asyncio
    async def test_image_inside_link(self, make_filter):
        html = f'<a href="{DOC_URL}">{PIC_IMAGE}</a>'
        result = await make_filter().rewrite(html)

        assert result.startswith('<span class="ally-file-wrapper"')
        assert result.count('class="ally-image-wrapper"') == 1
        assert PIC_IMAGE in result
        assert "#P" not in result

    @pytest.mark.asyncio
    async def test_link_containing_copy_of_earlier_image(self, make_filter):
        html = f'{PIC_IMAGE}<p><a href="{DOC_URL}">{PIC_IMAGE}</a></p>'
        file_link_filter = make_filter()
        result = await file_link_filter.rewrite(html)

        assert result.count('class="ally-file-wrapper"') == 1
        assert result.count('class="ally-image-wrapper"') == 2
        assert f'data-file-id="{DOC_HASH}"' in result
        assert "#P" not in result
        assert file_link_filter.last_stats.wrapped == 3

    @pytest.mark.asyncio
    async def test_literal_p_marker_in_text_kept(self, make_filter):
        html = f"<p>Issue #P# tracks this: {DOC_LINK}</p>"
        result = await make_filter().rewrite(html)
        assert result.startswith("<p>Issue #P# tracks this: <span")

    @pytest.mark.asyncio
    async def test_permissions_memoized_per_pass(self, storage, contexts, renderer):
        checker = _checker(VIEW_DOWNLOAD)
        file_link_filter = FileLinkFilter(storage, contexts, checker, renderer, True)
        await file_link_filter.rewrite(f"{DOC_LINK}{NOTES_LINK}")
        assert checker.has_capability.await_count == 2

    @pytest.mark.asyncio
    async def test_permissions_without_memo(self, storage, contexts, renderer):
        checker = _checker(VIEW_DOWNLOAD)
        file_link_filter = FileLinkFilter(storage, contexts, checker, renderer, True, cache_permissions=False)
        await file_link_filter.rewrite(f"{DOC_LINK}{NOTES_LINK}")
        assert checker.has_capability.await_count == 4


class TestReplaceScope:
    """Document-wide replacement versus element-only replacement."""

    @pytest.mark.asyncio
    async def test_document_scope_wraps_identical_copies_once(self, make_filter):
        html = f"<p>{DOC_LINK}</p><p>{DOC_LINK}</p>"
        file_link_filter = make_filter()
        result = await file_link_filter.rewrite(html)

        assert result.count('class="ally-file-wrapper"') == 2
        assert file_link_filter.last_stats.candidates == 2
        assert file_link_filter.last_stats.wrapped == 2
        assert "#P" not in result

    @pytest.mark.asyncio
    async def test_document_scope_reaches_commented_copy(self, make_filter):
        html = f"<!-- {DOC_LINK} --><p>{DOC_LINK}</p>"
        result = await make_filter().rewrite(html)
        assert result.count('class="ally-file-wrapper"') == 2

    @pytest.mark.asyncio
    async def test_element_scope_only_wraps_scanned_element(self, make_filter):
        html = f"<!-- {DOC_LINK} --><p>{DOC_LINK}</p>"
        result = await make_filter(replace_scope="element").rewrite(html)

        assert result.startswith(f"<!-- {DOC_LINK} --><p><span")
        assert result.count('class="ally-file-wrapper"') == 1

    @pytest.mark.asyncio
    async def test_element_scope_identical_elements(self, make_filter):
        html = f"<p>{DOC_LINK}</p><p>{DOC_LINK}</p>"
        result = await make_filter(replace_scope="element").rewrite(html)
        assert result.count('class="ally-file-wrapper"') == 2

    @pytest.mark.asyncio
    async def test_scopes_agree_on_nested_elements(self, make_filter):
        html = f'<div><a href="{DOC_URL}">{PIC_IMAGE} doc</a><p>{NOTES_LINK}</p></div>'
        document = await make_filter().rewrite(html)
        element = await make_filter(replace_scope="element").rewrite(html)
        assert document == element
        assert "#P" not in element
