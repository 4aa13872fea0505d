"""Maps handed to client-side tooling so it can find files without a filter pass."""

import json
import re
from urllib.parse import urlsplit

from markupsafe import Markup
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allyfilter.models.db import CourseModule, StoredFile
from allyfilter.services.wrapper import JinjaWrapperRenderer

MODULE_MAPS_TEMPLATE = "module_maps.html"
ASSIGNMENT_PAGE_TYPE = "mod-assign-view"

_COURSE_PAGE = re.compile(r"/course/view\.php$")


class ModuleMaps(BaseModel):
    """File identities keyed the way client-side tooling looks them up."""

    file_resources: dict[int, str] = Field(default_factory=dict)  # module id -> pathnamehash
    assignment_files: dict[str, str] = Field(default_factory=dict)  # file path -> pathnamehash


def is_course_page(url: str) -> bool:
    """Check if a URL is the course page itself (not course settings etc.)."""
    return bool(_COURSE_PAGE.search(urlsplit(url).path))


async def map_module_files(session: AsyncSession, course_id: int) -> dict[int, str]:
    """Map each file resource module of a course to the pathnamehash of its file."""
    result = await session.execute(
        select(CourseModule).where(
            CourseModule.course_id == course_id,
            CourseModule.module_name == "resource",
        )
    )
    module_ids_by_context = {module.context_id: module.id for module in result.scalars().all()}
    if not module_ids_by_context:
        return {}

    result = await session.execute(
        select(StoredFile)
        .where(
            StoredFile.context_id.in_(module_ids_by_context),
            StoredFile.component == "mod_resource",
            StoredFile.mimetype.is_not(None),
            StoredFile.filename != ".",
        )
        .order_by(StoredFile.id)
    )
    return {module_ids_by_context[file.context_id]: file.pathnamehash for file in result.scalars().all()}


async def map_assignment_files(session: AsyncSession, cmid: int) -> dict[str, str]:
    """Map the intro attachment paths of an assignment to their pathnamehash."""
    module = await session.get(CourseModule, cmid)
    if module is None or module.module_name != "assign":
        return {}

    result = await session.execute(
        select(StoredFile)
        .where(
            StoredFile.context_id == module.context_id,
            StoredFile.component == "mod_assign",
            StoredFile.file_area == "introattachment",
            StoredFile.filename != ".",
        )
        .order_by(StoredFile.item_id, StoredFile.filepath, StoredFile.filename)
    )

    paths: dict[str, str] = {}
    for file in result.scalars().all():
        path = f"{file.context_id}/mod_assign/introattachment/{file.item_id}{file.filepath}{file.filename}"
        paths[path] = file.pathnamehash
    return paths


async def build_module_maps(
    session: AsyncSession,
    course_id: int,
    page_url: str = "",
    page_type: str = "",
    cmid: int | None = None,
) -> ModuleMaps:
    """
    Build the maps for one page request.

    File resources are only mapped on the course page, assignment files only
    on an assignment's view page.
    """
    maps = ModuleMaps()
    if is_course_page(page_url):
        maps.file_resources = await map_module_files(session, course_id)
    if page_type == ASSIGNMENT_PAGE_TYPE and cmid is not None:
        maps.assignment_files = await map_assignment_files(session, cmid)
    return maps


def render_module_maps_script(maps: ModuleMaps, renderer: JinjaWrapperRenderer) -> str:
    """Render the maps as a script tag declaring ally_module_maps."""
    maps_json = json.dumps(maps.model_dump()).replace("</", "<\\/")
    return renderer.render_template(MODULE_MAPS_TEMPLATE, maps_json=Markup(maps_json))
