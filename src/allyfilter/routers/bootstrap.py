"""Route providing the data client-side tooling needs when a page loads."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from allyfilter.dependencies import RendererDep, SessionDep, SettingsDep, UsernameDep
from allyfilter.services.errors import ContextResolutionError
from allyfilter.services.module_maps import ModuleMaps, build_module_maps, render_module_maps_script
from allyfilter.services.permissions import PermissionGate
from allyfilter.services.storage import DatabaseCapabilityChecker, DatabaseContextResolver

router = APIRouter(prefix="/bootstrap", tags=["bootstrap"])


class BootstrapResponse(BaseModel):
    """Response body for page bootstrap data."""

    module_maps: ModuleMaps
    script: str
    can_view_feedback: bool
    can_download: bool


@router.get("/{course_id}")
async def get_bootstrap(
    course_id: int,
    settings: SettingsDep,
    session: SessionDep,
    renderer: RendererDep,
    username: UsernameDep,
    page_url: str = "",
    page_type: str = "",
    cmid: int | None = None,
) -> BootstrapResponse:
    """Get module maps and course-level permissions for one page request."""
    if username is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        course_context = await DatabaseContextResolver(session).get_course_context(course_id)
    except ContextResolutionError:
        raise HTTPException(status_code=404, detail="Course not found")

    gate = PermissionGate(
        DatabaseCapabilityChecker(session, username),
        view_feedback=settings.capability_view_feedback,
        view_download=settings.capability_view_download,
    )
    permissions = await gate.evaluate(course_context)

    maps = await build_module_maps(session, course_id, page_url=page_url, page_type=page_type, cmid=cmid)

    return BootstrapResponse(
        module_maps=maps,
        script=render_module_maps_script(maps, renderer),
        can_view_feedback=permissions.can_view_feedback,
        can_download=permissions.can_download,
    )
