"""FastAPI dependency injection utilities."""

from typing import Annotated, Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from allyfilter.config import Settings, get_settings
from allyfilter.models.db import get_db_session
from allyfilter.services.rewriter import FileLinkFilter
from allyfilter.services.storage import DatabaseCapabilityChecker, DatabaseContextResolver, FileStorageService
from allyfilter.services.wrapper import JinjaWrapperRenderer, get_wrapper_renderer

# Type alias for settings dependency
SettingsDep = Annotated[Settings, Depends(get_settings)]

SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

RendererDep = Annotated[JinjaWrapperRenderer, Depends(get_wrapper_renderer)]


def get_current_user(request: Request) -> dict[str, Any] | None:
    """Get the user established by the host application's session, if any."""
    if not hasattr(request, "session"):
        return None
    return request.session.get("user")


UserDep = Annotated[dict[str, Any] | None, Depends(get_current_user)]


def get_username(user: UserDep) -> str | None:
    """Get the login of the current user."""
    if not user:
        return None
    return user.get("login")


UsernameDep = Annotated[str | None, Depends(get_username)]


def get_file_link_filter(
    settings: SettingsDep,
    session: SessionDep,
    renderer: RendererDep,
    username: UsernameDep,
) -> FileLinkFilter:
    """Build a file link filter bound to the request's user and database session."""
    return FileLinkFilter.from_settings(
        settings,
        storage=FileStorageService(session),
        contexts=DatabaseContextResolver(session),
        checker=DatabaseCapabilityChecker(session, username),
        renderer=renderer,
        is_authenticated=username is not None,
    )


FilterDep = Annotated[FileLinkFilter, Depends(get_file_link_filter)]
