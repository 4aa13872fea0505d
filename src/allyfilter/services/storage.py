"""Storage, context and capability collaborators used by the file link filter."""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allyfilter.models.db import CapabilityGrant, Context, StoredFile
from allyfilter.models.files import ContextInfo, StoredFileInfo
from allyfilter.services.errors import ContextResolutionError
from allyfilter.services.pathhash import pathname_hash


class FileStorage(Protocol):
    """Lists the files stored under one (context, component, area, item) tuple."""

    async def get_area_files(
        self,
        context_id: int,
        component: str,
        file_area: str,
        item_id: int,
    ) -> list[StoredFileInfo]: ...


class ContextResolver(Protocol):
    """Resolves a numeric context id to a context."""

    async def get_context(self, context_id: int) -> ContextInfo: ...


class CapabilityChecker(Protocol):
    """Checks a named capability for the current principal in a context."""

    async def has_capability(self, capability: str, context: ContextInfo) -> bool: ...


def _to_info(file: StoredFile) -> StoredFileInfo:
    return StoredFileInfo(
        context_id=file.context_id,
        component=file.component,
        file_area=file.file_area,
        item_id=file.item_id,
        filepath=file.filepath,
        filename=file.filename,
        pathnamehash=file.pathnamehash,
        mimetype=file.mimetype,
    )


class FileStorageService:
    """Database-backed file storage."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_file(
        self,
        context_id: int,
        component: str,
        file_area: str,
        filename: str,
        item_id: int = 0,
        filepath: str = "/",
        mimetype: str | None = None,
    ) -> StoredFile:
        """Store a file record, computing its pathnamehash."""
        file = StoredFile(
            context_id=context_id,
            component=component,
            file_area=file_area,
            item_id=item_id,
            filepath=filepath,
            filename=filename,
            pathnamehash=pathname_hash(context_id, component, file_area, item_id, filepath, filename),
            mimetype=mimetype,
        )
        self.session.add(file)
        await self.session.flush()
        await self.session.refresh(file)
        return file

    async def get_area_files(
        self,
        context_id: int,
        component: str,
        file_area: str,
        item_id: int,
    ) -> list[StoredFileInfo]:
        """List all files (directories included) of an area, ordered by path."""
        query = (
            select(StoredFile)
            .where(
                StoredFile.context_id == context_id,
                StoredFile.component == component,
                StoredFile.file_area == file_area,
                StoredFile.item_id == item_id,
            )
            .order_by(StoredFile.filepath, StoredFile.filename)
        )
        result = await self.session.execute(query)
        return [_to_info(file) for file in result.scalars().all()]

    async def get_by_pathnamehash(self, pathnamehash: str) -> StoredFileInfo | None:
        """Get a file by its pathnamehash."""
        result = await self.session.execute(select(StoredFile).where(StoredFile.pathnamehash == pathnamehash))
        file = result.scalar_one_or_none()
        return _to_info(file) if file else None


class DatabaseContextResolver:
    """Resolves contexts from the contexts table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, level: str, instance_id: int = 0, parent_id: int | None = None) -> ContextInfo:
        """Create a new context."""
        context = Context(level=level, instance_id=instance_id, parent_id=parent_id)
        self.session.add(context)
        await self.session.flush()
        await self.session.refresh(context)
        return ContextInfo(id=context.id, level=context.level, instance_id=context.instance_id, parent_id=parent_id)

    async def get_context(self, context_id: int) -> ContextInfo:
        """Get a context by ID, raising ContextResolutionError if missing."""
        context = await self.session.get(Context, context_id)
        if context is None:
            raise ContextResolutionError(context_id)
        return ContextInfo(
            id=context.id,
            level=context.level,
            instance_id=context.instance_id,
            parent_id=context.parent_id,
        )

    async def get_course_context(self, course_id: int) -> ContextInfo:
        """Get the context of a course."""
        result = await self.session.execute(
            select(Context).where(Context.level == "course", Context.instance_id == course_id)
        )
        context = result.scalars().first()
        if context is None:
            raise ContextResolutionError(course_id)
        return ContextInfo(
            id=context.id,
            level=context.level,
            instance_id=context.instance_id,
            parent_id=context.parent_id,
        )


class DatabaseCapabilityChecker:
    """
    Checks capability grants for one user.

    A grant in a context also applies to all of its descendant contexts.
    """

    def __init__(self, session: AsyncSession, username: str | None) -> None:
        self.session = session
        self.username = username

    async def grant(self, capability: str, context_id: int) -> None:
        """Grant a capability to the user in a context."""
        if self.username is None:
            raise ValueError("Cannot grant capabilities to an anonymous user")
        self.session.add(CapabilityGrant(username=self.username, context_id=context_id, capability=capability))
        await self.session.flush()

    async def _context_chain(self, context: ContextInfo) -> list[int]:
        """Return the context id and the ids of all its ancestors."""
        chain = [context.id]
        parent_id = context.parent_id
        while parent_id is not None and parent_id not in chain:
            chain.append(parent_id)
            parent = await self.session.get(Context, parent_id)
            parent_id = parent.parent_id if parent else None
        return chain

    async def has_capability(self, capability: str, context: ContextInfo) -> bool:
        """Check if the user holds the capability in the context or an ancestor."""
        if self.username is None:
            return False

        chain = await self._context_chain(context)
        result = await self.session.execute(
            select(CapabilityGrant.id)
            .where(
                CapabilityGrant.username == self.username,
                CapabilityGrant.capability == capability,
                CapabilityGrant.context_id.in_(chain),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
