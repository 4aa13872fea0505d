"""Evaluation of the two permissions that make an element eligible for wrapping."""

from allyfilter.models.files import ContextInfo, PermissionSet
from allyfilter.services.storage import CapabilityChecker

VIEW_FEEDBACK = "view-feedback"
VIEW_DOWNLOAD = "view-download"


class PermissionGate:
    """Evaluates the feedback and download capabilities for a context."""

    def __init__(
        self,
        checker: CapabilityChecker,
        view_feedback: str = VIEW_FEEDBACK,
        view_download: str = VIEW_DOWNLOAD,
        memoize: bool = False,
    ) -> None:
        self.checker = checker
        self.view_feedback = view_feedback
        self.view_download = view_download
        self.memoize = memoize
        self._by_context: dict[int, PermissionSet] = {}

    async def evaluate(self, context: ContextInfo) -> PermissionSet:
        """Return the permissions held in the given context."""
        if self.memoize and context.id in self._by_context:
            return self._by_context[context.id]

        permissions = PermissionSet(
            can_view_feedback=await self.checker.has_capability(self.view_feedback, context),
            can_download=await self.checker.has_capability(self.view_download, context),
        )

        if self.memoize:
            self._by_context[context.id] = permissions
        return permissions
