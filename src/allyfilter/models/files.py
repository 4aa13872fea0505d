"""Pydantic models for file references, scanned elements and permissions."""

from enum import Enum

from pydantic import BaseModel


class UrlForm(str, Enum):
    """Shapes of the path that follows the file-serving marker and context id."""

    THREE_SEGMENT = "component/filearea/filename"
    FOUR_SEGMENT = "component/filearea/itemid/filename"
    UNSUPPORTED = "unsupported"


class ElementKind(str, Enum):
    """HTML elements that can reference a stored file."""

    LINK = "a"
    IMAGE = "img"

    @property
    def url_attribute(self) -> str:
        """Name of the attribute carrying the file URL."""
        return "href" if self is ElementKind.LINK else "src"


class FileReference(BaseModel):
    """A stored file as addressed by a file-serving URL."""

    model_config = {"frozen": True}

    context_id: int
    component: str
    file_area: str
    item_id: int = 0
    filename: str
    form: UrlForm = UrlForm.FOUR_SEGMENT

    @property
    def area_path(self) -> str:
        """Canonical path of the storage area holding this file."""
        return f"/{self.context_id}/{self.component}/{self.file_area}/{self.item_id}"

    @property
    def file_path(self) -> str:
        """Canonical full path of the file."""
        return f"{self.area_path}/{self.filename}"


class CandidateElement(BaseModel):
    """An anchor or image found by the scanner whose URL carries the marker."""

    model_config = {"frozen": True}

    kind: ElementKind
    url: str
    markup: str  # Source text of the element exactly as found
    start: int
    end: int


class PermissionSet(BaseModel):
    """Permissions the current principal holds in one context."""

    model_config = {"frozen": True}

    can_view_feedback: bool = False
    can_download: bool = False

    @property
    def any(self) -> bool:
        """Check if at least one permission is granted."""
        return self.can_view_feedback or self.can_download


class ContextInfo(BaseModel):
    """A resolved context (system, course, module...)."""

    id: int
    level: str = "module"
    instance_id: int = 0
    parent_id: int | None = None


class StoredFileInfo(BaseModel):
    """A file as listed by the storage layer."""

    context_id: int
    component: str
    file_area: str
    item_id: int = 0
    filepath: str = "/"
    filename: str
    pathnamehash: str | None = None  # Identity assigned by storage, if known
    mimetype: str | None = None

    @property
    def is_directory(self) -> bool:
        """Directory entries are stored with the filename '.'."""
        return self.filename == "."

    @property
    def relative_path(self) -> str:
        """Path of the file inside its area, e.g. '/sub/doc.pdf'."""
        return f"{self.filepath}{self.filename}"


class WrapperContext(BaseModel):
    """Everything the wrapper template needs to render one element."""

    file_id: str
    url: str
    kind: ElementKind
    can_download: bool = False
    can_view_feedback: bool = False
    html: str  # Element markup carrying the processed token

    @property
    def is_image(self) -> bool:
        """Check if the wrapped element is an image."""
        return self.kind is ElementKind.IMAGE


class FilterStats(BaseModel):
    """Counters collected during one filter pass."""

    candidates: int = 0
    wrapped: int = 0
    malformed: int = 0
    unresolved_context: int = 0
    not_permitted: int = 0
    missing_file: int = 0
    collaborator_errors: int = 0
    storage_queries: int = 0
