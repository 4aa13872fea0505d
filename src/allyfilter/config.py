"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _bundled_templates_path() -> str:
    """Return the directory holding the templates shipped with the package."""
    return str((Path(__file__).parent / "templates").resolve())


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # URL substring that flags a link as pointing at a stored file
    file_marker: str = "pluginfile.php"

    # "document" replaces every identical copy of a matched element,
    # "element" only the element that was scanned
    replace_scope: Literal["document", "element"] = "document"

    # Capability names checked against the file's context
    capability_view_feedback: str = "view-feedback"
    capability_view_download: str = "view-download"

    # Memoize permission lookups per context within one filter pass
    cache_permissions: bool = True

    # Directory with custom wrapper templates, overrides the bundled ones
    templates_path: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///./allyfilter.db"

    # Security
    secret_key: str = "change-me-in-production"

    # Debug mode
    debug: bool = False

    @property
    def bundled_templates_path(self) -> str:
        """Return the path of the templates bundled with the package."""
        return _bundled_templates_path()

    @property
    def resolved_templates_path(self) -> str | None:
        """Return the custom templates path, or None when only bundled templates are used."""
        if self.templates_path:
            return self.templates_path
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
