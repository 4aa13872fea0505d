"""Jinja2 rendering of the accessibility wrapper placed around file links."""

from pathlib import Path
from typing import Any, Protocol

from jinja2 import BaseLoader, Environment, TemplateNotFound
from markupsafe import Markup

from allyfilter.models.files import WrapperContext

WRAPPER_TEMPLATE = "wrapper.html"


class WrapperRenderer(Protocol):
    """Produces the replacement markup for one qualifying element."""

    def render(self, context: WrapperContext) -> str: ...


class WrapperTemplateLoader(BaseLoader):
    """
    Template loader with multi-source support.

    Supports loading from:
    1. In-memory templates (registered with add_template)
    2. A custom templates directory
    3. The templates bundled with the package (fallback)
    """

    def __init__(self, bundled_path: Path, custom_path: Path | None = None) -> None:
        self.bundled_path = bundled_path
        self.custom_path = custom_path
        self._template_cache: dict[str, str] = {}

    def add_template(self, name: str, source: str) -> None:
        """Add a template to the in-memory cache."""
        self._template_cache[name] = source

    def clear_cache(self) -> None:
        """Clear the in-memory templates."""
        self._template_cache.clear()

    def get_source(self, environment: Environment, template: str) -> tuple[str, str | None, Any]:
        """Load a template from memory, the custom directory or the bundled directory."""
        if template in self._template_cache:
            return self._template_cache[template], template, lambda: True

        if self.custom_path is not None:
            custom = self.custom_path / template
            if custom.exists():
                return custom.read_text(encoding="utf-8"), str(custom), lambda: False

        bundled = self.bundled_path / template
        if bundled.exists():
            return bundled.read_text(encoding="utf-8"), str(bundled), lambda: False

        raise TemplateNotFound(template)


class JinjaWrapperRenderer:
    """Renders the wrapper template for a qualifying element."""

    def __init__(self, bundled_path: Path, custom_path: Path | None = None) -> None:
        self.loader = WrapperTemplateLoader(bundled_path, custom_path)
        self.env = Environment(
            loader=self.loader,
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
            auto_reload=True,
        )

    def render(self, context: WrapperContext) -> str:
        """Render the wrapper; the element markup is trusted and inserted as is."""
        template = self.env.get_template(WRAPPER_TEMPLATE)
        return template.render(
            file_id=context.file_id,
            url=context.url,
            kind=context.kind.value,
            is_image=context.is_image,
            can_download=context.can_download,
            can_view_feedback=context.can_view_feedback,
            html=Markup(context.html),
        ).strip()

    def render_template(self, template_name: str, **context: Any) -> str:
        """Render any other bundled or custom template."""
        return self.env.get_template(template_name).render(**context).strip()


# Global renderer instance
_renderer: JinjaWrapperRenderer | None = None


def get_wrapper_renderer() -> JinjaWrapperRenderer:
    """Get or create the global wrapper renderer."""
    global _renderer
    if _renderer is None:
        from allyfilter.config import get_settings

        settings = get_settings()
        custom = settings.resolved_templates_path
        _renderer = JinjaWrapperRenderer(
            Path(settings.bundled_templates_path),
            Path(custom) if custom else None,
        )
    return _renderer


def reset_wrapper_renderer() -> None:
    """Reset the global renderer. Useful for testing or template refresh."""
    global _renderer
    _renderer = None
