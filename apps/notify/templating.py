"""Jinja2 templating for notification digests.

Template spec accepted by render_template:
- None or empty -> returns None
- string starting with "file:<name>" -> loads file from apps/notify/templates/<name>
- dict: {"type": "inline"|"file", "template": "..."}
- string (default) -> treated as inline template, or as a file name when
  a template with that name exists

The render_template function returns a rendered string or raises a
ValueError on invalid template.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import jinja2

TEMPLATES_DIR = Path(__file__).parent / "templates"

DEFAULT_TEXT_TEMPLATE = "file:digest_text.j2"
DEFAULT_HTML_TEMPLATE = "file:digest_html.j2"

logger = logging.getLogger(__name__)


def _autoescape(template_name: str | None) -> bool:
    return bool(template_name) and "html" in template_name


_JINJA_ENV = jinja2.Environment(
    loader=jinja2.FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=_autoescape,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _template_exists(name: str) -> bool:
    return (TEMPLATES_DIR / name).is_file() or (TEMPLATES_DIR / f"{name}.j2").is_file()


def _resolve_name(name: str) -> str:
    if (TEMPLATES_DIR / name).is_file():
        return name
    return f"{name}.j2"


def render_template(spec: Any, context: dict[str, Any]) -> str | None:
    """Render a template spec with the provided context.

    Args:
        spec: template spec (None, string, or dict)
        context: mapping of variables for the template

    Returns:
        Rendered string or None if spec is falsy
    """
    if not spec:
        return None

    template_str: str | None = None
    template_name: str | None = None
    if isinstance(spec, dict):
        if spec.get("type", "inline") == "file":
            template_name = spec.get("template")
        else:
            template_str = spec.get("template")
    elif isinstance(spec, str):
        if spec.startswith("file:"):
            template_name = spec.split(":", 1)[1]
        elif _template_exists(spec):
            template_name = spec
        else:
            template_str = spec
    else:
        raise ValueError("Unsupported template spec")

    try:
        if template_name:
            if not _template_exists(template_name):
                raise ValueError(f"Template file not found: {template_name}")
            logger.debug("render_template: loading template file: %s", template_name)
            tmpl = _JINJA_ENV.get_template(_resolve_name(template_name))
        elif template_str is not None:
            tmpl = _JINJA_ENV.from_string(template_str)
        else:
            return None
        return tmpl.render(**(context or {}))
    except jinja2.TemplateError as e:
        raise ValueError(f"Jinja2 render error: {e}") from e


class DigestTemplatingService:
    """Builds the template context for a digest and renders its bodies."""

    def build_template_context(self, digest, project) -> dict[str, Any]:
        return {
            "project": {"name": project.name, "slug": project.slug, "url": project.url},
            "subject": digest.subject,
            "cta": digest.cta,
            "preview": digest.preview,
            "preview_type": digest.preview_type,
            "successes": digest.successes,
            "failures": digest.failures,
            "recipient": digest.recipient,
            "sent_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        }

    def render(
        self, digest, project, config: dict[str, Any] | None = None
    ) -> dict[str, str | None]:
        """Render text and HTML bodies.

        Config keys ``text_template`` / ``html_template`` override the
        packaged templates. The text body is required; HTML is optional.

        Raises:
            ValueError: The text template is missing or fails to render.
        """
        config = config or {}
        ctx = self.build_template_context(digest, project)

        text = render_template(config.get("text_template") or DEFAULT_TEXT_TEMPLATE, ctx)
        if text is None:
            raise ValueError("Digest text template rendered nothing")

        html = None
        html_spec = config.get("html_template", DEFAULT_HTML_TEMPLATE)
        if html_spec:
            try:
                html = render_template(html_spec, ctx)
            except ValueError:
                logger.warning("Failed to render digest HTML template", exc_info=True)

        return {"subject": digest.subject, "text": text, "html": html}
