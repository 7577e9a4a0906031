from pathlib import Path

import jinja2
from dental_auth.core.logging import logger

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(searchpath=str(TEMPLATE_DIR)),
    autoescape=jinja2.select_autoescape(enabled_extensions=("html",)),
)


def render_template(path: str, **context) -> str:
    """Render a template relative to the package ``templates`` directory."""
    try:
        template = _env.get_template(path)
        rendered = template.render(**context)
        logger.debug("Rendered template {}", path)
        return rendered
    except Exception:
        logger.exception("Failed to render template {}", path)
        raise
