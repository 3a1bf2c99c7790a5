"""Contains utilities for rendering Jinja2 templates."""

import jinja2
import structlog

from jira_sync_manager.schemas.domain import DomainObject
from jira_sync_manager.utils.constants import MAX_SUMMARY_LENGTH

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def construct_jinja2_environment() -> jinja2.Environment:
    """Construct a Jinja2 environment."""
    jinja_env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False)
    return jinja_env


def construct_jinja2_template_from_string(template_string: str, environment: jinja2.Environment | None = None) -> jinja2.Template:
    """Construct a Jinja2 template from a string."""
    if environment is None:
        environment = construct_jinja2_environment()
    try:
        return environment.from_string(template_string)
    except jinja2.TemplateSyntaxError as exc:
        logger.error("Invalid Jinja2 template", template=template_string, error=str(exc))
        raise


def render_summary(template_string: str, domain_object: DomainObject) -> str:
    """Render the external issue summary for a domain object.

    The template may reference ``id``, ``title``, ``project_id`` and
    ``status_id``. Jira accepts single-line summaries of at most 255
    characters, so line breaks are collapsed and the result is truncated.
    """
    template = construct_jinja2_template_from_string(template_string)
    try:
        rendered = template.render(
            id=domain_object.id,
            title=domain_object.title,
            project_id=domain_object.project_id,
            status_id=domain_object.status_id,
        )
    except jinja2.UndefinedError as exc:
        logger.error("Failed to render summary template", object_id=domain_object.id, template=template_string, error=str(exc))
        raise
    summary = " ".join(rendered.split())
    if len(summary) > MAX_SUMMARY_LENGTH:
        logger.warning("Truncating rendered summary", object_id=domain_object.id, length=len(summary))
        summary = summary[: MAX_SUMMARY_LENGTH - 3].rstrip() + "..."
    return summary
