"""Caption rendering for Telegram messages using Jinja2.

Captions use Telegram's legacy Markdown; values interpolated into a template
go through the ``md_escape`` filter. StrictUndefined turns a missing context
key into a RenderError instead of a silently blank caption.
"""

import re
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from listing_notifier.logging import get_logger

from .models import RenderError

logger = get_logger(__name__, component="notification")

CAPTION_LIMIT = 1024

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def escape_markdown(value: Any) -> str:
    """Escape characters that Telegram legacy Markdown treats as markup."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", str(value))


class CaptionRenderer:
    """Renders match and reminder captions from package templates."""

    def __init__(
        self,
        template_dir: str = "message_templates",
        match_template: str = "listing_match.md.j2",
        reminder_template: str = "listing_reminder.md.j2",
    ):
        self.match_template_name = match_template
        self.reminder_template_name = reminder_template

        self.env = Environment(
            loader=PackageLoader("listing_notifier.notifications", template_dir),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["md_escape"] = escape_markdown

    def render_match(self, context: Dict[str, Any]) -> str:
        return self._render(self.match_template_name, context)

    def render_reminder(self, context: Dict[str, Any]) -> str:
        return self._render(self.reminder_template_name, context)

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        """Render a template and clip the result to Telegram's caption limit.

        Raises:
            RenderError: If the template is missing or a variable is undefined
        """
        try:
            caption = self.env.get_template(template_name).render(context).strip()
        except TemplateError as e:
            error_msg = f"Caption rendering failed ({template_name}): {e}"
            logger.error(error_msg, extra={"event": "notification.render.failed"})
            raise RenderError(error_msg) from e

        if len(caption) > CAPTION_LIMIT:
            caption = caption[: CAPTION_LIMIT - 1].rstrip() + "…"

        return caption
