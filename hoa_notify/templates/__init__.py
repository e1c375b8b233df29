"""Named email and SMS templates compiled with Jinja2.

Example usage:
    >>> from hoa_notify.templates import MemoryTemplateStore, TemplateRenderer
    >>> renderer = TemplateRenderer(MemoryTemplateStore())
    >>> message = renderer.render("sms", "test_notification_sms", {"timestamp": "now"})
"""

from .exceptions import NotificationTemplateError, TemplateNotFoundError
from .helpers import TEMPLATE_HELPERS
from .renderer import CompiledTemplate, RenderedMessage, TemplateRenderer
from .store import MemoryTemplateStore, SqlTemplateStore, TemplateStore, load_default_templates
from .syntax import TemplateSyntaxTranslationError, to_jinja

__all__ = [
    "TemplateRenderer",
    "CompiledTemplate",
    "RenderedMessage",
    # Stores
    "TemplateStore",
    "SqlTemplateStore",
    "MemoryTemplateStore",
    "load_default_templates",
    # Syntax
    "TEMPLATE_HELPERS",
    "to_jinja",
    # Exceptions
    "NotificationTemplateError",
    "TemplateNotFoundError",
    "TemplateSyntaxTranslationError",
]
