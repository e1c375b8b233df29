"""Template rendering for email and SMS notifications using Jinja2.

Sources are stored in the mustache dialect of the HOA web application and
translated to Jinja2 before compilation. Missing variables render as empty
strings, the way the web application's templates expect, instead of failing
the send.
"""

import threading
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from jinja2 import ChainableUndefined, Environment, TemplateError, meta
from pydantic import BaseModel

from ..domain.models import TemplateSource
from ..logging import get_logger
from .exceptions import NotificationTemplateError, TemplateNotFoundError
from .helpers import TEMPLATE_HELPERS
from .store import TemplateStore, load_default_templates
from .syntax import TemplateSyntaxTranslationError, to_jinja

logger = get_logger(__name__, component="templates")


class RenderedMessage(BaseModel):
    """Output of rendering one template."""

    subject: Optional[str] = None
    html: Optional[str] = None
    text: str


def _environment(autoescape: bool) -> Environment:
    env = Environment(autoescape=autoescape, undefined=ChainableUndefined)
    env.globals.update(TEMPLATE_HELPERS)
    return env


class CompiledTemplate:
    """A template whose parts are compiled and ready to render.

    Attributes:
        channel: email or sms
        name: Template name
        placeholders: Variable names referenced anywhere in the template
    """

    def __init__(self, source: TemplateSource, html_env: Environment, text_env: Environment):
        self.channel = source.channel
        self.name = source.name

        parts = {
            "subject": (source.subject, text_env),
            "html": (source.html, html_env),
            "text": (source.text, text_env),
        }
        self._compiled = {}
        placeholders = set()
        try:
            for part, (text, env) in parts.items():
                if text is None:
                    continue
                jinja_source = to_jinja(text, TEMPLATE_HELPERS)
                placeholders |= meta.find_undeclared_variables(env.parse(jinja_source))
                self._compiled[part] = env.from_string(jinja_source)
        except (TemplateSyntaxTranslationError, TemplateError) as e:
            raise NotificationTemplateError(
                f"Failed to compile template {self.channel}/{self.name}: {e}"
            ) from e

        self.placeholders: FrozenSet[str] = frozenset(placeholders - set(TEMPLATE_HELPERS))

    def render(self, data: Dict[str, Any]) -> RenderedMessage:
        """Render every part of the template with ``data``.

        Raises:
            NotificationTemplateError: If rendering fails
        """
        missing = sorted(self.placeholders - set(data))
        if missing:
            logger.debug(
                f"Template {self.channel}/{self.name} rendered with missing variables",
                extra={
                    "event": "template.render.missing_variables",
                    "template": self.name,
                    "missing": missing,
                },
            )

        try:
            rendered = {part: template.render(data) for part, template in self._compiled.items()}
        except TemplateError as e:
            raise NotificationTemplateError(
                f"Template rendering failed for {self.channel}/{self.name}: {e}"
            ) from e

        subject = rendered.get("subject")
        if subject is not None:
            subject = " ".join(subject.split())

        return RenderedMessage(
            subject=subject,
            html=rendered.get("html"),
            text=rendered.get("text", "").strip(),
        )


class TemplateRenderer:
    """Loads, compiles and caches named templates from a :class:`TemplateStore`.

    If the store is empty on first use, the default email and SMS templates
    shipped with the package are saved into it once. Compiled templates are
    cached for the lifetime of the renderer; :meth:`save_template` drops the
    cached copy of the template it replaces.
    """

    def __init__(self, store: TemplateStore):
        self.store = store
        self._html_env = _environment(autoescape=True)
        self._text_env = _environment(autoescape=False)
        self._cache: Dict[Tuple[str, str], CompiledTemplate] = {}
        self._lock = threading.Lock()
        self._seeded = False

    def _ensure_defaults(self) -> None:
        if self._seeded:
            return
        with self._lock:
            if self._seeded:
                return
            if self.store.is_empty():
                defaults = load_default_templates()
                for source in defaults:
                    self.store.save(source)
                logger.info(
                    f"Installed {len(defaults)} default templates",
                    extra={"event": "template.defaults.installed", "count": len(defaults)},
                )
            self._seeded = True

    def get_template(self, channel: str, name: str) -> CompiledTemplate:
        """Return the compiled template for ``(channel, name)``.

        Raises:
            TemplateNotFoundError: If no such template is stored
            NotificationTemplateError: If the stored source does not compile
        """
        key = (channel, name)
        compiled = self._cache.get(key)
        if compiled is not None:
            return compiled

        self._ensure_defaults()
        source = self.store.get(channel, name)
        if source is None:
            raise TemplateNotFoundError(channel, name)

        compiled = CompiledTemplate(source, self._html_env, self._text_env)
        with self._lock:
            self._cache[key] = compiled
        logger.debug(
            f"Compiled template {channel}/{name}",
            extra={"event": "template.compiled", "template": name, "channel": channel},
        )
        return compiled

    def render(self, channel: str, name: str, data: Dict[str, Any]) -> RenderedMessage:
        """Render template ``name`` of ``channel`` with ``data``."""
        return self.get_template(channel, name).render(data)

    def available_templates(self) -> Dict[str, List[str]]:
        """Stored template names grouped by channel."""
        self._ensure_defaults()
        return self.store.names()

    def save_template(self, source: TemplateSource) -> CompiledTemplate:
        """Store ``source`` and return its compiled form.

        The source is compiled before it is stored, so a template with a
        syntax error never replaces a working one.
        """
        compiled = CompiledTemplate(source, self._html_env, self._text_env)
        self._ensure_defaults()
        self.store.save(source)
        with self._lock:
            self._cache[(source.channel, source.name)] = compiled
        logger.info(
            f"Saved template {source.channel}/{source.name}",
            extra={"event": "template.saved", "template": source.name, "channel": source.channel},
        )
        return compiled
