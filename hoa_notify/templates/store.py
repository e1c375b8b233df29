"""Key-value stores for template sources and the shipped default set."""

import threading
from abc import ABC, abstractmethod
from importlib import resources
from typing import Dict, List, Optional, Tuple

import yaml

from ..domain.models import Channel, TemplateSource
from ..persistence.database import Database
from ..persistence.repositories import TemplateRepository
from .exceptions import NotificationTemplateError


class TemplateStore(ABC):
    """Source of template text keyed by ``(channel, name)``."""

    @abstractmethod
    def get(self, channel: str, name: str) -> Optional[TemplateSource]:
        """Return the stored source, or None."""

    @abstractmethod
    def names(self) -> Dict[str, List[str]]:
        """Template names grouped by channel."""

    @abstractmethod
    def is_empty(self) -> bool:
        """True when no template at all is stored."""

    @abstractmethod
    def save(self, source: TemplateSource) -> None:
        """Insert or replace one template."""


class SqlTemplateStore(TemplateStore):
    """Templates kept in the ``notification_templates`` table."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, channel: str, name: str) -> Optional[TemplateSource]:
        with self.database.session() as session:
            return TemplateRepository(session).get(channel, name)

    def names(self) -> Dict[str, List[str]]:
        with self.database.session() as session:
            return TemplateRepository(session).list_names()

    def is_empty(self) -> bool:
        with self.database.session() as session:
            return TemplateRepository(session).count() == 0

    def save(self, source: TemplateSource) -> None:
        with self.database.session() as session:
            TemplateRepository(session).save(source)


class MemoryTemplateStore(TemplateStore):
    """Dict-backed store for tests and one-shot runs."""

    def __init__(self, sources: Optional[List[TemplateSource]] = None):
        self._lock = threading.Lock()
        self._sources: Dict[Tuple[str, str], TemplateSource] = {}
        for source in sources or []:
            self.save(source)

    def get(self, channel: str, name: str) -> Optional[TemplateSource]:
        with self._lock:
            return self._sources.get((channel, name))

    def names(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        with self._lock:
            for channel, name in sorted(self._sources):
                grouped.setdefault(channel, []).append(name)
        return grouped

    def is_empty(self) -> bool:
        with self._lock:
            return not self._sources

    def save(self, source: TemplateSource) -> None:
        with self._lock:
            self._sources[(source.channel, source.name)] = source


def load_default_templates() -> List[TemplateSource]:
    """Read the email and SMS templates shipped in ``templates/defaults``.

    Raises:
        NotificationTemplateError: If a defaults file is missing or malformed
    """
    defaults_dir = resources.files("hoa_notify.templates").joinpath("defaults")
    sources: List[TemplateSource] = []
    for channel in (Channel.EMAIL, Channel.SMS):
        filename = f"{channel.value}.yaml"
        try:
            raw = yaml.safe_load(defaults_dir.joinpath(filename).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise NotificationTemplateError(f"Failed to load default templates {filename}: {e}") from e

        if not isinstance(raw, dict):
            raise NotificationTemplateError(f"Default templates {filename} must be a mapping")

        for name, body in raw.items():
            sources.append(
                TemplateSource(
                    channel=channel,
                    name=name,
                    subject=body.get("subject"),
                    html=body.get("html"),
                    text=body["text"],
                )
            )
    return sources
