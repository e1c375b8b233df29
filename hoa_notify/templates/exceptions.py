"""Custom exceptions for template loading and rendering."""


class NotificationTemplateError(Exception):
    """A template could not be compiled or rendered."""

    pass


class TemplateNotFoundError(NotificationTemplateError):
    """No template is stored under the requested (channel, name)."""

    def __init__(self, channel: str, name: str) -> None:
        super().__init__(f"Template not found: {channel}/{name}")
        self.channel = channel
        self.name = name
