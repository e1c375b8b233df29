"""Structured logging for the notification pipeline.

Every module obtains its logger through :func:`get_logger` and passes a
dotted ``event`` name in ``extra`` so log lines can be filtered by event
(``gateway.send.blocked``, ``queue.job.failed``...).
"""

import logging
from typing import Optional, Union

from .config import configure_logging
from .context import clear_log_context, get_log_context, log_context


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that stamps a ``component`` field on every record.

    Fields passed in a call's ``extra`` win over the adapter defaults.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Return a logger, wrapped to inject ``component`` when one is given.

    Example:
        >>> logger = get_logger(__name__, component="gateway")
        >>> logger.info("Notification sent", extra={"event": "gateway.send.sent"})
    """
    logger = logging.getLogger(name)
    if component:
        return ComponentLoggerAdapter(logger, {"component": component})
    return logger


__all__ = [
    "ComponentLoggerAdapter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "get_logger",
    "log_context",
]
