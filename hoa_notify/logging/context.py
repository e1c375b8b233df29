"""Scoped logging context.

Fields such as ``notification_id``, ``job_id`` and ``queue`` are bound for the
duration of a job or send and picked up by :class:`ContextualFilter`. The
context lives in a ``ContextVar``, so each worker thread sees only its own
fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("hoa_notify_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the fields bound in the current context."""
    return dict(_LOG_CONTEXT.get())


def bind_log_context(**fields: Any) -> Token:
    """Merge ``fields`` into the current context and return a reset token.

    ``None`` values are dropped so optional identifiers can be passed through
    without polluting log lines.
    """
    merged = {**_LOG_CONTEXT.get()}
    merged.update({key: value for key, value in fields.items() if value is not None})
    return _LOG_CONTEXT.set(merged)


def reset_log_context(token: Token) -> None:
    _LOG_CONTEXT.reset(token)


def clear_log_context() -> None:
    """Drop every bound field (used by tests)."""
    _LOG_CONTEXT.set({})


class log_context:
    """Context manager binding fields for the enclosed block.

    Example:
        >>> with log_context(job_id="42", queue="immediate"):
        ...     logger.info("Processing job")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self) -> "log_context":
        self._token = bind_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._token is not None:
            reset_log_context(self._token)
            self._token = None
        return False
