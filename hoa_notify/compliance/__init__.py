"""Compliance gate deciding whether a notification may be sent.

Example usage:
    >>> from hoa_notify.compliance import ComplianceGate, SqlComplianceStore
    >>> gate = ComplianceGate(SqlComplianceStore(database), timezone="America/Denver")
    >>> decision = gate.evaluate(notification)
    >>> decision.allowed, decision.reason
"""

from .exceptions import ComplianceError, InvalidOptOutError
from .gate import ComplianceGate
from .models import CheckResult, ComplianceDecision
from .rules import (
    DEFAULT_RATE_LIMITS,
    MARKETING_TEMPLATES,
    TEMPLATE_RATE_LIMITS,
    URGENT_TEMPLATES,
    resolve_rate_limit,
)
from .store import ComplianceStore, SqlComplianceStore

__all__ = [
    "ComplianceGate",
    "ComplianceDecision",
    "CheckResult",
    # Store
    "ComplianceStore",
    "SqlComplianceStore",
    # Rules
    "DEFAULT_RATE_LIMITS",
    "TEMPLATE_RATE_LIMITS",
    "URGENT_TEMPLATES",
    "MARKETING_TEMPLATES",
    "resolve_rate_limit",
    # Exceptions
    "ComplianceError",
    "InvalidOptOutError",
]
