"""Result types produced by the compliance gate."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CheckResult(BaseModel):
    """Outcome of one compliance check."""

    name: str = Field(..., description="Check identifier, e.g. rate_limit")
    passed: bool
    reason: str
    data: Optional[Dict[str, Any]] = None


class ComplianceDecision(BaseModel):
    """Allow/deny verdict over every check that ran."""

    allowed: bool
    reason: str
    checks: List[CheckResult] = Field(default_factory=list)

    @property
    def failed_checks(self) -> List[CheckResult]:
        return [check for check in self.checks if not check.passed]

    @classmethod
    def from_checks(cls, checks: List[CheckResult]) -> "ComplianceDecision":
        """Deny when any check failed, joining the failure reasons with ``"; "``."""
        failed = [check for check in checks if not check.passed]
        if failed:
            return cls(
                allowed=False,
                reason="; ".join(check.reason for check in failed),
                checks=checks,
            )
        return cls(allowed=True, reason="All compliance checks passed", checks=checks)
