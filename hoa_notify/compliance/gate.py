"""Compliance gate: opt-outs, rate limits, preferences, send hours and content.

The gate decides whether a notification may be sent. Every check always runs,
so a denial lists every problem at once. A check that cannot be evaluated
(store failure, bad data) counts as failed, so the gate fails closed.
"""

from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..domain.models import Channel, ComplianceViolation, Notification, OptOut, OptOutScope
from ..logging import get_logger
from ..templates.renderer import RenderedMessage
from ..utils.contacts import format_e164, mask_recipient
from ..utils.timestamps import Clock, format_timestamp, local_hour, utc_now
from . import rules
from .exceptions import InvalidOptOutError
from .models import CheckResult, ComplianceDecision
from .store import ComplianceStore

logger = get_logger(__name__, component="compliance")

_REPORT_WINDOW = timedelta(days=30)


class ComplianceGate:
    """Stateless rule evaluator over a :class:`ComplianceStore`."""

    def __init__(
        self,
        store: ComplianceStore,
        clock: Clock = utc_now,
        timezone: str = "UTC",
        rate_limit_overrides: Optional[Mapping[str, Mapping[str, int]]] = None,
        sms_hours: Tuple[int, int] = (9, 18),
        email_hours: Tuple[int, int] = (8, 20),
    ):
        """
        Args:
            store: Opt-out, delivery and preference queries
            clock: Returns the current UTC time
            timezone: IANA timezone of the community, used for send hours
            rate_limit_overrides: Template or channel keyed ``{hourly, daily}``
            sms_hours: Local [start, end) hours in which SMS may be sent
            email_hours: Local [start, end) hours for marketing email
        """
        self.store = store
        self.clock = clock
        self.timezone = timezone
        self.rate_limit_overrides = dict(rate_limit_overrides or {})
        self.sms_hours = sms_hours
        self.email_hours = email_hours

    def evaluate(
        self, notification: Notification, rendered: Optional[RenderedMessage] = None
    ) -> ComplianceDecision:
        """Run all five checks against ``notification``.

        Args:
            notification: The send being considered
            rendered: Rendered content, checked instead of raw data when given

        Returns:
            ComplianceDecision; ``allowed`` only if every check passed
        """
        checks: List[Tuple[str, Callable[[], CheckResult]]] = [
            ("opt_out", lambda: self._check_opt_out(notification)),
            ("rate_limit", lambda: self._check_rate_limits(notification)),
            ("user_preferences", lambda: self._check_user_preferences(notification)),
            ("business_hours", lambda: self._check_business_hours(notification)),
            ("content_compliance", lambda: self._check_content(notification, rendered)),
        ]

        results = [self._run_check(name, check) for name, check in checks]
        decision = ComplianceDecision.from_checks(results)

        if not decision.allowed:
            logger.info(
                f"Compliance denied {notification.type} {notification.template}: {decision.reason}",
                extra={
                    "event": "compliance.denied",
                    "notification_id": notification.id,
                    "failed_checks": [check.name for check in decision.failed_checks],
                },
            )
        return decision

    def _run_check(self, name: str, check: Callable[[], CheckResult]) -> CheckResult:
        label = name.replace("_", " ")
        try:
            return check()
        except Exception as e:
            logger.error(
                f"Failed to check {label}: {e}",
                exc_info=True,
                extra={"event": "compliance.check.error", "check": name},
            )
            return CheckResult(name=name, passed=False, reason=f"Failed to check {label}")

    def _check_opt_out(self, notification: Notification) -> CheckResult:
        if notification.user_id is None:
            return CheckResult(name="opt_out", passed=True, reason="No user to check opt-outs for")

        opt_out = self.store.latest_opt_out(notification.user_id, notification.type)
        if opt_out is not None:
            return CheckResult(
                name="opt_out",
                passed=False,
                reason=(
                    f"User opted out of {opt_out.type} notifications on "
                    f"{format_timestamp(opt_out.occurred_at)}"
                ),
                data={"opt_out_id": opt_out.id, "source": opt_out.source},
            )
        return CheckResult(name="opt_out", passed=True, reason="User has not opted out")

    def _check_rate_limits(self, notification: Notification) -> CheckResult:
        limits = self.get_rate_limits(notification.type, notification.template)
        now = self.clock()

        counts = {}
        for period, window in (("hourly", timedelta(hours=1)), ("daily", timedelta(hours=24))):
            current = self.store.count_sent(
                notification.type,
                now - window,
                user_id=notification.user_id,
                recipient=notification.recipient,
            )
            counts[period] = current
            if current >= limits[period]:
                return CheckResult(
                    name="rate_limit",
                    passed=False,
                    reason=f"{period.capitalize()} rate limit exceeded: {current}/{limits[period]}",
                    data={"limit": limits[period], "current": current, "period": period},
                )

        return CheckResult(
            name="rate_limit",
            passed=True,
            reason="Rate limits not exceeded",
            data={period: {"limit": limits[period], "current": counts[period]} for period in counts},
        )

    def _check_user_preferences(self, notification: Notification) -> CheckResult:
        preferences = (
            self.store.get_preferences(notification.user_id) if notification.user_id else None
        )
        if preferences is None:
            return CheckResult(
                name="user_preferences", passed=True, reason="No preferences set, using defaults"
            )

        if not preferences.channel_enabled(notification.type):
            label = "SMS" if notification.type == Channel.SMS.value else notification.type
            return CheckResult(
                name="user_preferences",
                passed=False,
                reason=f"User has disabled {label} notifications",
            )

        allowed = preferences.notification_types
        if allowed is not None and notification.template not in allowed:
            return CheckResult(
                name="user_preferences",
                passed=False,
                reason=f"User has disabled {notification.template} notifications",
            )

        return CheckResult(
            name="user_preferences", passed=True, reason="User preferences allow notification"
        )

    def _check_business_hours(self, notification: Notification) -> CheckResult:
        if notification.template in rules.URGENT_TEMPLATES:
            return CheckResult(
                name="business_hours",
                passed=True,
                reason="Urgent notification bypasses business hours",
            )

        hour = local_hour(self.clock(), self.timezone)
        data = {"current_hour": hour, "timezone": self.timezone}

        if notification.type == Channel.SMS.value:
            start, end = self.sms_hours
            if not rules.in_window(hour, start, end):
                return CheckResult(
                    name="business_hours",
                    passed=False,
                    reason=f"SMS outside allowed hours ({start}:00-{end}:00)",
                    data=data,
                )

        if (
            notification.type == Channel.EMAIL.value
            and notification.template in rules.MARKETING_TEMPLATES
        ):
            start, end = self.email_hours
            if not rules.in_window(hour, start, end):
                return CheckResult(
                    name="business_hours",
                    passed=False,
                    reason=f"Marketing email outside business hours ({start}:00-{end}:00)",
                    data=data,
                )

        return CheckResult(
            name="business_hours", passed=True, reason="Within allowed business hours", data=data
        )

    def _check_content(
        self, notification: Notification, rendered: Optional[RenderedMessage]
    ) -> CheckResult:
        data = notification.data
        if notification.type == Channel.EMAIL.value:
            subject = rendered.subject if rendered and rendered.subject else data.get("subject")
            issues = rules.email_content_issues(data, subject)
        elif notification.type == Channel.SMS.value:
            body = rendered.text if rendered is not None else str(data.get("message") or "")
            issues = rules.sms_content_issues(body)
        else:
            issues = [f"Unsupported notification type: {notification.type}"]

        if issues:
            return CheckResult(
                name="content_compliance",
                passed=False,
                reason=f"Content compliance issues: {', '.join(issues)}",
                data={"issues": issues},
            )
        return CheckResult(
            name="content_compliance", passed=True, reason="Content compliance checks passed"
        )

    def get_rate_limits(self, channel: str, template: Optional[str]) -> Dict[str, int]:
        """Effective ``{hourly, daily}`` limits for a channel and template."""
        return rules.resolve_rate_limit(channel, template, self.rate_limit_overrides)

    def record_violations(self, notification: Notification, decision: ComplianceDecision) -> int:
        """Write one audit entry per failed check of a denied send.

        Returns:
            Number of violations recorded
        """
        now = self.clock()
        for check in decision.failed_checks:
            self.store.add_violation(
                ComplianceViolation(
                    user_id=notification.user_id,
                    type=notification.type,
                    template=notification.template,
                    violation_type=check.name,
                    reason=check.reason,
                    created_at=now,
                )
            )
        return len(decision.failed_checks)

    def record_opt_out(self, opt_out: OptOut) -> int:
        """Append an opt-out. Repeated opt-outs are all kept.

        Raises:
            InvalidOptOutError: If the opt-out has no user
        """
        if not opt_out.user_id:
            raise InvalidOptOutError("Opt-out requires a user_id")

        opt_out_id = self.store.add_opt_out(opt_out)
        logger.info(
            f"Opt-out recorded: user {opt_out.user_id} opted out of {opt_out.type} via {opt_out.source}",
            extra={
                "event": "compliance.opt_out.recorded",
                "user_id": opt_out.user_id,
                "scope": opt_out.type,
                "source": opt_out.source,
            },
        )
        return opt_out_id

    def process_sms_stop(self, phone: str, message: str = "STOP") -> Optional[str]:
        """Record an SMS opt-out for the user owning ``phone``.

        Returns:
            The user id, or None when the number belongs to no known user
        """
        normalized = format_e164(phone)
        user_id = self.store.find_user_by_phone(normalized)
        if user_id is None:
            logger.warning(
                "SMS STOP received from unknown number",
                extra={"event": "compliance.sms_stop.unknown", "phone": mask_recipient(normalized)},
            )
            return None

        now = self.clock()
        self.record_opt_out(
            OptOut(
                user_id=user_id,
                type=OptOutScope.SMS,
                reason="SMS STOP command",
                source="sms_stop",
                occurred_at=now,
                metadata={
                    "phone_number": normalized,
                    "message": message,
                    "timestamp": format_timestamp(now),
                },
            )
        )
        return user_id

    def get_compliance_report(self, start=None, end=None) -> Dict[str, Any]:
        """Opt-outs, deliveries and violations per day within [start, end].

        Defaults to the last 30 days.
        """
        end = end or self.clock()
        start = start or end - _REPORT_WINDOW

        opt_outs = [
            {"date": day, "type": kind, "source": source, "count": count}
            for day, kind, source, count in self.store.opt_out_counts(start, end)
        ]
        deliveries = [
            {"date": day, "type": kind, "status": status, "count": count}
            for day, kind, status, count in self.store.delivery_counts(start, end)
        ]
        violations = [
            {"date": day, "violation_type": kind, "count": count}
            for day, kind, count in self.store.violation_counts(start, end)
        ]

        return {
            "period": {"start": format_timestamp(start), "end": format_timestamp(end)},
            "opt_outs": opt_outs,
            "deliveries": deliveries,
            "violations": violations,
            "summary": {
                "total_opt_outs": sum(row["count"] for row in opt_outs),
                "total_deliveries": sum(row["count"] for row in deliveries),
                "total_violations": sum(row["count"] for row in violations),
            },
        }
