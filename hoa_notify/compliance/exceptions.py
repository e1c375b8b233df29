"""Custom exceptions for the compliance gate."""


class ComplianceError(Exception):
    """Base exception for compliance operations.

    A denied send is not an error: it is reported through
    :class:`~hoa_notify.compliance.models.ComplianceDecision`. This exception
    covers invalid opt-out requests and store failures.
    """

    pass


class InvalidOptOutError(ComplianceError):
    """An opt-out request is missing its user or carries an unknown scope."""

    pass
