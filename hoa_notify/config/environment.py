"""Environment variable loading and validation.

Credentials and deployment-specific settings come from the environment
(optionally through a ``.env`` file loaded by the CLI), never from
``config.yaml``.
"""

import os
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
_VALID_EMAIL_PROVIDERS = ["sendgrid", "smtp"]
_VALID_BROKER_SCHEMES = ("redis://", "rediss://", "memory://")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        db_pool_max: int = 20,
        celery_broker_url: Optional[str] = None,
        celery_always_eager: bool = False,
        email_provider: str = "sendgrid",
        sendgrid_api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        twilio_account_sid: Optional[str] = None,
        twilio_auth_token: Optional[str] = None,
        twilio_phone_number: Optional[str] = None,
        twilio_messaging_service_sid: Optional[str] = None,
        api_base_url: Optional[str] = None,
        demo_mode: bool = False,
        skip_compliance_checks: bool = False,
        log_level: Optional[str] = None,
        environment: str = "local",
    ):
        """Initialize environment configuration."""
        self.database_url = database_url or "sqlite:///./data/hoa_notify.db"
        self.db_pool_max = db_pool_max
        self.celery_broker_url = celery_broker_url or "redis://localhost:6379/0"
        self.celery_always_eager = celery_always_eager
        self.email_provider = email_provider
        self.sendgrid_api_key = sendgrid_api_key
        self.from_email = from_email or "noreply@hoaconnect.com"
        self.from_name = from_name or "HOA Connect"
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.twilio_phone_number = twilio_phone_number
        self.twilio_messaging_service_sid = twilio_messaging_service_sid
        self.api_base_url = api_base_url.rstrip("/") if api_base_url else None
        self.demo_mode = demo_mode
        self.skip_compliance_checks = skip_compliance_checks
        self.log_level = log_level
        self.environment = environment

    @property
    def bypass_compliance(self) -> bool:
        """Whether compliance checks and ledger writes are skipped (demo/test)."""
        return self.demo_mode or self.skip_compliance_checks

    @property
    def email_configured(self) -> bool:
        if self.email_provider == "smtp":
            return bool(self.smtp_host)
        return bool(self.sendgrid_api_key)

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and (self.twilio_phone_number or self.twilio_messaging_service_sid)
        )

    @property
    def sms_status_callback_url(self) -> Optional[str]:
        """Twilio status callback, only outside demo mode."""
        if self.api_base_url and not self.demo_mode:
            return f"{self.api_base_url}/api/notifications/sms-webhook"
        return None


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Recognized variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/hoa_notify.db)
    - DB_POOL_MAX: Maximum pooled connections (default: 20)
    - REDIS_URL: Celery broker for the job queues (default: redis://localhost:6379/0)
    - CELERY_BROKER_URL: Overrides REDIS_URL as the Celery broker
    - CELERY_TASK_ALWAYS_EAGER: Run queue tasks in the calling process (tests, demos)
    - EMAIL_PROVIDER: sendgrid (default) or smtp
    - SENDGRID_API_KEY, FROM_EMAIL, FROM_NAME
    - SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER,
      TWILIO_MESSAGING_SERVICE_SID
    - API_BASE_URL: Public base URL used for provider status callbacks
    - DEMO_MODE, SKIP_COMPLIANCE_CHECKS: Enable the compliance/ledger bypass
    - LOG_LEVEL, ENVIRONMENT

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is present but invalid
    """
    errors = []

    database_url = os.getenv("DATABASE_URL")
    broker_variable = "CELERY_BROKER_URL" if os.getenv("CELERY_BROKER_URL") else "REDIS_URL"
    celery_broker_url = os.getenv(broker_variable)
    email_provider = (os.getenv("EMAIL_PROVIDER") or "sendgrid").strip().lower()
    sendgrid_api_key = os.getenv("SENDGRID_API_KEY")
    from_email = os.getenv("FROM_EMAIL")
    from_name = os.getenv("FROM_NAME")
    smtp_host = os.getenv("SMTP_HOST")
    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    twilio_account_sid = os.getenv("TWILIO_ACCOUNT_SID")
    twilio_auth_token = os.getenv("TWILIO_AUTH_TOKEN")
    twilio_phone_number = os.getenv("TWILIO_PHONE_NUMBER")
    twilio_messaging_service_sid = os.getenv("TWILIO_MESSAGING_SERVICE_SID")
    api_base_url = os.getenv("API_BASE_URL")
    log_level = os.getenv("LOG_LEVEL")
    environment = os.getenv("ENVIRONMENT", "local")

    db_pool_max = _parse_int(os.getenv("DB_POOL_MAX"), "DB_POOL_MAX", 20, 1, 200, errors)
    smtp_port = _parse_int(os.getenv("SMTP_PORT"), "SMTP_PORT", 587, 1, 65535, errors)

    if email_provider not in _VALID_EMAIL_PROVIDERS:
        errors.append(
            f"Invalid EMAIL_PROVIDER: '{email_provider}'. "
            f"Must be one of: {', '.join(_VALID_EMAIL_PROVIDERS)}"
        )

    if from_email and not _is_valid_email(from_email):
        errors.append(f"Invalid email address format in FROM_EMAIL: '{from_email}'")

    if log_level and log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(_VALID_LOG_LEVELS)}"
        )

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if bool(twilio_account_sid) != bool(twilio_auth_token):
        errors.append(
            "TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be set together."
        )

    if api_base_url and not api_base_url.startswith(("http://", "https://")):
        errors.append(f"Invalid API_BASE_URL: '{api_base_url}'. Must start with http:// or https://")

    if celery_broker_url and not celery_broker_url.startswith(_VALID_BROKER_SCHEMES):
        errors.append(
            f"Invalid {broker_variable}: '{celery_broker_url}'. "
            f"Must start with one of: {', '.join(_VALID_BROKER_SCHEMES)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Check that email addresses and URLs are valid",
                "Verify numeric variables (SMTP_PORT, DB_POOL_MAX) are integers",
            ],
        )

    return EnvironmentConfig(
        database_url=database_url,
        db_pool_max=db_pool_max,
        celery_broker_url=celery_broker_url,
        celery_always_eager=_parse_bool(os.getenv("CELERY_TASK_ALWAYS_EAGER")),
        email_provider=email_provider,
        sendgrid_api_key=sendgrid_api_key,
        from_email=from_email,
        from_name=from_name,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        twilio_account_sid=twilio_account_sid,
        twilio_auth_token=twilio_auth_token,
        twilio_phone_number=twilio_phone_number,
        twilio_messaging_service_sid=twilio_messaging_service_sid,
        api_base_url=api_base_url,
        demo_mode=_parse_bool(os.getenv("DEMO_MODE")),
        skip_compliance_checks=_parse_bool(os.getenv("SKIP_COMPLIANCE_CHECKS")),
        log_level=log_level.upper() if log_level else None,
        environment=environment,
    )


def _parse_bool(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in _TRUE_VALUES


def _parse_int(
    value: Optional[str], name: str, default: int, minimum: int, maximum: int, errors: list
) -> int:
    """Parse an integer variable, appending to ``errors`` instead of raising."""
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        errors.append(f"Invalid {name}: '{value}'. Must be a valid integer.")
        return default
    if parsed < minimum or parsed > maximum:
        errors.append(f"Invalid {name}: {parsed}. Must be between {minimum} and {maximum}.")
    return parsed


def _is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
        return True
    except EmailNotValidError:
        return False
