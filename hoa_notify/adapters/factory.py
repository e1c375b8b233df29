"""Factory for the channel adapters described by the environment."""

from typing import Dict

from ..config.environment import EnvironmentConfig
from ..logging import get_logger
from .base import ChannelAdapter
from .exceptions import AdapterConfigurationError
from .sendgrid import SendGridAdapter
from .smtp import SMTPAdapter
from .twilio import TwilioAdapter

logger = get_logger(__name__, component="adapter")


def build_channel_adapters(env_config: EnvironmentConfig) -> Dict[str, ChannelAdapter]:
    """Instantiate one adapter per configured channel.

    A channel without any credentials is left out (sending on it later raises
    ``ChannelNotConfiguredError``); credentials that are present but
    incomplete are a startup error.

    Returns:
        Mapping of channel name ("email", "sms") to adapter

    Raises:
        AdapterConfigurationError: If credentials are incomplete

    Example:
        >>> adapters = build_channel_adapters(load_environment_config())
        >>> adapters["email"].provider_name
        'sendgrid'
    """
    adapters: Dict[str, ChannelAdapter] = {}

    if env_config.email_configured:
        if env_config.email_provider == "smtp":
            adapters["email"] = SMTPAdapter(
                host=env_config.smtp_host,
                port=env_config.smtp_port,
                from_email=env_config.from_email,
                from_name=env_config.from_name,
                username=env_config.smtp_user,
                password=env_config.smtp_pass,
            )
        else:
            adapters["email"] = SendGridAdapter(
                api_key=env_config.sendgrid_api_key,
                from_email=env_config.from_email,
                from_name=env_config.from_name,
            )
    else:
        logger.warning(
            "Email channel not configured",
            extra={"event": "adapter.channel.unconfigured", "channel": "email"},
        )

    if env_config.sms_configured:
        adapters["sms"] = TwilioAdapter(
            account_sid=env_config.twilio_account_sid,
            auth_token=env_config.twilio_auth_token,
            from_number=env_config.twilio_phone_number,
            messaging_service_sid=env_config.twilio_messaging_service_sid,
            status_callback_url=env_config.sms_status_callback_url,
        )
    elif env_config.twilio_account_sid or env_config.twilio_auth_token:
        raise AdapterConfigurationError(
            "Twilio credentials are set but neither TWILIO_PHONE_NUMBER nor "
            "TWILIO_MESSAGING_SERVICE_SID is configured"
        )
    else:
        logger.warning(
            "SMS channel not configured",
            extra={"event": "adapter.channel.unconfigured", "channel": "sms"},
        )

    for channel, adapter in adapters.items():
        logger.info(
            "Channel adapter ready",
            extra={
                "event": "adapter.channel.ready",
                "channel": channel,
                "provider": adapter.provider_name,
            },
        )
    return adapters
