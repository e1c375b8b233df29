"""Unit tests for channel adapters."""

import base64
import smtplib
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from hoa_notify.adapters import (
    AdapterConfigurationError,
    ChannelDeliveryError,
    OutboundMessage,
    SendGridAdapter,
    SMTPAdapter,
    TwilioAdapter,
    build_channel_adapters,
    map_sendgrid_status,
    map_twilio_status,
    normalize_sendgrid_message_id,
)
from hoa_notify.config.environment import EnvironmentConfig
from hoa_notify.domain.models import Attachment


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def email_message():
    """Rendered email message."""
    return OutboundMessage(
        channel="email",
        to="owner@example.com",
        subject="Form reminder",
        text="Please complete the pool access form.",
        html="<p>Please complete the pool access form.</p>",
        idempotency_key="key-1",
        notification_id="notif-1",
        template="form_reminder",
        user_id="101",
    )


@pytest.fixture
def sms_message():
    """Rendered SMS message."""
    return OutboundMessage(
        channel="sms",
        to="+13035550142",
        text="Water shutoff at 2pm. Reply STOP to opt out.",
        idempotency_key="key-2",
        notification_id="notif-2",
        template="emergency_alert_sms",
    )


def make_response(status_code=202, headers=None, json_body=None, text=""):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.reason = "reason"
    if json_body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_body
    return response


# ============================================================================
# Status mapping
# ============================================================================


class TestStatusMapping:
    """Tests for provider status vocabularies."""

    @pytest.mark.parametrize(
        "event,expected",
        [
            ("delivered", "delivered"),
            ("bounce", "bounced"),
            ("dropped", "failed"),
            ("deferred", "deferred"),
            ("processed", "sent"),
            ("open", "opened"),
            ("click", "clicked"),
            ("unsubscribe", "unsubscribed"),
            ("spamreport", "spam"),
            ("group_resubscribe", "unknown"),
            (None, "unknown"),
        ],
    )
    def test_sendgrid(self, event, expected):
        assert map_sendgrid_status(event) == expected

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("delivered", "delivered"),
            ("failed", "failed"),
            ("undelivered", "failed"),
            ("sent", "sent"),
            ("received", "delivered"),
            ("queued", "unknown"),
        ],
    )
    def test_twilio(self, status, expected):
        assert map_twilio_status(status) == expected

    def test_normalize_sendgrid_message_id(self):
        assert normalize_sendgrid_message_id("abc123.filter0001.16.5FA.0") == "abc123"
        assert normalize_sendgrid_message_id("abc123") == "abc123"
        assert normalize_sendgrid_message_id(None) is None


# ============================================================================
# SendGrid
# ============================================================================


class TestSendGridAdapter:
    """Tests for SendGridAdapter."""

    def test_requires_api_key(self):
        with pytest.raises(AdapterConfigurationError):
            SendGridAdapter(api_key="", from_email="hoa@example.com", from_name="HOA")

    def test_timeout_range(self):
        with pytest.raises(AdapterConfigurationError):
            SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA", timeout=1)

    def test_payload(self, email_message):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")
        email_message.attachments.append(
            Attachment(content="aGVsbG8=", filename="form.pdf", type="application/pdf")
        )

        payload = adapter.build_payload(email_message)

        assert payload["from"] == {"email": "hoa@example.com", "name": "HOA"}
        assert payload["personalizations"][0]["to"] == [{"email": "owner@example.com"}]
        assert payload["personalizations"][0]["custom_args"]["notification_id"] == "notif-1"
        assert payload["personalizations"][0]["custom_args"]["user_id"] == "101"
        assert [c["type"] for c in payload["content"]] == ["text/plain", "text/html"]
        assert payload["attachments"][0]["disposition"] == "attachment"

    @pytest.mark.parametrize(
        "template,group_id",
        [
            ("request_notification", 1),
            ("board_notification", 2),
            ("form_reminder", 3),
            ("community_announcement", 4),
            ("emergency_alert", 1),
        ],
    )
    def test_unsubscribe_group_per_template(self, email_message, template, group_id):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")
        email_message.template = template

        payload = adapter.build_payload(email_message)

        assert payload["asm"] == {"group_id": group_id}

    def test_send_returns_message_id(self, email_message):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")

        with patch.object(
            adapter._session, "post", return_value=make_response(headers={"X-Message-Id": "sg-1"})
        ) as mock_post:
            assert adapter.send(email_message) == "sg-1"

        kwargs = mock_post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer SG.key"
        assert kwargs["timeout"] == 30

    def test_missing_message_id(self, email_message):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")

        with patch.object(adapter._session, "post", return_value=make_response()):
            with pytest.raises(ChannelDeliveryError) as exc_info:
                adapter.send(email_message)

        assert exc_info.value.retryable is False

    def test_client_error_is_permanent(self, email_message):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")
        response = make_response(
            status_code=400, json_body={"errors": [{"message": "Invalid email address"}]}
        )

        with patch.object(adapter._session, "post", return_value=response):
            with pytest.raises(ChannelDeliveryError) as exc_info:
                adapter.send(email_message)

        assert exc_info.value.retryable is False
        assert exc_info.value.status_code == 400
        assert "Invalid email address" in str(exc_info.value)

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    def test_server_error_is_retryable(self, email_message, status_code):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")

        with patch.object(
            adapter._session, "post", return_value=make_response(status_code=status_code, text="busy")
        ):
            with pytest.raises(ChannelDeliveryError) as exc_info:
                adapter.send(email_message)

        assert exc_info.value.retryable is True

    def test_timeout_is_retryable(self, email_message):
        adapter = SendGridAdapter(api_key="SG.key", from_email="hoa@example.com", from_name="HOA")

        with patch.object(adapter._session, "post", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(ChannelDeliveryError) as exc_info:
                adapter.send(email_message)

        assert exc_info.value.retryable is True
        assert exc_info.value.provider == "sendgrid"


# ============================================================================
# Twilio
# ============================================================================


class TestTwilioAdapter:
    """Tests for TwilioAdapter."""

    def test_requires_sender(self):
        with pytest.raises(AdapterConfigurationError):
            TwilioAdapter(account_sid="AC123", auth_token="token")

    def test_form_with_phone_number(self, sms_message):
        adapter = TwilioAdapter(
            account_sid="AC123",
            auth_token="token",
            from_number="+13035550100",
            status_callback_url="https://api.example.com/api/notifications/sms-webhook",
        )

        form = adapter.build_form(sms_message)

        assert form["To"] == "+13035550142"
        assert form["From"] == "+13035550100"
        assert form["StatusCallback"].endswith("/sms-webhook")
        assert adapter.messages_url.endswith("/Accounts/AC123/Messages.json")

    def test_messaging_service_preferred(self, sms_message):
        adapter = TwilioAdapter(
            account_sid="AC123",
            auth_token="token",
            from_number="+13035550100",
            messaging_service_sid="MG456",
        )

        form = adapter.build_form(sms_message)

        assert form["MessagingServiceSid"] == "MG456"
        assert "From" not in form
        assert "StatusCallback" not in form

    def test_send_returns_sid(self, sms_message):
        adapter = TwilioAdapter(account_sid="AC123", auth_token="token", from_number="+13035550100")

        with patch.object(
            adapter._session, "post", return_value=make_response(201, json_body={"sid": "SM123"})
        ) as mock_post:
            assert adapter.send(sms_message) == "SM123"

        assert mock_post.call_args.kwargs["auth"] == ("AC123", "token")

    def test_connection_error(self, sms_message):
        adapter = TwilioAdapter(account_sid="AC123", auth_token="token", from_number="+13035550100")

        with patch.object(
            adapter._session, "post", side_effect=requests.exceptions.ConnectionError("refused")
        ):
            with pytest.raises(ChannelDeliveryError) as exc_info:
                adapter.send(sms_message)

        assert exc_info.value.retryable is True

    def test_missing_sid(self, sms_message):
        adapter = TwilioAdapter(account_sid="AC123", auth_token="token", from_number="+13035550100")

        with patch.object(adapter._session, "post", return_value=make_response(201, json_body={})):
            with pytest.raises(ChannelDeliveryError) as exc_info:
                adapter.send(sms_message)

        assert exc_info.value.retryable is False


# ============================================================================
# SMTP
# ============================================================================


class TestSMTPAdapter:
    """Tests for SMTPAdapter."""

    def make_adapter(self, port=587, username="mailer", password="secret"):
        smtp = MagicMock()
        smtp_ssl = MagicMock()
        adapter = SMTPAdapter(
            host="smtp.example.com",
            port=port,
            from_email="hoa@example.com",
            from_name="Sunset Ridge HOA",
            username=username,
            password=password,
            smtp_factory=Mock(return_value=smtp),
            smtp_ssl_factory=Mock(return_value=smtp_ssl),
        )
        return adapter, smtp, smtp_ssl

    def test_requires_host(self):
        with pytest.raises(AdapterConfigurationError):
            SMTPAdapter(host="", port=587, from_email="hoa@example.com", from_name="HOA")

    def test_build_message(self, email_message):
        adapter, _, _ = self.make_adapter()
        email_message.attachments.append(
            Attachment(
                content=base64.b64encode(b"%PDF").decode(),
                filename="form.pdf",
                type="application/pdf",
            )
        )

        email = adapter.build_message(email_message)

        assert email["To"] == "owner@example.com"
        assert "Sunset Ridge HOA" in email["From"]
        assert email["X-Idempotency-Key"] == "key-1"
        assert [part.get_filename() for part in email.iter_attachments()] == ["form.pdf"]

    def test_invalid_attachment(self, email_message):
        adapter, _, _ = self.make_adapter()
        email_message.attachments.append(Attachment(content="not base64!", filename="x.pdf"))

        with pytest.raises(ChannelDeliveryError) as exc_info:
            adapter.build_message(email_message)

        assert exc_info.value.retryable is False

    def test_send_with_starttls_and_login(self, email_message):
        adapter, smtp, smtp_ssl = self.make_adapter()

        message_id = adapter.send(email_message)

        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("mailer", "secret")
        smtp.send_message.assert_called_once()
        smtp.quit.assert_called_once()
        smtp_ssl.assert_not_called()
        assert "<" not in message_id

    def test_implicit_tls_on_port_465(self, email_message):
        adapter, smtp, smtp_ssl = self.make_adapter(port=465, username=None, password=None)

        adapter.send(email_message)

        adapter.smtp_ssl_factory.assert_called_once()
        adapter.smtp_factory.assert_not_called()
        smtp_ssl.login.assert_not_called()

    def test_refused_recipient_is_permanent(self, email_message):
        adapter, smtp, _ = self.make_adapter()
        smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused(
            {"owner@example.com": (550, b"unknown")}
        )

        with pytest.raises(ChannelDeliveryError) as exc_info:
            adapter.send(email_message)

        assert exc_info.value.retryable is False
        smtp.quit.assert_called_once()

    def test_network_error_is_retryable(self, email_message):
        adapter, _, _ = self.make_adapter()
        adapter.smtp_factory.side_effect = OSError("connection refused")

        with pytest.raises(ChannelDeliveryError) as exc_info:
            adapter.send(email_message)

        assert exc_info.value.retryable is True


# ============================================================================
# Factory
# ============================================================================


class TestBuildChannelAdapters:
    """Tests for build_channel_adapters."""

    def test_nothing_configured(self):
        assert build_channel_adapters(EnvironmentConfig()) == {}

    def test_sendgrid_and_twilio(self):
        env_config = EnvironmentConfig(
            sendgrid_api_key="SG.key",
            twilio_account_sid="AC123",
            twilio_auth_token="token",
            twilio_phone_number="+13035550100",
            api_base_url="https://api.example.com",
        )

        adapters = build_channel_adapters(env_config)

        assert isinstance(adapters["email"], SendGridAdapter)
        assert isinstance(adapters["sms"], TwilioAdapter)
        assert adapters["sms"].status_callback_url.endswith("/sms-webhook")

    def test_smtp_provider(self):
        env_config = EnvironmentConfig(email_provider="smtp", smtp_host="smtp.example.com")

        adapters = build_channel_adapters(env_config)

        assert isinstance(adapters["email"], SMTPAdapter)
        assert "sms" not in adapters

    def test_half_configured_twilio(self):
        env_config = EnvironmentConfig(twilio_account_sid="AC123", twilio_auth_token="token")

        with pytest.raises(AdapterConfigurationError):
            build_channel_adapters(env_config)
