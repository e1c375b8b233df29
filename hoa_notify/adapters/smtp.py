"""SMTP email adapter.

A thin wrapper around smtplib with STARTTLS/implicit TLS, optional
authentication and per-message connection lifecycle.
"""

import base64
import binascii
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Callable, Optional

from ..domain.models import Channel
from ..logging import get_logger
from ..utils.contacts import mask_recipient
from .base import ChannelAdapter, OutboundMessage
from .exceptions import AdapterConfigurationError, ChannelDeliveryError

logger = get_logger(__name__, component="adapter")


class SMTPAdapter(ChannelAdapter):
    """Email delivery over SMTP.

    The Message-ID generated for each message doubles as the provider id.
    """

    provider_name = "smtp"
    channel = Channel.EMAIL

    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        from_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ) -> None:
        """
        Args:
            smtp_factory: Factory for SMTP instances (for mocking)
            smtp_ssl_factory: Factory for SMTP_SSL instances (for mocking)
        """
        if not host:
            raise AdapterConfigurationError("SMTP_HOST is required for the SMTP adapter")
        self.host = host
        self.port = port
        self.from_email = from_email
        self.from_name = from_name
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def build_message(self, message: OutboundMessage) -> EmailMessage:
        email = EmailMessage()
        email["Subject"] = message.subject or ""
        email["From"] = formataddr((self.from_name, self.from_email))
        email["To"] = message.to
        email["Message-ID"] = make_msgid(idstring=message.notification_id[:16])
        email["X-Idempotency-Key"] = message.idempotency_key

        email.set_content(message.text or "")
        if message.html:
            email.add_alternative(message.html, subtype="html")

        for attachment in message.attachments:
            try:
                payload = base64.b64decode(attachment.content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ChannelDeliveryError(
                    f"Attachment {attachment.filename} is not valid base64",
                    provider=self.provider_name,
                    retryable=False,
                ) from e
            maintype, _, subtype = attachment.type.partition("/")
            email.add_attachment(
                payload,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return email

    def send(self, message: OutboundMessage) -> str:
        email = self.build_message(message)
        smtp = None
        try:
            if self.port == 465:
                smtp = self.smtp_ssl_factory(
                    self.host, self.port, context=ssl.create_default_context()
                )
            else:
                smtp = self.smtp_factory(self.host, self.port)
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if self.username and self.password:
                smtp.login(self.username, self.password)

            smtp.send_message(email)
        except smtplib.SMTPRecipientsRefused as e:
            raise ChannelDeliveryError(
                f"SMTP server refused recipient: {e}", provider=self.provider_name, retryable=False
            ) from e
        except smtplib.SMTPException as e:
            raise ChannelDeliveryError(
                f"SMTP error during message delivery: {e}", provider=self.provider_name
            ) from e
        except OSError as e:
            raise ChannelDeliveryError(
                f"Network error during SMTP connection: {e}", provider=self.provider_name
            ) from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")

        message_id = email["Message-ID"].strip("<>")
        logger.info(
            "Email accepted by SMTP server",
            extra={
                "event": "adapter.send.accepted",
                "provider": self.provider_name,
                "provider_id": message_id,
                "recipient": mask_recipient(message.to),
            },
        )
        return message_id
