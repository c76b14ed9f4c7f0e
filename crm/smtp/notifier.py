"""
Due follow-up notifications.

Sends one email per due follow-up via SMTP. Delivery is attempted once: a
failure is logged and reported as False, never raised, so the scheduler can
move on to the next client. The notification tag (followup-<client id>)
identifies the due event it belongs to.
"""

from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import urlencode

import aiosmtplib

from crm.config import settings
from crm.db.models import ClientRecord
from crm.utils.logger import get_logger, log_notification_failed


logger = get_logger(__name__)


NOTIFICATION_TITLE = "Follow-up due"
NOTIFICATION_BODY = "It's time to follow up with {client_name}."


@dataclass(frozen=True)
class NotificationPayload:
    """What gets delivered for one due follow-up."""

    tag: str
    title: str
    body: str
    url: str

    @classmethod
    def for_client(cls, client: ClientRecord, base_url: Optional[str] = None) -> 'NotificationPayload':
        base = base_url or settings.app_base_url
        return cls(
            tag=f"followup-{client.id}",
            title=NOTIFICATION_TITLE,
            body=NOTIFICATION_BODY.format(client_name=client.company_name or client.id),
            url=f"{base}?{urlencode({'clientId': client.id})}"
        )


class LogNotifier:
    """
    Notifier that only writes the payload to the log.

    Used when SMTP is not configured, so due events stay visible.
    """

    async def notify_due(self, client: ClientRecord) -> bool:
        if not settings.notifications_enabled:
            return False

        payload = NotificationPayload.for_client(client)
        logger.info(
            f"{payload.title}: {payload.body} ({payload.url}) [tag={payload.tag}]"
        )
        return True


class SMTPNotifier:
    """
    Email notifier for due follow-ups.

    Composes a plain-text message addressed to the configured owner address
    and sends it once with STARTTLS.
    """

    def __init__(self):
        self.smtp_server = settings.smtp_server
        self.smtp_port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.from_email = settings.notify_from_email
        self.to_email = settings.notify_to_email

    def _compose_email(self, payload: NotificationPayload) -> MIMEMultipart:
        """
        Compose the notification email.

        The tag goes into a custom header so mail rules can group repeated
        notifications for the same client.
        """
        msg = MIMEMultipart()
        msg['From'] = self.from_email
        msg['To'] = self.to_email
        msg['Subject'] = payload.title
        msg['X-CRM-Notification-Tag'] = payload.tag

        msg.attach(MIMEText(f"{payload.body}\n\n{payload.url}\n", 'plain'))

        return msg

    async def notify_due(self, client: ClientRecord) -> bool:
        """
        Deliver a due notification for client.

        Args:
            client: The client whose follow-up is due

        Returns:
            True if delivered, False if notifications are disabled,
            SMTP is unconfigured, or sending failed
        """
        if not settings.notifications_enabled:
            logger.debug(f"Notifications disabled, not notifying for {client.id}")
            return False

        if not settings.smtp_configured:
            log_notification_failed(client.id, "SMTP not configured")
            return False

        payload = NotificationPayload.for_client(client)
        message = self._compose_email(payload)

        try:
            async with aiosmtplib.SMTP(
                hostname=self.smtp_server,
                port=self.smtp_port,
                use_tls=False,
                start_tls=True
            ) as smtp:
                await smtp.login(self.username, self.password)
                await smtp.send_message(message)

        except aiosmtplib.SMTPAuthenticationError as e:
            log_notification_failed(
                client.id,
                f"SMTP authentication failed for {self.username}: {e}"
            )
            return False

        except (
            aiosmtplib.SMTPException,
            ConnectionError,
            TimeoutError,
            OSError
        ) as e:
            log_notification_failed(client.id, str(e))
            return False

        logger.info(f"Notification sent to {self.to_email} [tag={payload.tag}]")
        return True


def build_notifier():
    """SMTP notifier when configured, log-only notifier otherwise."""
    if settings.notifications_enabled and settings.smtp_configured:
        return SMTPNotifier()
    logger.info("SMTP not configured, due notifications will be logged only")
    return LogNotifier()
