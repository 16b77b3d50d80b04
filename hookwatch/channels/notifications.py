"""
HOOKWATCH - Notification Channels
=================================
In-app, Email (SendGrid + SMTP), SMS (Twilio), Slack and generic webhook
channels, plus the dispatcher that fans alert notifications out to them.

Every channel implements send(target, subject, message, metadata) -> bool.
A channel that fails returns False (or raises); the dispatcher isolates each
channel so one failure never blocks the others.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Dict, List, Any, Tuple, Union, Sequence

import httpx

from hookwatch.config import EngineSettings
from hookwatch.core.exceptions import DeliveryException
from hookwatch.models.entities import (
    Alert,
    AlertSeverity,
    NotificationRule,
    NotificationHistory,
    NotificationChannelType,
    DeliveryStatus,
    utc_now,
)
from hookwatch.realtime.events import EventBus, InAppNotification
from hookwatch.storage.repository import Repository

logger = logging.getLogger(__name__)

# Thread pool for blocking SMTP calls
_executor = ThreadPoolExecutor(max_workers=4)

Target = Union[str, Sequence[str], None]


# =============================================================================
# BASE CHANNEL
# =============================================================================

class NotificationChannel(ABC):
    """Abstract base class for notification channels."""

    name: str = ""

    @abstractmethod
    async def send(
        self,
        target: str,
        subject: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Send a notification to one target."""
        pass

    async def close(self):
        """Close any resources. Override if needed."""
        pass


class _HttpChannel(NotificationChannel):
    """Channel backed by an httpx client, shared or owned."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()


# =============================================================================
# IN-APP CHANNEL
# =============================================================================

class InAppChannel(NotificationChannel):
    """Publishes notifications on the event bus."""

    name = NotificationChannelType.IN_APP.value

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus

    async def send(self, target, subject, message, metadata=None) -> bool:
        await self.event_bus.publish(InAppNotification(
            target=target,
            subject=subject,
            message=message,
            metadata=dict(metadata or {}),
        ))
        logger.info(f"In-app notification published for {target}: {subject}")
        return True


# =============================================================================
# EMAIL CHANNEL
# =============================================================================

class EmailChannel(_HttpChannel):
    """
    Email notification channel supporting:
    - SendGrid (API)
    - SMTP (standard)
    """

    name = NotificationChannelType.EMAIL.value

    def __init__(self, settings: EngineSettings, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(http_client, timeout=30.0)
        self.settings = settings

    async def send(self, target, subject, message, metadata=None) -> bool:
        """Send an email notification."""
        if not target:
            logger.warning("No email recipient given")
            return False

        html_content = self._build_html(subject, message, metadata)
        text_content = self._build_text(subject, message, metadata)

        if self.settings.email_provider == "sendgrid":
            return await self._send_sendgrid(target, subject, html_content, text_content)
        elif self.settings.email_provider == "smtp":
            return await self._send_smtp(target, subject, html_content, text_content)
        else:
            logger.error(f"Unsupported email provider: {self.settings.email_provider}")
            return False

    async def _send_sendgrid(self, recipient: str, subject: str, html_content: str, text_content: str) -> bool:
        """Send via SendGrid API."""
        if not self.settings.sendgrid_api_key:
            logger.error("SendGrid API key not configured")
            return False

        payload = {
            "personalizations": [
                {"to": [{"email": recipient}]}
            ],
            "from": {
                "email": self.settings.sender_email,
                "name": self.settings.sender_name
            },
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text_content},
                {"type": "text/html", "value": html_content}
            ]
        }

        response = await self.http_client.post(
            "https://api.sendgrid.com/v3/mail/send",
            json=payload,
            headers={
                "Authorization": f"Bearer {self.settings.sendgrid_api_key}",
                "Content-Type": "application/json"
            }
        )

        if response.status_code in [200, 202]:
            logger.info(f"Email sent via SendGrid: {subject}")
            return True

        logger.error(f"SendGrid error: {response.status_code} - {response.text}")
        return False

    async def _send_smtp(self, recipient: str, subject: str, html_content: str, text_content: str) -> bool:
        """Send via SMTP."""
        if not all([self.settings.smtp_host, self.settings.smtp_username, self.settings.smtp_password]):
            logger.error("SMTP configuration incomplete (host, username, password required)")
            return False

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.settings.sender_name} <{self.settings.sender_email}>"
        msg['To'] = recipient
        msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        def send_smtp_sync():
            if self.settings.smtp_port == 465:
                with smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port) as server:
                    server.login(self.settings.smtp_username, self.settings.smtp_password)
                    server.sendmail(self.settings.sender_email, [recipient], msg.as_string())
            else:
                with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port) as server:
                    server.starttls()
                    server.login(self.settings.smtp_username, self.settings.smtp_password)
                    server.sendmail(self.settings.sender_email, [recipient], msg.as_string())

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(_executor, send_smtp_sync)
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed. Check username/password.")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            return False

        logger.info(f"Email sent via SMTP: {subject}")
        return True

    def _build_html(self, subject: str, message: str, metadata: Optional[Dict[str, Any]]) -> str:
        color_map = {
            AlertSeverity.INFO.value: "#2196F3",
            AlertSeverity.WARNING.value: "#FF9800",
            AlertSeverity.CRITICAL.value: "#F44336",
        }
        color = color_map.get((metadata or {}).get("severity"), "#607D8B")

        rows = "".join(
            f'<tr><td style="padding: 8px;"><strong>{key}</strong></td>'
            f'<td style="padding: 8px;">{value}</td></tr>'
            for key, value in (metadata or {}).items()
        )
        table = f'<table style="width: 100%; border-collapse: collapse;">{rows}</table>' if rows else ""

        return (
            '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
            '<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<div style="background: {color}; padding: 20px;"><h1 style="color: white; margin: 0;">{subject}</h1></div>'
            f'<div style="padding: 20px;"><p>{message}</p>{table}</div>'
            f'<p style="font-size: 12px; color: #666;">Hookwatch - {utc_now().strftime("%Y-%m-%d %H:%M:%S")} UTC</p>'
            '</body></html>'
        )

    def _build_text(self, subject: str, message: str, metadata: Optional[Dict[str, Any]]) -> str:
        text = f"{subject}\n{'=' * len(subject)}\n\n{message}\n"
        if metadata:
            text += "\nDetails:\n"
            for key, value in metadata.items():
                text += f"  - {key}: {value}\n"
        text += f"\n---\nHookwatch - {utc_now().strftime('%Y-%m-%d %H:%M:%S')} UTC"
        return text


# =============================================================================
# SMS CHANNEL
# =============================================================================

class SMSChannel(_HttpChannel):
    """SMS notification channel using Twilio."""

    name = NotificationChannelType.SMS.value

    def __init__(self, settings: EngineSettings, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(http_client)
        self.settings = settings

    async def send(self, target, subject, message, metadata=None) -> bool:
        """Send an SMS notification."""
        if not target:
            logger.warning("No SMS recipient given")
            return False

        if not all([self.settings.twilio_account_sid, self.settings.twilio_auth_token, self.settings.twilio_from_number]):
            logger.error("Twilio configuration incomplete")
            return False

        # Single segment
        text = f"[Hookwatch] {subject}: {message}"
        if len(text) > 160:
            text = text[:157] + "..."

        response = await self.http_client.post(
            f"https://api.twilio.com/2010-04-01/Accounts/{self.settings.twilio_account_sid}/Messages.json",
            data={
                "To": target,
                "From": self.settings.twilio_from_number,
                "Body": text
            },
            auth=(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        )

        if response.status_code == 201:
            logger.info(f"SMS sent to {target}")
            return True

        logger.error(f"Twilio error: {response.status_code} - {response.text}")
        return False


# =============================================================================
# SLACK CHANNEL
# =============================================================================

class SlackChannel(_HttpChannel):
    """Slack notification channel using incoming webhooks. The target is the webhook URL."""

    name = NotificationChannelType.SLACK.value

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(http_client)

    async def send(self, target, subject, message, metadata=None) -> bool:
        """Send a Slack notification."""
        metadata = dict(metadata or {})
        payload = {
            "username": "Hookwatch",
            "icon_emoji": ":satellite_antenna:",
            "blocks": self._build_blocks(subject, message, metadata),
        }
        slack_channel = metadata.pop("slack_channel", None)
        if slack_channel:
            payload["channel"] = slack_channel

        response = await self.http_client.post(target, json=payload)

        if response.status_code == 200:
            logger.info(f"Slack notification sent: {subject}")
            return True

        logger.error(f"Slack error: {response.status_code} - {response.text}")
        return False

    def _build_blocks(self, subject: str, message: str, metadata: Dict[str, Any]) -> List[Dict]:
        emoji_map = {
            AlertSeverity.INFO.value: ":information_source:",
            AlertSeverity.WARNING.value: ":warning:",
            AlertSeverity.CRITICAL.value: ":rotating_light:",
        }
        emoji = emoji_map.get(metadata.get("severity"), ":bell:")

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{emoji} {subject}", "emoji": True}
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": message}
            }
        ]

        fields = [
            {"type": "mrkdwn", "text": f"*{key}:*\n{value}"}
            for key, value in list(metadata.items())[:10]
            if key != "slack_channel" and not isinstance(value, (dict, list))
        ]
        for i in range(0, len(fields), 2):
            blocks.append({"type": "section", "fields": fields[i:i+2]})

        blocks.append({
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": f"Hookwatch - {utc_now().strftime('%Y-%m-%d %H:%M:%S')} UTC"}
            ]
        })
        return blocks


# =============================================================================
# WEBHOOK CHANNEL
# =============================================================================

class WebhookChannel(_HttpChannel):
    """Generic JSON POST. Any 2xx counts as sent."""

    name = NotificationChannelType.WEBHOOK.value

    async def send(self, target, subject, message, metadata=None) -> bool:
        response = await self.http_client.post(
            target,
            json={
                "subject": subject,
                "message": message,
                "metadata": metadata or {},
                "sent_at": utc_now().isoformat(),
            },
            headers={"Content-Type": "application/json"}
        )

        if 200 <= response.status_code < 300:
            logger.info(f"Webhook notification sent to {target}")
            return True

        logger.error(f"Webhook notification error: {response.status_code} - {response.text[:200]}")
        return False


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:
    """
    Fans a notification out to channels and records the outcome.

    Stateless per call: every dispatch appends one NotificationHistory entry.
    """

    def __init__(
        self,
        repository: Repository,
        channels: Dict[str, NotificationChannel],
        settings: Optional[EngineSettings] = None,
    ):
        self.repository = repository
        self.channels = dict(channels)
        self.settings = settings or EngineSettings()

    def resolve_target(self, rule: NotificationRule, channel_name: str, organization_id: str) -> Optional[str]:
        """Target for a channel from the rule's channel settings."""
        settings = rule.channel_settings
        if channel_name == NotificationChannelType.IN_APP.value:
            return organization_id
        if channel_name == NotificationChannelType.EMAIL.value:
            return settings.email_address
        if channel_name == NotificationChannelType.SMS.value:
            return settings.phone_number
        if channel_name == NotificationChannelType.SLACK.value:
            return settings.slack_webhook_url or self.settings.slack_webhook_url
        if channel_name == NotificationChannelType.WEBHOOK.value:
            return settings.webhook_url
        return None

    async def send_to_channels(
        self,
        targets: Dict[str, Target],
        subject: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, str], Dict[str, str]]:
        """
        Send to each channel independently.

        Args:
            targets: channel name -> target (or list of targets)

        Returns:
            (delivery_status, delivery_errors) keyed by channel name
        """
        delivery_status: Dict[str, str] = {}
        delivery_errors: Dict[str, str] = {}

        for channel_name, target in targets.items():
            channel_name = NotificationChannelType(channel_name).value
            delivery_status[channel_name] = DeliveryStatus.PENDING.value

            channel = self.channels.get(channel_name)
            if channel is None:
                delivery_status[channel_name] = DeliveryStatus.FAILED.value
                delivery_errors[channel_name] = "Channel not configured"
                logger.warning(f"Channel not configured: {channel_name}")
                continue

            recipients = [target] if isinstance(target, str) else [t for t in (target or []) if t]
            if not recipients:
                delivery_status[channel_name] = DeliveryStatus.FAILED.value
                delivery_errors[channel_name] = f"No {channel_name} target configured"
                logger.warning(f"No target for channel {channel_name}")
                continue

            sent = True
            for recipient in recipients:
                try:
                    if not await channel.send(recipient, subject, message, dict(metadata or {})):
                        raise DeliveryException(channel_name, f"delivery to {recipient} was rejected")
                except DeliveryException as e:
                    sent = False
                    delivery_errors[channel_name] = e.message
                    logger.warning(f"Notification not delivered: {e.message}")
                except Exception as e:
                    sent = False
                    error = DeliveryException(channel_name, str(e) or type(e).__name__, cause=e)
                    delivery_errors[channel_name] = error.message
                    logger.error(f"Error sending to {channel_name}: {type(e).__name__}: {e}")

            delivery_status[channel_name] = DeliveryStatus.SENT.value if sent else DeliveryStatus.FAILED.value

        return delivery_status, delivery_errors

    def build_alert_message(self, alert: Alert) -> Tuple[str, str]:
        severity = str(AlertSeverity(alert.severity).value).upper()
        subject = f"[{severity}] Webhook {alert.alert_type} alert"
        return subject, alert.message

    async def dispatch(
        self,
        rule: NotificationRule,
        alert: Alert,
        channels: Optional[Sequence[str]] = None,
        recipients: Optional[Sequence[str]] = None,
        escalation_level: int = 0,
    ) -> NotificationHistory:
        """
        Notify every channel of a rule (or the given channels) about an alert.

        Recipients, when given, replace the rule's configured targets.
        """
        channel_names = [NotificationChannelType(c).value for c in (channels if channels is not None else rule.channels)]

        targets: Dict[str, Target] = {}
        for name in channel_names:
            targets[name] = list(recipients) if recipients else self.resolve_target(rule, name, alert.organization_id)

        subject, message = self.build_alert_message(alert)
        metadata = {
            "alert_id": alert.id,
            "webhook_id": alert.webhook_id,
            "alert_type": alert.alert_type,
            "severity": AlertSeverity(alert.severity).value,
            "rule_id": rule.id,
            "escalation_level": escalation_level,
        }
        if rule.channel_settings.slack_channel:
            metadata["slack_channel"] = rule.channel_settings.slack_channel

        delivery_status, delivery_errors = await self.send_to_channels(targets, subject, message, metadata)

        history = NotificationHistory(
            organization_id=alert.organization_id,
            rule_id=rule.id,
            webhook_id=alert.webhook_id,
            alert_id=alert.id,
            alert_type=alert.alert_type,
            escalation_level=escalation_level,
            message=message,
            channels_attempted=channel_names,
            channels_sent=[c for c in channel_names if delivery_status.get(c) == DeliveryStatus.SENT.value],
            delivery_status=delivery_status,
            delivery_errors=delivery_errors,
        )

        try:
            await self.repository.append_notification(history)
        except Exception as e:
            logger.error(f"Failed to record notification history {history.id}: {e}")

        logger.info(
            f"Rule {rule.id} notified {len(history.channels_sent)}/{len(channel_names)} channel(s) "
            f"for alert {alert.id} (level {escalation_level})"
        )
        return history

    async def close(self):
        """Close all channels."""
        for channel in self.channels.values():
            try:
                await channel.close()
            except Exception as e:
                logger.warning(f"Error closing channel: {e}")


def build_default_channels(
    settings: EngineSettings,
    event_bus: EventBus,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, NotificationChannel]:
    """One instance of every channel, sharing an HTTP client when given."""
    return {
        NotificationChannelType.IN_APP.value: InAppChannel(event_bus),
        NotificationChannelType.EMAIL.value: EmailChannel(settings, http_client),
        NotificationChannelType.SMS.value: SMSChannel(settings, http_client),
        NotificationChannelType.SLACK.value: SlackChannel(http_client),
        NotificationChannelType.WEBHOOK.value: WebhookChannel(http_client),
    }
