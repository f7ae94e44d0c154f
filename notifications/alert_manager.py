"""
Alert Manager - operator notifications for billing runs and daily checks.

Every alert is written to the operator_notifications table; Slack and
email are added when configured. Channel errors are logged and never
reach the caller.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import requests

from common.date_utils import utcnow
from common.models import OperatorNotification
from common.session import SessionManager
from scheduler.config import AlertsConfig, EmailConfig, SlackConfig

logger = logging.getLogger(__name__)


@dataclass
class AlertContext:
    """Context for alert messages."""
    title: str
    notification_type: str
    severity: str = 'info'
    month: Optional[str] = None
    error_message: Optional[str] = None
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[int] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'notification_type': self.notification_type,
            'severity': self.severity,
            'month': self.month or 'N/A',
            'error_message': self.error_message or 'N/A',
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }


class AlertChannel(ABC):
    """Base class for alert channels."""

    @abstractmethod
    def send(self, context: AlertContext, message: str) -> bool:
        """
        Send alert message.

        Returns:
            True on success
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured."""
        pass


class DatabaseAlertChannel(AlertChannel):
    """In-app notification row for administrators."""

    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    def is_configured(self) -> bool:
        return True

    def send(self, context: AlertContext, message: str) -> bool:
        with self.sessions.session_scope() as session:
            session.add(OperatorNotification(
                title=context.title,
                message=message,
                notification_type=context.notification_type,
                severity=context.severity,
                related_entity_type=context.related_entity_type,
                related_entity_id=context.related_entity_id,
            ))
        return True


class SlackAlertChannel(AlertChannel):
    """Slack webhook alert channel."""

    COLORS = {
        'error': 'danger',
        'warning': 'warning',
        'info': 'good',
    }

    def __init__(self, config: SlackConfig):
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.webhook_url)

    def send(self, context: AlertContext, message: str) -> bool:
        if not self.is_configured():
            return False
        if context.severity == 'info' and not self.config.on_success:
            return False

        payload = {
            'username': self.config.username,
            'channel': self.config.channel,
            'attachments': [{
                'color': self.COLORS.get(context.severity, '#808080'),
                'title': context.title,
                'text': message,
                'fields': [
                    {'title': 'Type', 'value': context.notification_type, 'short': True},
                    {'title': 'Month', 'value': context.month or 'N/A', 'short': True},
                ],
                'ts': int(context.timestamp.timestamp()),
            }]
        }

        response = requests.post(self.config.webhook_url, json=payload, timeout=30)
        if response.status_code == 200:
            logger.info(f"Slack alert sent: {context.title}")
            return True

        logger.error(f"Slack alert failed: {response.status_code} - {response.text}")
        return False


class EmailAlertChannel(AlertChannel):
    """Email SMTP alert channel."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.smtp_host and self.config.to_addresses)

    def send(self, context: AlertContext, message: str) -> bool:
        if not self.is_configured():
            return False

        msg = MIMEMultipart()
        msg['From'] = self.config.from_address
        msg['To'] = ', '.join(self.config.to_addresses)
        msg['Subject'] = f"[{context.severity.upper()}] {context.title}"

        body = f"{context.title}\n{'=' * len(context.title)}\n\n{message}\n\nTimestamp: {context.timestamp} UTC\n"
        if context.error_message:
            body += f"\nError Details\n-------------\n{context.error_message}\n"
        msg.attach(MIMEText(body, 'plain'))

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
            server.starttls()
            if self.config.smtp_user and self.config.smtp_password:
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.sendmail(self.config.from_address, self.config.to_addresses, msg.as_string())

        logger.info(f"Email alert sent: {context.title}")
        return True


class AlertManager:
    """
    Routes operator alerts to every configured channel.

    Sends notifications on:
    - Billing run completion (summary)
    - Billing run failure
    - Lease expiry and overdue rent checks
    """

    TEMPLATES = {
        'summary': (
            "Billing run for {month} complete.\n"
            "Tenants: {total}, bills queued: {generated}, skipped: {skipped}, failed: {failed}."
        ),
        'failure': (
            "Billing run for {month} failed and was not completed.\n"
            "Error: {error}"
        ),
    }

    def __init__(self, sessions: SessionManager, config: AlertsConfig = None):
        """
        Initialize alert manager.

        Args:
            sessions: Session manager (database channel)
            config: Slack/email settings
        """
        self.config = config or AlertsConfig()
        self.channels: List[AlertChannel] = [DatabaseAlertChannel(sessions)]

        if self.config.slack.enabled:
            self.channels.append(SlackAlertChannel(self.config.slack))

        if self.config.email.enabled:
            self.channels.append(EmailAlertChannel(self.config.email))

        logger.info(f"AlertManager initialized with {len(self.channels)} channel(s)")

    def add_channel(self, channel: AlertChannel):
        self.channels.append(channel)

    def send_billing_summary(self, result: Dict[str, Any]):
        """Send the end-of-run summary."""
        month = result.get('month')
        failed = result.get('billsFailed', 0)
        context = AlertContext(
            title=f"Monthly Bills Generated - {month}",
            notification_type='billing_summary',
            severity='warning' if failed else 'info',
            month=month,
            related_entity_type='billing_run',
            related_entity_id=result.get('runId'),
        )
        message = self.TEMPLATES['summary'].format(
            month=month,
            total=result.get('totalTenants', 0),
            generated=result.get('billsGenerated', 0),
            skipped=len(result.get('skipped', [])),
            failed=failed,
        )
        self._send_to_all(context, message)

    def send_billing_failure(self, month: str, error: str, run_id: Optional[int] = None):
        """Send the distinct alert for a run that could not complete."""
        context = AlertContext(
            title="Billing Process Failed",
            notification_type='billing_error',
            severity='error',
            month=month,
            error_message=error,
            related_entity_type='billing_run' if run_id else None,
            related_entity_id=run_id,
        )
        message = self.TEMPLATES['failure'].format(month=month, error=error)
        self._send_to_all(context, message)

    def send_operator_alert(self, title: str, message: str, notification_type: str,
                            severity: str = 'info', related_entity_type: str = None,
                            related_entity_id: int = None):
        """Send a free-form operator alert (lease expiry, overdue rent)."""
        context = AlertContext(
            title=title,
            notification_type=notification_type,
            severity=severity,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
        self._send_to_all(context, message)

    def _send_to_all(self, context: AlertContext, message: str):
        """Send alert to all configured channels."""
        for channel in self.channels:
            if channel.is_configured():
                try:
                    channel.send(context, message)
                except Exception as e:
                    logger.error(f"Alert channel {type(channel).__name__} error: {e}")

    def test_alerts(self) -> Dict[str, bool]:
        """
        Send a test alert through every channel.

        Returns:
            Dictionary of channel_type -> success
        """
        results = {}
        context = AlertContext(title='Test alert', notification_type='test', severity='warning')

        for channel in self.channels:
            channel_type = type(channel).__name__
            try:
                results[channel_type] = channel.is_configured() and channel.send(
                    context, "This is a test alert from the billing scheduler"
                )
            except Exception as e:
                logger.error(f"Test alert error for {channel_type}: {e}")
                results[channel_type] = False

        return results
