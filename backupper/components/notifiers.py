"""
Notifier components.

Supports:
- Mail: plain text report over SMTP
- Webhook: JSON POST to an HTTP endpoint (generic or Slack formatted)
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Any, Dict

import requests

from backupper.errors import ConfigurationError, NotifierError
from .base import Notifier

logger = logging.getLogger(__name__)


class Mail(Notifier):
    """Sends the run report by email."""

    kind = 'Mail'
    options = {
        'from_email': None,
        'to': None,
        'address': 'localhost',
        'port': 25,
        'user_name': None,
        'password': None,
        'encryption': None,
        'timeout': 30,
    }
    required = ('from_email', 'to')

    def validate(self):
        if self.encryption not in (None, 'starttls', 'ssl'):
            raise ConfigurationError(
                f"Option 'encryption' for notifier 'Mail' must be 'starttls', 'ssl' or unset, "
                f"got {self.encryption!r}"
            )
        if isinstance(self.to, str):
            self.to = [address.strip() for address in self.to.split(',') if address.strip()]

    @property
    def label(self) -> str:
        return f"Mail ({', '.join(self.to)})"

    def build_message(self, result) -> MIMEText:
        message = MIMEText(self.body(result), 'plain', 'utf-8')
        message['Subject'] = self.subject(result)
        message['From'] = self.from_email
        message['To'] = ', '.join(self.to)
        return message

    def _deliver(self, result):
        message = self.build_message(result)

        try:
            if self.encryption == 'ssl':
                server = smtplib.SMTP_SSL(self.address, self.port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.address, self.port, timeout=self.timeout)

            try:
                if self.encryption == 'starttls':
                    server.starttls()
                if self.user_name and self.password:
                    server.login(self.user_name, self.password)
                server.send_message(message)
            finally:
                server.quit()

        except (smtplib.SMTPException, OSError) as e:
            raise NotifierError(f"Failed to send mail via {self.address}:{self.port}: {e}")

        logger.info("Mail notification sent to %s", ', '.join(self.to))


class Webhook(Notifier):
    """Posts the run result as JSON."""

    kind = 'Webhook'
    options = {
        'url': None,
        'method': 'POST',
        'headers': {},
        'format': 'json',
        'timeout': 10,
    }
    required = ('url',)

    SLACK_COLORS = {
        'success': 'good',
        'warning': 'warning',
        'failure': 'danger',
    }

    def validate(self):
        if self.format not in ('json', 'slack'):
            raise ConfigurationError(
                f"Option 'format' for notifier 'Webhook' must be 'json' or 'slack', got {self.format!r}"
            )

    @property
    def label(self) -> str:
        return f"Webhook ({self.url})"

    def build_payload(self, result) -> Dict[str, Any]:
        if self.format == 'slack':
            return {
                'text': self.subject(result),
                'attachments': [{
                    'color': self.SLACK_COLORS[result.status.value],
                    'text': result.message or '',
                    'fields': [
                        {'title': 'Trigger', 'value': result.trigger, 'short': True},
                        {'title': 'Status', 'value': result.status.value, 'short': True},
                    ]
                }]
            }
        return result.to_dict()

    def _deliver(self, result):
        try:
            response = requests.request(
                self.method,
                self.url,
                json=self.build_payload(result),
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotifierError(f"Webhook request to {self.url} failed: {e}")

        logger.info("Webhook notification sent to %s", self.url)
