"""Notification channels for nightly verification failures.

Each channel raises ``NotificationError`` on failure; ``dispatch_notifications``
catches and logs per channel so one failing channel never stops the others.
"""

import hashlib
import hmac
import json
import logging
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional

import httpx

from attest_api.errors import NotificationError
from attest_api.settings import get_settings
from attest_api.utils.metrics import notification_deliveries

logger = logging.getLogger(__name__)

EVENT_TYPE = "verification.nightly"


def compute_signature(body: bytes, secret: str, timestamp: str) -> str:
    """HMAC-SHA256 over ``timestamp + "." + body``."""
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def summary_text(report: dict) -> str:
    exports = (report.get("exports") or {}).get("summary") or {}
    compose = (report.get("composeReplay") or {}).get("summary") or {}
    return (
        f"Nightly verification {str(report.get('status', 'unknown')).upper()} "
        f"(started {report.get('startedAt')})\n"
        f"Exports: {exports.get('pass', 0)} pass, {exports.get('fail', 0)} fail, "
        f"{exports.get('miss', 0)} miss of {exports.get('total', 0)}\n"
        f"Compose: {compose.get('pass', 0)} pass, {compose.get('drift', 0)} drift, "
        f"{compose.get('miss', 0)} miss of {compose.get('total', 0)}"
    )


class NotificationChannel:
    name = "abstract"

    def send(self, report: dict) -> None:
        raise NotImplementedError


class WebhookChannel(NotificationChannel):
    """POSTs the report JSON, signed when a secret is configured."""

    name = "webhook"

    def __init__(self, url: str, secret: Optional[str] = None, timeout: float = 10.0):
        self.url = url
        self.secret = secret
        self.timeout = timeout

    def send(self, report: dict) -> None:
        body = json.dumps({"event": EVENT_TYPE, "report": report}, sort_keys=True).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Attest-Event": EVENT_TYPE}
        if self.secret:
            timestamp = str(int(time.time()))
            headers["X-Attest-Timestamp"] = timestamp
            headers["X-Attest-Signature"] = f"sha256={compute_signature(body, self.secret, timestamp)}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, content=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook delivery failed: {e}") from e


class SlackChannel(NotificationChannel):
    """Slack incoming webhook message with blocks."""

    name = "slack"

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def message(self, report: dict) -> dict:
        status = str(report.get("status", "unknown"))
        color = "#ff0000" if status == "fail" else "#ffa500"
        exports = (report.get("exports") or {}).get("summary") or {}
        compose = (report.get("composeReplay") or {}).get("summary") or {}
        return {
            "attachments": [
                {
                    "color": color,
                    "blocks": [
                        {
                            "type": "header",
                            "text": {
                                "type": "plain_text",
                                "text": f"Nightly verification: {status.upper()}",
                                "emoji": True,
                            },
                        },
                        {
                            "type": "section",
                            "fields": [
                                {
                                    "type": "mrkdwn",
                                    "text": f"*Exports:*\n{exports.get('pass', 0)} pass / {exports.get('fail', 0)} fail / {exports.get('miss', 0)} miss",
                                },
                                {
                                    "type": "mrkdwn",
                                    "text": f"*Compose:*\n{compose.get('pass', 0)} pass / {compose.get('drift', 0)} drift / {compose.get('miss', 0)} miss",
                                },
                            ],
                        },
                        {
                            "type": "context",
                            "elements": [
                                {"type": "mrkdwn", "text": f"Started at {report.get('startedAt')}"}
                            ],
                        },
                    ],
                }
            ]
        }

    def send(self, report: dict) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self.url,
                    json=self.message(report),
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Slack delivery failed: {e}") from e


class EmailChannel(NotificationChannel):
    """Plain-text summary over SMTP."""

    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        recipients: List[str],
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.recipients = recipients
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, report: dict) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[attest] Nightly verification {str(report.get('status', '')).upper()}"
        msg["From"] = self.from_address
        msg["To"] = ", ".join(self.recipients)
        msg.attach(MIMEText(summary_text(report), "plain"))
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_address, self.recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email delivery failed: {e}") from e


def channels_from_settings(settings=None) -> List[NotificationChannel]:
    """Channels with enough configuration to deliver."""
    settings = settings or get_settings()
    channels: List[NotificationChannel] = []
    if settings.notify_webhook_url:
        channels.append(
            WebhookChannel(
                settings.notify_webhook_url,
                secret=settings.notify_webhook_secret,
                timeout=settings.notify_timeout_seconds,
            )
        )
    if settings.notify_slack_webhook_url:
        channels.append(
            SlackChannel(settings.notify_slack_webhook_url, timeout=settings.notify_timeout_seconds)
        )
    if settings.smtp_host and settings.notify_email_to:
        channels.append(
            EmailChannel(
                settings.smtp_host,
                settings.smtp_port,
                settings.smtp_from_address,
                list(settings.notify_email_to),
                user=settings.smtp_user,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                timeout=settings.notify_timeout_seconds,
            )
        )
    return channels


def dispatch_notifications(report: dict, channels: List[NotificationChannel]) -> Dict[str, bool]:
    """Send ``report`` through every channel; returns delivery result per channel."""
    results = {}
    for channel in channels:
        try:
            channel.send(report)
            results[channel.name] = True
            notification_deliveries.labels(channel=channel.name, status="success").inc()
            logger.info(f"Sent {channel.name} notification for {report.get('status')} run")
        except Exception as e:
            results[channel.name] = False
            notification_deliveries.labels(channel=channel.name, status="failed").inc()
            logger.error(f"{channel.name} notification failed: {e}", exc_info=True)
    return results
