"""
Notifications for scheduled cleanup runs.

Webhook delivery is real; email and Slack deliveries are only logged. A
failed notification is logged and never raised to the caller.
"""

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pxclean import __version__
from pxclean.config import NotificationSettings
from pxclean.models import utcnow

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10
SOURCE = "proxmox-cleanup"


class NotificationType(Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


SLACK_EMOJI = {
    NotificationType.SUCCESS: ":white_check_mark:",
    NotificationType.ERROR: ":x:",
    NotificationType.WARNING: ":warning:",
    NotificationType.INFO: ":information_source:",
}


@dataclass
class NotificationMessage:
    type: NotificationType
    title: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    data: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "source": SOURCE,
        }


class NotificationService:
    """
    Sends notifications to the configured channels.

    Args:
        settings: Notification settings.
    """

    def __init__(self, settings: Optional[NotificationSettings] = None):
        self.settings = settings or NotificationSettings()

    def should_send(self, message_type: NotificationType) -> bool:
        """Per-type gating. Warnings are always sent."""
        if message_type is NotificationType.SUCCESS:
            return self.settings.on_success
        if message_type is NotificationType.ERROR:
            return self.settings.on_failure
        if message_type is NotificationType.INFO:
            return self.settings.on_start
        return message_type is NotificationType.WARNING

    def send_notification(self, message: NotificationMessage) -> bool:
        """
        Deliver a message to every configured channel.

        Returns:
            bool: True if the message was delivered, False if it was gated
            out or a delivery failed.
        """
        if not self.settings.enabled:
            logger.debug("Notifications disabled, skipping %r", message.title)
            return False
        if not self.should_send(message.type):
            logger.debug("Notification type %s disabled, skipping", message.type.value)
            return False
        return self._deliver(message)

    def test_connection(self) -> bool:
        """Send a test message, bypassing per-type gating."""
        logger.info("Testing notification service connectivity")
        if not self.settings.enabled:
            return False
        return self._deliver(
            NotificationMessage(
                type=NotificationType.INFO,
                title="Test Notification",
                message="This is a test notification from pxclean",
            )
        )

    def _deliver(self, message: NotificationMessage) -> bool:
        logger.info("Sending %s notification: %s", message.type.value, message.title)
        try:
            if self.settings.webhook_url:
                self._send_webhook(message)
            if self.settings.email_recipients:
                self._send_email(message)
            if self.settings.slack_channel:
                self._send_slack(message)
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.error("Failed to send notification %r: %s", message.title, e)
            return False
        return True

    def _send_webhook(self, message: NotificationMessage):
        body = json.dumps(message.to_payload()).encode("utf-8")
        req = urllib.request.Request(
            self.settings.webhook_url,
            data=body,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"pxclean/{__version__}",
            },
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=WEBHOOK_TIMEOUT) as response:
            logger.debug("Webhook responded with HTTP %s", response.status)

    def _send_email(self, message: NotificationMessage):
        logger.info(
            "Email notification to %s: [%s] %s",
            ", ".join(self.settings.email_recipients),
            message.type.value.upper(),
            message.title,
        )

    def _send_slack(self, message: NotificationMessage):
        logger.info(
            "Slack notification to %s: %s *%s* %s",
            self.settings.slack_channel,
            SLACK_EMOJI[message.type],
            message.title,
            message.message,
        )
