"""Notification utilities for failed sync passes."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class NotificationService:
    """Handles sending notifications when a sync pass ends with failures."""

    def __init__(self):
        """Initialize notification service."""
        self.notification_enabled = os.getenv("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_webhook = os.getenv("NOTIFICATION_WEBHOOK_URL")

    async def send_sync_failure_notification(
        self,
        owner: str,
        date_key: str,
        error_message: str,
        context: Optional[dict] = None
    ):
        """
        Send notification for a sync pass with failures.

        Args:
            owner: The journal owner
            date_key: The date that was synced
            error_message: User-facing summary of the failures
            context: Optional additional context
        """
        if not self.notification_enabled:
            logger.info(f"Notifications disabled, skipping notification for {owner} on {date_key}")
            return

        notification_message = (
            f"Journal sync finished with errors\n"
            f"Owner: {owner}\n"
            f"Date: {date_key}\n"
            f"Error: {error_message}\n"
        )

        logger.warning(f"SYNC FAILURE NOTIFICATION: {notification_message}")

        if self.notification_webhook:
            try:
                async with httpx.AsyncClient() as client:
                    await client.post(
                        self.notification_webhook,
                        json={
                            "text": notification_message,
                            "owner": owner,
                            "date": date_key,
                            "error": error_message,
                            "context": context or {}
                        },
                        timeout=10.0
                    )
                logger.info(f"Notification sent for {owner} on {date_key}")
            except httpx.HTTPError as e:
                logger.error(f"Failed to send notification: {e}")
