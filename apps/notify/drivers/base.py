"""Base driver and data structures for digest delivery.

Drivers deliver a rendered digest to one backend (SMTP, a JSON webhook)
and normalize the result.

Public API:
- NotificationMessage
- BaseNotifyDriver
"""

from __future__ import annotations

import logging
import urllib.error
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from apps.notify.templating import DigestTemplatingService

logger = logging.getLogger(__name__)


@dataclass
class NotificationMessage:
    """Rendered digest handed to a driver."""

    subject: str
    text: str
    recipient: str = ""
    html: str | None = None
    cta_label: str = ""
    cta_url: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_digest(
        cls, digest, project, config: dict[str, Any] | None = None
    ) -> NotificationMessage:
        """Render ``digest`` with the packaged (or configured) templates.

        Raises:
            ValueError: The text template is missing or fails to render.
        """
        rendered = DigestTemplatingService().render(digest, project, config)
        return cls(
            subject=rendered["subject"],
            text=rendered["text"],
            html=rendered["html"],
            recipient=digest.recipient,
            cta_label=digest.cta.label,
            cta_url=digest.cta.url,
            context=digest.to_dict(),
        )


class BaseNotifyDriver(ABC):
    """Abstract base class for notification delivery drivers."""

    name: str = "base"

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> bool:
        """Validate that the driver configuration is valid."""

    @abstractmethod
    def send(self, message: NotificationMessage, config: dict[str, Any]) -> dict[str, Any]:
        """Send a notification and return result metadata.

        Args:
            message: The rendered digest to send
            config: Driver-specific configuration

        Returns:
            Dictionary with keys like:
            - success: bool
            - message_id: str (if available)
            - error: str (if failed)
            - metadata: dict (any additional info)
        """

    def _message_to_dict(self, message: NotificationMessage) -> dict[str, Any]:
        return {
            "subject": message.subject,
            "recipient": message.recipient,
            "text": message.text,
            "html": message.html,
            "cta": {"label": message.cta_label, "url": message.cta_url},
            "digest": message.context,
        }

    def _handle_http_error(self, e: urllib.error.HTTPError, service_name: str) -> dict[str, Any]:
        """Handle HTTP errors consistently across drivers."""
        error_body = e.read().decode("utf-8") if e.fp else str(e)
        logger.error(f"{service_name} HTTP error {e.code}: {error_body}")
        return {"success": False, "error": f"{service_name} API error ({e.code}): {error_body}"}

    def _handle_url_error(self, e: urllib.error.URLError, service_name: str) -> dict[str, Any]:
        """Handle URL errors consistently across drivers."""
        logger.error(f"{service_name} URL error: {e.reason}")
        return {"success": False, "error": f"Failed to connect to {service_name}: {e.reason}"}

    def _handle_exception(self, e: Exception, service_name: str, action: str) -> dict[str, Any]:
        """Handle general exceptions consistently across drivers."""
        logger.exception(f"Failed to {action} {service_name}: {e}")
        return {"success": False, "error": f"Failed to {action} {service_name}: {e}"}
