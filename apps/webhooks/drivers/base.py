"""Base driver and data structures for repository webhook ingestion.

Drivers know one source's headers, signature scheme, payload shape and
which of its events should start work.

Public API:
- ParsedEvent
- MalformedPayload
- BaseWebhookDriver
"""

from __future__ import annotations

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping


class MalformedPayload(ValueError):
    """The request body is not a payload this driver can read."""


@dataclass
class ParsedEvent:
    """Standardized webhook event produced by a driver."""

    event_type: str
    action: str = ""
    delivery_id: str = ""
    repository: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


class BaseWebhookDriver(ABC):
    """Abstract base class for webhook source drivers."""

    name: str = "base"
    event_header: str = ""
    signature_header: str = ""
    delivery_header: str = ""
    signature_prefix: str = "sha256="

    # Events that are processed; everything else is acknowledged and dropped.
    allowed_events: frozenset[str] = frozenset()
    # Allowed events that only need an acknowledgement (no project, no job).
    passive_events: frozenset[str] = frozenset()

    def compute_signature(self, secret: str, body: bytes) -> str:
        digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return f"{self.signature_prefix}{digest}"

    def verify_signature(self, secret: str, body: bytes, signature: str) -> bool:
        """Constant-time comparison of ``signature`` against the body's HMAC."""
        if not secret or not signature:
            return False
        expected = self.compute_signature(secret, body).encode()
        # Headers arrive as latin-1 text; compare bytes so non-ASCII input is a mismatch.
        return hmac.compare_digest(expected, signature.encode("utf-8", "surrogateescape"))

    def parse(self, body: bytes, headers: Mapping[str, str]) -> ParsedEvent:
        """Decode the raw body into a ParsedEvent.

        Raises:
            MalformedPayload: Body is not a JSON object or lacks required fields.
        """
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedPayload(f"Invalid JSON payload: {e}") from e
        if not isinstance(payload, dict):
            raise MalformedPayload("Payload must be a JSON object")

        event_type = headers.get(self.event_header, "") or ""
        event = ParsedEvent(
            event_type=event_type,
            action=str(payload.get("action") or ""),
            delivery_id=headers.get(self.delivery_header, "") or "",
            repository=self.get_repository(payload),
            payload=payload,
        )
        if event_type in self.allowed_events:
            self.validate(event)
        return event

    def get_repository(self, payload: dict[str, Any]) -> str:
        return ""

    def validate(self, event: ParsedEvent) -> None:
        """Check the shape of an allowed event. Raise MalformedPayload when unusable."""

    @abstractmethod
    def ignore_reason(self, event: ParsedEvent) -> str | None:
        """Why an allowed event needs no job, or None when it should start one."""

    @abstractmethod
    def handle(self, event: ParsedEvent, project) -> tuple[int | None, bool, str]:
        """Start work for an actionable event.

        Returns:
            (entity_id, dispatched, skip_reason). A non-empty skip_reason
            means the project does not take this kind of event.
        """
