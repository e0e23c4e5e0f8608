"""
Webhook subscription types, signing and wire envelope.

Responsibility
--------------
* ``WebhookSubscription`` and the pure transitions that delivery outcomes
  and administrators apply to it (success, failure, deactivate,
  reactivate).
* HMAC-SHA256 signing and verification of serialized payloads.
* ``WebhookEnvelope``: the JSON object sent to subscribers and the
  out-of-band headers that accompany it.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  The dispatcher in
``services/`` does the HTTP.

Invariants enforced
-------------------
* A subscription auto-deactivates once consecutive failures reach the
  unhealthy threshold; only ``reactivate`` brings it back, and it resets
  the counter.
* Signature format is ``sha256=<lowercase hex>``; verification is
  case-insensitive and constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from urllib.parse import urlparse
from uuid import UUID, uuid4

from compliance_kernel.domain.events import EventTypeSet, WebhookEventType
from compliance_kernel.utils.hashing import canonicalize_json

SIGNATURE_PREFIX = "sha256="

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_TYPE_HEADER = "X-Webhook-Event"
EVENT_ID_HEADER = "X-Webhook-Id"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"


@dataclass(frozen=True)
class DeliveryPolicy:
    """Retry schedule and circuit-breaker settings for webhook delivery.

    ``retry_delays_seconds`` holds the wait before each retry, so a
    delivery makes ``1 + len(retry_delays_seconds)`` attempts at most.
    """

    retry_delays_seconds: tuple[float, ...] = (10.0, 60.0, 300.0)
    unhealthy_failure_threshold: int = 3
    request_timeout_seconds: float = 30.0
    max_concurrent_deliveries: int = 8
    min_secret_length: int = 32

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "retry_delays_seconds", tuple(self.retry_delays_seconds)
        )
        if any(d < 0 for d in self.retry_delays_seconds):
            raise ValueError("Retry delays cannot be negative")
        if self.unhealthy_failure_threshold < 1:
            raise ValueError("Unhealthy failure threshold must be at least 1")
        if self.request_timeout_seconds <= 0:
            raise ValueError("Request timeout must be positive")
        if self.max_concurrent_deliveries < 1:
            raise ValueError("Fan-out limit must be at least 1")

    @property
    def max_attempts(self) -> int:
        return 1 + len(self.retry_delays_seconds)


@dataclass(frozen=True)
class WebhookSubscription:
    integration_system_id: str
    event_types: EventTypeSet
    callback_url: str
    secret_key: str
    is_active: bool = True
    failed_attempts: int = 0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    subscription_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.subscription_id is None:
            object.__setattr__(self, "subscription_id", uuid4())
        if self.failed_attempts < 0:
            raise ValueError("failed_attempts cannot be negative")

    def should_receive(self, event_type: WebhookEventType) -> bool:
        return self.is_active and event_type in self.event_types

    def is_unhealthy(self, failure_threshold: int) -> bool:
        return self.failed_attempts >= failure_threshold


def validate_subscription(
    subscription: WebhookSubscription, min_secret_length: int
) -> tuple[str, ...]:
    """Field-presence and format errors; empty means valid."""
    errors: list[str] = []
    if not subscription.integration_system_id or not subscription.integration_system_id.strip():
        errors.append("Integration system is required")
    if not subscription.callback_url or not subscription.callback_url.strip():
        errors.append("Callback URL is required")
    else:
        parsed = urlparse(subscription.callback_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append("Callback URL must be an absolute http or https URL")
    if not subscription.secret_key or len(subscription.secret_key) < min_secret_length:
        errors.append(
            f"Secret key must be at least {min_secret_length} characters"
        )
    if not subscription.event_types:
        errors.append("At least one event type must be subscribed")
    return tuple(errors)


# =========================================================================
# Transitions
# =========================================================================


def record_success(subscription: WebhookSubscription, at: datetime) -> WebhookSubscription:
    return replace(
        subscription, failed_attempts=0, last_success_at=at, updated_at=at
    )


def record_failure(subscription: WebhookSubscription, at: datetime) -> WebhookSubscription:
    return replace(
        subscription,
        failed_attempts=subscription.failed_attempts + 1,
        last_failure_at=at,
        updated_at=at,
    )


def deactivate(subscription: WebhookSubscription, at: datetime) -> WebhookSubscription:
    return replace(subscription, is_active=False, updated_at=at)


def reactivate(subscription: WebhookSubscription, at: datetime) -> WebhookSubscription:
    return replace(subscription, is_active=True, failed_attempts=0, updated_at=at)


# =========================================================================
# Signing
# =========================================================================


def compute_signature(payload: str, secret: str) -> str:
    """``sha256=`` + lowercase hex HMAC-SHA256 of the UTF-8 payload."""
    digest = hmac.new(
        secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: str, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected.lower(), signature.strip().lower())


# =========================================================================
# Envelope
# =========================================================================


@dataclass(frozen=True)
class WebhookEnvelope:
    event_type: WebhookEventType
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)

    def to_wire(self) -> dict[str, Any]:
        return {
            "eventId": str(self.event_id),
            "eventType": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    def serialize(self) -> str:
        return canonicalize_json(self.to_wire())

    def headers(self, secret: str) -> dict[str, str]:
        """Out-of-band attributes, including the signature over ``serialize()``."""
        return {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: compute_signature(self.serialize(), secret),
            EVENT_TYPE_HEADER: self.event_type.value,
            EVENT_ID_HEADER: str(self.event_id),
            TIMESTAMP_HEADER: self.timestamp.isoformat(),
        }
