"""Operator-facing alerts raised by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from compliance_kernel.domain.violations import Severity
from compliance_kernel.domain.webhook import WebhookSubscription


class AlertType(str, Enum):
    WEBHOOK_DELIVERY_FAILURE = "webhook_delivery_failure"


@dataclass(frozen=True)
class Alert:
    alert_type: AlertType
    severity: Severity
    target_entity_type: str
    target_entity_id: UUID
    message: str
    generated_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
    alert_id: UUID = field(default_factory=uuid4)


def subscription_deactivated_alert(
    subscription: WebhookSubscription, generated_at: datetime
) -> Alert:
    return Alert(
        alert_type=AlertType.WEBHOOK_DELIVERY_FAILURE,
        severity=Severity.CRITICAL,
        target_entity_type="WebhookSubscription",
        target_entity_id=subscription.subscription_id,
        message=(
            "Webhook subscription deactivated after "
            f"{subscription.failed_attempts} consecutive delivery failures"
        ),
        generated_at=generated_at,
        details={
            "subscription_id": str(subscription.subscription_id),
            "callback_url": subscription.callback_url,
            "integration_system_id": subscription.integration_system_id,
            "failed_attempts": subscription.failed_attempts,
            "last_failure_at": (
                subscription.last_failure_at.isoformat()
                if subscription.last_failure_at
                else None
            ),
        },
    )
