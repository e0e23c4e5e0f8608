"""
compliance_kernel.services.subscription_service -- Webhook subscription admin.

Create, update, deactivate, reactivate and remove webhook subscriptions.
Field validation runs on every create and update; reactivation is the only
way back from an automatic deactivation and resets the failure counter.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable
from uuid import UUID

from compliance_kernel.domain import webhook
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.events import EventTypeSet, WebhookEventType
from compliance_kernel.domain.webhook import (
    DeliveryPolicy,
    WebhookSubscription,
    validate_subscription,
)
from compliance_kernel.exceptions import (
    InvalidSubscriptionError,
    SubscriptionNotFoundError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.services.repositories import WebhookSubscriptionRepository

logger = get_logger("services.subscriptions")

_UNSET = object()


def _event_types(values: Iterable[WebhookEventType | str]) -> EventTypeSet:
    try:
        return EventTypeSet.parse(
            v.value if isinstance(v, WebhookEventType) else v for v in values
        )
    except ValueError as exc:
        raise InvalidSubscriptionError((str(exc),)) from exc


class WebhookSubscriptionService:
    def __init__(
        self,
        subscriptions: WebhookSubscriptionRepository,
        policy: DeliveryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._subscriptions = subscriptions
        self._policy = policy or DeliveryPolicy()
        self._clock = clock or SystemClock()

    def _validated(self, subscription: WebhookSubscription) -> WebhookSubscription:
        errors = validate_subscription(subscription, self._policy.min_secret_length)
        if errors:
            raise InvalidSubscriptionError(errors)
        return subscription

    def get(self, subscription_id: UUID) -> WebhookSubscription:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    def list_all(self) -> tuple[WebhookSubscription, ...]:
        return self._subscriptions.list_all()

    def list_unhealthy(self) -> tuple[WebhookSubscription, ...]:
        """Subscriptions at or above the failure threshold, active or not."""
        threshold = self._policy.unhealthy_failure_threshold
        return tuple(
            s for s in self._subscriptions.list_all() if s.is_unhealthy(threshold)
        )

    def create(
        self,
        integration_system_id: str,
        event_types: Iterable[WebhookEventType | str],
        callback_url: str,
        secret_key: str,
        description: str | None = None,
    ) -> WebhookSubscription:
        now = self._clock.now_utc()
        subscription = self._validated(
            WebhookSubscription(
                integration_system_id=integration_system_id,
                event_types=_event_types(event_types),
                callback_url=callback_url,
                secret_key=secret_key,
                description=description,
                created_at=now,
                updated_at=now,
            )
        )
        self._subscriptions.save(subscription)
        logger.info(
            "webhook_subscription_created",
            extra={
                "subscription_id": str(subscription.subscription_id),
                "integration_system_id": integration_system_id,
                "event_types": list(subscription.event_types.names()),
            },
        )
        return subscription

    def update(
        self,
        subscription_id: UUID,
        *,
        event_types: Iterable[WebhookEventType | str] | None = None,
        callback_url: str | None = None,
        secret_key: str | None = None,
        description: object = _UNSET,
    ) -> WebhookSubscription:
        """Replace the given fields; omitted fields keep their value."""
        current = self.get(subscription_id)
        changes: dict[str, object] = {"updated_at": self._clock.now_utc()}
        if event_types is not None:
            changes["event_types"] = _event_types(event_types)
        if callback_url is not None:
            changes["callback_url"] = callback_url
        if secret_key is not None:
            changes["secret_key"] = secret_key
        if description is not _UNSET:
            changes["description"] = description
        updated = self._validated(replace(current, **changes))
        self._subscriptions.save(updated)
        logger.info(
            "webhook_subscription_updated",
            extra={
                "subscription_id": str(subscription_id),
                "fields": sorted(k for k in changes if k != "updated_at"),
            },
        )
        return updated

    def deactivate(self, subscription_id: UUID) -> WebhookSubscription:
        updated = webhook.deactivate(self.get(subscription_id), self._clock.now_utc())
        self._subscriptions.save(updated)
        logger.info(
            "webhook_subscription_deactivated_manually",
            extra={"subscription_id": str(subscription_id)},
        )
        return updated

    def reactivate(self, subscription_id: UUID) -> WebhookSubscription:
        with LogContext.bind(subscription_id=str(subscription_id)):
            current = self.get(subscription_id)
            updated = webhook.reactivate(current, self._clock.now_utc())
            self._subscriptions.save(updated)
            logger.info(
                "webhook_subscription_reactivated",
                extra={"previous_failed_attempts": current.failed_attempts},
            )
            return updated

    def delete(self, subscription_id: UUID) -> None:
        if not self._subscriptions.delete(subscription_id):
            raise SubscriptionNotFoundError(subscription_id)
        logger.info(
            "webhook_subscription_deleted",
            extra={"subscription_id": str(subscription_id)},
        )
