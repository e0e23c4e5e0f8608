"""
SqlWebhookSubscriptionStore -- SQLAlchemy-backed subscription repository.

Responsibility:
    Implements ``WebhookSubscriptionRepository`` on top of
    ``WebhookSubscriptionModel`` and returns ``WebhookSubscription`` domain
    values, never ORM rows.

Architecture position:
    Kernel > Services.  The store flushes within the caller's session and
    never commits; ``session_scope()`` owns the transaction boundary.

Invariants enforced:
    - ``record_success`` / ``record_failure`` lock the row (FOR UPDATE where
      the backend supports it) and apply the domain transition to the
      locked state, so concurrent outcomes are not lost.

Failure modes:
    - SQLAlchemyError is wrapped in RepositoryError.
    - A stored event type that is no longer known raises
      MalformedReferenceDataError.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from compliance_kernel.domain import webhook as webhook_domain
from compliance_kernel.domain.events import EventTypeSet, WebhookEventType
from compliance_kernel.domain.webhook import WebhookSubscription
from compliance_kernel.exceptions import MalformedReferenceDataError, RepositoryError
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.webhook_subscription import WebhookSubscriptionModel

logger = get_logger("services.subscription_store")

_REPOSITORY = "webhook_subscriptions"


class SqlWebhookSubscriptionStore:
    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _to_domain(self, row: WebhookSubscriptionModel) -> WebhookSubscription:
        try:
            event_types = EventTypeSet.parse(row.event_types or ())
        except ValueError as exc:
            raise MalformedReferenceDataError(_REPOSITORY, str(row.id), str(exc)) from exc
        return WebhookSubscription(
            integration_system_id=row.integration_system_id,
            event_types=event_types,
            callback_url=row.callback_url,
            secret_key=row.secret_key,
            is_active=row.is_active,
            failed_attempts=row.failed_attempts,
            last_success_at=row.last_success_at,
            last_failure_at=row.last_failure_at,
            description=row.description,
            created_at=row.created_at,
            updated_at=row.updated_at,
            subscription_id=row.id,
        )

    @staticmethod
    def _apply(row: WebhookSubscriptionModel, subscription: WebhookSubscription) -> None:
        row.integration_system_id = subscription.integration_system_id
        row.event_types = list(subscription.event_types.names())
        row.callback_url = subscription.callback_url
        row.secret_key = subscription.secret_key
        row.is_active = subscription.is_active
        row.failed_attempts = subscription.failed_attempts
        row.last_success_at = subscription.last_success_at
        row.last_failure_at = subscription.last_failure_at
        row.description = subscription.description
        row.created_at = subscription.created_at
        row.updated_at = subscription.updated_at

    def _locked_row(self, subscription_id: UUID) -> WebhookSubscriptionModel | None:
        stmt = (
            select(WebhookSubscriptionModel)
            .where(WebhookSubscriptionModel.id == subscription_id)
            .with_for_update()
        )
        return self.session.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Repository protocol
    # ------------------------------------------------------------------

    def get(self, subscription_id: UUID) -> WebhookSubscription | None:
        try:
            row = self.session.get(WebhookSubscriptionModel, subscription_id)
        except SQLAlchemyError as exc:
            raise RepositoryError(_REPOSITORY, str(exc)) from exc
        return self._to_domain(row) if row else None

    def list_all(self) -> tuple[WebhookSubscription, ...]:
        stmt = select(WebhookSubscriptionModel).order_by(
            WebhookSubscriptionModel.integration_system_id,
            WebhookSubscriptionModel.callback_url,
        )
        try:
            rows = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryError(_REPOSITORY, str(exc)) from exc
        return tuple(self._to_domain(r) for r in rows)

    def list_active_for(self, event_type: WebhookEventType) -> tuple[WebhookSubscription, ...]:
        # JSON containment is not portable; filter on the decoded set instead.
        stmt = (
            select(WebhookSubscriptionModel)
            .where(WebhookSubscriptionModel.is_active == True)  # noqa: E712
            .order_by(WebhookSubscriptionModel.integration_system_id)
        )
        try:
            rows = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryError(_REPOSITORY, str(exc)) from exc
        subscriptions = (self._to_domain(r) for r in rows)
        return tuple(s for s in subscriptions if s.should_receive(event_type))

    def save(self, subscription: WebhookSubscription) -> None:
        try:
            row = self.session.get(WebhookSubscriptionModel, subscription.subscription_id)
            if row is None:
                row = WebhookSubscriptionModel(id=subscription.subscription_id)
                self.session.add(row)
            self._apply(row, subscription)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryError(_REPOSITORY, str(exc)) from exc

    def delete(self, subscription_id: UUID) -> bool:
        try:
            row = self.session.get(WebhookSubscriptionModel, subscription_id)
            if row is None:
                return False
            self.session.delete(row)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryError(_REPOSITORY, str(exc)) from exc
        return True

    def record_success(self, subscription_id: UUID, at: datetime) -> WebhookSubscription | None:
        return self._transition(subscription_id, webhook_domain.record_success, at)

    def record_failure(self, subscription_id: UUID, at: datetime) -> WebhookSubscription | None:
        return self._transition(subscription_id, webhook_domain.record_failure, at)

    def _transition(self, subscription_id, transition, at) -> WebhookSubscription | None:
        try:
            row = self._locked_row(subscription_id)
            if row is None:
                logger.warning(
                    "webhook_subscription_missing",
                    extra={"subscription_id": str(subscription_id)},
                )
                return None
            updated = transition(self._to_domain(row), at)
            self._apply(row, updated)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryError(_REPOSITORY, str(exc)) from exc
        return updated
