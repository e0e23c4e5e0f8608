"""
Tests for SqlWebhookSubscriptionStore against an in-memory SQLite database.

The store flushes but never commits; ``session_scope`` owns the commit.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update

from compliance_kernel.db import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from compliance_kernel.domain.events import EventTypeSet, WebhookEventType
from compliance_kernel.domain.webhook import WebhookSubscription
from compliance_kernel.exceptions import MalformedReferenceDataError, RepositoryError
from compliance_kernel.models import WebhookSubscriptionModel
from compliance_kernel.services import SqlWebhookSubscriptionStore

AT = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def database():
    init_engine_from_url("sqlite://")
    create_tables()
    yield
    drop_tables()
    reset_engine()


def _subscription(**kwargs) -> WebhookSubscription:
    values = {
        "integration_system_id": "erp",
        "event_types": EventTypeSet.of(
            WebhookEventType.ORDER_APPROVED, WebhookEventType.LICENCE_EXPIRING
        ),
        "callback_url": "https://erp.example.com/hooks",
        "secret_key": "s" * 40,
        "created_at": AT,
        "updated_at": AT,
    }
    values.update(kwargs)
    return WebhookSubscription(**values)


@pytest.fixture
def stored(database):
    subscription = _subscription()
    with session_scope() as session:
        SqlWebhookSubscriptionStore(session).save(subscription)
    return subscription


class TestRoundTrip:
    def test_save_and_get(self, stored):
        with session_scope() as session:
            loaded = SqlWebhookSubscriptionStore(session).get(stored.subscription_id)

        assert loaded == stored
        assert loaded.created_at.tzinfo is not None

    def test_get_unknown(self, database):
        with session_scope() as session:
            assert SqlWebhookSubscriptionStore(session).get(uuid4()) is None

    def test_save_updates_existing_row(self, stored):
        with session_scope() as session:
            store = SqlWebhookSubscriptionStore(session)
            store.save(_subscription(
                subscription_id=stored.subscription_id, description="renamed"
            ))
            assert len(store.list_all()) == 1

        with session_scope() as session:
            assert SqlWebhookSubscriptionStore(session).get(
                stored.subscription_id
            ).description == "renamed"

    def test_rollback_discards_flushed_changes(self, stored):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                SqlWebhookSubscriptionStore(session).delete(stored.subscription_id)
                raise RuntimeError("abort")

        with session_scope() as session:
            assert SqlWebhookSubscriptionStore(session).get(stored.subscription_id) is not None


class TestQueries:
    def test_list_active_for_filters_inactive_and_type(self, database):
        wanted = _subscription(integration_system_id="a")
        inactive = _subscription(integration_system_id="b", is_active=False)
        other_type = _subscription(
            integration_system_id="c",
            event_types=EventTypeSet.of(WebhookEventType.ORDER_REJECTED),
        )
        with session_scope() as session:
            store = SqlWebhookSubscriptionStore(session)
            for sub in (wanted, inactive, other_type):
                store.save(sub)

        with session_scope() as session:
            found = SqlWebhookSubscriptionStore(session).list_active_for(
                WebhookEventType.ORDER_APPROVED
            )

        assert [s.integration_system_id for s in found] == ["a"]

    def test_delete(self, stored):
        with session_scope() as session:
            store = SqlWebhookSubscriptionStore(session)
            assert store.delete(stored.subscription_id)
            assert not store.delete(stored.subscription_id)

    def test_unknown_stored_event_type(self, stored):
        with session_scope() as session:
            session.execute(
                update(WebhookSubscriptionModel)
                .where(WebhookSubscriptionModel.id == stored.subscription_id)
                .values(event_types=["OrderShipped"])
            )

        with pytest.raises(MalformedReferenceDataError):
            with session_scope() as session:
                SqlWebhookSubscriptionStore(session).get(stored.subscription_id)


class TestDeliveryOutcomes:
    def test_record_failure_increments(self, stored):
        with session_scope() as session:
            store = SqlWebhookSubscriptionStore(session)
            store.record_failure(stored.subscription_id, AT)
            updated = store.record_failure(stored.subscription_id, AT + timedelta(minutes=5))

        assert updated.failed_attempts == 2
        assert updated.last_failure_at == AT + timedelta(minutes=5)

        with session_scope() as session:
            assert SqlWebhookSubscriptionStore(session).get(
                stored.subscription_id
            ).failed_attempts == 2

    def test_record_success_resets(self, stored):
        with session_scope() as session:
            store = SqlWebhookSubscriptionStore(session)
            store.record_failure(stored.subscription_id, AT)
            updated = store.record_success(stored.subscription_id, AT)

        assert updated.failed_attempts == 0
        assert updated.last_success_at == AT

    def test_missing_subscription(self, database):
        with session_scope() as session:
            assert SqlWebhookSubscriptionStore(session).record_failure(uuid4(), AT) is None


class TestNaiveDatetimes:
    def test_naive_datetime_rejected(self, database):
        with pytest.raises(RepositoryError):
            with session_scope() as session:
                SqlWebhookSubscriptionStore(session).save(
                    _subscription(created_at=datetime(2025, 6, 1, 9, 0))
                )
